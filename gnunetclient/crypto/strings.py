"""Base32 text form used for hash codes and keys.

The daemon prints binary values with a Crockford-style alphabet
(``0-9A-Z`` without ``I L O U``), most significant bit first, without
padding. Decoding is case-insensitive and accepts the usual look-alike
substitutions (``O`` for ``0``, ``I``/``L`` for ``1``, ``U`` for ``V``).
"""

import base64
import binascii

from gnunetclient.errors import DeserializationError

ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_RFC4648 = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"

_TO_ALPHABET = str.maketrans(_RFC4648, ALPHABET)
_FROM_ALPHABET = str.maketrans(ALPHABET, _RFC4648)
_LOOKALIKES = str.maketrans("OILU", "011V")


def encoded_length(size: int) -> int:
    """Number of characters needed to encode ``size`` bytes."""
    return (size * 8 + 4) // 5


def data_to_string(data: bytes) -> str:
    return base64.b32encode(bytes(data)).decode("ascii").rstrip("=").translate(_TO_ALPHABET)


def string_to_data(text: str, size: int) -> bytes:
    """
    Decode ``text`` into exactly ``size`` bytes.

    Raises:
        DeserializationError: On a wrong length or a character outside the alphabet
    """
    if len(text) != encoded_length(size):
        raise DeserializationError(
            f"expected {encoded_length(size)} characters for {size} bytes, got {len(text)}"
        )

    normalized = text.upper().translate(_LOOKALIKES)
    invalid = set(normalized) - set(ALPHABET)
    if invalid:
        raise DeserializationError(f"invalid characters in encoded string: {''.join(sorted(invalid))}")

    rfc = normalized.translate(_FROM_ALPHABET)
    rfc += "=" * (-len(rfc) % 8)
    try:
        data = base64.b32decode(rfc)
    except binascii.Error as e:
        raise DeserializationError(f"malformed encoded string: {e}") from e

    if len(data) != size:
        raise DeserializationError(f"decoded {len(data)} bytes, expected {size}")
    return data
