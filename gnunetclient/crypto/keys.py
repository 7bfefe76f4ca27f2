"""Key and signature types.

Every key and signature is tagged with a :class:`KeyType`. Two byte
layouts exist:

- Daemon wire form (keys only): 4-byte big-endian type tag followed by the
  32-byte body. This is what identity messages carry.
- Canonical form: 1-byte discriminant (0 = ECDSA, 1 = EDDSA) followed by
  the body. A public key is 33 bytes, a signature 65 (``r`` then ``s``).

Private key material lives in a mutable buffer that is zeroed when the key
is wiped or collected.
"""

import enum
import struct
from dataclasses import dataclass
from typing import Optional

from gnunetclient.crypto import primitives
from gnunetclient.crypto.strings import data_to_string, string_to_data
from gnunetclient.errors import DeserializationError

KEY_SIZE = primitives.KEY_SIZE
WIRE_KEY_SIZE = 4 + KEY_SIZE
PUBLIC_KEY_SIZE = 1 + KEY_SIZE
SIGNATURE_SIZE = 1 + 2 * KEY_SIZE

_PURPOSE = struct.Struct(">II")
_TAG = struct.Struct(">I")


class KeyType(enum.IntEnum):
    """Key algorithm. Values are the daemon's wire tags."""
    ECDSA = 65536
    EDDSA = 65556

    @property
    def discriminant(self) -> int:
        """One-byte tag used by the canonical byte forms."""
        return 0 if self is KeyType.ECDSA else 1

    @classmethod
    def from_discriminant(cls, value: int) -> "KeyType":
        if value == 0:
            return cls.ECDSA
        if value == 1:
            return cls.EDDSA
        raise DeserializationError(f"unknown key type discriminant {value}")

    @classmethod
    def from_tag(cls, tag: int) -> "KeyType":
        try:
            return cls(tag)
        except ValueError:
            raise DeserializationError(f"unknown key type tag {tag}") from None


def signature_purpose(data: bytes, purpose: int) -> bytes:
    """Prefix ``data`` with the ``(size, purpose)`` header that is actually signed."""
    return _PURPOSE.pack(len(data), purpose) + bytes(data)


def _check_size(data: bytes, size: int, what: str) -> None:
    if len(data) != size:
        raise DeserializationError(f"{what} must be {size} bytes, got {len(data)}")


def _parse_wire(data: bytes, what: str):
    _check_size(data, WIRE_KEY_SIZE, what)
    key_type = KeyType.from_tag(_TAG.unpack_from(data)[0])
    return key_type, bytes(data[4:])


@dataclass(frozen=True)
class PublicKey:
    """A tagged 32-byte public key."""
    key_type: KeyType
    material: bytes

    def __post_init__(self):
        object.__setattr__(self, "material", bytes(self.material))
        _check_size(self.material, KEY_SIZE, "public key material")

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    def __str__(self) -> str:
        return self.to_string()

    def to_bytes(self) -> bytes:
        """Canonical 33-byte form."""
        return bytes([self.key_type.discriminant]) + self.material

    @classmethod
    def from_bytes(cls, data: bytes) -> "PublicKey":
        _check_size(data, PUBLIC_KEY_SIZE, "public key")
        return cls(KeyType.from_discriminant(data[0]), bytes(data[1:]))

    def to_wire(self) -> bytes:
        return _TAG.pack(self.key_type) + self.material

    @classmethod
    def from_wire(cls, data: bytes) -> "PublicKey":
        return cls(*_parse_wire(data, "public key"))

    def to_string(self) -> str:
        return data_to_string(self.to_wire())

    @classmethod
    def from_string(cls, text: str) -> "PublicKey":
        return cls.from_wire(string_to_data(text, WIRE_KEY_SIZE))

    def verify(self, signature: "Signature", data: bytes, purpose: int) -> bool:
        return signature.verify(self, data, purpose)


@dataclass(frozen=True)
class Signature:
    """A tagged signature made of two 32-byte halves."""
    key_type: KeyType
    r: bytes
    s: bytes

    def __post_init__(self):
        object.__setattr__(self, "r", bytes(self.r))
        object.__setattr__(self, "s", bytes(self.s))
        _check_size(self.r, KEY_SIZE, "signature r")
        _check_size(self.s, KEY_SIZE, "signature s")

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    def to_bytes(self) -> bytes:
        """Canonical 65-byte form."""
        return bytes([self.key_type.discriminant]) + self.r + self.s

    @classmethod
    def from_bytes(cls, data: bytes) -> "Signature":
        _check_size(data, SIGNATURE_SIZE, "signature")
        return cls(
            KeyType.from_discriminant(data[0]),
            bytes(data[1:1 + KEY_SIZE]),
            bytes(data[1 + KEY_SIZE:]),
        )

    def verify(self, public_key: PublicKey, data: bytes, purpose: int) -> bool:
        """
        Check this signature over ``data`` signed for ``purpose``.

        Returns:
            False on any mismatch, including a key type that differs from
            the signature's
        """
        if public_key.key_type is not self.key_type:
            return False
        message = signature_purpose(data, purpose)
        if self.key_type is KeyType.EDDSA:
            return primitives.eddsa_verify(public_key.material, message, self.r, self.s)
        return primitives.ecdsa_verify(public_key.material, message, self.r, self.s)


class PrivateKey:
    """
    A tagged 32-byte private key.

    The key bytes are copied into a private buffer; :meth:`wipe` (also run
    when the object is collected) overwrites that buffer with zeros.
    """

    __slots__ = ("key_type", "_material", "__weakref__")

    def __init__(self, key_type: KeyType, material: bytes):
        _check_size(material, KEY_SIZE, "private key material")
        self.key_type = KeyType(key_type)
        self._material = bytearray(material)

    def __del__(self):
        self.wipe()

    def __repr__(self) -> str:
        return f"PrivateKey({self.key_type.name})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return self.key_type is other.key_type and self._material == other._material

    def __hash__(self) -> int:
        return hash((self.key_type, bytes(self._material)))

    @classmethod
    def generate(cls, key_type: KeyType = KeyType.ECDSA) -> "PrivateKey":
        if key_type is KeyType.EDDSA:
            return cls(key_type, primitives.eddsa_generate())
        return cls(key_type, primitives.ecdsa_generate())

    @property
    def material(self) -> bytes:
        return bytes(self._material)

    def wipe(self) -> None:
        material = getattr(self, "_material", None)
        if material is not None:
            material[:] = bytes(len(material))

    def to_wire(self) -> bytes:
        return _TAG.pack(self.key_type) + bytes(self._material)

    @classmethod
    def from_wire(cls, data: bytes) -> "PrivateKey":
        return cls(*_parse_wire(data, "private key"))

    def extract_public(self) -> Optional[PublicKey]:
        """Derive the public key, or None if the key material is unusable."""
        try:
            if self.key_type is KeyType.EDDSA:
                material = primitives.eddsa_public(self._material)
            else:
                material = primitives.ecdsa_public(self._material)
        except ValueError:
            return None
        return PublicKey(self.key_type, material)

    def sign(self, data: bytes, purpose: int) -> Optional[Signature]:
        """
        Sign ``data`` for the 32-bit ``purpose``.

        The signed message is ``(size, purpose)`` as two big-endian u32
        followed by ``data``.
        """
        message = signature_purpose(data, purpose)
        try:
            if self.key_type is KeyType.EDDSA:
                r, s = primitives.eddsa_sign(self._material, message)
            else:
                r, s = primitives.ecdsa_sign(self._material, message)
        except ValueError:
            return None
        return Signature(self.key_type, r, s)


@dataclass(frozen=True)
class PeerIdentity:
    """Identity of a peer: its 32-byte EdDSA public key."""
    public_key: bytes

    def __post_init__(self):
        object.__setattr__(self, "public_key", bytes(self.public_key))
        _check_size(self.public_key, KEY_SIZE, "peer identity")

    def __bytes__(self) -> bytes:
        return self.public_key

    def __str__(self) -> str:
        return self.to_string()

    @classmethod
    def from_public_key(cls, key: PublicKey) -> "PeerIdentity":
        if key.key_type is not KeyType.EDDSA:
            raise ValueError("peer identities are EdDSA keys")
        return cls(key.material)

    def to_public_key(self) -> PublicKey:
        return PublicKey(KeyType.EDDSA, self.public_key)

    def to_string(self) -> str:
        return data_to_string(self.public_key)

    @classmethod
    def from_string(cls, text: str) -> "PeerIdentity":
        return cls(string_to_data(text, KEY_SIZE))
