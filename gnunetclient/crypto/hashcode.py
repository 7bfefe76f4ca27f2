"""512-bit hash codes.

A :class:`HashCode` is sixteen 32-bit words. Its canonical byte form is
64 bytes: the words in order, each least-significant byte first. Ports of
the cadet service are hash codes, usually derived from a name.
"""

import struct
from typing import Any, Iterable, Tuple

import msgpack

from gnunetclient.crypto import primitives
from gnunetclient.crypto.strings import data_to_string, string_to_data
from gnunetclient.errors import DeserializationError

HASH_SIZE = primitives.HASH_SIZE

_WORDS = struct.Struct("<16I")


def _pack_default(obj: Any) -> bytes:
    if hasattr(obj, "__bytes__"):
        return bytes(obj)
    raise TypeError(f"cannot serialize {type(obj).__name__} for hashing")


def canonical_bytes(value: Any) -> bytes:
    """
    Compact binary form of ``value`` used as hash input.

    MessagePack, with any object providing ``__bytes__`` (keys, signatures,
    hash codes) packed as its canonical bytes.
    """
    return msgpack.packb(value, default=_pack_default, use_bin_type=True)


class HashCode:
    """An immutable 512-bit value with bytewise equality."""

    __slots__ = ("_data",)

    def __init__(self, data: bytes):
        if len(data) != HASH_SIZE:
            raise DeserializationError(f"hash code must be {HASH_SIZE} bytes, got {len(data)}")
        self._data = bytes(data)

    def __bytes__(self) -> bytes:
        return self._data

    def __eq__(self, other) -> bool:
        if not isinstance(other, HashCode):
            return NotImplemented
        return self._data == other._data

    def __hash__(self) -> int:
        return hash(self._data)

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"HashCode('{self.to_string()}')"

    @classmethod
    def generate(cls, data: bytes) -> "HashCode":
        """Hash ``data``."""
        return cls(primitives.sha512(bytes(data)))

    @classmethod
    def generate_from(cls, value: Any) -> "HashCode":
        """Hash the canonical binary form of ``value``; stable across runs."""
        return cls.generate(canonical_bytes(value))

    @classmethod
    def from_words(cls, words: Iterable[int]) -> "HashCode":
        words = tuple(words)
        if len(words) != 16:
            raise DeserializationError(f"hash code needs 16 words, got {len(words)}")
        return cls(_WORDS.pack(*words))

    @property
    def words(self) -> Tuple[int, ...]:
        return _WORDS.unpack(self._data)

    def to_bytes(self) -> bytes:
        return self._data

    @classmethod
    def from_bytes(cls, data: bytes) -> "HashCode":
        return cls(data)

    def to_string(self) -> str:
        return data_to_string(self._data)

    @classmethod
    def from_string(cls, text: str) -> "HashCode":
        return cls(string_to_data(text, HASH_SIZE))
