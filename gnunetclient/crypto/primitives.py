"""Signature and hash primitives behind the key types.

- Hash: SHA-512.
- EdDSA: Ed25519 (PyNaCl). The private key is the 32-byte seed.
- ECDSA: ECDSA over the Ed25519 curve. The private key is a 32-byte
  little-endian scalar, the public key the compressed Edwards point, the
  nonce is derived deterministically (RFC 6979, SHA-512) and ``r``/``s``
  are big-endian. Curve arithmetic comes from python-ecdsa.

Signing functions return ``(r, s)`` as two 32-byte strings; verification
functions return a bool and never raise on bad input.
"""

import hashlib
from typing import Tuple

import nacl.exceptions
import nacl.signing
import nacl.utils
from ecdsa import rfc6979
from ecdsa.eddsa import PublicKey as EdwardsPublicKey
from ecdsa.eddsa import generator_ed25519
from ecdsa.ellipticcurve import INFINITY
from ecdsa.errors import MalformedPointError

KEY_SIZE = 32
HASH_SIZE = 64

_ORDER = generator_ed25519.order()


def sha512(data: bytes) -> bytes:
    return hashlib.sha512(data).digest()


def random_bytes(size: int) -> bytes:
    return nacl.utils.random(size)


# --- EdDSA ---

def eddsa_generate() -> bytes:
    return random_bytes(KEY_SIZE)


def eddsa_public(seed: bytes) -> bytes:
    return bytes(nacl.signing.SigningKey(bytes(seed)).verify_key)


def eddsa_sign(seed: bytes, message: bytes) -> Tuple[bytes, bytes]:
    signature = nacl.signing.SigningKey(bytes(seed)).sign(message).signature
    return signature[:KEY_SIZE], signature[KEY_SIZE:]


def eddsa_verify(public: bytes, message: bytes, r: bytes, s: bytes) -> bool:
    try:
        nacl.signing.VerifyKey(bytes(public)).verify(message, r + s)
    except (nacl.exceptions.CryptoError, ValueError):
        return False
    return True


# --- ECDSA on the Ed25519 curve ---

def _scalar(private: bytes) -> int:
    d = int.from_bytes(private, "little") % _ORDER
    if d == 0:
        raise ValueError("private scalar is zero")
    return d


def _encode_point(point) -> bytes:
    encoded = bytearray(point.y().to_bytes(KEY_SIZE, "little"))
    if point.x() & 1:
        encoded[-1] |= 0x80
    return bytes(encoded)


def _bits2int(digest: bytes) -> int:
    return int.from_bytes(digest, "big") >> (len(digest) * 8 - _ORDER.bit_length())


def ecdsa_generate() -> bytes:
    while True:
        d = int.from_bytes(random_bytes(KEY_SIZE), "little") % _ORDER
        if d:
            return d.to_bytes(KEY_SIZE, "little")


def ecdsa_public(private: bytes) -> bytes:
    return _encode_point(generator_ed25519 * _scalar(private))


def ecdsa_sign(private: bytes, message: bytes) -> Tuple[bytes, bytes]:
    d = _scalar(private)
    digest = sha512(message)
    e = _bits2int(digest)

    retry = 0
    while True:
        k = rfc6979.generate_k(_ORDER, d, hashlib.sha512, digest, retry_gen=retry)
        retry += 1
        r = (generator_ed25519 * k).x() % _ORDER
        if r == 0:
            continue
        s = pow(k, -1, _ORDER) * (e + r * d) % _ORDER
        if s == 0:
            continue
        return r.to_bytes(KEY_SIZE, "big"), s.to_bytes(KEY_SIZE, "big")


def ecdsa_verify(public: bytes, message: bytes, r_bytes: bytes, s_bytes: bytes) -> bool:
    r = int.from_bytes(r_bytes, "big")
    s = int.from_bytes(s_bytes, "big")
    if not (0 < r < _ORDER and 0 < s < _ORDER):
        return False

    try:
        q = EdwardsPublicKey(generator_ed25519, bytes(public)).point
    except (ValueError, MalformedPointError):
        return False

    e = _bits2int(sha512(message))
    w = pow(s, -1, _ORDER)
    u1 = e * w % _ORDER
    u2 = r * w % _ORDER

    terms = [p for p in (generator_ed25519 * u1, q * u2) if p != INFINITY]
    if not terms:
        return False
    point = terms[0] if len(terms) == 1 else terms[0] + terms[1]
    if point == INFINITY:
        return False
    return point.x() % _ORDER == r
