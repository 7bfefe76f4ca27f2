"""Hash codes, keys and signatures, with their wire and canonical byte forms."""

from gnunetclient.crypto.hashcode import HashCode, canonical_bytes
from gnunetclient.crypto.keys import (
    KeyType,
    PeerIdentity,
    PrivateKey,
    PublicKey,
    Signature,
    signature_purpose,
)

__all__ = [
    "HashCode",
    "KeyType",
    "PeerIdentity",
    "PrivateKey",
    "PublicKey",
    "Signature",
    "canonical_bytes",
    "signature_purpose",
]
