"""Asynchronous client for the identity and cadet services of a GNUnet peer."""

from gnunetclient.cadet import CadetMux, Channel, Port
from gnunetclient.core import Configuration, SocketLocator, Transport
from gnunetclient.crypto import HashCode, KeyType, PeerIdentity, PrivateKey, PublicKey, Signature
from gnunetclient.errors import (
    ConfigurationError,
    DeserializationError,
    GnunetError,
    HandleClosedError,
    ProtocolError,
    ResultError,
)
from gnunetclient.identity import Ego, IdentityClient

__version__ = "0.1.0"

__all__ = [
    "CadetMux",
    "Channel",
    "Configuration",
    "ConfigurationError",
    "DeserializationError",
    "Ego",
    "GnunetError",
    "HandleClosedError",
    "HashCode",
    "IdentityClient",
    "KeyType",
    "PeerIdentity",
    "Port",
    "PrivateKey",
    "ProtocolError",
    "PublicKey",
    "ResultError",
    "Signature",
    "SocketLocator",
    "Transport",
]
