"""Binary messages of the cadet service.

Every channel message carries the 32-bit channel id right after the
header:

    CHANNEL_CREATE   channel_id:u32  peer[32]  port[64]  options:u32
    CHANNEL_DESTROY  channel_id:u32
    DATA             channel_id:u32  priority:u32  payload...
    ACK              channel_id:u32

Ports are opened and closed with the bare 64-byte port hash as body.
"""

from dataclasses import dataclass
from typing import Tuple, Union

from gnunetclient.core.codec import MAX_BODY_SIZE, MessageReader, MessageWriter
from gnunetclient.crypto.hashcode import HASH_SIZE, HashCode
from gnunetclient.crypto.keys import KEY_SIZE

CADET_LOCAL_CHANNEL_CREATE = 1000
CADET_LOCAL_CHANNEL_DESTROY = 1001
CADET_LOCAL_PORT_OPEN = 1002
CADET_LOCAL_PORT_CLOSE = 1003
CADET_LOCAL_DATA = 1004
CADET_LOCAL_ACK = 1005

MAX_PAYLOAD_SIZE = MAX_BODY_SIZE - 8


@dataclass(frozen=True)
class Ack:
    """The daemon grants credit for one more payload."""


@dataclass(frozen=True)
class Payload:
    """Data received on a channel."""
    priority_flags: int
    data: bytes


@dataclass(frozen=True)
class Destroy:
    """The channel was torn down by the peer, the daemon or ourselves."""


ChannelMessage = Union[Ack, Payload, Destroy]


@dataclass(frozen=True)
class ChannelCreate:
    """A channel opened towards one of our ports."""
    channel_id: int
    peer: bytes
    port: HashCode
    options: int


def serialize_channel_create(channel_id: int, peer: bytes, port: HashCode, options: int = 0) -> bytes:
    """
    Serialize a CHANNEL_CREATE request.

    Args:
        channel_id: Locally allocated channel id
        peer: 32-byte public key of the destination peer
        port: Port the destination listens on
        options: Channel options (reserved, 0)

    Returns:
        Complete frame
    """
    if len(peer) != KEY_SIZE:
        raise ValueError(f"peer key must be {KEY_SIZE} bytes, got {len(peer)}")
    return (
        MessageWriter()
        .write_u32(channel_id)
        .write_bytes(peer)
        .write_bytes(port.to_bytes())
        .write_u32(options)
        .frame(CADET_LOCAL_CHANNEL_CREATE)
    )


def serialize_channel_destroy(channel_id: int) -> bytes:
    return MessageWriter().write_u32(channel_id).frame(CADET_LOCAL_CHANNEL_DESTROY)


def serialize_ack(channel_id: int) -> bytes:
    return MessageWriter().write_u32(channel_id).frame(CADET_LOCAL_ACK)


def serialize_data(channel_id: int, priority: int, data: bytes) -> bytes:
    if len(data) > MAX_PAYLOAD_SIZE:
        raise ValueError(f"payload of {len(data)} bytes exceeds {MAX_PAYLOAD_SIZE}")
    return (
        MessageWriter()
        .write_u32(channel_id)
        .write_u32(priority)
        .write_bytes(data)
        .frame(CADET_LOCAL_DATA)
    )


def serialize_port_open(port: HashCode) -> bytes:
    return MessageWriter().write_bytes(port.to_bytes()).frame(CADET_LOCAL_PORT_OPEN)


def serialize_port_close(port: HashCode) -> bytes:
    return MessageWriter().write_bytes(port.to_bytes()).frame(CADET_LOCAL_PORT_CLOSE)


def deserialize_channel_id(body: bytes, msg_type: int) -> int:
    """Parse the body of an ACK or CHANNEL_DESTROY frame."""
    return MessageReader(body, msg_type).read_u32()


def deserialize_data(body: bytes) -> Tuple[int, Payload]:
    """
    Parse the body of a DATA frame.

    Returns:
        (channel_id, payload)
    """
    reader = MessageReader(body, CADET_LOCAL_DATA)
    channel_id = reader.read_u32()
    priority = reader.read_u32()
    return channel_id, Payload(priority_flags=priority, data=reader.read_rest())


def deserialize_channel_create(body: bytes) -> ChannelCreate:
    reader = MessageReader(body, CADET_LOCAL_CHANNEL_CREATE)
    return ChannelCreate(
        channel_id=reader.read_u32(),
        peer=reader.read_bytes(KEY_SIZE),
        port=HashCode(reader.read_bytes(HASH_SIZE)),
        options=reader.read_u32(),
    )
