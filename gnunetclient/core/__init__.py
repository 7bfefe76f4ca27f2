"""Shared plumbing: wire codec, socket transport, configuration lookup."""

from gnunetclient.core.codec import (
    Frame,
    MessageHeader,
    MessageReader,
    MessageWriter,
    pack_frame,
    pack_header,
    read_frame,
    unpack_header,
    write_frame,
)
from gnunetclient.core.configs import Configuration, load_raw_config
from gnunetclient.core.locator import Service, SocketLocator
from gnunetclient.core.transport import Transport

__all__ = [
    "Configuration",
    "Frame",
    "MessageHeader",
    "MessageReader",
    "MessageWriter",
    "Service",
    "SocketLocator",
    "Transport",
    "load_raw_config",
    "pack_frame",
    "pack_header",
    "read_frame",
    "unpack_header",
    "write_frame",
]
