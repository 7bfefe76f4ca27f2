"""Wire codec for the daemon's framed message protocol.

Every message on a service socket is a frame:

    +-----------+-----------+----------------------+
    | size: u16 | type: u16 | body (size - 4 bytes) |
    +-----------+-----------+----------------------+

All integers are big-endian. ``size`` counts the 4-byte header, so the
largest possible body is 65531 bytes.

Bodies are assembled with :class:`MessageWriter` and taken apart with
:class:`MessageReader`; :func:`read_frame` / :func:`write_frame` move whole
frames over any asyncio byte stream.
"""

import asyncio
import struct
from dataclasses import dataclass
from typing import Optional

from gnunetclient.errors import ProtocolError

HEADER_SIZE = 4
MAX_MESSAGE_SIZE = 0xFFFF
MAX_BODY_SIZE = MAX_MESSAGE_SIZE - HEADER_SIZE

_HEADER = struct.Struct(">HH")
_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")


@dataclass(frozen=True)
class MessageHeader:
    """The 4-byte envelope in front of every frame."""
    size: int
    type: int

    @property
    def body_size(self) -> int:
        return self.size - HEADER_SIZE


@dataclass(frozen=True)
class Frame:
    """One complete message: its type and the body following the header."""
    type: int
    body: bytes


def pack_header(msg_type: int, size: int) -> bytes:
    """
    Serialize a message header.

    Args:
        msg_type: Message type code
        size: Total message size including the header

    Returns:
        4 bytes, size first, both big-endian

    Raises:
        ValueError: If size does not fit the envelope
    """
    if not HEADER_SIZE <= size <= MAX_MESSAGE_SIZE:
        raise ValueError(f"message size {size} out of range")
    return _HEADER.pack(size, msg_type)


def unpack_header(data: bytes) -> MessageHeader:
    """
    Parse a message header.

    Raises:
        ProtocolError: If the declared size is smaller than the header itself
    """
    size, msg_type = _HEADER.unpack(data)
    if size < HEADER_SIZE:
        raise ProtocolError(f"frame of type {msg_type} declares impossible size {size}")
    return MessageHeader(size=size, type=msg_type)


def pack_frame(msg_type: int, body: bytes = b"") -> bytes:
    """Prefix ``body`` with a header for ``msg_type``."""
    if len(body) > MAX_BODY_SIZE:
        raise ValueError(f"message body of {len(body)} bytes exceeds {MAX_BODY_SIZE}")
    return pack_header(msg_type, HEADER_SIZE + len(body)) + bytes(body)


async def read_frame(stream: asyncio.StreamReader) -> Frame:
    """
    Read exactly one frame from ``stream``.

    Raises:
        ConnectionResetError: If the stream ends before the frame is complete
        ProtocolError: If the header is invalid
    """
    try:
        header = unpack_header(await stream.readexactly(HEADER_SIZE))
        body = await stream.readexactly(header.body_size) if header.body_size else b""
    except asyncio.IncompleteReadError as e:
        raise ConnectionResetError("connection to the daemon closed mid-frame") from e
    return Frame(type=header.type, body=body)


async def write_frame(stream: asyncio.StreamWriter, msg_type: int, body: bytes = b"") -> None:
    """Write one frame to ``stream`` and wait until it is flushed."""
    stream.write(pack_frame(msg_type, body))
    await stream.drain()


class MessageWriter:
    """
    Accumulates a message body.

    Example:
        >>> body = MessageWriter().write_u32(7).write_zstring("alice")
        >>> frame = body.frame(IDENTITY_LOOKUP)
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def write_u16(self, value: int) -> "MessageWriter":
        self._buffer += _U16.pack(value)
        return self

    def write_u32(self, value: int) -> "MessageWriter":
        self._buffer += _U32.pack(value)
        return self

    def write_bytes(self, data: bytes) -> "MessageWriter":
        self._buffer += data
        return self

    def write_zstring(self, text: str) -> "MessageWriter":
        """Write the UTF-8 bytes of ``text`` followed by a NUL byte."""
        encoded = text.encode("utf-8")
        if b"\0" in encoded:
            raise ValueError("string contains a NUL character")
        self._buffer += encoded + b"\0"
        return self

    def getvalue(self) -> bytes:
        return bytes(self._buffer)

    def frame(self, msg_type: int) -> bytes:
        """Return the complete frame (header + accumulated body)."""
        return pack_frame(msg_type, self._buffer)


class MessageReader:
    """
    Cursor over a received message body.

    Every read that runs past the end of the body raises
    :class:`ProtocolError`: a truncated body is a protocol violation, not an
    I/O error.
    """

    def __init__(self, body: bytes, msg_type: Optional[int] = None):
        self._body = bytes(body)
        self._offset = 0
        self._type = msg_type

    @property
    def remaining(self) -> int:
        return len(self._body) - self._offset

    def _take(self, count: int) -> bytes:
        if count < 0 or count > self.remaining:
            raise ProtocolError(
                f"truncated body in message type {self._type}: wanted {count} bytes, "
                f"{self.remaining} left"
            )
        chunk = self._body[self._offset:self._offset + count]
        self._offset += count
        return chunk

    def read_u16(self) -> int:
        return _U16.unpack(self._take(2))[0]

    def read_u32(self) -> int:
        return _U32.unpack(self._take(4))[0]

    def read_bytes(self, count: int) -> bytes:
        return self._take(count)

    def read_rest(self) -> bytes:
        return self._take(self.remaining)

    def read_zstring(self, length: Optional[int] = None) -> str:
        """
        Read a string that is normally followed by a NUL terminator.

        Some daemon versions count the terminator in ``length``, some leave
        it out, and some omit it altogether. All forms are accepted: the text
        ends at the first NUL inside the ``length`` bytes, and one extra
        terminator byte is consumed only when the body still holds it.

        Args:
            length: Number of bytes to read, or None to read up to the first
                NUL (or the end of the body)

        Returns:
            The decoded string, without terminator
        """
        if length is None:
            rest = self._body[self._offset:]
            end = rest.find(b"\0")
            length = len(rest) if end < 0 else end
        raw = self._take(length)
        if self.remaining and self._body[self._offset] == 0:
            self._offset += 1
        raw = raw.split(b"\0", 1)[0]
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"invalid UTF-8 string in message type {self._type}") from e
