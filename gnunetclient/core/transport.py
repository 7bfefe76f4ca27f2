"""Framed message transport over a UNIX-domain stream socket.

One :class:`Transport` owns one connection to a daemon service. Reads and
writes are each serialized by their own lock, so at most one framed read
and at most one framed write are in flight at a time, and a frame is
never interleaved with another task's frame.

Usage:
    async with await Transport.connect(path) as transport:
        await transport.write_frame(IDENTITY_START)
        frame = await transport.read_frame()
"""

import asyncio
import logging
import socket
from pathlib import Path
from typing import Optional, Union

from gnunetclient.core.codec import HEADER_SIZE, Frame, read_frame, unpack_header, write_frame
from gnunetclient.errors import ProtocolError

logger = logging.getLogger(__name__)


class Transport:
    """
    Exclusive owner of one stream socket to the daemon.

    A second handle onto the same socket can be obtained with
    :meth:`clone`. The two handles have independent locks, which is only
    safe as long as one of them is used exclusively for reads and the
    other exclusively for writes.

    Dropping the owning handle without :meth:`disconnect` still shuts the
    socket down; clones never close it.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        path: Optional[Path] = None,
    ):
        """
        Wrap an already connected stream pair.

        Args:
            reader: Stream the daemon's frames arrive on
            writer: Stream our frames are written to
            path: Socket path, kept for log messages only
        """
        self.path = path
        self._reader = reader
        self._writer = writer
        self._read_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._closed = False
        self._owner = True

    @classmethod
    async def connect(cls, path: Union[str, Path]) -> "Transport":
        """
        Open a connection to the service listening on ``path``.

        Raises:
            FileNotFoundError: If no socket exists at ``path``
            ConnectionRefusedError: If nothing is listening on it
        """
        path = Path(path)
        reader, writer = await asyncio.open_unix_connection(str(path))
        logger.info(f"Connected to {path}")
        return cls(reader, writer, path=path)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def clone(self) -> "Transport":
        """Return a second handle onto the same socket with its own locks."""
        twin = Transport(self._reader, self._writer, path=self.path)
        twin._owner = False
        return twin

    async def read_frame(self) -> Frame:
        """Read the next complete frame."""
        async with self._read_lock:
            frame = await read_frame(self._reader)
        logger.debug(f"Read frame type={frame.type} size={len(frame.body) + 4} from {self.path}")
        return frame

    async def write_frame(self, msg_type: int, body: bytes = b"") -> None:
        """Write one frame and wait until it has been flushed."""
        async with self._write_lock:
            await write_frame(self._writer, msg_type, body)
        logger.debug(f"Wrote frame type={msg_type} size={len(body) + 4} to {self.path}")

    async def write_message(self, message: bytes) -> None:
        """
        Write an already framed message (header included).

        Raises:
            ProtocolError: If the header's size does not match the data
        """
        header = unpack_header(message[:HEADER_SIZE])
        if header.size != len(message):
            raise ProtocolError(
                f"message of type {header.type} declares {header.size} bytes but has {len(message)}"
            )
        async with self._write_lock:
            self._writer.write(message)
            await self._writer.drain()
        logger.debug(f"Wrote frame type={header.type} size={header.size} to {self.path}")

    def _shutdown(self) -> None:
        sock = self._writer.get_extra_info("socket")
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                logger.debug(f"Unable to shut down socket {self.path}: {e}")

    async def disconnect(self) -> None:
        """Shut the socket down in both directions and close it."""
        if self._closed:
            return
        self._closed = True
        self._shutdown()
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing {self.path}: {e}")
        logger.info(f"Disconnected from {self.path}")

    def __del__(self):
        if not self._owner or self._closed:
            return
        self._closed = True
        logger.debug(f"Closing dropped connection to {self.path}")
        self._shutdown()
        try:
            self._writer.close()
        except RuntimeError as e:
            logger.debug(f"Event loop gone while closing {self.path}: {e}")

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()
