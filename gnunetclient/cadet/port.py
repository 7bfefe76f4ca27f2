"""Listening ports: accept channels that other peers open towards us."""

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from gnunetclient.cadet.channel import Channel
from gnunetclient.crypto.hashcode import HashCode

if TYPE_CHECKING:
    from gnunetclient.cadet.mux import CadetMux

logger = logging.getLogger(__name__)


class Port:
    """
    An open port on the local peer.

    Usage:
        async with await mux.open_port(HashCode.generate_from("chat")) as port:
            async for channel in port:
                ...
    """

    def __init__(self, mux: "CadetMux", port: HashCode):
        self.port = port
        self._mux = mux
        self._incoming: "asyncio.Queue[Optional[Channel]]" = asyncio.Queue()
        self._closed = False

    def __repr__(self) -> str:
        return f"Port({self.port.to_string()[:8]}..., closed={self._closed})"

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _deliver(self, channel: Channel) -> None:
        self._incoming.put_nowait(channel)

    def _shutdown(self) -> None:
        """Stop accepting; wakes any pending :meth:`accept`."""
        if self._closed:
            return
        self._closed = True
        self._incoming.put_nowait(None)

    async def accept(self) -> Channel:
        """
        Wait for the next incoming channel.

        Raises:
            ConnectionResetError: If the port is closed (or the connection
                to the daemon lost) before a channel arrives
        """
        if self._closed and self._incoming.empty():
            raise ConnectionResetError("port is closed")
        channel = await self._incoming.get()
        if channel is None:
            self._incoming.put_nowait(None)
            raise ConnectionResetError("port is closed")
        return channel

    async def close(self) -> None:
        """Close the port and destroy channels that were never accepted."""
        if self._closed:
            return
        self._shutdown()
        await self._mux._close_port(self)
        while not self._incoming.empty():
            channel = self._incoming.get_nowait()
            if channel is not None:
                logger.debug(f"Destroying unaccepted channel {channel.id:#x}")
                await channel.destroy()
        self._incoming.put_nowait(None)

    def __aiter__(self) -> "Port":
        return self

    async def __anext__(self) -> Channel:
        try:
            return await self.accept()
        except ConnectionResetError:
            raise StopAsyncIteration from None

    async def __aenter__(self) -> "Port":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
