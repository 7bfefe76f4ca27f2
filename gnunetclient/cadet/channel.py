"""Channels: logical streams multiplexed over one cadet connection.

A channel is Pending until the daemon's first ACK, then Open, and
Destroyed once either side tears it down. While Open, every ACK from the
daemon is one unit of send credit; :meth:`Channel.send` waits for credit
and spends it.
"""

import asyncio
import collections
import enum
import logging
import weakref
from typing import TYPE_CHECKING, Deque, Iterable, Optional

from gnunetclient.cadet.protocol import MAX_PAYLOAD_SIZE, Ack, ChannelMessage, Destroy, Payload
from gnunetclient.crypto.hashcode import HashCode
from gnunetclient.crypto.keys import PeerIdentity
from gnunetclient.errors import HandleClosedError

if TYPE_CHECKING:
    from gnunetclient.cadet.mux import CadetMux

logger = logging.getLogger(__name__)


class ChannelState(enum.Enum):
    PENDING = "pending"
    OPEN = "open"
    DESTROYED = "destroyed"


class ChannelInbox:
    """
    Inbound side of one channel.

    The mux reader delivers messages here in socket order. ACKs that
    arrive while the channel is Open become send credit instead of queue
    entries.
    """

    def __init__(self, state: ChannelState = ChannelState.PENDING):
        self.state = state
        self._messages: Deque[ChannelMessage] = collections.deque()
        self._available = asyncio.Event()
        self._credit = 0
        self._credit_changed = asyncio.Event()

    @property
    def credit(self) -> int:
        return self._credit

    def deliver(self, message: ChannelMessage) -> None:
        if isinstance(message, Ack) and self.state is ChannelState.OPEN:
            self.grant()
            return
        self._messages.append(message)
        self._available.set()

    def requeue(self, messages: Iterable[ChannelMessage]) -> None:
        """Put ``messages`` back in front of anything still queued."""
        self._messages.extendleft(reversed(list(messages)))
        if self._messages:
            self._available.set()

    async def get(self) -> ChannelMessage:
        while not self._messages:
            self._available.clear()
            await self._available.wait()
        return self._messages.popleft()

    def open(self) -> None:
        """Pending -> Open; the ACK that opened the channel is the first credit."""
        if self.state is not ChannelState.PENDING:
            return
        self.state = ChannelState.OPEN
        self.grant()

    def close(self) -> None:
        """Mark the channel Destroyed and wake everyone waiting on it."""
        if self.state is ChannelState.DESTROYED:
            return
        self.state = ChannelState.DESTROYED
        self._messages.append(Destroy())
        self._available.set()
        self._credit_changed.set()

    def grant(self) -> None:
        self._credit += 1
        self._credit_changed.set()

    async def acquire_credit(self) -> None:
        """
        Wait for one unit of send credit and consume it.

        Raises:
            ConnectionResetError: If the channel is destroyed while waiting
        """
        while self._credit == 0:
            if self.state is ChannelState.DESTROYED:
                raise ConnectionResetError("channel destroyed while waiting for send credit")
            self._credit_changed.clear()
            await self._credit_changed.wait()
        self._credit -= 1


class Channel:
    """
    User handle to one open channel.

    Usage:
        async with await mux.channel_connect(peer, port) as channel:
            await channel.send(b"hello")
            reply = await channel.receive()

    A channel that is garbage-collected without :meth:`destroy` releases
    its id and, if it was still open, has a destroy message sent for it.
    """

    def __init__(
        self,
        mux: "CadetMux",
        channel_id: int,
        inbox: ChannelInbox,
        peer: Optional[PeerIdentity] = None,
        port: Optional[HashCode] = None,
    ):
        self.id = channel_id
        self.peer = peer
        self.port = port
        self._mux = mux
        self._inbox = inbox
        self._ended = False
        self._finalizer = weakref.finalize(self, mux._abandon, channel_id, inbox)
        self._finalizer.atexit = False

    def __repr__(self) -> str:
        return f"Channel(id={self.id:#x}, state={self.state.value})"

    @property
    def state(self) -> ChannelState:
        return self._inbox.state

    @property
    def credit(self) -> int:
        """Payloads that may be sent without waiting."""
        return self._inbox.credit

    async def send(self, data: bytes, priority: int = 0) -> None:
        """
        Send one payload.

        Waits until the daemon has granted credit, then writes the data
        frame and returns once it is flushed.

        Args:
            data: Payload bytes
            priority: Priority and preference flags passed to the daemon

        Raises:
            ConnectionResetError: If the channel is or becomes destroyed
            ValueError: If ``data`` does not fit in one message
        """
        if self.state is ChannelState.DESTROYED:
            raise ConnectionResetError(f"channel {self.id:#x} is destroyed")
        if len(data) > MAX_PAYLOAD_SIZE:
            raise ValueError(f"payload of {len(data)} bytes exceeds {MAX_PAYLOAD_SIZE}")
        await self._inbox.acquire_credit()
        await self._mux._send_data(self.id, priority, data)

    async def receive(self) -> Optional[Payload]:
        """
        Wait for the next payload.

        Returns:
            The payload, or None once the channel has been destroyed. Every
            call after the first None returns None again immediately.
        """
        while not self._ended:
            message = await self._inbox.get()
            if isinstance(message, Ack):
                self._inbox.grant()
                continue
            if isinstance(message, Destroy):
                self._ended = True
                self._finalizer.detach()
                self._mux._release(self.id, self._inbox)
                break
            if self.state is ChannelState.OPEN:
                try:
                    await self._mux._send_ack(self.id)
                except (OSError, HandleClosedError) as e:
                    logger.warning(f"Could not acknowledge data on channel {self.id:#x}: {e}")
            return message
        return None

    async def destroy(self) -> None:
        """Tear the channel down. Safe to call more than once."""
        self._finalizer.detach()
        if self.state is ChannelState.DESTROYED:
            self._mux._release(self.id, self._inbox)
            return

        self._mux._release(self.id, self._inbox)
        self._inbox.close()
        logger.info(f"Destroying channel {self.id:#x}")
        await self._mux._send_destroy(self.id)

    async def __aenter__(self) -> "Channel":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.destroy()
