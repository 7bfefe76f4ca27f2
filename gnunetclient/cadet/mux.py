"""Channel multiplexer for the cadet service.

One socket to the daemon carries any number of channels. A single reader
task takes frames off the socket and routes them by channel id to each
channel's inbox; channels write through the shared transport, whose write
lock keeps every frame atomic.

Usage:
    mux = await CadetMux.connect(locator.unixpath("cadet"), on_error=print)
    async with mux:
        channel = await mux.channel_connect(peer, HashCode.generate_from("chat"))
        await channel.send(b"hello")
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Collection, Dict, Optional, Set, Union

from gnunetclient.cadet.channel import Channel, ChannelInbox, ChannelState
from gnunetclient.cadet.port import Port
from gnunetclient.cadet.protocol import (
    CADET_LOCAL_ACK,
    CADET_LOCAL_CHANNEL_CREATE,
    CADET_LOCAL_CHANNEL_DESTROY,
    CADET_LOCAL_DATA,
    Ack,
    ChannelCreate,
    ChannelMessage,
    Destroy,
    deserialize_channel_create,
    deserialize_channel_id,
    deserialize_data,
    serialize_ack,
    serialize_channel_create,
    serialize_channel_destroy,
    serialize_data,
    serialize_port_close,
    serialize_port_open,
)
from gnunetclient.core.codec import Frame
from gnunetclient.core.transport import Transport
from gnunetclient.crypto.hashcode import HashCode
from gnunetclient.crypto.keys import KEY_SIZE, PeerIdentity, PublicKey
from gnunetclient.errors import HandleClosedError, ResultError
from gnunetclient.identity.protocol import IDENTITY_RESULT_CODE, RESULT_OK, deserialize_result_code

logger = logging.getLogger(__name__)

# Ids below the base are assigned by the daemon to incoming channels.
CHANNEL_ID_BASE = 0x80000001
CHANNEL_ID_MAX = 0xFFFFFFFF

ErrorHandler = Callable[[BaseException], None]
Destination = Union[PeerIdentity, PublicKey, bytes]


def allocate_channel_id(active: Collection[int], start: int = CHANNEL_ID_BASE) -> int:
    """
    Return the smallest client channel id not in ``active``.

    Args:
        active: Ids currently in use
        start: First id to consider, never below the client range

    Raises:
        RuntimeError: If every id up to 0xFFFFFFFF is taken
    """
    channel_id = max(start, CHANNEL_ID_BASE)
    while channel_id in active:
        channel_id += 1
        if channel_id > CHANNEL_ID_MAX:
            raise RuntimeError("channel id space exhausted")
    return channel_id


def _peer_bytes(destination: Destination) -> bytes:
    if isinstance(destination, PeerIdentity):
        return destination.public_key
    if isinstance(destination, PublicKey):
        return destination.material
    destination = bytes(destination)
    if len(destination) != KEY_SIZE:
        raise ValueError(f"destination key must be {KEY_SIZE} bytes, got {len(destination)}")
    return destination


class CadetMux:
    """
    Multiplexes channels over one transport to the cadet service.

    The channel map is only touched from the event loop thread and never
    across an await, so the reader and the connecting or destroying tasks
    need no lock around it.

    Args:
        transport: Connected transport, owned by the mux from now on
        on_error: Called with background failures: non-zero result codes
            from the daemon, and the exception that killed the reader
    """

    def __init__(self, transport: Transport, on_error: Optional[ErrorHandler] = None):
        self._transport = transport
        self._reader = transport.clone()
        self._on_error = on_error
        self._channels: Dict[int, ChannelInbox] = {}
        self._ports: Dict[HashCode, Port] = {}
        self._running = False
        self._reader_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._background: Set[asyncio.Task] = set()

    @classmethod
    async def connect(
        cls,
        path: Union[str, Path],
        on_error: Optional[ErrorHandler] = None,
    ) -> "CadetMux":
        """Connect to the service at ``path`` and start the reader."""
        mux = cls(await Transport.connect(path), on_error=on_error)
        mux.start()
        return mux

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def channel_ids(self) -> Set[int]:
        return set(self._channels)

    def start(self) -> None:
        """Spawn the reader task. Must be called from within the event loop."""
        if self._reader_task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._reader_task = self._loop.create_task(self._read_loop())

    async def close(self) -> None:
        """Stop the reader, destroy every channel locally and disconnect."""
        if self._reader_task is None and not self._running:
            await self._transport.disconnect()
            return
        self._running = False
        task, self._reader_task = self._reader_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._fail_all()
        await self._transport.disconnect()

    async def __aenter__(self) -> "CadetMux":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_running(self) -> None:
        if not self._running:
            raise HandleClosedError("cadet connection is not running")

    # --- channels ---

    async def channel_connect(
        self,
        destination: Destination,
        port: HashCode,
        options: int = 0,
    ) -> Channel:
        """
        Open a channel to ``port`` on the peer ``destination``.

        Args:
            destination: Peer identity (or its 32-byte public key)
            port: Port the peer listens on
            options: Channel options; reserved, 0

        Returns:
            An open channel

        Raises:
            ConnectionResetError: If the channel is destroyed before it opens
            HandleClosedError: If the mux is not running
        """
        self._ensure_running()
        peer = _peer_bytes(destination)
        channel_id = allocate_channel_id(self._channels)
        inbox = ChannelInbox()
        self._channels[channel_id] = inbox
        logger.debug(f"Allocated channel id {channel_id:#x}")

        early = []
        try:
            await self._transport.write_message(
                serialize_channel_create(channel_id, peer, port, options)
            )
            while True:
                message = await inbox.get()
                if isinstance(message, Ack):
                    break
                if isinstance(message, Destroy):
                    raise ConnectionResetError(f"channel {channel_id:#x} was destroyed before it opened")
                logger.warning(f"Payload arrived on channel {channel_id:#x} before it was opened")
                early.append(message)
        except BaseException:
            self._release(channel_id, inbox)
            raise

        inbox.open()
        inbox.requeue(early)
        logger.info(f"Opened channel {channel_id:#x}")
        return Channel(self, channel_id, inbox, peer=PeerIdentity(peer), port=port)

    def _release(self, channel_id: int, inbox: ChannelInbox) -> None:
        """Uninstall ``inbox`` if it still owns ``channel_id``."""
        if self._channels.get(channel_id) is inbox:
            del self._channels[channel_id]
            logger.debug(f"Released channel id {channel_id:#x}")

    def _abandon(self, channel_id: int, inbox: ChannelInbox) -> None:
        """Finalizer of a channel handle that was dropped without being destroyed."""
        was_open = inbox.state is ChannelState.OPEN
        self._release(channel_id, inbox)
        inbox.close()
        if was_open and self._running and self._loop is not None and not self._loop.is_closed():
            logger.info(f"Channel {channel_id:#x} dropped while open, destroying it")
            self._loop.call_soon_threadsafe(self._spawn_destroy, channel_id)

    def _spawn_destroy(self, channel_id: int) -> None:
        task = asyncio.ensure_future(self._send_destroy(channel_id))
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Background write failed: {task.exception()}")

    async def _send_data(self, channel_id: int, priority: int, data: bytes) -> None:
        self._ensure_running()
        await self._transport.write_message(serialize_data(channel_id, priority, data))

    async def _send_ack(self, channel_id: int) -> None:
        self._ensure_running()
        await self._transport.write_message(serialize_ack(channel_id))

    async def _send_destroy(self, channel_id: int) -> None:
        if not self._running:
            return
        await self._transport.write_message(serialize_channel_destroy(channel_id))

    # --- ports ---

    async def open_port(self, port: HashCode) -> Port:
        """
        Start accepting channels on ``port``.

        Raises:
            ValueError: If the port is already open on this connection
        """
        self._ensure_running()
        if port in self._ports:
            raise ValueError(f"port {port} is already open")
        listener = Port(self, port)
        self._ports[port] = listener
        try:
            await self._transport.write_message(serialize_port_open(port))
        except BaseException:
            self._ports.pop(port, None)
            raise
        logger.info(f"Opened port {port}")
        return listener

    async def _close_port(self, listener: Port) -> None:
        if self._ports.get(listener.port) is listener:
            del self._ports[listener.port]
            if self._running:
                await self._transport.write_message(serialize_port_close(listener.port))
            logger.info(f"Closed port {listener.port}")

    # --- reader ---

    async def _read_loop(self) -> None:
        try:
            while self._running:
                frame = await self._reader.read_frame()
                self._dispatch(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._running:
                return
            logger.error(f"CADET reader stopped: {e}")
            self._running = False
            self._fail_all()
            self._report(e)

    def _dispatch(self, frame: Frame) -> None:
        if frame.type == CADET_LOCAL_ACK:
            self._route(deserialize_channel_id(frame.body, frame.type), Ack())
        elif frame.type == CADET_LOCAL_DATA:
            channel_id, payload = deserialize_data(frame.body)
            self._route(channel_id, payload)
        elif frame.type == CADET_LOCAL_CHANNEL_DESTROY:
            channel_id = deserialize_channel_id(frame.body, frame.type)
            inbox = self._channels.pop(channel_id, None)
            if inbox is None:
                logger.warning(f"Destroy for unknown channel {channel_id:#x}")
                return
            logger.info(f"Channel {channel_id:#x} destroyed by the daemon")
            inbox.close()
        elif frame.type == CADET_LOCAL_CHANNEL_CREATE:
            self._incoming_channel(deserialize_channel_create(frame.body))
        elif frame.type == IDENTITY_RESULT_CODE:
            result = deserialize_result_code(frame.body)
            if result.code != RESULT_OK:
                self._report(ResultError(result.code, result.message))
        else:
            logger.warning(f"Ignoring message of unknown type {frame.type}")

    def _route(self, channel_id: int, message: ChannelMessage) -> None:
        inbox = self._channels.get(channel_id)
        if inbox is None:
            logger.warning(f"Dropping {type(message).__name__} for unknown channel {channel_id:#x}")
            return
        inbox.deliver(message)

    def _incoming_channel(self, create: ChannelCreate) -> None:
        listener = self._ports.get(create.port)
        if listener is None or listener.is_closed:
            logger.warning(f"Incoming channel {create.channel_id:#x} on a port that is not open, refusing it")
            self._spawn_destroy(create.channel_id)
            return
        if create.channel_id in self._channels:
            logger.warning(f"Incoming channel reuses active id {create.channel_id:#x}, ignoring it")
            return

        inbox = ChannelInbox(ChannelState.OPEN)
        self._channels[create.channel_id] = inbox
        logger.info(f"Incoming channel {create.channel_id:#x} on port {create.port}")
        listener._deliver(
            Channel(self, create.channel_id, inbox, peer=PeerIdentity(create.peer), port=create.port)
        )

    def _fail_all(self) -> None:
        channels, self._channels = self._channels, {}
        for inbox in channels.values():
            inbox.close()
        ports, self._ports = self._ports, {}
        for listener in ports.values():
            listener._shutdown()

    def _report(self, error: BaseException) -> None:
        if self._on_error is None:
            logger.warning(f"Unhandled CADET error: {error}")
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception(f"Error handler failed while reporting: {error}")
