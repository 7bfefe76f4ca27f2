"""
Tests for the cadet multiplexer, channels and ports against a scripted
cadet service.
"""

import asyncio
import gc
import random
import unittest
from unittest import mock

from gnunetclient.cadet import CadetMux, ChannelState, Payload, allocate_channel_id
from gnunetclient.cadet.mux import CHANNEL_ID_BASE, CHANNEL_ID_MAX
from gnunetclient.cadet.protocol import (
    CADET_LOCAL_ACK,
    CADET_LOCAL_CHANNEL_CREATE,
    CADET_LOCAL_CHANNEL_DESTROY,
    CADET_LOCAL_DATA,
    CADET_LOCAL_PORT_CLOSE,
    CADET_LOCAL_PORT_OPEN,
    deserialize_channel_create,
    deserialize_channel_id,
    deserialize_data,
    serialize_ack,
    serialize_channel_create,
    serialize_channel_destroy,
    serialize_data,
)
from gnunetclient.core.codec import pack_frame
from gnunetclient.crypto import HashCode, KeyType, PeerIdentity, PrivateKey
from gnunetclient.errors import HandleClosedError, ResultError
from gnunetclient.identity.protocol import serialize_result_code

from daemon_stub import ScriptedDaemon

TIMEOUT = 5
PEER = PeerIdentity.from_public_key(PrivateKey.generate(KeyType.EDDSA).extract_public())
PORT = HashCode.generate_from("test-port")


async def accept_create(conn) -> int:
    """Answer the next CHANNEL_CREATE with an ACK and return its id."""
    frame = await conn.expect(CADET_LOCAL_CHANNEL_CREATE)
    channel_id = deserialize_channel_create(frame.body).channel_id
    await conn.send(serialize_ack(channel_id))
    return channel_id


class TestChannelIdAllocation(unittest.TestCase):

    def test_first_id_is_the_base(self):
        self.assertEqual(allocate_channel_id(set()), 0x80000001)

    def test_smallest_free_id_is_returned(self):
        base = CHANNEL_ID_BASE
        self.assertEqual(allocate_channel_id({base, base + 1, base + 3}), base + 2)
        self.assertEqual(allocate_channel_id({base + 1, base + 2}), base)

    def test_random_sets(self):
        rng = random.Random(7)
        for _ in range(50):
            active = {CHANNEL_ID_BASE + rng.randrange(40) for _ in range(rng.randrange(40))}
            expected = CHANNEL_ID_BASE
            while expected in active:
                expected += 1
            self.assertEqual(allocate_channel_id(active), expected)

    def test_exhaustion_is_fatal(self):
        top = {CHANNEL_ID_MAX - 2, CHANNEL_ID_MAX - 1, CHANNEL_ID_MAX}
        with self.assertRaises(RuntimeError):
            allocate_channel_id(top, start=CHANNEL_ID_MAX - 2)

    def test_last_id_is_usable(self):
        top = {CHANNEL_ID_MAX - 2, CHANNEL_ID_MAX - 1}
        self.assertEqual(allocate_channel_id(top, start=CHANNEL_ID_MAX - 2), CHANNEL_ID_MAX)

    def test_start_below_client_range_is_clamped(self):
        self.assertEqual(allocate_channel_id(set(), start=1), CHANNEL_ID_BASE)


class CadetTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.errors = []
        self.daemon = None
        self.mux = None

    async def asyncTearDown(self):
        if self.mux is not None:
            await self.mux.close()
        if self.daemon is not None:
            await self.daemon.stop()

    async def start(self, script) -> CadetMux:
        self.daemon = await ScriptedDaemon(script).start()
        self.mux = await CadetMux.connect(self.daemon.path, on_error=self.errors.append)
        return self.mux

    @property
    def received(self):
        return self.daemon.connections[0].received


class TestChannelConnect(CadetTestCase):

    async def test_channel_open_and_receive(self):
        async def script(conn):
            channel_id = await accept_create(conn)
            await conn.send(serialize_data(channel_id, 7, b"\x01\x02\x03"))
            await conn.expect(CADET_LOCAL_ACK)

        mux = await self.start(script)
        channel = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        self.assertEqual(channel.id, CHANNEL_ID_BASE)
        self.assertIs(channel.state, ChannelState.OPEN)

        payload = await asyncio.wait_for(channel.receive(), TIMEOUT)
        self.assertEqual(payload, Payload(priority_flags=7, data=b"\x01\x02\x03"))
        await self.daemon.finished()

        create = deserialize_channel_create(self.received[0].body)
        self.assertEqual(create.peer, PEER.public_key)
        self.assertEqual(create.port, PORT)
        self.assertEqual(create.options, 0)

    async def test_premature_destroy_is_connection_reset(self):
        async def script(conn):
            frame = await conn.expect(CADET_LOCAL_CHANNEL_CREATE)
            await conn.send(serialize_channel_destroy(deserialize_channel_create(frame.body).channel_id))

        mux = await self.start(script)
        with self.assertRaises(ConnectionResetError):
            await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        self.assertEqual(mux.channel_ids, set())

    async def test_destroy_mid_stream(self):
        async def script(conn):
            channel_id = await accept_create(conn)
            await conn.send(
                serialize_data(channel_id, 0, b"first"),
                serialize_data(channel_id, 0, b"second"),
                serialize_channel_destroy(channel_id),
            )

        mux = await self.start(script)
        channel = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)

        first = await asyncio.wait_for(channel.receive(), TIMEOUT)
        second = await asyncio.wait_for(channel.receive(), TIMEOUT)
        self.assertEqual((first.data, second.data), (b"first", b"second"))
        self.assertIsNone(await asyncio.wait_for(channel.receive(), TIMEOUT))
        self.assertIsNone(await asyncio.wait_for(channel.receive(), TIMEOUT))
        self.assertIs(channel.state, ChannelState.DESTROYED)
        self.assertEqual(mux.channel_ids, set())

    async def test_payload_before_ack_is_kept(self):
        async def script(conn):
            frame = await conn.expect(CADET_LOCAL_CHANNEL_CREATE)
            channel_id = deserialize_channel_create(frame.body).channel_id
            await conn.send(serialize_data(channel_id, 1, b"early"), serialize_ack(channel_id))

        mux = await self.start(script)
        with self.assertLogs("gnunetclient.cadet.mux", level="WARNING"):
            channel = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        payload = await asyncio.wait_for(channel.receive(), TIMEOUT)
        self.assertEqual(payload.data, b"early")

    async def test_ids_are_reused_after_destroy(self):
        async def script(conn):
            await accept_create(conn)
            await conn.expect(CADET_LOCAL_CHANNEL_DESTROY)
            await accept_create(conn)

        mux = await self.start(script)
        first = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        await first.destroy()
        await first.destroy()
        second = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        self.assertEqual(first.id, second.id)
        await self.daemon.finished()

    async def test_cancelled_connect_releases_id(self):
        seen = asyncio.Event()

        async def script(conn):
            await conn.expect(CADET_LOCAL_CHANNEL_CREATE)
            seen.set()

        mux = await self.start(script)
        task = asyncio.create_task(mux.channel_connect(PEER, PORT))
        await asyncio.wait_for(seen.wait(), TIMEOUT)
        self.assertEqual(mux.channel_ids, {CHANNEL_ID_BASE})

        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertEqual(mux.channel_ids, set())

    async def test_dropped_channel_is_destroyed(self):
        async def script(conn):
            channel_id = await accept_create(conn)
            frame = await conn.expect(CADET_LOCAL_CHANNEL_DESTROY)
            if deserialize_channel_id(frame.body, frame.type) != channel_id:
                raise AssertionError("destroy for the wrong channel")

        mux = await self.start(script)
        channel = await mux.channel_connect(PEER, PORT)
        self.assertEqual(mux.channel_ids, {channel.id})
        del channel
        gc.collect()
        self.assertEqual(mux.channel_ids, set())
        await self.daemon.finished()

    async def test_context_manager_destroys_channel(self):
        async def script(conn):
            await accept_create(conn)
            await conn.expect(CADET_LOCAL_CHANNEL_DESTROY)

        mux = await self.start(script)
        async with await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT) as channel:
            self.assertIs(channel.state, ChannelState.OPEN)
        self.assertIs(channel.state, ChannelState.DESTROYED)
        await self.daemon.finished()


class TestReader(CadetTestCase):

    async def test_per_channel_order_is_preserved(self):
        async def script(conn):
            a = await accept_create(conn)
            b = await accept_create(conn)
            frames = []
            for i in range(5):
                frames.append(serialize_data(a, 0, b"a%d" % i))
                frames.append(serialize_data(b, 0, b"b%d" % i))
            await conn.send(*frames)

        mux = await self.start(script)
        a = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        b = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        self.assertNotEqual(a.id, b.id)

        received_b = [(await asyncio.wait_for(b.receive(), TIMEOUT)).data for _ in range(5)]
        received_a = [(await asyncio.wait_for(a.receive(), TIMEOUT)).data for _ in range(5)]
        self.assertEqual(received_a, [b"a%d" % i for i in range(5)])
        self.assertEqual(received_b, [b"b%d" % i for i in range(5)])

    async def test_unknown_channel_ids_are_dropped(self):
        async def script(conn):
            frame = await conn.expect(CADET_LOCAL_CHANNEL_CREATE)
            channel_id = deserialize_channel_create(frame.body).channel_id
            await conn.send(
                serialize_data(0x42, 0, b"stray"),
                serialize_ack(0x43),
                pack_frame(4242, b"???"),
                serialize_ack(channel_id),
            )

        mux = await self.start(script)
        with self.assertLogs("gnunetclient.cadet.mux", level="WARNING") as logs:
            channel = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        self.assertIs(channel.state, ChannelState.OPEN)
        self.assertEqual(len(logs.records), 3)
        self.assertTrue(mux.is_running)
        self.assertEqual(self.errors, [])

    async def test_result_code_reaches_on_error(self):
        async def script(conn):
            await conn.send(serialize_result_code(0), serialize_result_code(7, "bad request"))
            await accept_create(conn)

        mux = await self.start(script)
        await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        self.assertEqual(len(self.errors), 1)
        self.assertIsInstance(self.errors[0], ResultError)
        self.assertEqual(self.errors[0].code, 7)
        self.assertTrue(mux.is_running)

    async def test_failing_error_handler_keeps_reader_alive(self):
        async def script(conn):
            await conn.send(serialize_result_code(7, "bad request"))
            await accept_create(conn)

        def on_error(error):
            self.errors.append(error)
            raise RuntimeError("handler failed")

        self.daemon = await ScriptedDaemon(script).start()
        self.mux = await CadetMux.connect(self.daemon.path, on_error=on_error)
        with self.assertLogs("gnunetclient.cadet.mux", level="ERROR"):
            channel = await asyncio.wait_for(self.mux.channel_connect(PEER, PORT), TIMEOUT)
        self.assertIs(channel.state, ChannelState.OPEN)
        self.assertEqual(len(self.errors), 1)
        self.assertTrue(self.mux.is_running)

    async def test_failed_ack_still_returns_payload(self):
        async def script(conn):
            channel_id = await accept_create(conn)
            await conn.send(serialize_data(channel_id, 0, b"last words"))

        mux = await self.start(script)
        channel = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        with mock.patch.object(mux, "_send_ack", mock.AsyncMock(side_effect=ConnectionResetError("gone"))):
            with self.assertLogs("gnunetclient.cadet.channel", level="WARNING"):
                payload = await asyncio.wait_for(channel.receive(), TIMEOUT)
        self.assertEqual(payload.data, b"last words")

    async def test_connection_loss_ends_every_channel(self):
        async def script(conn):
            await accept_create(conn)
            await conn.close()

        mux = await self.start(script)
        channel = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)

        self.assertIsNone(await asyncio.wait_for(channel.receive(), TIMEOUT))
        self.assertFalse(mux.is_running)
        self.assertEqual(len(self.errors), 1)
        self.assertIsInstance(self.errors[0], ConnectionResetError)

        with self.assertRaises(HandleClosedError):
            await mux.channel_connect(PEER, PORT)
        with self.assertRaises(ConnectionResetError):
            await channel.send(b"late")


class TestSend(CadetTestCase):

    async def test_send_writes_data_frame(self):
        async def script(conn):
            await accept_create(conn)
            await conn.expect(CADET_LOCAL_DATA)

        mux = await self.start(script)
        channel = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        await asyncio.wait_for(channel.send(b"hello", priority=3), TIMEOUT)
        await self.daemon.finished()

        channel_id, payload = deserialize_data(self.received[-1].body)
        self.assertEqual(channel_id, channel.id)
        self.assertEqual(payload, Payload(priority_flags=3, data=b"hello"))

    async def test_send_waits_for_credit(self):
        grant = asyncio.Event()

        async def script(conn):
            channel_id = await accept_create(conn)
            await conn.expect(CADET_LOCAL_DATA)
            await grant.wait()
            await conn.send(serialize_ack(channel_id))
            await conn.expect(CADET_LOCAL_DATA)

        mux = await self.start(script)
        channel = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        self.assertEqual(channel.credit, 1)
        await asyncio.wait_for(channel.send(b"one"), TIMEOUT)
        self.assertEqual(channel.credit, 0)

        second = asyncio.create_task(channel.send(b"two"))
        await asyncio.sleep(0.05)
        self.assertFalse(second.done())

        grant.set()
        await asyncio.wait_for(second, TIMEOUT)
        await self.daemon.finished()
        self.assertEqual([deserialize_data(f.body)[1].data for f in self.received[1:]], [b"one", b"two"])

    async def test_destroy_while_waiting_for_credit(self):
        sent = asyncio.Event()

        async def script(conn):
            channel_id = await accept_create(conn)
            await conn.expect(CADET_LOCAL_DATA)
            await sent.wait()
            await conn.send(serialize_channel_destroy(channel_id))

        mux = await self.start(script)
        channel = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        await asyncio.wait_for(channel.send(b"one"), TIMEOUT)

        second = asyncio.create_task(channel.send(b"two"))
        await asyncio.sleep(0)
        sent.set()
        with self.assertRaises(ConnectionResetError):
            await asyncio.wait_for(second, TIMEOUT)

    async def test_oversized_payload_is_rejected(self):
        async def script(conn):
            await accept_create(conn)

        mux = await self.start(script)
        channel = await asyncio.wait_for(mux.channel_connect(PEER, PORT), TIMEOUT)
        with self.assertRaises(ValueError):
            await channel.send(bytes(70000))


class TestPorts(CadetTestCase):

    async def test_incoming_channel_is_accepted(self):
        async def script(conn):
            frame = await conn.expect(CADET_LOCAL_PORT_OPEN)
            if frame.body != PORT.to_bytes():
                raise AssertionError("port hash not sent")
            await conn.send(
                serialize_channel_create(5, PEER.public_key, PORT),
                serialize_data(5, 0, b"hi"),
            )
            await conn.expect(CADET_LOCAL_ACK)
            await conn.expect(CADET_LOCAL_PORT_CLOSE)

        mux = await self.start(script)
        port = await asyncio.wait_for(mux.open_port(PORT), TIMEOUT)
        channel = await asyncio.wait_for(port.accept(), TIMEOUT)
        self.assertEqual(channel.id, 5)
        self.assertEqual(channel.peer, PEER)
        self.assertIs(channel.state, ChannelState.OPEN)

        payload = await asyncio.wait_for(channel.receive(), TIMEOUT)
        self.assertEqual(payload.data, b"hi")

        await port.close()
        await self.daemon.finished()
        self.assertTrue(port.is_closed)
        with self.assertRaises(ConnectionResetError):
            await port.accept()

    async def test_channel_to_closed_port_is_refused(self):
        async def script(conn):
            await conn.send(serialize_channel_create(9, PEER.public_key, PORT))
            frame = await conn.expect(CADET_LOCAL_CHANNEL_DESTROY)
            if deserialize_channel_id(frame.body, frame.type) != 9:
                raise AssertionError("wrong channel refused")

        await self.start(script)
        await self.daemon.finished()

    async def test_port_iteration_ends_with_connection(self):
        async def script(conn):
            await conn.expect(CADET_LOCAL_PORT_OPEN)
            await conn.send(
                serialize_channel_create(1, PEER.public_key, PORT),
                serialize_channel_create(2, PEER.public_key, PORT),
            )
            await conn.close()

        mux = await self.start(script)
        port = await asyncio.wait_for(mux.open_port(PORT), TIMEOUT)

        ids = []
        async for channel in port:
            ids.append(channel.id)
        self.assertEqual(ids, [1, 2])

    async def test_port_cannot_be_opened_twice(self):
        async def script(conn):
            await conn.expect(CADET_LOCAL_PORT_OPEN)

        mux = await self.start(script)
        await asyncio.wait_for(mux.open_port(PORT), TIMEOUT)
        with self.assertRaises(ValueError):
            await mux.open_port(PORT)


if __name__ == "__main__":
    unittest.main()
