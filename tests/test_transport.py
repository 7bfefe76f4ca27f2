"""
Tests for the socket transport against a stub service.
"""

import asyncio
import gc
import unittest

from gnunetclient.core.codec import pack_frame
from gnunetclient.core.transport import Transport
from gnunetclient.errors import ProtocolError

from daemon_stub import ScriptedDaemon


class TestTransport(unittest.IsolatedAsyncioTestCase):

    async def test_frames_travel_both_ways(self):
        async def echo(conn):
            frame = await conn.expect(42)
            await conn.send(pack_frame(43, frame.body[::-1]))

        async with ScriptedDaemon(echo) as daemon:
            async with await Transport.connect(daemon.path) as transport:
                await transport.write_frame(42, b"abc")
                frame = await asyncio.wait_for(transport.read_frame(), 5)
                self.assertEqual((frame.type, frame.body), (43, b"cba"))
            await daemon.finished()

    async def test_write_message_checks_declared_size(self):
        async def idle(conn):
            pass

        async with ScriptedDaemon(idle) as daemon:
            async with await Transport.connect(daemon.path) as transport:
                with self.assertRaises(ProtocolError):
                    await transport.write_message(pack_frame(1, b"xyz") + b"extra")

    async def test_concurrent_writers_do_not_interleave(self):
        bodies = [bytes([i]) * 2000 for i in range(8)]

        async def collect(conn):
            for _ in bodies:
                await conn.expect(7)

        async with ScriptedDaemon(collect) as daemon:
            async with await Transport.connect(daemon.path) as transport:
                await asyncio.gather(*(transport.write_frame(7, body) for body in bodies))
                await daemon.finished()
            received = sorted(frame.body for frame in daemon.connections[0].received)
            self.assertEqual(received, sorted(bodies))

    async def test_disconnect_is_idempotent(self):
        async def idle(conn):
            pass

        async with ScriptedDaemon(idle) as daemon:
            transport = await Transport.connect(daemon.path)
            await transport.disconnect()
            await transport.disconnect()
            self.assertTrue(transport.is_closed)

    async def test_connect_to_missing_socket_fails(self):
        with self.assertRaises(OSError):
            await Transport.connect("/nonexistent/gnunet-test.sock")

    async def test_dropped_transport_hangs_up(self):
        async def hangup(conn):
            await conn.wait_for_hangup()

        async with ScriptedDaemon(hangup) as daemon:
            transport = await Transport.connect(daemon.path)
            await transport.write_frame(1)
            del transport
            gc.collect()
            await daemon.finished()

    async def test_dropped_clone_leaves_socket_open(self):
        async def echo(conn):
            frame = await conn.expect(42)
            await conn.send(pack_frame(43, frame.body))

        async with ScriptedDaemon(echo) as daemon:
            async with await Transport.connect(daemon.path) as transport:
                twin = transport.clone()
                del twin
                gc.collect()
                await transport.write_frame(42, b"still here")
                frame = await asyncio.wait_for(transport.read_frame(), 5)
                self.assertEqual(frame.body, b"still here")
            await daemon.finished()


if __name__ == "__main__":
    unittest.main()
