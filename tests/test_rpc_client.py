import asyncio
import json
import unittest

from gomcp.errors import RpcConnectionClosed, RpcTimeout
from gomcp.protocol import build_capabilities, capabilities_notification, encode, success
from gomcp.rpc_client import RpcClient


class SlowServer:
    """Answers each request after `delay` seconds, or closes the link on method "hangup"."""

    def __init__(self, delay: float):
        self.delay = delay
        self.requests: list[dict] = []
        self.server: asyncio.Server | None = None
        self.port = 0

    async def start(self) -> None:
        self.server = await asyncio.start_server(self._on_connect, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]

    async def _on_connect(self, reader, writer) -> None:
        writer.write(encode(capabilities_notification(build_capabilities())))
        await writer.drain()
        while True:
            line = await reader.readline()
            if not line:
                break
            req = json.loads(line)
            self.requests.append(req)
            if req["method"] == "hangup":
                writer.close()
                return
            asyncio.create_task(self._reply_later(writer, req))
        writer.close()

    async def _reply_later(self, writer, req) -> None:
        await asyncio.sleep(self.delay)
        if not writer.is_closing():
            writer.write(encode(success(req["id"], {"echo": req["method"]})))
            await writer.drain()

    async def close(self) -> None:
        self.server.close()
        await self.server.wait_closed()


class RpcClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.server = SlowServer(delay=0.2)
        await self.server.start()
        self.client = RpcClient("127.0.0.1", self.server.port, call_timeout_s=5)
        await self.client.connect(retries=1)
        await self.client.wait_for_capabilities()

    async def asyncTearDown(self):
        await self.client.close()
        await self.server.close()

    async def test_timeout_removes_pending_and_late_reply_is_dropped(self):
        with self.assertRaises(RpcTimeout):
            await self.client.call("get_board", timeout_s=0.05)
        self.assertEqual(self.client.pending_count, 0)

        # the late Success for id 1 lands while call 2 is outstanding
        result = await self.client.call("analyze_position", timeout_s=2)
        self.assertEqual(result, {"echo": "analyze_position"})
        self.assertEqual([r["id"] for r in self.server.requests], [1, 2])
        self.assertEqual(self.client.pending_count, 0)

    async def test_server_hangup_fails_outstanding_calls(self):
        slow = asyncio.create_task(self.client.call("get_board"))
        await asyncio.sleep(0.01)
        with self.assertRaises(RpcConnectionClosed):
            await self.client.call("hangup")
        with self.assertRaises(RpcConnectionClosed):
            await slow
        self.assertEqual(self.client.pending_count, 0)

    async def test_call_without_connection(self):
        client = RpcClient("127.0.0.1", self.server.port)
        with self.assertRaises(RpcConnectionClosed):
            await client.call("get_board")

    async def test_capabilities_cached(self):
        self.assertEqual(self.client.capabilities.name, "GoAnalysisService")
        self.assertTrue(self.client.capabilities_ready.is_set())


class ConnectRetryTests(unittest.IsolatedAsyncioTestCase):
    async def test_gives_up_after_retries(self):
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        client = RpcClient("127.0.0.1", port)
        with self.assertRaises(RpcConnectionClosed):
            await client.connect(retries=2, retry_delay_s=0.01)
        self.assertFalse(client.connected)


if __name__ == "__main__":
    unittest.main()
