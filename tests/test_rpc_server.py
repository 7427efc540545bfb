import asyncio
import json
import unittest

from gomcp.board import GameState
from gomcp.errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    RpcCallError,
)
from gomcp.rpc_client import RpcClient
from gomcp.rpc_server import RpcServer
from gomcp.session import Session


class RpcServerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.session = Session(GameState(19), analysis_mode="stub")
        self.server = RpcServer(self.session, host="127.0.0.1", port=0)
        await self.server.start()
        self.reader, self.writer = await asyncio.open_connection("127.0.0.1", self.server.port)

    async def asyncTearDown(self):
        self.writer.close()
        await self.server.close()
        await self.session.shutdown()

    async def recv(self) -> dict:
        line = await asyncio.wait_for(self.reader.readline(), 5)
        self.assertTrue(line, "connection closed")
        return json.loads(line)

    async def send_raw(self, text: str) -> None:
        self.writer.write(text.encode("utf-8") + b"\n")
        await self.writer.drain()

    async def request(self, rid, method, params=None) -> dict:
        payload = {"protocolVersion": "2.0", "id": rid, "method": method}
        if params is not None:
            payload["params"] = params
        await self.send_raw(json.dumps(payload))
        return await self.recv()

    async def test_capabilities_arrive_first(self):
        note = await self.recv()
        self.assertEqual(note["method"], "capabilities")
        self.assertNotIn("id", note)
        self.assertEqual(
            [t["name"] for t in note["params"]["tools"]],
            ["analyze_position", "load_sgf", "get_board"],
        )

    async def test_success_echoes_id(self):
        await self.recv()
        reply = await self.request(41, "analyze_position", {"boardSize": 19, "moves": ["AD16", "BE17", "AD15"]})
        self.assertEqual(reply["id"], 41)
        self.assertEqual(reply["result"]["history"], ["AD16", "BE17", "AD15"])
        self.assertEqual(reply["result"]["engine"], "stub")

        reply = await self.request("board-1", "get_board")
        self.assertEqual(reply["id"], "board-1")
        self.assertIn("renderedBoard", reply["result"])

    async def test_load_sgf_accepts_both_parameter_names(self):
        await self.recv()
        reply = await self.request(1, "load_sgf", {"gameRecordText": ";A[pd];B[dp];A[pp]"})
        self.assertEqual(reply["result"]["history"], ["AP16", "BD4", "AP4"])
        reply = await self.request(2, "load_sgf", {"sgfContent": ";A[dd]"})
        self.assertEqual(reply["result"]["history"], ["AD16"])

    async def test_unknown_method_keeps_connection_usable(self):
        await self.recv()
        reply = await self.request(5, "resign")
        self.assertEqual(reply["id"], 5)
        self.assertEqual(reply["error"]["code"], METHOD_NOT_FOUND)
        reply = await self.request(6, "get_board")
        self.assertIn("result", reply)

    async def test_invalid_params(self):
        await self.recv()
        reply = await self.request(8, "analyze_position", {"boardSize": 19, "moves": ["AZ99"]})
        self.assertEqual(reply["error"]["code"], INVALID_PARAMS)
        reply = await self.request(9, "analyze_position", {"boardSize": 0})
        self.assertEqual(reply["error"]["code"], INVALID_PARAMS)
        reply = await self.request(10, "load_sgf", {})
        self.assertEqual(reply["error"]["code"], INVALID_PARAMS)
        reply = await self.request(11, "analyze_position", {"moves": "AD4"})
        self.assertEqual(reply["error"]["code"], INVALID_PARAMS)

    async def test_parse_error_has_null_id(self):
        await self.recv()
        await self.send_raw("{this is not json")
        reply = await self.recv()
        self.assertIsNone(reply["id"])
        self.assertEqual(reply["error"]["code"], PARSE_ERROR)

    async def test_extra_envelope_field_is_invalid_request(self):
        await self.recv()
        await self.send_raw(json.dumps({"protocolVersion": "2.0", "id": 12, "method": "get_board", "x": 1}))
        reply = await self.recv()
        self.assertEqual(reply["id"], 12)
        self.assertEqual(reply["error"]["code"], INVALID_REQUEST)

    async def test_handler_crash_becomes_internal_error(self):
        await self.recv()

        def boom():
            raise RuntimeError("kaput")

        self.session.get_board = boom
        reply = await self.request(13, "get_board")
        self.assertEqual(reply["error"]["code"], INTERNAL_ERROR)
        self.assertIn("kaput", reply["error"]["message"])

    async def test_notifications_get_no_reply(self):
        await self.recv()
        await self.send_raw(json.dumps({"protocolVersion": "2.0", "method": "ping"}))
        reply = await self.request(14, "get_board")
        self.assertEqual(reply["id"], 14)

    async def test_each_connection_gets_capabilities(self):
        await self.recv()
        reader, writer = await asyncio.open_connection("127.0.0.1", self.server.port)
        try:
            note = json.loads(await asyncio.wait_for(reader.readline(), 5))
            self.assertEqual(note["method"], "capabilities")
        finally:
            writer.close()


class OversizedLineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.session = Session(GameState(19), analysis_mode="stub")
        self.server = RpcServer(self.session, host="127.0.0.1", port=0, max_line_bytes=1024)
        await self.server.start()
        self.reader, self.writer = await asyncio.open_connection("127.0.0.1", self.server.port)
        await asyncio.wait_for(self.reader.readline(), 5)

    async def asyncTearDown(self):
        self.writer.close()
        await self.server.close()

    async def recv(self) -> dict:
        line = await asyncio.wait_for(self.reader.readline(), 5)
        self.assertTrue(line, "connection closed")
        return json.loads(line)

    async def test_long_line_is_rejected_and_connection_survives(self):
        huge = json.dumps({"protocolVersion": "2.0", "id": 1, "method": "load_sgf",
                           "params": {"gameRecordText": ";A[pd]" * 2000}})
        self.writer.write(huge.encode("utf-8") + b"\n")
        await self.writer.drain()
        reply = await self.recv()
        self.assertIsNone(reply["id"])
        self.assertEqual(reply["error"]["code"], INVALID_REQUEST)

        self.writer.write(json.dumps({"protocolVersion": "2.0", "id": 2, "method": "get_board"}).encode("utf-8") + b"\n")
        await self.writer.drain()
        reply = await self.recv()
        self.assertEqual(reply["id"], 2)
        self.assertIn("renderedBoard", reply["result"])

    async def test_long_line_sent_in_pieces(self):
        for _ in range(5):
            self.writer.write(b"x" * 900)
            await self.writer.drain()
            await asyncio.sleep(0.01)
        self.writer.write(b"\n" + json.dumps({"protocolVersion": "2.0", "id": 3, "method": "get_board"}).encode("utf-8") + b"\n")
        await self.writer.drain()
        reply = await self.recv()
        self.assertEqual(reply["error"]["code"], INVALID_REQUEST)
        reply = await self.recv()
        self.assertEqual(reply["id"], 3)


class ClientServerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.session = Session(GameState(19), analysis_mode="stub")
        self.server = RpcServer(self.session, host="127.0.0.1", port=0)
        await self.server.start()
        self.client = RpcClient("127.0.0.1", self.server.port, call_timeout_s=5)
        await self.client.connect(retries=1)

    async def asyncTearDown(self):
        await self.client.close()
        await self.server.close()

    async def test_client_caches_capabilities_and_calls(self):
        caps = await self.client.wait_for_capabilities()
        self.assertEqual(caps.tool_names(), ["analyze_position", "load_sgf", "get_board"])
        result = await self.client.call("analyze_position", {"boardSize": 9, "moves": ["AC3"]})
        self.assertEqual(result["boardSize"], 9)
        self.assertEqual(self.client.pending_count, 0)

    async def test_concurrent_calls_are_correlated(self):
        await self.client.wait_for_capabilities()
        board, analysis = await asyncio.gather(
            self.client.call("get_board"),
            self.client.call("analyze_position", {}),
        )
        self.assertIn("renderedBoard", board)
        self.assertIn("bestMoves", analysis)

    async def test_error_envelope_raises_with_code(self):
        await self.client.wait_for_capabilities()
        with self.assertRaises(RpcCallError) as ctx:
            await self.client.call("resign")
        self.assertEqual(ctx.exception.code, METHOD_NOT_FOUND)


if __name__ == "__main__":
    unittest.main()
