"""
Capability RPC server.

- Listens for duplex TCP connections carrying newline-delimited JSON envelopes.
- Every new connection first receives the "capabilities" notification, then its
  Requests are dispatched to the Session; each Request runs in its own task so a call
  waiting on the engine does not hold up the next one.
- dispatch() is the error boundary: exactly one Success or Error per Request id, and a
  handler failure never closes the connection.
- A line longer than max_line_bytes is skipped through its newline and answered with an
  INVALID_REQUEST Error (id null); only a transport disconnect ends a connection.
"""
from __future__ import annotations

import asyncio
import enum
import itertools
import logging
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from .errors import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, GoMcpError, ProtocolMalformed, UnknownMethod
from .protocol import (
    TOOL_PARAMS,
    CapabilityDescriptor,
    ErrorResponse,
    Notification,
    Request,
    Success,
    build_capabilities,
    capabilities_notification,
    encode,
    error,
    parse_envelope,
    success,
)
from .session import Session

Handler = Callable[[BaseModel], Awaitable[Any]]

MAX_LINE_BYTES = 4 * 1024 * 1024


class ConnectionState(enum.Enum):
    OPEN = "open"
    ACTIVE = "active"
    CLOSED = "closed"


class Connection:
    """One duplex client link. Holds no state beyond its stream pair and the server."""

    _ids = itertools.count(1)

    def __init__(self, server: "RpcServer", reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.server = server
        self.reader = reader
        self.writer = writer
        self.id = next(self._ids)
        self.state = ConnectionState.OPEN
        self.peer = writer.get_extra_info("peername")
        self.log = logging.getLogger("rpc_server")
        self._write_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    async def send(self, envelope) -> None:
        async with self._write_lock:
            if self.state is ConnectionState.CLOSED or self.writer.is_closing():
                return
            self.writer.write(encode(envelope))
            await self.writer.drain()

    async def run(self) -> None:
        self.log.info("Client %d connected from %s", self.id, self.peer)
        try:
            await self.send(capabilities_notification(self.server.capabilities))
            self.state = ConnectionState.ACTIVE
            while True:
                line = await self._read_line()
                if line is None:
                    self.log.warning("Client %d sent a line over %d bytes; discarded", self.id, self.server.max_line_bytes)
                    await self._send_quietly(error(None, INVALID_REQUEST, f"request line exceeds {self.server.max_line_bytes} bytes"))
                    continue
                if not line:
                    break
                if not line.strip():
                    continue
                task = asyncio.create_task(self._handle_line(line))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            self.log.warning("Client %d transport error: %s", self.id, e)
        finally:
            await self.close()

    async def _read_line(self) -> bytes | None:
        """Next line (b"" at EOF), or None when an over-long line was skipped through its newline."""
        try:
            return await self.reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            return e.partial
        except asyncio.LimitOverrunError:
            pass
        while True:
            try:
                await self.reader.readuntil(b"\n")
                return None
            except asyncio.LimitOverrunError as e:
                await self.reader.readexactly(e.consumed)

    async def _handle_line(self, line: bytes) -> None:
        try:
            envelope = parse_envelope(line)
        except ProtocolMalformed as e:
            self.log.warning("Client %d sent a malformed envelope: %s", self.id, e)
            await self._send_quietly(error(e.request_id, e.code, e.message))
            return
        if isinstance(envelope, Request):
            await self._send_quietly(await self.server.handle_request(envelope))
        elif isinstance(envelope, Notification):
            self.log.debug("Client %d notification %s ignored", self.id, envelope.method)
        else:
            self.log.debug("Client %d sent an unsolicited %s; ignored", self.id, type(envelope).__name__)

    async def _send_quietly(self, envelope) -> None:
        try:
            await self.send(envelope)
        except ConnectionError as e:
            self.log.info("Client %d went away before a reply could be sent: %s", self.id, e)

    async def close(self) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except ConnectionError:
            pass
        self.server.connections.discard(self)
        self.log.info("Client %d disconnected", self.id)


class RpcServer:
    def __init__(self, session: Session, host: str = "127.0.0.1", port: int = 8080, max_line_bytes: int = MAX_LINE_BYTES):
        self.log = logging.getLogger("rpc_server")
        self.session = session
        self.host = host
        self.port = port
        self.max_line_bytes = max_line_bytes
        self.capabilities: CapabilityDescriptor = build_capabilities()
        self.connections: set[Connection] = set()
        self._server: asyncio.Server | None = None
        self._methods: dict[str, Handler] = {
            "analyze_position": self._analyze_position,
            "load_sgf": self._load_sgf,
            "get_board": self._get_board,
        }

    # ---------------- Method table -----------------
    async def _analyze_position(self, params) -> dict:
        return await self.session.analyze_position(board_size=params.boardSize, moves=params.moves)

    async def _load_sgf(self, params) -> dict:
        return await self.session.load_sgf(params.gameRecordText)

    async def _get_board(self, params) -> dict:
        return self.session.get_board()

    async def dispatch(self, method: str, params: dict) -> Any:
        """Validate params and run the handler. Raises GoMcpError subclasses on failure."""
        handler = self._methods.get(method)
        if handler is None:
            raise UnknownMethod(f"Method not found: {method}")
        try:
            parsed = TOOL_PARAMS[method].model_validate(params or {})
        except ValidationError as e:
            raise GoMcpError(f"Invalid params for {method}: {e.errors(include_url=False)}", code=INVALID_PARAMS) from None
        return await handler(parsed)

    async def handle_request(self, request: Request) -> Success | ErrorResponse:
        try:
            result = await self.dispatch(request.method, request.params)
        except GoMcpError as e:
            self.log.info("Request %r (%s) failed: %s", request.id, request.method, e)
            return error(request.id, e.code, e.message)
        except Exception as e:
            self.log.exception("Unhandled error in %s", request.method)
            return error(request.id, INTERNAL_ERROR, f"Internal error: {e}")
        return success(request.id, result)

    # ---------------- Listening socket -----------------
    async def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        conn = Connection(self, reader, writer)
        self.connections.add(conn)
        await conn.run()

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._on_connect, self.host, self.port, limit=self.max_line_bytes)
        sockets = self._server.sockets or []
        if sockets:
            self.port = sockets[0].getsockname()[1]
        self.log.info("RPC server listening on %s:%d", self.host, self.port)

    async def serve_until(self, stop: asyncio.Event) -> None:
        if self._server is None:
            await self.start()
        try:
            await stop.wait()
        finally:
            await self.close()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            for conn in list(self.connections):
                await conn.close()
            await self._server.wait_closed()
            self._server = None
            self.log.info("RPC server closed")

