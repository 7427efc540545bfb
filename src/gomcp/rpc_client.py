"""
Client side of the capability RPC protocol.

- connect(): opens the duplex link (with retries) and starts the reader task.
- The first "capabilities" notification is cached as a CapabilityDescriptor.
- call(): registers a PendingCall keyed by request id, writes the Request and waits
  for the matching Success/Error or the timeout. A timed-out entry is removed once;
  a response arriving later is discarded.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any

from .config import SETTINGS
from .errors import ProtocolMalformed, RpcCallError, RpcConnectionClosed, RpcTimeout
from .protocol import (
    CAPABILITIES_METHOD,
    CapabilityDescriptor,
    ErrorResponse,
    Notification,
    Request,
    Success,
    encode,
    parse_envelope,
)

MAX_LINE_BYTES = 4 * 1024 * 1024


@dataclass
class PendingCall:
    id: int
    method: str
    issued_at: float
    future: asyncio.Future


class RpcClient:
    def __init__(self, host: str | None = None, port: int | None = None, call_timeout_s: float | None = None):
        self.log = logging.getLogger("rpc_client")
        self.host = host or SETTINGS.rpc_host
        self.port = port or SETTINGS.rpc_port
        self.call_timeout_s = SETTINGS.rpc_call_timeout_s if call_timeout_s is None else call_timeout_s
        self.capabilities: CapabilityDescriptor | None = None
        self.capabilities_ready = asyncio.Event()
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task | None = None
        self._pending: dict[int, PendingCall] = {}
        self._ids = itertools.count(1)

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ---------------- Connection -----------------
    async def connect(self, retries: int = 5, retry_delay_s: float = 1.0) -> None:
        attempt = 0
        while True:
            try:
                self._reader, self._writer = await asyncio.open_connection(self.host, self.port, limit=MAX_LINE_BYTES)
                break
            except OSError as e:
                attempt += 1
                if attempt >= retries:
                    self.log.error("Could not connect to %s:%d after %d attempts", self.host, self.port, attempt)
                    raise RpcConnectionClosed(f"cannot connect to {self.host}:{self.port}: {e}") from e
                self.log.warning("Connect to %s:%d failed (%d/%d): %s; retrying", self.host, self.port, attempt, retries, e)
                await asyncio.sleep(retry_delay_s)
        self._reader_task = asyncio.create_task(self._read_loop(), name="rpc-client-reader")
        self.log.info("Connected to RPC server at %s:%d", self.host, self.port)

    async def wait_for_capabilities(self, timeout_s: float = 5.0) -> CapabilityDescriptor | None:
        try:
            await asyncio.wait_for(self.capabilities_ready.wait(), timeout_s)
        except asyncio.TimeoutError:
            self.log.warning("No capabilities received within %.1fs", timeout_s)
        return self.capabilities

    async def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except ConnectionError:
                pass
        if self._reader_task is not None:
            self._reader_task.cancel()
            await asyncio.gather(self._reader_task, return_exceptions=True)
            self._reader_task = None
        self._fail_all("connection closed")
        self._writer = None

    # ---------------- Calls -----------------
    async def call(self, method: str, params: dict | None = None, timeout_s: float | None = None) -> Any:
        if not self.connected:
            raise RpcConnectionClosed("not connected to the RPC server")
        timeout_s = self.call_timeout_s if timeout_s is None else timeout_s
        call_id = next(self._ids)
        pending = PendingCall(call_id, method, time.monotonic(), asyncio.get_running_loop().create_future())
        self._pending[call_id] = pending
        try:
            self._writer.write(encode(Request(id=call_id, method=method, params=params or {})))
            await self._writer.drain()
            return await asyncio.wait_for(pending.future, timeout_s)
        except asyncio.TimeoutError:
            self.log.warning("RPC call %d (%s) timed out after %.1fs", call_id, method, timeout_s)
            raise RpcTimeout(f"{method} timed out after {timeout_s:.1f}s") from None
        except ConnectionError as e:
            raise RpcConnectionClosed(f"connection lost during {method}: {e}") from e
        finally:
            self._pending.pop(call_id, None)

    # ---------------- Incoming -----------------
    def _on_envelope(self, envelope) -> None:
        if isinstance(envelope, Notification):
            if envelope.method == CAPABILITIES_METHOD:
                self.capabilities = CapabilityDescriptor.from_dict(envelope.params)
                self.capabilities_ready.set()
                self.log.info("Received capabilities: %s", ", ".join(self.capabilities.tool_names()))
            else:
                self.log.debug("Ignoring notification %s", envelope.method)
            return
        if isinstance(envelope, Request):
            self.log.debug("Ignoring server-initiated request %r", envelope.id)
            return
        pending = self._pending.pop(envelope.id, None) if envelope.id is not None else None
        if pending is None:
            self.log.debug("Discarding response for unknown or expired call %r", envelope.id)
            return
        if pending.future.done():
            return
        if isinstance(envelope, Success):
            pending.future.set_result(envelope.result)
        elif isinstance(envelope, ErrorResponse):
            pending.future.set_exception(RpcCallError(envelope.error.message, code=envelope.error.code))

    async def _read_loop(self) -> None:
        assert self._reader is not None
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    break
                if not line.strip():
                    continue
                try:
                    envelope = parse_envelope(line)
                except ProtocolMalformed as e:
                    self.log.warning("Malformed envelope from server: %s", e)
                    continue
                self._on_envelope(envelope)
        except (ConnectionError, ValueError) as e:
            self.log.warning("RPC connection error: %s", e)
        self.log.info("RPC connection closed by server")
        self._fail_all("connection closed by server")
        if self._writer is not None:
            self._writer.close()

    def _fail_all(self, reason: str) -> None:
        for call_id in list(self._pending):
            pending = self._pending.pop(call_id)
            if not pending.future.done():
                pending.future.set_exception(RpcConnectionClosed(f"{pending.method}: {reason}"))
