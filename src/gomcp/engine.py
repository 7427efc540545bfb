"""
Subprocess command multiplexer for a GTP engine (KataGo).

- start(): resolves the binary (explicit path, then PATH lookup), launches it in GTP
  mode and runs the startup handshake (grace period, then boardsize + clear_board).
  Until the handshake succeeds every send() fails fast with EngineNotReady.
- send(): writes "<seq> <command> <args>\\n" and waits for the response line carrying
  the same seq ("=<seq> ..." success, "?<seq> ..." failure) or the command timeout.
  Outstanding commands sit in a FIFO map keyed by seq, so several may be in flight and
  responses may arrive in any order.
- Output is buffered and split on newlines; a trailing partial line waits for more bytes.
- Process exit rejects every pending command with EngineTerminated.
- shutdown(): quit, grace period, kill; stream handles and reader tasks always released.

All bookkeeping runs on the event loop that called start(); the pending map is only
touched from that loop.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable

from .config import SETTINGS
from .errors import (
    EngineCommandFailed,
    EngineNotReady,
    EngineTerminated,
    EngineTimeout,
    EngineUnavailable,
)

RESPONSE_RE = re.compile(r"^([=?])(\d+)(?:\s+(.*))?$", re.S)
READ_CHUNK = 4096


class LineBuffer:
    """Accumulates raw bytes and hands back complete lines only."""

    def __init__(self) -> None:
        self._partial = b""

    def feed(self, data: bytes) -> list[str]:
        self._partial += data
        *complete, self._partial = self._partial.split(b"\n")
        return [ln.decode("utf-8", errors="replace").rstrip("\r") for ln in complete]

    @property
    def partial(self) -> bytes:
        return self._partial


@dataclass
class EngineCommand:
    seq: int
    text: str
    future: asyncio.Future
    deadline: float


class EngineMultiplexer:
    def __init__(
        self,
        command_timeout_s: float | None = None,
        startup_grace_s: float | None = None,
        shutdown_grace_s: float | None = None,
    ):
        self.log = logging.getLogger("engine")
        self.command_timeout_s = SETTINGS.engine_command_timeout_s if command_timeout_s is None else command_timeout_s
        self.startup_grace_s = SETTINGS.engine_startup_grace_s if startup_grace_s is None else startup_grace_s
        self.shutdown_grace_s = SETTINGS.engine_shutdown_grace_s if shutdown_grace_s is None else shutdown_grace_s
        self.board_size: int | None = None
        self._proc: asyncio.subprocess.Process | None = None
        self._stdin: asyncio.StreamWriter | None = None
        self._ready = False
        self._stopping = False
        self._pending: "OrderedDict[int, EngineCommand]" = OrderedDict()
        self._next_seq = 1
        self._buffer = LineBuffer()
        self._tasks: list[asyncio.Task] = []

    # ---------------- Inspection -----------------
    @property
    def is_ready(self) -> bool:
        return self._ready and self._proc is not None and self._proc.returncode is None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ---------------- Launch -----------------
    @staticmethod
    def resolve_executable(executable_path: str) -> str:
        candidate = executable_path or "katago"
        resolved = shutil.which(candidate) or (candidate if os.path.isfile(candidate) else None)
        if not resolved:
            raise EngineUnavailable(
                f"Engine binary not found (candidate='{candidate}'). Install KataGo or set "
                "GOMCP_ENGINE_PATH / KATAGO_PATH to the binary path."
            )
        return resolved

    def build_argv(self, executable: str, model_path: str, config_path: str, board_size: int) -> list[str]:
        return [
            executable,
            "gtp",
            "-override-config",
            f"analysisPVLen=5,defaultBoardSize={board_size}",
            "-model",
            model_path,
            "-config",
            config_path,
        ]

    async def start(self, executable_path: str, model_path: str, config_path: str, board_size: int = 19) -> None:
        """Launch the engine and complete the handshake. Raises EngineError on failure."""
        if self._proc is not None and self._proc.returncode is None:
            self.log.info("Engine already running (pid=%s)", self._proc.pid)
            return
        executable = self.resolve_executable(executable_path)
        argv = self.build_argv(executable, model_path, config_path, board_size)
        self.log.info("Starting engine: %s", " ".join(argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineUnavailable(f"Failed launching engine at '{executable}': {e}") from e

        self._proc = proc
        self._stdin = proc.stdin
        self._buffer = LineBuffer()
        self._ready = False
        self._stopping = False
        self._tasks = [
            asyncio.create_task(self._read_stdout(proc), name="engine-stdout"),
            asyncio.create_task(self._drain_stderr(proc), name="engine-stderr"),
        ]

        await asyncio.sleep(self.startup_grace_s)
        try:
            await self._send("boardsize", str(board_size))
            await self._send("clear_board")
        except (EngineCommandFailed, EngineTimeout, EngineTerminated):
            self.log.exception("Engine handshake failed")
            await self.shutdown()
            raise
        self.board_size = board_size
        self._ready = True
        self.log.info("Engine ready (pid=%s, board %dx%d)", proc.pid, board_size, board_size)

    # ---------------- Commands -----------------
    async def send(self, command: str, args: str | Iterable[str] = "") -> str:
        """Issue one command and return the response text (without the "=<seq>" prefix)."""
        if not self.is_ready:
            raise EngineNotReady(f"engine not ready; cannot send {command!r}")
        return await self._send(command, args)

    async def _send(self, command: str, args: str | Iterable[str] = "") -> str:
        proc, stdin = self._proc, self._stdin
        if proc is None or stdin is None or proc.returncode is not None:
            raise EngineTerminated("engine process is not running")
        if not isinstance(args, str):
            args = " ".join(str(a) for a in args)
        seq = self._next_seq
        self._next_seq += 1
        text = f"{command} {args}".strip()
        loop = asyncio.get_running_loop()
        cmd = EngineCommand(seq=seq, text=text, future=loop.create_future(), deadline=loop.time() + self.command_timeout_s)
        self._pending[seq] = cmd
        try:
            try:
                stdin.write(f"{seq} {text}\n".encode("utf-8"))
                await stdin.drain()
            except (ConnectionError, OSError) as e:
                raise EngineTerminated(f"engine stdin closed while sending {text!r}: {e}") from e
            try:
                return await asyncio.wait_for(cmd.future, self.command_timeout_s)
            except asyncio.TimeoutError:
                self.log.warning("Engine command %d %r timed out after %.1fs", seq, text, self.command_timeout_s)
                raise EngineTimeout(f"engine command {text!r} timed out") from None
        finally:
            self._pending.pop(seq, None)

    # ---------------- Output handling -----------------
    def _on_line(self, line: str) -> None:
        text = line.strip()
        if not text:
            return
        m = RESPONSE_RE.match(text)
        if not m:
            self.log.debug("Engine output (ignored): %s", text)
            return
        seq = int(m.group(2))
        cmd = self._pending.pop(seq, None)
        if cmd is None:
            self.log.debug("Discarding response for unknown or expired command %d: %s", seq, text)
            return
        if cmd.future.done():
            return
        payload = (m.group(3) or "").strip()
        if m.group(1) == "=":
            cmd.future.set_result(payload)
        else:
            cmd.future.set_exception(EngineCommandFailed(f"{cmd.text}: {payload or 'failed'}"))

    def feed(self, data: bytes) -> None:
        for line in self._buffer.feed(data):
            self._on_line(line)

    async def _read_stdout(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stdout is not None
        while True:
            chunk = await proc.stdout.read(READ_CHUNK)
            if not chunk:
                break
            if proc is self._proc:
                self.feed(chunk)
        await self._on_exit(proc)

    async def _drain_stderr(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stderr is not None
        while True:
            line = await proc.stderr.readline()
            if not line:
                break
            self.log.debug("engine stderr: %s", line.decode("utf-8", errors="replace").rstrip())

    async def _on_exit(self, proc: asyncio.subprocess.Process) -> None:
        code = await proc.wait()
        if proc is not self._proc:
            return
        self._ready = False
        if self._stopping:
            self.log.info("Engine exited with code %s", code)
        else:
            self.log.warning("Engine process exited unexpectedly with code %s", code)
        self._reject_all(f"engine exited with code {code}")

    def _reject_all(self, reason: str) -> None:
        while self._pending:
            _, cmd = self._pending.popitem(last=False)
            if not cmd.future.done():
                cmd.future.set_exception(EngineTerminated(f"{cmd.text}: {reason}"))

    # ---------------- Shutdown -----------------
    async def shutdown(self) -> None:
        proc = self._proc
        self._ready = False
        if proc is None:
            return
        self._stopping = True
        try:
            if proc.returncode is None:
                stdin = self._stdin
                if stdin is not None and not stdin.is_closing():
                    try:
                        stdin.write(b"quit\n")
                        await stdin.drain()
                    except (ConnectionError, OSError):
                        self.log.debug("Engine stdin already closed on quit")
                try:
                    await asyncio.wait_for(proc.wait(), self.shutdown_grace_s)
                except asyncio.TimeoutError:
                    self.log.warning("Engine did not exit within %.1fs; killing", self.shutdown_grace_s)
                    try:
                        proc.kill()
                    except ProcessLookupError:
                        pass
                    await proc.wait()
        finally:
            if self._stdin is not None:
                self._stdin.close()
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []
            self._reject_all("engine shut down")
            self._proc = None
            self._stdin = None
            self.board_size = None
