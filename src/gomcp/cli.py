"""
Command line entry point.

  gomcp serve   run the capability RPC server (starts the engine unless --stub)
  gomcp chat    interactive assistant over a running server
  gomcp web     HTTP bridge (Flask) over a running server
  gomcp render  replay a game-record file locally and print the board

Usage: gomcp serve --port 8080 --log-level DEBUG
Env knobs: GOMCP_ENGINE_PATH, GOMCP_ANALYSIS_MODE, GOMCP_LLM_API_KEY, etc. (see config.py).
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .board import GameState
from .config import SETTINGS, Credentials
from .errors import GameRecordError, InvalidSize, RpcError, UpstreamAuthFailure
from .llm_client import LLMClient
from .orchestrator import ToolOrchestrator
from .rpc_client import RpcClient
from .rpc_server import RpcServer
from .session import Session
from .sgf import load_sgf_file

EXIT_WORDS = {"exit", "quit"}


def _parse_log_level(name: str | None) -> int:
    name = (name or "INFO").upper()
    return getattr(logging, name, logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="gomcp", description="Go analysis capability server and assistant")
    ap.add_argument("--log-level", default=SETTINGS.log_level, help="DEBUG, INFO, WARNING, ...")
    sub = ap.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the capability RPC server")
    serve.add_argument("--host", default=SETTINGS.rpc_host)
    serve.add_argument("--port", type=int, default=SETTINGS.rpc_port)
    serve.add_argument("--stub", action="store_true", help="use the deterministic stub analysis, no engine")

    chat = sub.add_parser("chat", help="interactive assistant")
    chat.add_argument("--host", default=SETTINGS.rpc_host)
    chat.add_argument("--port", type=int, default=SETTINGS.rpc_port)

    web = sub.add_parser("web", help="HTTP bridge for the assistant")
    web.add_argument("--host", default="127.0.0.1")
    web.add_argument("--port", type=int, default=SETTINGS.web_port)
    web.add_argument("--rpc-host", default=SETTINGS.rpc_host)
    web.add_argument("--rpc-port", type=int, default=SETTINGS.rpc_port)

    render = sub.add_parser("render", help="replay a game-record file and print the board")
    render.add_argument("path")
    render.add_argument("--size", type=int, default=SETTINGS.default_board_size)
    return ap


# ---------------- serve -----------------
async def serve(host: str, port: int, stub: bool = False) -> None:
    session = Session(analysis_mode="stub" if stub else None)
    server = RpcServer(session, host=host, port=port)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows: KeyboardInterrupt still unwinds through the finally below.
            pass
    try:
        await session.start_engine()
        await server.serve_until(stop)
    finally:
        logging.getLogger("cli").info("Shutting down")
        await server.close()
        await session.shutdown()


# ---------------- chat -----------------
async def chat(host: str, port: int) -> None:
    rpc = RpcClient(host, port)
    await rpc.connect()
    await rpc.wait_for_capabilities()
    orch = ToolOrchestrator(rpc, LLMClient(Credentials.from_settings()))
    print("Go analysis assistant ready. Examples:")
    print("  analyze moves: AD4 BQ16 AQ4")
    print("  show the current board")
    print("  (;GM[1]SZ[19];A[pd];B[dp];A[pp])")
    print("Type 'exit' to quit.")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            if line.strip().lower() in EXIT_WORDS:
                break
            if not line.strip():
                continue
            try:
                reply = await orch.process(line)
            except UpstreamAuthFailure as e:
                reply = f"{e}\nSet GOMCP_LLM_API_KEY (or DEEPSEEK_API_KEY) to a valid key and restart."
            print(f"\nAssistant: {reply}\n" + "=" * 50 + "\n")
    finally:
        await rpc.close()


# ---------------- web -----------------
def web(host: str, port: int, rpc_host: str, rpc_port: int) -> None:
    from .web import LoopThread, create_app

    loop = LoopThread().start()
    rpc = RpcClient(rpc_host, rpc_port)
    credentials = Credentials.from_settings()
    try:
        loop.run(rpc.connect())
        loop.run(rpc.wait_for_capabilities())
        orch = ToolOrchestrator(rpc, LLMClient(credentials))
        app = create_app(lambda message: loop.run(orch.process(message)), credentials)
        app.run(host=host, port=port)
    finally:
        loop.run(rpc.close())
        loop.stop()


# ---------------- render -----------------
def render(path: str, size: int) -> int:
    try:
        state = GameState(size)
        state.apply_move_sequence(load_sgf_file(path, size))
    except (GameRecordError, InvalidSize) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    print(state.render(), end="")
    print("moves:", " ".join(state.history_notation()) or "(none)")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=_parse_log_level(args.log_level), format="%(asctime)s %(levelname)s %(message)s")
    try:
        if args.command == "serve":
            asyncio.run(serve(args.host, args.port, stub=args.stub))
        elif args.command == "chat":
            asyncio.run(chat(args.host, args.port))
        elif args.command == "web":
            web(args.host, args.port, args.rpc_host, args.rpc_port)
        elif args.command == "render":
            return render(args.path, args.size)
    except KeyboardInterrupt:
        pass
    except RpcError as e:
        logging.getLogger("cli").error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
