"""
Session: the one owned value behind the RPC server.

Holds the GameState, the EngineMultiplexer and the analysis strategies, and implements
the tool operations (analyze_position, load_sgf, get_board). The server receives a
Session at construction; nothing here lives at module level.
"""
from __future__ import annotations

import asyncio
import logging

from .analysis import EngineAnalysis, StubAnalysis
from .board import GameState, validate_size
from .config import SETTINGS, Settings
from .engine import EngineMultiplexer
from .errors import EngineError, InvalidCoordinate
from .moves import Move, parse_moves
from .sgf import extract_moves

ANALYSIS_MODES = ("engine", "stub")


class Session:
    def __init__(
        self,
        state: GameState | None = None,
        engine: EngineMultiplexer | None = None,
        analysis_mode: str | None = None,
        analysis_command: str | None = None,
        settings: Settings = SETTINGS,
    ):
        self.log = logging.getLogger("session")
        self.settings = settings
        self.state = state or GameState(settings.default_board_size)
        self.engine = engine or EngineMultiplexer()
        mode = (analysis_mode or settings.analysis_mode).lower()
        if mode not in ANALYSIS_MODES:
            raise ValueError(f"analysis mode must be one of {ANALYSIS_MODES}, got {mode!r}")
        self.analysis_mode = mode
        self.stub = StubAnalysis()
        self.engine_analysis = EngineAnalysis(self.engine, analysis_command or settings.analysis_command)
        # Held from board mutation through analysis, so each result describes its own request.
        self._position_lock = asyncio.Lock()

    # ---------------- Lifecycle -----------------
    async def start_engine(self) -> bool:
        """Start the engine if analysis mode wants it. Failure is logged, not raised."""
        if self.analysis_mode != "engine":
            self.log.info("Analysis mode is %r; engine not started", self.analysis_mode)
            return False
        s = self.settings
        try:
            await self.engine.start(s.engine_path, s.engine_model, s.engine_config, self.state.size)
        except EngineError:
            self.log.warning("Engine unavailable; analysis will use the stub", exc_info=True)
            return False
        return True

    async def shutdown(self) -> None:
        await self.engine.shutdown()

    # ---------------- Tool operations -----------------
    async def analyze_position(self, board_size: int | None = None, moves: list[str] | None = None) -> dict:
        async with self._position_lock:
            size = self.state.size if board_size is None else validate_size(board_size)
            if moves is not None:
                self.state.replace(size, parse_moves(moves, size))
            elif board_size is not None:
                self.state.reset(size)
            return await self._analyze()

    async def load_sgf(self, game_record_text: str) -> dict:
        async with self._position_lock:
            size = self.state.size
            moves = extract_moves(game_record_text, size)
            self.log.info("Loaded game record with %d moves", len(moves))
            self.state.replace(size, moves)
            return await self._analyze()

    async def replay(self, size: int, moves: list[Move]) -> dict:
        async with self._position_lock:
            self.state.replace(size, moves)
            return await self._analyze()

    def get_board(self) -> dict:
        return {"renderedBoard": self.state.render()}

    # ---------------- Analysis -----------------
    async def _analyze(self) -> dict:
        """Analyze the current position. Caller holds _position_lock."""
        snapshot = self.state.snapshot()
        if self.analysis_mode == "stub":
            reason = "stub analysis mode"
        elif not self.engine.is_ready:
            reason = "engine unavailable"
        else:
            try:
                analysis = await self.engine_analysis.analyze(snapshot)
                return self._result(snapshot, analysis, self.engine_analysis.name, None)
            except (EngineError, InvalidCoordinate) as e:
                self.log.warning("Engine analysis failed (%s); using stub", e)
                reason = f"engine error: {e}"
        return self._result(snapshot, self.stub.analyze(snapshot), self.stub.name, reason)

    @staticmethod
    def _result(snapshot: dict, analysis: dict, engine: str, fallback_reason: str | None) -> dict:
        return {
            "bestMoves": analysis["bestMoves"],
            "winrate": analysis["winrate"],
            "scoreLead": analysis["scoreLead"],
            "board": snapshot["board"],
            "history": snapshot["history"],
            "boardSize": snapshot["size"],
            "engine": engine,
            "fallback": fallback_reason is not None,
            "fallbackReason": fallback_reason,
        }
