"""
Analysis strategies.

- StubAnalysis: deterministic, explicitly labeled placeholder used when the engine is
  unavailable or GOMCP_ANALYSIS_MODE=stub. Same board in, same result out.
- EngineAnalysis: replays the position on the engine (boardsize/clear_board/play) and
  parses KataGo "info move ... visits ... winrate ... scoreLead ..." records from the
  analysis command's response line.
"""
from __future__ import annotations

import logging
import re
from typing import TypedDict

from .engine import EngineMultiplexer
from .errors import EngineCommandFailed
from .moves import COLUMN_LETTERS, Color, Move, gtp_vertex_to_notation

log = logging.getLogger("analysis")

MAX_BEST_MOVES = 5

# Classic opening points, in notation columns (A..Z without gaps).
STUB_POINTS = ["D4", "Q16", "K10", "R5", "C15"]
STUB_DESCRIPTIONS = [
    "Star point, a common opening choice",
    "Komoku, a territory-oriented corner approach",
    "Tengen area, central influence",
    "Side extension toward the lower right",
    "Flexible approach on the upper left side",
]
FILL_DESCRIPTION = "Open point"


class BestMove(TypedDict):
    move: str
    score: float
    description: str


class Analysis(TypedDict):
    bestMoves: list[BestMove]
    winrate: float
    scoreLead: float


def next_color(moves: list[Move]) -> Color:
    return moves[-1].color.opponent() if moves else Color.A


class StubAnalysis:
    name = "stub"

    def analyze(self, snapshot: dict) -> Analysis:
        size = snapshot["size"]
        board = snapshot["board"]
        color = next_color(snapshot["moves"])

        picks: list[tuple[int, int, str]] = []
        for point, desc in zip(STUB_POINTS, STUB_DESCRIPTIONS):
            column = COLUMN_LETTERS.index(point[0])
            row = size - int(point[1:])
            if 0 <= column < size and 0 <= row < size and board[row][column] == ".":
                picks.append((column, row, desc))
        # Small or crowded boards: fill with the first open points, top-left first.
        for row in range(size):
            for column in range(size):
                if len(picks) >= MAX_BEST_MOVES:
                    break
                if board[row][column] == "." and all((c, r) != (column, row) for c, r, _ in picks):
                    picks.append((column, row, FILL_DESCRIPTION))

        best: list[BestMove] = []
        for i, (column, row, desc) in enumerate(picks[:MAX_BEST_MOVES]):
            best.append({
                "move": Move(color, column, row).notation(size),
                "score": float((MAX_BEST_MOVES - i) * 20),
                "description": desc,
            })
        if not best:
            best.append({"move": f"{color.value}pass", "score": 0.0, "description": "No open points; pass"})
        return {"bestMoves": best, "winrate": 50.0, "scoreLead": 0.0}


# ---------------- Engine output parsing -----------------
_INFO_SPLIT_RE = re.compile(r"\binfo\b")
_NUMERIC_KEYS = {"visits": int, "winrate": float, "scoreLead": float, "scoreMean": float, "order": int, "prior": float, "lcb": float, "utility": float}


def parse_info_records(text: str) -> list[dict]:
    """Split a KataGo analysis line into per-move records (move, visits, winrate, ...)."""
    records = []
    for chunk in _INFO_SPLIT_RE.split(text or ""):
        tokens = chunk.split()
        rec: dict = {}
        i = 0
        while i + 1 < len(tokens):
            key, val = tokens[i], tokens[i + 1]
            if key == "pv":
                rec["pv"] = tokens[i + 1:]
                break
            if key == "move":
                rec["move"] = val
            elif key in _NUMERIC_KEYS:
                try:
                    rec[key] = _NUMERIC_KEYS[key](val)
                except ValueError:
                    log.debug("Bad numeric value %s=%s in engine output", key, val)
            i += 2
        if "move" in rec:
            records.append(rec)
    records.sort(key=lambda r: r.get("order", len(records)))
    return records


class EngineAnalysis:
    name = "KataGo"

    def __init__(self, engine: EngineMultiplexer, command: str):
        self.engine = engine
        self.command = command

    async def sync_position(self, size: int, moves: list[Move]) -> None:
        if self.engine.board_size != size:
            await self.engine.send("boardsize", str(size))
            self.engine.board_size = size
        await self.engine.send("clear_board")
        for mv in moves:
            await self.engine.send("play", mv.to_gtp(size))

    async def analyze(self, snapshot: dict) -> Analysis:
        size = snapshot["size"]
        moves: list[Move] = snapshot["moves"]
        await self.sync_position(size, moves)
        color = next_color(moves)
        raw = await self.engine.send(self.command, color.gtp)
        records = parse_info_records(raw)
        if not records:
            raise EngineCommandFailed(f"no analysis records in engine response to {self.command!r}")

        best: list[BestMove] = []
        for rec in records:
            notation = gtp_vertex_to_notation(rec["move"], color, size)
            if notation is None:
                continue
            winrate = rec.get("winrate", 0.0)
            lead = rec.get("scoreLead", 0.0)
            best.append({
                "move": notation,
                "score": float(rec.get("visits", 0)),
                "description": f"visits {rec.get('visits', 0)}, winrate {winrate:.1%}, score lead {lead:+.1f}",
            })
            if len(best) >= MAX_BEST_MOVES:
                break
        if not best:
            raise EngineCommandFailed("engine suggested no on-board moves")
        top = records[0]
        return {
            "bestMoves": best,
            "winrate": round(float(top.get("winrate", 0.5)) * 100.0, 2),
            "scoreLead": round(float(top.get("scoreLead", 0.0)), 2),
        }
