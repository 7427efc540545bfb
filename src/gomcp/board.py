"""
GameState: authoritative grid and move history for the active session.

- Owns an N x N grid of "." / "A" / "B" and the ordered list of applied moves.
- reset() resizes and clears both; apply_move() validates bounds before writing.
- No capture or suicide rules: this is a coordinate ledger, not a rules engine.
- render() draws the grid with column letters and row numbers counted from the bottom,
  the same convention move notation uses.

All public methods serialize on one lock and validate before mutating.
"""
from __future__ import annotations

import threading
from typing import Iterable

from .errors import InvalidSize, OutOfBounds
from .moves import COLUMN_LETTERS, MAX_BOARD_SIZE, Move

EMPTY = "."
DEFAULT_SIZE = 19


def validate_size(size) -> int:
    if isinstance(size, bool) or not isinstance(size, int):
        raise InvalidSize(f"board size must be an integer, got {size!r}")
    if not 1 <= size <= MAX_BOARD_SIZE:
        raise InvalidSize(f"board size must be between 1 and {MAX_BOARD_SIZE}, got {size}")
    return size


class GameState:
    def __init__(self, size: int = DEFAULT_SIZE):
        self._lock = threading.Lock()
        self._size = validate_size(size)
        self._grid: list[list[str]] = self._empty_grid(self._size)
        self._history: list[Move] = []

    @staticmethod
    def _empty_grid(size: int) -> list[list[str]]:
        return [[EMPTY] * size for _ in range(size)]

    # ---------------- Inspection -----------------
    @property
    def size(self) -> int:
        with self._lock:
            return self._size

    @property
    def history(self) -> list[Move]:
        with self._lock:
            return list(self._history)

    def cell(self, column: int, row: int) -> str:
        with self._lock:
            return self._grid[row][column]

    def grid(self) -> list[list[str]]:
        with self._lock:
            return [list(r) for r in self._grid]

    def history_notation(self) -> list[str]:
        with self._lock:
            return [m.notation(self._size) for m in self._history]

    def snapshot(self) -> dict:
        """Consistent copy of size, grid and history taken under one lock."""
        with self._lock:
            return {
                "size": self._size,
                "board": [list(r) for r in self._grid],
                "history": [m.notation(self._size) for m in self._history],
                "moves": list(self._history),
            }

    # ---------------- Mutation -----------------
    def reset(self, size: int) -> None:
        size = validate_size(size)
        with self._lock:
            self._size = size
            self._grid = self._empty_grid(size)
            self._history = []

    def apply_move(self, move: Move) -> None:
        with self._lock:
            self._check_move(move, self._size)
            self._place(move)

    def apply_move_sequence(self, moves: Iterable[Move]) -> None:
        moves = list(moves)
        with self._lock:
            for mv in moves:
                self._check_move(mv, self._size)
            for mv in moves:
                self._place(mv)

    def replace(self, size: int, moves: Iterable[Move]) -> None:
        """Reset to ``size`` and replay ``moves``; nothing changes if any move is rejected."""
        size = validate_size(size)
        moves = list(moves)
        for mv in moves:
            self._check_move(mv, size)
        with self._lock:
            self._size = size
            self._grid = self._empty_grid(size)
            self._history = []
            for mv in moves:
                self._place(mv)

    @staticmethod
    def _check_move(move: Move, size: int) -> None:
        if not move.in_bounds(size):
            raise OutOfBounds(
                f"move ({move.column}, {move.row}) is outside a {size}x{size} board"
            )

    def _place(self, move: Move) -> None:
        self._grid[move.row][move.column] = move.color.value
        self._history.append(move)

    # ---------------- Rendering -----------------
    def render(self) -> str:
        with self._lock:
            size = self._size
            width = len(str(size))
            lines = [" " * width + " " + " ".join(COLUMN_LETTERS[:size])]
            for i, row in enumerate(self._grid):
                lines.append(f"{size - i:>{width}} " + " ".join(row))
        return "\n".join(lines) + "\n"
