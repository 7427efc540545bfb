"""
Move notation helpers.

Notation is "<Color><Column><Row>": Color is A (first player) or B (second player),
Column a single letter counted from A without gaps, Row a decimal in [1, size]
counted from the bottom edge. Internally a Move stores zero-based grid indices with
row 0 at the top, which is how the board is rendered.

The engine speaks GTP, whose column letters skip "I"; to_gtp() converts.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .errors import InvalidCoordinate, OutOfBounds

MAX_BOARD_SIZE = 26
COLUMN_LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
GTP_COLUMN_LETTERS = "ABCDEFGHJKLMNOPQRSTUVWXYZ"

NOTATION_RE = re.compile(r"^([AB])([A-Z])(\d{1,2})$", re.I)


class Color(str, Enum):
    A = "A"
    B = "B"

    @property
    def gtp(self) -> str:
        # A moves first, which is black in GTP terms.
        return "b" if self is Color.A else "w"

    def opponent(self) -> "Color":
        return Color.B if self is Color.A else Color.A


@dataclass(frozen=True)
class Move:
    color: Color
    column: int
    row: int

    def in_bounds(self, size: int) -> bool:
        return 0 <= self.column < size and 0 <= self.row < size

    def notation(self, size: int) -> str:
        return f"{self.color.value}{COLUMN_LETTERS[self.column]}{size - self.row}"

    def to_gtp(self, size: int) -> str:
        """Return "<color> <vertex>" as used by the GTP play command."""
        if self.column >= len(GTP_COLUMN_LETTERS):
            raise InvalidCoordinate(f"column {self.column} has no GTP vertex")
        return f"{self.color.gtp} {GTP_COLUMN_LETTERS[self.column]}{size - self.row}"


def parse_move(text: str, size: int) -> Move:
    """Parse move notation for a board of ``size``. Raises InvalidCoordinate/OutOfBounds."""
    token = (text or "").strip()
    m = NOTATION_RE.match(token)
    if not m:
        raise InvalidCoordinate(f"cannot parse move {text!r}; expected <A|B><column><row>, e.g. AD4")
    color = Color(m.group(1).upper())
    column = COLUMN_LETTERS.index(m.group(2).upper())
    row_number = int(m.group(3))
    move = Move(color=color, column=column, row=size - row_number)
    if not move.in_bounds(size):
        raise OutOfBounds(f"move {token!r} is outside a {size}x{size} board")
    return move


def parse_moves(texts: list[str], size: int) -> list[Move]:
    """Parse every move or none; the first bad entry raises."""
    return [parse_move(t, size) for t in texts]


def gtp_vertex_to_notation(vertex: str, color: Color, size: int) -> str | None:
    """Translate an engine vertex such as "Q16" back to move notation; None for pass/resign."""
    vertex = (vertex or "").strip().upper()
    if len(vertex) < 2 or vertex[0] not in GTP_COLUMN_LETTERS or not vertex[1:].isdigit():
        return None
    column = GTP_COLUMN_LETTERS.index(vertex[0])
    row_number = int(vertex[1:])
    if not (0 <= column < size and 1 <= row_number <= size):
        return None
    return f"{color.value}{COLUMN_LETTERS[column]}{row_number}"


__all__ = [
    "Color",
    "Move",
    "parse_move",
    "parse_moves",
    "gtp_vertex_to_notation",
    "MAX_BOARD_SIZE",
]
