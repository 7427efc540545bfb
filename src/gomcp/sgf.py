"""
Move extraction from game-record text.

Only move tags are read: ";A[pd]" style, color A or B followed by a two-letter
lowercase coordinate (column first, row counted from the top edge). Everything else
in the record (properties, comments, variations) is ignored, and tags whose
coordinate does not fit the board are skipped.
"""
from __future__ import annotations

import logging
import re

from .errors import GameRecordError
from .moves import Color, Move

log = logging.getLogger("sgf")

MOVE_TAG_RE = re.compile(r";([AB])\[([a-z]{2})\]")


def extract_moves(text: str, size: int) -> list[Move]:
    """Return the moves of ``text`` in document order for a ``size`` board."""
    moves: list[Move] = []
    for m in MOVE_TAG_RE.finditer(text or ""):
        coord = m.group(2)
        column = ord(coord[0]) - ord("a")
        row = ord(coord[1]) - ord("a")
        move = Move(color=Color(m.group(1)), column=column, row=row)
        if not move.in_bounds(size):
            log.debug("Skipping tag %s outside %dx%d board", m.group(0), size, size)
            continue
        moves.append(move)
    return moves


def extract_move_notation(text: str, size: int) -> list[str]:
    return [mv.notation(size) for mv in extract_moves(text, size)]


def load_sgf_file(path: str, size: int) -> list[Move]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise GameRecordError(f"cannot read game record {path!r}: {e}") from e
    return extract_moves(content, size)
