"""A1 notation helpers."""

from __future__ import annotations

import re
from typing import Tuple

_CELL_RE = re.compile(r"^\$?([A-Za-z]+)\$?(\d+)$")


def column_to_index(column: str) -> int:
    """Convert a column letter (``A``, ``AB``) to a 0-based index."""

    letters = column.strip().upper()
    if not letters or not letters.isalpha():
        raise ValueError(f"Invalid column letter: {column!r}")
    index = 0
    for char in letters:
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def index_to_column(index: int) -> str:
    """Convert a 0-based column index to its letter form."""

    if index < 0:
        raise ValueError(f"Column index must be >= 0, got {index}")
    letters = ""
    value = index + 1
    while value:
        value, remainder = divmod(value - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def cell_ref(column_index: int, row: int) -> str:
    """Build an A1 reference from a 0-based column and a 1-based row."""

    if row < 1:
        raise ValueError(f"Row numbers are 1-based, got {row}")
    return f"{index_to_column(column_index)}{row}"


def parse_cell(ref: str) -> Tuple[int, int]:
    """Return ``(column_index, row)`` for an A1 reference."""

    match = _CELL_RE.match(ref.strip())
    if not match:
        raise ValueError(f"Invalid cell reference: {ref!r}")
    return column_to_index(match.group(1)), int(match.group(2))


__all__ = ["column_to_index", "index_to_column", "cell_ref", "parse_cell"]
