"""Grid-backed store kept in process memory."""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Sequence, Tuple

from ..cells import parse_cell
from ..errors import StoreError
from .base import UpdateRequest


def _parse_range(ref: str) -> Tuple[int, int, int, int]:
    """Return ``(first_col, first_row, last_col, last_row)``; rows are 1-based."""

    start, _, end = ref.partition(":")
    first_col, first_row = parse_cell(start)
    if not end:
        return first_col, first_row, first_col, first_row
    last_col, last_row = parse_cell(end)
    if last_col < first_col or last_row < first_row:
        raise StoreError(f"Inverted range: {ref}")
    return first_col, first_row, last_col, last_row


class GridStore:
    """Shared grid operations; subclasses decide where the grid lives."""

    def __init__(self, rows: Iterable[Sequence[object]] = (), *, logger) -> None:
        self.logger = logger
        self._lock = threading.Lock()
        self._grid: List[List[str]] = [["" if value is None else str(value) for value in row] for row in rows]

    # ------------------------------------------------------------------
    def get_values(self) -> List[List[str]]:
        with self._lock:
            return [list(row) for row in self._grid]

    def get_range(self, ref: str) -> List[List[str]]:
        first_col, first_row, last_col, last_row = _parse_range(ref)
        with self._lock:
            return [
                [self._read(col, row) for col in range(first_col, last_col + 1)]
                for row in range(first_row, last_row + 1)
            ]

    def batch_get(self, refs: Sequence[str]) -> Dict[str, str]:
        result: Dict[str, str] = {}
        with self._lock:
            for ref in refs:
                col, row = parse_cell(ref)
                result[ref] = self._read(col, row)
        return result

    def set_cell(self, ref: str, value: str) -> None:
        col, row = parse_cell(ref)
        with self._lock:
            self._write(col, row, value)

    def batch_update(self, requests: Sequence[UpdateRequest]) -> None:
        with self._lock:
            for request in requests:
                self._apply(request)

    # ------------------------------------------------------------------
    def _read(self, col: int, row: int) -> str:
        if row - 1 >= len(self._grid):
            return ""
        values = self._grid[row - 1]
        if col >= len(values):
            return ""
        return values[col]

    def _write(self, col: int, row: int, value: str) -> None:
        while len(self._grid) < row:
            self._grid.append([])
        values = self._grid[row - 1]
        while len(values) <= col:
            values.append("")
        values[col] = "" if value is None else str(value)

    def _apply(self, request: UpdateRequest) -> None:
        kind = request.get("type")
        if kind == "set":
            col, row = parse_cell(str(request["cell"]))
            self._write(col, row, request.get("value", ""))
            return
        index = int(request.get("index", 0))
        count = int(request.get("count", 1))
        if kind == "insert_rows":
            for _ in range(count):
                self._grid.insert(index, [])
        elif kind == "delete_rows":
            del self._grid[index:index + count]
        elif kind == "insert_columns":
            for values in self._grid:
                if len(values) > index:
                    values[index:index] = [""] * count
        elif kind == "delete_columns":
            for values in self._grid:
                del values[index:index + count]
        else:
            raise StoreError(f"Unsupported update request: {kind!r}")


class InMemoryStore(GridStore):
    """Store used for dry runs and tests."""

    def __init__(self, rows: Iterable[Sequence[object]] = (), *, logger=None) -> None:
        super().__init__(rows, logger=logger)

    def value(self, ref: str) -> str:
        return self.batch_get([ref])[ref]


__all__ = ["GridStore", "InMemoryStore"]
