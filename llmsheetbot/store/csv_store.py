"""CSV-file store shared by processes on one machine."""

from __future__ import annotations

import csv
import io
import threading
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Sequence, TypeVar

from ..errors import StoreError
from ..util.file_lock import FileLock, FileLockTimeout
from .base import UpdateRequest
from .memory import GridStore

T = TypeVar("T")


class CsvFileStore(GridStore):
    """Reloads the file on every call and rewrites it atomically after writes."""

    def __init__(
        self,
        path: str | Path,
        *,
        logger,
        owner: str = "",
        lock_timeout: float = 10.0,
        lock_stale_seconds: float = 60.0,
    ) -> None:
        super().__init__((), logger=logger)
        self.path = Path(path)
        if not self.path.exists():
            raise StoreError(f"CSV store not found: {self.path}")
        self._file_lock = FileLock(
            self.path,
            owner=owner,
            timeout=lock_timeout,
            stale_seconds=lock_stale_seconds,
        )
        self._file_guard = threading.Lock()

    # ------------------------------------------------------------------
    def get_values(self) -> List[List[str]]:
        return self._with_file(super().get_values, write=False)

    def get_range(self, ref: str) -> List[List[str]]:
        return self._with_file(partial(super().get_range, ref), write=False)

    def batch_get(self, refs: Sequence[str]) -> Dict[str, str]:
        return self._with_file(partial(super().batch_get, refs), write=False)

    def set_cell(self, ref: str, value: str) -> None:
        self._with_file(partial(super().set_cell, ref, value), write=True)

    def batch_update(self, requests: Sequence[UpdateRequest]) -> None:
        self._with_file(partial(super().batch_update, requests), write=True)

    # ------------------------------------------------------------------
    def _with_file(self, operation: Callable[[], T], *, write: bool) -> T:
        try:
            with self._file_guard, self._file_lock:
                self._grid = self._load()
                result = operation()
                if write:
                    self._save()
                return result
        except FileLockTimeout as exc:
            raise StoreError(str(exc)) from exc
        except OSError as exc:
            raise StoreError(f"CSV store I/O failed for {self.path}: {exc}") from exc

    def _load(self) -> List[List[str]]:
        text = self.path.read_text(encoding="utf-8-sig")
        return [list(row) for row in csv.reader(io.StringIO(text))]

    def _save(self) -> None:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        width = max((len(row) for row in self._grid), default=0)
        for row in self._grid:
            writer.writerow(row + [""] * (width - len(row)))
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(buffer.getvalue(), encoding="utf-8")
        tmp_path.replace(self.path)
        self.logger.debug("Saved %d row(s) to %s", len(self._grid), self.path)


__all__ = ["CsvFileStore"]
