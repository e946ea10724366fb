"""Store protocol and factory."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Protocol, Sequence

from ..errors import ConfigError

# Update requests are plain mappings:
#   {"type": "set", "cell": "C10", "value": "text"}
#   {"type": "insert_rows" | "delete_rows", "index": 9, "count": 1}
#   {"type": "insert_columns" | "delete_columns", "index": 3, "count": 1}
# Indices are 0-based.
UpdateRequest = Mapping[str, Any]

TOKEN_ENV = "LLMSHEETBOT_SHEETS_TOKEN"


class TabularStore(Protocol):
    """Blocking access to a single sheet. Callers move calls off the event loop."""

    def get_values(self) -> List[List[str]]:
        ...

    def get_range(self, ref: str) -> List[List[str]]:
        ...

    def batch_get(self, refs: Sequence[str]) -> Dict[str, str]:
        ...

    def set_cell(self, ref: str, value: str) -> None:
        ...

    def batch_update(self, requests: Sequence[UpdateRequest]) -> None:
        ...


def build_store(config: Mapping[str, Any], *, logger) -> TabularStore:
    """Instantiate the store named by ``config['backend']``."""

    from .csv_store import CsvFileStore
    from .memory import InMemoryStore
    from .sheets import GoogleSheetsStore

    backend = str(config.get("backend") or "csv").lower()
    if backend == "memory":
        return InMemoryStore(config.get("rows") or [], logger=logger)
    if backend == "csv":
        path = config.get("csv_path")
        if not path:
            raise ConfigError("store.csv_path is required for the csv backend")
        lock_cfg = config.get("lock", {}) or {}
        return CsvFileStore(
            path,
            logger=logger,
            lock_timeout=float(lock_cfg.get("timeout", 10.0)),
            lock_stale_seconds=float(lock_cfg.get("stale_seconds", 60.0)),
        )
    if backend == "sheets":
        spreadsheet_id = config.get("spreadsheet_id")
        if not spreadsheet_id:
            raise ConfigError("store.spreadsheet_id is required for the sheets backend")
        token = config.get("access_token") or os.getenv(TOKEN_ENV)
        if not token:
            raise ConfigError(f"Provide store.access_token or set {TOKEN_ENV}")
        return GoogleSheetsStore(
            str(spreadsheet_id),
            sheet=str(config.get("sheet") or "Sheet1"),
            sheet_gid=int(config.get("sheet_gid", 0)),
            access_token=str(token),
            base_url=str(config.get("base_url") or "https://sheets.googleapis.com"),
            timeout=float(config.get("timeout", 30)),
            logger=logger,
        )
    raise ConfigError(f"Unknown store backend: {backend}")


__all__ = ["TabularStore", "UpdateRequest", "build_store", "TOKEN_ENV"]
