from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Sequence, Union

import pytest

from llmsheetbot.models import Task
from llmsheetbot.store import InMemoryStore
from llmsheetbot.workers.base import DispatchResult
from llmsheetbot.workers.registry import FALLBACK_KIND, WorkerRegistry

FIXED_NOW = datetime(2026, 10, 19, 9, 0, 0, tzinfo=timezone.utc)

HEADERS = [
    ["menu", "", "log", "prompt", "answer", "log", "prompt", "answer"],
    ["ai", "", "", "Claude", "", "", "ChatGPT", ""],
    ["model", "", "", "", "", "", "", ""],
    ["function", "", "", "", "", "", "", ""],
]


def build_sheet(header_rows: Sequence[Sequence[str]], data_rows: Sequence[Sequence[str]], first_data_row: int = 9):
    rows: List[List[str]] = [list(row) for row in header_rows]
    while len(rows) < first_data_row - 1:
        rows.append([])
    rows.extend(list(row) for row in data_rows)
    return rows


Responder = Callable[[Task], Union[DispatchResult, str]]


class StubAdapter:
    """Records dispatches and tracks how many ran at once."""

    def __init__(self, responder: Responder | None = None, *, delay: float = 0.0) -> None:
        self.responder = responder or (lambda task: f"answer for {task.cell}")
        self.delay = delay
        self.calls: List[Task] = []
        self.opened: List[str] = []
        self.closed: List[str] = []
        self.active = 0
        self.max_active = 0

    async def open(self, worker_kind: str) -> str:
        self.opened.append(worker_kind)
        return f"handle:{worker_kind}"

    async def dispatch(self, handle, task: Task) -> DispatchResult:
        self.calls.append(task)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.responder(task)
        finally:
            self.active -= 1
        if isinstance(result, DispatchResult):
            return result
        return DispatchResult(True, result)

    async def close(self, handle) -> None:
        self.closed.append(handle)


def make_registry(adapter) -> WorkerRegistry:
    registry = WorkerRegistry(logger=logging.getLogger("test"))
    registry.register(FALLBACK_KIND, adapter)
    return registry


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("llmsheetbot-tests")


@pytest.fixture
def two_group_store() -> InMemoryStore:
    rows = build_sheet(
        HEADERS,
        [
            ["", "", "", "What is A?", "", "", "Summarise A", ""],
            ["", "", "", "What is B?", "done", "", "Summarise B", ""],
            ["", "", "", "What is C?", "", "", "Summarise C", ""],
        ],
    )
    return InMemoryStore(rows)
