"""Offline adapter used for dry runs."""

from __future__ import annotations

from typing import Any

from ..models import Task
from .base import DispatchResult


class EchoAdapter:
    def __init__(self, *, prefix: str = "echo", **_: Any) -> None:
        self.prefix = prefix

    async def open(self, worker_kind: str) -> str:
        return worker_kind

    async def dispatch(self, handle: Any, task: Task) -> DispatchResult:
        first_line = task.prompt_text.strip().splitlines()[0] if task.prompt_text.strip() else ""
        return DispatchResult(True, f"[{self.prefix}:{handle}] {first_line}")

    async def close(self, handle: Any) -> None:
        return None


__all__ = ["EchoAdapter"]
