"""Worker adapter protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from ..models import Task


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    output_text: str = ""
    error: Optional[str] = None
    elapsed: float = 0.0
    tokens: int = 0


class WorkerAdapter(Protocol):
    async def open(self, worker_kind: str) -> Any:
        ...

    async def dispatch(self, handle: Any, task: Task) -> DispatchResult:
        ...

    async def close(self, handle: Any) -> None:
        ...


__all__ = ["DispatchResult", "WorkerAdapter"]
