"""Fixed-size pool of execution slots."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from ..models import Task, TaskOutcome, TaskStatus

SINGLE_CAPACITY = 3
FANOUT_MAX_CAPACITY = 4

Executor = Callable[["ExecutionSlot", Task], Awaitable[TaskOutcome]]


@dataclass
class ExecutionSlot:
    position: int
    worker_kind: Optional[str] = None
    handle: Any = None
    current_task: Optional[Task] = None


class ExecutionSlotPool:
    """Hands out at most ``capacity`` slots; each slot keeps one worker handle open."""

    def __init__(self, capacity: int, *, registry, logger: logging.Logger | None = None) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.registry = registry
        self.logger = logger or logging.getLogger("LLMSheetBot.slots")
        self.slots = [ExecutionSlot(position=index) for index in range(capacity)]
        self._free: asyncio.Queue[ExecutionSlot] = asyncio.Queue()
        for slot in self.slots:
            self._free.put_nowait(slot)

    @classmethod
    def for_columns(
        cls,
        column_count: int,
        *,
        fanout: bool,
        registry,
        single_capacity: int = SINGLE_CAPACITY,
        fanout_max: int = FANOUT_MAX_CAPACITY,
        logger: logging.Logger | None = None,
    ) -> "ExecutionSlotPool":
        capacity = min(fanout_max, max(1, column_count)) if fanout else single_capacity
        return cls(capacity, registry=registry, logger=logger)

    @property
    def active_count(self) -> int:
        return self.capacity - self._free.qsize()

    # ------------------------------------------------------------------
    async def acquire(self) -> ExecutionSlot:
        return await self._free.get()

    def release(self, slot: ExecutionSlot) -> None:
        slot.current_task = None
        self._free.put_nowait(slot)

    async def bind(self, slot: ExecutionSlot, worker_kind: str) -> Any:
        """Return the slot's handle for ``worker_kind``, reopening on kind change."""

        if slot.handle is not None and slot.worker_kind == worker_kind:
            return slot.handle
        await self._unbind(slot)
        adapter = self.registry.adapter_for(worker_kind)
        slot.handle = await adapter.open(worker_kind)
        slot.worker_kind = worker_kind
        self.logger.debug("Slot %d bound to %s", slot.position, worker_kind)
        return slot.handle

    async def run_batch(self, tasks: Sequence[Task], execute: Executor) -> List[TaskOutcome]:
        """Run every task, wait for all of them, and return every outcome."""

        async def run_one(task: Task) -> TaskOutcome:
            slot = await self.acquire()
            try:
                slot.current_task = task
                return await execute(slot, task)
            finally:
                self.release(slot)

        results = await asyncio.gather(*(run_one(task) for task in tasks), return_exceptions=True)
        return [self._settle(task, result) for task, result in zip(tasks, results)]

    async def run_columns(self, columns: Mapping[str, Sequence[Task]], execute: Executor) -> List[TaskOutcome]:
        """One slot per column; rows run in order inside a column, columns run concurrently."""

        async def run_column(tasks: Sequence[Task]) -> List[TaskOutcome]:
            outcomes: List[TaskOutcome] = []
            slot = await self.acquire()
            try:
                for task in tasks:
                    slot.current_task = task
                    try:
                        outcome = await execute(slot, task)
                    except Exception as exc:
                        outcome = self._settle(task, exc)
                    outcomes.append(outcome)
            finally:
                self.release(slot)
            return outcomes

        column_tasks = [list(tasks) for tasks in columns.values() if tasks]
        results = await asyncio.gather(*(run_column(tasks) for tasks in column_tasks), return_exceptions=True)
        outcomes: List[TaskOutcome] = []
        for tasks, result in zip(column_tasks, results):
            if isinstance(result, BaseException):
                outcomes.extend(self._settle(task, result) for task in tasks)
            else:
                outcomes.extend(result)
        return outcomes

    async def close(self) -> None:
        for slot in self.slots:
            await self._unbind(slot)

    # ------------------------------------------------------------------
    async def _unbind(self, slot: ExecutionSlot) -> None:
        if slot.handle is None:
            return
        adapter = self.registry.adapter_for(slot.worker_kind)
        try:
            await adapter.close(slot.handle)
        except Exception as exc:  # pragma: no cover - cleanup best effort
            self.logger.warning("Closing %s handle on slot %d failed: %s", slot.worker_kind, slot.position, exc)
        finally:
            slot.handle = None
            slot.worker_kind = None

    def _settle(self, task: Task, result: object) -> TaskOutcome:
        if isinstance(result, TaskOutcome):
            return result
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            self.logger.error("Task %s at %s raised: %s", task.id, task.cell, result, exc_info=result)
            return TaskOutcome(task=task, status=TaskStatus.FAILED, error=f"{type(result).__name__}: {result}")
        return TaskOutcome(task=task, status=TaskStatus.FAILED, error=f"Unexpected executor result: {result!r}")


__all__ = ["ExecutionSlotPool", "ExecutionSlot", "SINGLE_CAPACITY", "FANOUT_MAX_CAPACITY"]
