"""Per-group retry ledger with escalating delays."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Mapping, Sequence

from ..models import Task, TaskOutcome, TaskStatus

DEFAULT_DELAYS: tuple = (30, 60, 300, 600, 1200, 2400, 3600, 5400, 7200, 9000)
DEFAULT_CEILING = 10

Runner = Callable[[List[Task]], Awaitable[List[TaskOutcome]]]
Sleeper = Callable[[float], Awaitable[None]]

# column letter -> cell -> task
Bucket = Dict[str, Dict[str, Task]]


@dataclass
class RetryStats:
    passes: int = 0
    successful_retries: int = 0
    failed_retries: int = 0
    recorded_failures: int = 0
    recorded_empty: int = 0
    recorded_response_failures: int = 0


@dataclass
class RetryLedger:
    failed_tasks: Bucket = field(default_factory=dict)
    empty_tasks: Bucket = field(default_factory=dict)
    response_failures: Bucket = field(default_factory=dict)
    retry_count: int = 0
    stats: RetryStats = field(default_factory=RetryStats)

    def buckets(self) -> tuple:
        return (self.failed_tasks, self.empty_tasks, self.response_failures)

    def outstanding(self) -> List[Task]:
        seen: Dict[str, Task] = {}
        for bucket in self.buckets():
            for cells in bucket.values():
                for cell, task in cells.items():
                    seen.setdefault(cell, task)
        return sorted(seen.values(), key=lambda task: (task.column_index, task.row))

    def discard(self, cell: str, column: str) -> None:
        for bucket in self.buckets():
            cells = bucket.get(column)
            if cells is None:
                continue
            cells.pop(cell, None)
            if not cells:
                bucket.pop(column, None)


@dataclass(frozen=True)
class RetryPassResult:
    has_retries: bool
    successful: int = 0
    failed: int = 0
    should_stop_processing: bool = False
    retry_count: int = 0


class RetryManager:
    """Tracks failed, empty and write-back-failed cells per group.

    ``execute_group_retries`` runs one pass: it bumps the pass counter, halts
    once the counter reaches the ceiling, otherwise waits the scheduled delay
    and re-runs everything outstanding.
    """

    def __init__(
        self,
        *,
        delays: Sequence[float] = DEFAULT_DELAYS,
        ceiling: int = DEFAULT_CEILING,
        sleep: Sleeper = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        if not delays:
            raise ValueError("At least one retry delay is required")
        if ceiling <= 0:
            raise ValueError("ceiling must be positive")
        self.delays = tuple(float(delay) for delay in delays)
        self.ceiling = ceiling
        self.sleep = sleep
        self.logger = logger or logging.getLogger("LLMSheetBot.retry")
        self._ledgers: Dict[str, RetryLedger] = {}

    # ------------------------------------------------------------------
    def ledger(self, group_id: str) -> RetryLedger:
        return self._ledgers.setdefault(group_id, RetryLedger())

    def ledgers(self) -> Mapping[str, RetryLedger]:
        return dict(self._ledgers)

    def reset(self, group_id: str | None = None) -> None:
        """Forget one group's ledger, or all of them."""

        if group_id is None:
            self._ledgers.clear()
        else:
            self._ledgers.pop(group_id, None)

    def record_failure(self, group_id: str, task: Task) -> None:
        ledger = self.ledger(group_id)
        ledger.failed_tasks.setdefault(task.column, {})[task.cell] = task
        ledger.stats.recorded_failures += 1

    def record_empty(self, group_id: str, task: Task) -> None:
        ledger = self.ledger(group_id)
        ledger.empty_tasks.setdefault(task.column, {})[task.cell] = task
        ledger.stats.recorded_empty += 1

    def record_response_failure(self, group_id: str, task: Task) -> None:
        ledger = self.ledger(group_id)
        ledger.response_failures.setdefault(task.column, {})[task.cell] = task
        ledger.stats.recorded_response_failures += 1

    def mark_succeeded(self, group_id: str, task: Task) -> None:
        if group_id in self._ledgers:
            self._ledgers[group_id].discard(task.cell, task.column)

    def is_tracked(self, group_id: str, cell: str) -> bool:
        ledger = self._ledgers.get(group_id)
        if ledger is None:
            return False
        return any(cell in cells for bucket in ledger.buckets() for cells in bucket.values())

    def outstanding(self, group_id: str) -> List[Task]:
        ledger = self._ledgers.get(group_id)
        return ledger.outstanding() if ledger else []

    def delay_for(self, retry_count: int) -> float:
        index = min(max(retry_count, 1), len(self.delays)) - 1
        return self.delays[index]

    # ------------------------------------------------------------------
    async def execute_group_retries(self, group_id: str, runner: Runner) -> RetryPassResult:
        outstanding = self.outstanding(group_id)
        ledger = self.ledger(group_id)
        if not outstanding:
            return RetryPassResult(has_retries=False, retry_count=ledger.retry_count)

        ledger.retry_count += 1
        if ledger.retry_count >= self.ceiling:
            self.logger.error(
                "%s: %d cell(s) still failing after %d retry pass(es); halting",
                group_id,
                len(outstanding),
                ledger.retry_count,
            )
            return RetryPassResult(
                has_retries=True,
                failed=len(outstanding),
                should_stop_processing=True,
                retry_count=ledger.retry_count,
            )

        delay = self.delay_for(ledger.retry_count)
        self.logger.warning(
            "%s: retry pass %d for %d cell(s) in %.0fs",
            group_id,
            ledger.retry_count,
            len(outstanding),
            delay,
        )
        await self.sleep(delay)

        ledger.stats.passes += 1
        outcomes = await runner([task.retry() for task in outstanding])
        successful = failed = 0
        for outcome in outcomes:
            if outcome.succeeded:
                ledger.discard(outcome.task.cell, outcome.task.column)
                successful += 1
            elif outcome.status is TaskStatus.CLAIM_DENIED:
                # another worker owns the cell; the scheduler waits on it
                ledger.discard(outcome.task.cell, outcome.task.column)
            else:
                failed += 1
        ledger.stats.successful_retries += successful
        ledger.stats.failed_retries += failed
        self.logger.info("%s: retry pass %d recovered %d, %d still failing", group_id, ledger.retry_count, successful, failed)
        return RetryPassResult(
            has_retries=True,
            successful=successful,
            failed=failed,
            retry_count=ledger.retry_count,
        )


__all__ = ["RetryManager", "RetryLedger", "RetryStats", "RetryPassResult", "DEFAULT_DELAYS", "DEFAULT_CEILING"]
