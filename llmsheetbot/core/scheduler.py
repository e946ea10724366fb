"""Top-level orchestration of task groups."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from ..cells import cell_ref
from ..errors import (
    ClaimDenied,
    EmptyResult,
    RetryCeilingExceeded,
    SheetBotError,
    StoreError,
    WorkerFailure,
    WriteBackFailure,
)
from ..models import GroupType, RunSummary, StructureSnapshot, Task, TaskGroup, TaskOutcome, TaskStatus
from ..reports import ProduceContext
from ..workers.base import DispatchResult
from .answers import has_answer
from .lease import ClaimDecision, ExclusiveControlManager
from .markers import LeaseMarker
from .metrics import MetricsTracker
from .retry_manager import RetryManager
from .slot_pool import FANOUT_MAX_CAPACITY, SINGLE_CAPACITY, ExecutionSlot, ExecutionSlotPool
from .structure import StructureAnalyzer, select_groups, work_rows
from .task_generator import TaskGenerator


@dataclass(frozen=True)
class SchedulerSettings:
    max_iterations: int = 50
    poll_interval: float = 5.0
    batch_size: int = SINGLE_CAPACITY
    fanout_max_slots: int = FANOUT_MAX_CAPACITY
    max_batches_per_group: int = 100
    test_max_tasks: int = 5


@dataclass(frozen=True)
class RunOptions:
    task_groups: Optional[Sequence[TaskGroup]] = None
    test_mode: bool = False


@dataclass(frozen=True)
class SchedulerStatus:
    current_group: Optional[str]
    queue_depth: int
    active_slots: int
    running: bool = False
    processed_groups: Tuple[str, ...] = ()


class GroupOutcome(str, Enum):
    DONE = "done"
    STOPPED = "stopped"
    BLOCKED = "blocked"


# Shortest pause between rechecks of cells leased by other workers.
LEASE_RECHECK_FLOOR = 1.0


class GroupScheduler:
    """Analyze, pick the next ready group, run it to completion, repeat.

    Groups run one at a time in sequence order. Within a group, batches of
    tasks run concurrently on the slot pool, followed by a reconciliation
    sweep and retry passes. Cells leased by other workers are rechecked until
    they free up; one still held past its function timeout blocks the run.
    A group that exhausts its retries halts the run.
    """

    def __init__(
        self,
        *,
        analyzer: StructureAnalyzer,
        generator: TaskGenerator,
        exclusive: ExclusiveControlManager,
        retry_manager: RetryManager,
        registry,
        producers=None,
        metrics: MetricsTracker | None = None,
        settings: SchedulerSettings = SchedulerSettings(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.analyzer = analyzer
        self.generator = generator
        self.exclusive = exclusive
        self.retry_manager = retry_manager
        self.registry = registry
        self.producers = producers
        self.metrics = metrics or MetricsTracker()
        self.settings = settings
        self.sleep = sleep
        self.logger = logger or logging.getLogger("LLMSheetBot.scheduler")
        self.processed_group_keys: Set[str] = set()
        self._stop_requested = False
        self._running = False
        self._current_group: Optional[str] = None
        self._pool: Optional[ExecutionSlotPool] = None
        self._queue_depth = 0
        self._reset_counters()

    # ------------------------------------------------------------------
    def stop(self) -> None:
        if not self._stop_requested:
            self.logger.info("Stop requested; finishing in-flight tasks")
        self._stop_requested = True

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            current_group=self._current_group,
            queue_depth=self._queue_depth,
            active_slots=self._pool.active_count if self._pool else 0,
            running=self._running,
            processed_groups=tuple(sorted(self.processed_group_keys)),
        )

    async def run(self, store, options: RunOptions | None = None) -> RunSummary:
        """Process every group in the sheet.

        Raises :class:`~llmsheetbot.errors.StructuralError` when the sheet has
        no usable control rows. Task-level failures end up in the summary.
        """

        options = options or RunOptions()
        started = time.perf_counter()
        self._reset_counters()
        self.generator.reset()
        self.processed_group_keys = set()
        self._stop_requested = False
        self._running = True
        self._test_mode = options.test_mode
        halted: Optional[str] = None
        try:
            for iteration in range(1, self.settings.max_iterations + 1):
                if self._stop_requested or self._test_budget_spent():
                    break
                snapshot = await asyncio.to_thread(self.analyzer.analyze, store)
                groups = list(options.task_groups) if options.task_groups is not None else select_groups(snapshot)
                self._selected = {group.id for group in groups}
                pending = sorted(
                    (group for group in groups if group.id not in self.processed_group_keys),
                    key=lambda group: group.sequence_order,
                )
                if not pending:
                    self.logger.info("All %d group(s) processed", len(self.processed_group_keys))
                    break
                group = next((g for g in pending if self._dependencies_met(g)), None)
                if group is None:
                    blocked = pending[0]
                    missing = [dep for dep in blocked.dependencies if dep not in self.processed_group_keys]
                    self.logger.info(
                        "%s waiting on %s; rechecking in %.0fs", blocked.id, ", ".join(missing), self.settings.poll_interval
                    )
                    await self.sleep(self.settings.poll_interval)
                    continue

                self._current_group = group.id
                self.logger.info(
                    "[%d/%d] Processing %s (%s, %s)",
                    iteration,
                    self.settings.max_iterations,
                    group.id,
                    group.group_type.value,
                    group.worker_kind,
                )
                self._run_groups.add(group.id)
                try:
                    outcome = await self._process_group(store, group, snapshot)
                except RetryCeilingExceeded as exc:
                    self.logger.error("%s", exc)
                    halted = exc.group_id
                    break
                if outcome is not GroupOutcome.DONE:
                    break
                self.processed_group_keys.add(group.id)
            else:
                self.logger.warning("Iteration cap of %d reached", self.settings.max_iterations)
        finally:
            self._running = False
            self._current_group = None

        summary = self._summary(time.perf_counter() - started, halted)
        self._log_summary(summary)
        return summary

    # ------------------------------------------------------------------
    def _dependencies_met(self, group: TaskGroup) -> bool:
        return all(dep in self.processed_group_keys for dep in group.dependencies)

    async def _process_group(self, store, group: TaskGroup, snapshot: StructureSnapshot) -> GroupOutcome:
        rows = work_rows(snapshot)
        if group.group_type.is_special:
            await self._run_special(store, group, rows)
            return GroupOutcome.STOPPED if self._stop_requested else GroupOutcome.DONE

        fanout = group.group_type is GroupType.FANOUT
        pool = ExecutionSlotPool.for_columns(
            len(group.answer_columns),
            fanout=fanout,
            registry=self.registry,
            single_capacity=self.settings.batch_size,
            fanout_max=self.settings.fanout_max_slots,
            logger=self.logger,
        )
        self._pool = pool
        self.retry_manager.reset(group.id)
        runner = partial(self._run_tasks, pool, group)
        try:
            for _ in range(self.settings.max_batches_per_group):
                if self._stop_requested:
                    return GroupOutcome.STOPPED
                limit = self._batch_limit(group)
                if limit <= 0:
                    break
                tasks = await self.generator.scan(store, group, rows, limit)
                if not tasks:
                    break
                await runner(tasks)
            else:
                self.logger.warning("%s: batch cap of %d reached", group.id, self.settings.max_batches_per_group)

            waited = 0.0
            while True:
                await self._reconcile(store, group, rows)
                if not await self._retry_until_clean(store, group, rows, runner):
                    return GroupOutcome.STOPPED
                ready, held = await self.generator.recheck_waiting(store, group, rows)
                if ready:
                    self.logger.info("%s: %d cell(s) released by other workers", group.id, len(ready))
                    await runner(ready)
                    continue
                if not held:
                    break
                if self._stop_requested:
                    return GroupOutcome.STOPPED
                budget = max(self.exclusive.timeout_for(state.task.feature_hint) for state in held)
                if waited >= budget:
                    cells = sorted(state.task.cell for state in held)
                    self._unresolved.update(cells)
                    self.logger.error(
                        "%s: %s still held by other workers after %.0fs", group.id, ", ".join(cells), waited
                    )
                    return GroupOutcome.BLOCKED
                pause = min([state.decision.wait_seconds for state in held] + [self.settings.poll_interval])
                pause = max(pause, LEASE_RECHECK_FLOOR)
                self.logger.info(
                    "%s: waiting on %d cell(s) held by other workers; rechecking in %.0fs",
                    group.id,
                    len(held),
                    pause,
                )
                await self.sleep(pause)
                waited += pause
        finally:
            self._pool = None
            await pool.close()
        return GroupOutcome.DONE

    async def _retry_until_clean(self, store, group: TaskGroup, rows: Sequence[int], runner) -> bool:
        """Run retry passes until the ledger is clean; False when stopped."""

        while True:
            result = await self.retry_manager.execute_group_retries(group.id, runner)
            if result.should_stop_processing:
                raise RetryCeilingExceeded(group.id, result.retry_count)
            if not result.has_retries:
                return True
            if self._stop_requested:
                return False
            await self._reconcile(store, group, rows)

    def _batch_limit(self, group: TaskGroup) -> int:
        if group.group_type is GroupType.FANOUT:
            limit = self.settings.batch_size * len(group.answer_columns)
        else:
            limit = self.settings.batch_size
        if self._test_mode:
            limit = min(limit, self.settings.test_max_tasks - len(self._attempted))
        return limit

    def _test_budget_spent(self) -> bool:
        return self._test_mode and len(self._attempted) >= self.settings.test_max_tasks

    async def _run_tasks(self, pool: ExecutionSlotPool, group: TaskGroup, tasks: List[Task]) -> List[TaskOutcome]:
        self._queue_depth += len(tasks)
        self._attempted.update(task.cell for task in tasks)
        execute = partial(self._execute, pool)
        if group.group_type is GroupType.FANOUT:
            columns: Dict[str, List[Task]] = {}
            for task in tasks:
                columns.setdefault(task.column, []).append(task)
            outcomes = await pool.run_columns(columns, execute)
        else:
            outcomes = await pool.run_batch(tasks, execute)
        for outcome in outcomes:
            self._record(group, outcome)
        return outcomes

    async def _execute(self, pool: ExecutionSlotPool, slot: ExecutionSlot, task: Task) -> TaskOutcome:
        self._queue_depth = max(0, self._queue_depth - 1)
        try:
            await self.exclusive.claim(task.cell, task.feature_hint)
        except ClaimDenied as exc:
            return TaskOutcome(task=task, status=TaskStatus.CLAIM_DENIED, error=str(exc))

        started = time.perf_counter()
        text = ""
        try:
            result = await self._dispatch(pool, slot, task)
            text = result.output_text.strip()
            if not text:
                raise EmptyResult(f"{task.worker_kind} returned an empty answer")
            await self.exclusive.release(task.cell, text)
        except WorkerFailure as exc:
            elapsed = time.perf_counter() - started
            self.metrics.record(task.worker_kind, elapsed, status=TaskStatus.FAILED.value)
            self.logger.warning("%s failed (attempt %d): %s", task.cell, task.attempt, exc)
            await self._abandon(task)
            return TaskOutcome(task=task, status=TaskStatus.FAILED, error=str(exc), elapsed=elapsed)
        except EmptyResult as exc:
            elapsed = result.elapsed or (time.perf_counter() - started)
            self.metrics.record(task.worker_kind, elapsed, status=TaskStatus.EMPTY.value)
            self.logger.warning("%s: %s", task.cell, exc)
            return TaskOutcome(task=task, status=TaskStatus.EMPTY, error=str(exc), elapsed=elapsed)
        except WriteBackFailure as exc:
            elapsed = result.elapsed or (time.perf_counter() - started)
            self.metrics.record(task.worker_kind, elapsed, status=TaskStatus.RESPONSE_FAILED.value)
            self.logger.error("Answer produced but write-back failed for %s", exc)
            return TaskOutcome(task=task, status=TaskStatus.RESPONSE_FAILED, output=text, error=str(exc), elapsed=elapsed)

        elapsed = result.elapsed or (time.perf_counter() - started)
        self.metrics.record(task.worker_kind, elapsed, status=TaskStatus.COMPLETED.value, tokens=result.tokens)
        self.logger.info("%s answered by %s in %.1fs", task.cell, task.worker_kind, elapsed)
        return TaskOutcome(task=task, status=TaskStatus.COMPLETED, output=text, elapsed=elapsed)

    async def _dispatch(self, pool: ExecutionSlotPool, slot: ExecutionSlot, task: Task) -> DispatchResult:
        try:
            handle = await pool.bind(slot, task.worker_kind)
            result = await self.registry.adapter_for(task.worker_kind).dispatch(handle, task)
        except WorkerFailure:
            raise
        except Exception as exc:
            raise WorkerFailure(f"{type(exc).__name__}: {exc}") from exc
        if not result.success:
            raise WorkerFailure(result.error or f"{task.worker_kind} reported a failure")
        return result

    async def _abandon(self, task: Task) -> None:
        try:
            await self.exclusive.abandon(task.cell)
        except StoreError as exc:
            self.logger.warning("Could not clear lease on %s: %s", task.cell, exc)

    def _record(self, group: TaskGroup, outcome: TaskOutcome) -> None:
        task = outcome.task
        if outcome.status is TaskStatus.COMPLETED:
            self.retry_manager.mark_succeeded(group.id, task)
            self._completed.add(task.cell)
        elif outcome.status is TaskStatus.FAILED:
            self.retry_manager.record_failure(group.id, task)
        elif outcome.status is TaskStatus.RESPONSE_FAILED:
            self.retry_manager.record_response_failure(group.id, task)
        elif outcome.status is TaskStatus.CLAIM_DENIED:
            # rechecked once the group's batches drain
            self.generator.waiting.setdefault(task.cell, ClaimDecision(False, "denied"))

    async def _reconcile(self, store, group: TaskGroup, rows: Sequence[int]) -> None:
        """Queue cells this process attempted that still lack an answer."""

        for state in await self.generator.pending(store, group, rows):
            cell = state.task.cell
            if cell not in self.generator.processed_answer_cells or state.held_elsewhere:
                continue
            if self.retry_manager.is_tracked(group.id, cell):
                continue
            if LeaseMarker.decode(state.value) is not None:
                self.logger.info("%s still shows a wait marker; queued for retry", cell)
            self.retry_manager.record_empty(group.id, state.task)

    # ------------------------------------------------------------------
    async def _run_special(self, store, group: TaskGroup, rows: Sequence[int]) -> None:
        if self.producers is None:
            self.logger.warning("%s: no side-effect producers configured; skipping", group.id)
            return
        try:
            producer = self.producers.producer_for(group.worker_kind)
        except SheetBotError as exc:
            self.logger.error("%s: %s", group.id, exc)
            self._special_failed += 1
            return

        source_column = group.prompt_columns[0]
        target_column = group.column_range.special_column
        refs = [cell_ref(column, row) for row in rows for column in (source_column, target_column)]
        values = await asyncio.to_thread(store.batch_get, refs) if refs else {}

        for row in rows:
            if self._stop_requested or self._test_budget_spent():
                break
            source_ref = cell_ref(source_column, row)
            target_ref = cell_ref(target_column, row)
            source = values.get(source_ref, "")
            if not has_answer(source) or values.get(target_ref, "").strip():
                continue
            self._attempted.add(target_ref)
            context = ProduceContext(
                group_id=group.id, row=row, cell=target_ref, source_cell=source_ref, kind=group.worker_kind
            )
            try:
                result = await producer.produce(source, context)
            except Exception as exc:
                self.logger.warning("%s: producer raised: %s", target_ref, exc)
                self._special_failed += 1
                continue
            if not result.success or not result.result_ref:
                self.logger.warning("%s: %s produced nothing: %s", target_ref, group.worker_kind, result.error)
                self._special_failed += 1
                continue
            try:
                await asyncio.to_thread(store.set_cell, target_ref, result.result_ref)
            except StoreError as exc:
                self.logger.error("%s: could not store result reference: %s", target_ref, exc)
                self._special_failed += 1
                continue
            self._completed.add(target_ref)

    # ------------------------------------------------------------------
    def _reset_counters(self) -> None:
        self._attempted: Set[str] = set()
        self._completed: Set[str] = set()
        self._unresolved: Set[str] = set()
        self._run_groups: Set[str] = set()
        self._selected: Set[str] = set()
        self._special_failed = 0
        self._test_mode = False

    def _summary(self, elapsed: float, halted: Optional[str]) -> RunSummary:
        outstanding = sum(len(self.retry_manager.outstanding(group_id)) for group_id in self._run_groups)
        failed = outstanding + len(self._unresolved) + self._special_failed
        incomplete = sorted(self._selected - self.processed_group_keys)
        # test mode stops early on purpose
        finished = self._test_mode or not incomplete
        return RunSummary(
            success=halted is None and failed == 0 and finished,
            total=len(self._attempted),
            completed=len(self._completed),
            failed=failed,
            total_time=elapsed,
            halted_group=halted,
            processed_groups=sorted(self.processed_group_keys),
            incomplete_groups=incomplete,
            unresolved_cells=sorted(self._unresolved),
        )

    def _log_summary(self, summary: RunSummary) -> None:
        self.logger.info("=== RUN SUMMARY ===")
        self.logger.info(
            "Tasks: %d total, %d completed, %d failed in %.1fs",
            summary.total,
            summary.completed,
            summary.failed,
            summary.total_time,
        )
        self.logger.info("Groups processed: %s", ", ".join(summary.processed_groups) or "none")
        if summary.incomplete_groups:
            self.logger.warning("Groups left unprocessed: %s", ", ".join(summary.incomplete_groups))
        if summary.unresolved_cells:
            self.logger.warning("Cells still leased elsewhere: %s", ", ".join(summary.unresolved_cells))
        if summary.halted_group:
            self.logger.error("Halted at %s after exhausting retries", summary.halted_group)


__all__ = ["GroupScheduler", "SchedulerSettings", "SchedulerStatus", "RunOptions", "GroupOutcome"]
