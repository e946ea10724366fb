"""Build bounded batches of pending tasks for a group."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from ..cells import cell_ref
from ..models import AnswerColumn, Task, TaskGroup, TaskKind
from .answers import has_answer
from .lease import ClaimDecision, ExclusiveControlManager

PROMPT_JOINER = "\n\n"


@dataclass(frozen=True)
class CellState:
    """Snapshot of one answer cell that still lacks an answer."""

    task: Task
    value: str
    decision: ClaimDecision

    @property
    def held_elsewhere(self) -> bool:
        return not self.decision.proceed


class TaskGenerator:
    def __init__(
        self,
        *,
        exclusive: ExclusiveControlManager,
        max_batch: int = 3,
        default_models: Mapping[str, str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if max_batch <= 0:
            raise ValueError("max_batch must be positive")
        self.exclusive = exclusive
        self.max_batch = max_batch
        self.default_models = dict(default_models or {})
        self.logger = logger or logging.getLogger("LLMSheetBot.tasks")
        self.processed_answer_cells: Set[str] = set()
        self.waiting: Dict[str, ClaimDecision] = {}

    async def scan(
        self,
        store,
        group: TaskGroup,
        row_range: Iterable[int],
        limit: Optional[int] = None,
    ) -> List[Task]:
        """Return up to ``limit`` new tasks, lower rows first.

        Emitted cells are remembered so the same cell is never emitted twice
        by this process. Cells leased by another live worker are skipped and
        noted in ``waiting``.
        """

        limit = self.max_batch if limit is None else limit
        tasks: List[Task] = []
        for state in await self.pending(store, group, row_range, skip_processed=True):
            cell = state.task.cell
            if state.held_elsewhere:
                self.waiting[cell] = state.decision
                continue
            self.waiting.pop(cell, None)
            self.processed_answer_cells.add(cell)
            tasks.append(state.task)
            if len(tasks) >= limit:
                break
        if tasks:
            self.logger.debug("%s: emitted %d task(s) from row %d", group.id, len(tasks), tasks[0].row)
        return tasks

    def reset(self) -> None:
        self.processed_answer_cells.clear()
        self.waiting.clear()

    async def recheck_waiting(
        self,
        store,
        group: TaskGroup,
        row_range: Iterable[int],
    ) -> Tuple[List[Task], List[CellState]]:
        """Re-read cells of ``group`` that were leased by other workers.

        Returns tasks for waiting cells that can now be claimed, and the
        states of cells still held elsewhere. Answered cells drop out.
        """

        ready: List[Task] = []
        held: List[CellState] = []
        for state in await self.pending(store, group, row_range):
            cell = state.task.cell
            if state.held_elsewhere:
                self.waiting[cell] = state.decision
                held.append(state)
            elif cell in self.waiting:
                del self.waiting[cell]
                self.processed_answer_cells.add(cell)
                ready.append(state.task)
        return ready, held

    async def pending(
        self,
        store,
        group: TaskGroup,
        row_range: Iterable[int],
        *,
        skip_processed: bool = False,
    ) -> List[CellState]:
        """Every unanswered answer cell of ``group`` that has a prompt."""

        rows = list(row_range)
        if not rows or not group.answer_columns:
            return []
        prompt_refs = [cell_ref(col, row) for row in rows for col in group.prompt_columns]
        prompts = await asyncio.to_thread(store.batch_get, prompt_refs) if prompt_refs else {}

        candidates: List[tuple] = []
        for row in rows:
            parts = [prompts.get(cell_ref(col, row), "").strip() for col in group.prompt_columns]
            text = PROMPT_JOINER.join(part for part in parts if part)
            if not text:
                continue
            for answer in group.answer_columns:
                ref = cell_ref(answer.index, row)
                if skip_processed and ref in self.processed_answer_cells:
                    continue
                candidates.append((row, answer, text, ref))
        if not candidates:
            return []

        answers = await asyncio.to_thread(store.batch_get, [ref for *_, ref in candidates])
        states: List[CellState] = []
        for row, answer, text, ref in candidates:
            value = answers.get(ref, "")
            if has_answer(value):
                continue
            task = self._build_task(group, answer, row, text)
            states.append(CellState(task=task, value=value, decision=self.exclusive.evaluate(value, task.feature_hint)))
        return states

    def _build_task(self, group: TaskGroup, answer: AnswerColumn, row: int, prompt_text: str) -> Task:
        return Task(
            group_id=group.id,
            row=row,
            column_index=answer.index,
            worker_kind=answer.worker_kind,
            model_hint=answer.model_hint or self.default_models.get(answer.worker_kind, ""),
            feature_hint=answer.feature_hint,
            prompt_text=prompt_text,
            kind=TaskKind.DEPENDENT if group.dependencies else TaskKind.PRIMARY,
        )


__all__ = ["TaskGenerator", "CellState", "PROMPT_JOINER"]
