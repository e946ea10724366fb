"""Data structures shared by the analyzer, generator, pool and scheduler."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .cells import cell_ref, index_to_column


class GroupType(str, Enum):
    SINGLE = "single"
    FANOUT = "fanout3"
    REPORT = "report"
    SIDE_EFFECT = "sideEffect"

    @property
    def is_special(self) -> bool:
        return self in (GroupType.REPORT, GroupType.SIDE_EFFECT)


class TaskKind(str, Enum):
    PRIMARY = "primary"
    DEPENDENT = "dependent"


class TaskStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    EMPTY = "empty"
    RESPONSE_FAILED = "responseFailed"
    CLAIM_DENIED = "claimDenied"


class ControlMode(str, Enum):
    FROM = "from"
    UNTIL = "until"
    ONLY = "only"


@dataclass(frozen=True)
class AnswerColumn:
    index: int
    label: str
    worker_kind: str
    model_hint: str = ""
    feature_hint: str = ""

    @property
    def letter(self) -> str:
        return index_to_column(self.index)


@dataclass(frozen=True)
class ColumnRange:
    prompt_columns: Tuple[int, ...]
    answer_columns: Tuple[AnswerColumn, ...]
    log_column: Optional[int] = None
    special_column: Optional[int] = None

    def all_columns(self) -> Tuple[int, ...]:
        columns = list(self.prompt_columns) + [answer.index for answer in self.answer_columns]
        if self.log_column is not None:
            columns.append(self.log_column)
        if self.special_column is not None:
            columns.append(self.special_column)
        return tuple(sorted(columns))


@dataclass(frozen=True)
class TaskGroup:
    """A contiguous block of prompt/answer columns processed as one unit."""

    id: str
    sequence_order: int
    column_range: ColumnRange
    group_type: GroupType
    worker_kind: str
    dependencies: Tuple[str, ...] = ()
    expected_kinds: int = 1

    @property
    def answer_columns(self) -> Tuple[AnswerColumn, ...]:
        return self.column_range.answer_columns

    @property
    def prompt_columns(self) -> Tuple[int, ...]:
        return self.column_range.prompt_columns

    def contains_column(self, column_index: int) -> bool:
        return column_index in self.column_range.all_columns()


@dataclass(frozen=True)
class RowRange:
    """Inclusive 1-based row window."""

    start: int
    end: int

    def __iter__(self):
        return iter(range(self.start, self.end + 1))

    def __len__(self) -> int:
        return max(0, self.end - self.start + 1)


@dataclass(frozen=True)
class ControlRows:
    """0-based indices of the label rows found in column A."""

    menu: int
    ai: int
    model: Optional[int] = None
    function: Optional[int] = None

    def last(self) -> int:
        return max(value for value in (self.menu, self.ai, self.model, self.function) if value is not None)


@dataclass(frozen=True)
class RowControl:
    mode: ControlMode
    row: int


@dataclass(frozen=True)
class ColumnControl:
    mode: ControlMode
    column_index: int


@dataclass(frozen=True)
class StructureSnapshot:
    control_rows: ControlRows
    task_groups: Tuple[TaskGroup, ...]
    work_row_range: RowRange
    row_controls: Tuple[RowControl, ...] = ()
    column_controls: Tuple[ColumnControl, ...] = ()
    row_count: int = 0

    def group(self, group_id: str) -> Optional[TaskGroup]:
        for group in self.task_groups:
            if group.id == group_id:
                return group
        return None


def _task_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class Task:
    """One prompt/answer cell pair awaiting a worker."""

    group_id: str
    row: int
    column_index: int
    worker_kind: str
    model_hint: str
    feature_hint: str
    prompt_text: str
    kind: TaskKind = TaskKind.PRIMARY
    attempt: int = 1
    id: str = field(default_factory=_task_id)
    created_at: float = field(default_factory=time.time)

    @property
    def column(self) -> str:
        return index_to_column(self.column_index)

    @property
    def cell(self) -> str:
        return cell_ref(self.column_index, self.row)

    def retry(self) -> "Task":
        return replace(self, id=_task_id(), created_at=time.time(), attempt=self.attempt + 1)


@dataclass
class TaskOutcome:
    task: Task
    status: TaskStatus
    output: str = ""
    error: Optional[str] = None
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is TaskStatus.COMPLETED


@dataclass
class RunSummary:
    success: bool
    total: int = 0
    completed: int = 0
    failed: int = 0
    total_time: float = 0.0
    halted_group: Optional[str] = None
    processed_groups: List[str] = field(default_factory=list)
    incomplete_groups: List[str] = field(default_factory=list)
    unresolved_cells: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "success": self.success,
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "total_time": round(self.total_time, 3),
            "halted_group": self.halted_group,
            "processed_groups": list(self.processed_groups),
            "incomplete_groups": list(self.incomplete_groups),
            "unresolved_cells": list(self.unresolved_cells),
        }


__all__ = [
    "GroupType",
    "TaskKind",
    "TaskStatus",
    "ControlMode",
    "AnswerColumn",
    "ColumnRange",
    "TaskGroup",
    "RowRange",
    "ControlRows",
    "RowControl",
    "ColumnControl",
    "StructureSnapshot",
    "Task",
    "TaskOutcome",
    "RunSummary",
]
