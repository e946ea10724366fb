"""Discover task groups from the control rows of a sheet."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Sequence, Tuple

from ..cells import index_to_column
from ..errors import StructuralError
from ..models import (
    AnswerColumn,
    ColumnControl,
    ColumnRange,
    ControlMode,
    ControlRows,
    GroupType,
    RowControl,
    RowRange,
    StructureSnapshot,
    TaskGroup,
)

HEADER_SCAN_ROWS = 10
DEFAULT_FUNCTION = "normal"
DEFAULT_FUNCTION_ALIASES = frozenset({"", "normal", "通常"})

_ROW_LABELS = {
    "menu": ("menu", "メニュー"),
    "ai": ("ai",),
    "model": ("model", "モデル"),
    "function": ("function", "機能"),
}
_LOG_HEADERS = ("log", "ログ")
_PROMPT_HEADERS = ("prompt", "プロンプト")
_ANSWER_HEADERS = ("answer", "回答", "答")
_REPORT_HEADERS = ("report", "レポート化")
_SIDE_EFFECT_HEADERS = {
    "genspark-slides": (("genspark",), ("slide", "スライド")),
    "genspark-factcheck": (("genspark",), ("fact", "ファクト")),
}
KNOWN_WORKER_KINDS = {
    "chatgpt": ("chatgpt", "gpt"),
    "claude": ("claude",),
    "gemini": ("gemini",),
    "genspark": ("genspark",),
}
_FANOUT_RE = re.compile(r"(\d+)\s*(kinds?|種類)")

_ROW_CONTROLS = {
    ControlMode.ONLY: ("process only this row", "この行のみ処理"),
    ControlMode.FROM: ("process from this row", "この行から処理"),
    ControlMode.UNTIL: ("stop at this row", "この行で停止"),
}
_COLUMN_CONTROLS = {
    ControlMode.ONLY: ("process only this column", "この列のみ処理"),
    ControlMode.FROM: ("process from this column", "この列から処理"),
    ControlMode.UNTIL: ("stop at this column", "この列で停止"),
}


def _norm(value: object) -> str:
    return str(value or "").strip().casefold()


def _contains_any(text: str, needles: Iterable[str]) -> bool:
    return any(needle in text for needle in needles)


def detect_worker_kind(text: object) -> Optional[str]:
    value = _norm(text)
    if not value:
        return None
    for kind, needles in KNOWN_WORKER_KINDS.items():
        if _contains_any(value, needles):
            return kind
    return None


def fanout_width(text: object) -> int:
    """Return N for AI cells such as ``"3 kinds"``, otherwise 0."""

    match = _FANOUT_RE.search(_norm(text))
    return int(match.group(1)) if match else 0


@dataclass
class _GroupDraft:
    log_column: Optional[int] = None
    prompt_columns: List[int] = field(default_factory=list)
    answer_columns: List[int] = field(default_factory=list)

    def anchor(self) -> int:
        if self.log_column is not None:
            return self.log_column
        if self.prompt_columns:
            return self.prompt_columns[0]
        return self.answer_columns[0]


class StructureAnalyzer:
    """Parse control rows into :class:`TaskGroup` descriptors.

    The analyzer is stateless; the scheduler calls it on every iteration so
    columns inserted mid-run are picked up.
    """

    def __init__(
        self,
        *,
        first_work_row: int = 9,
        max_rows: int = 600,
        default_worker_kind: str = "claude",
        logger: logging.Logger | None = None,
    ) -> None:
        self.first_work_row = first_work_row
        self.max_rows = max_rows
        self.default_worker_kind = default_worker_kind
        self.logger = logger or logging.getLogger("LLMSheetBot.structure")

    def analyze(self, store) -> StructureSnapshot:
        return self.analyze_values(store.get_values())

    def analyze_values(self, values: Sequence[Sequence[str]]) -> StructureSnapshot:
        control_rows = self._find_control_rows(values)
        groups = self._build_groups(values, control_rows)
        row_count = min(len(values), self.max_rows)
        start = max(control_rows.last() + 2, self.first_work_row)
        snapshot = StructureSnapshot(
            control_rows=control_rows,
            task_groups=tuple(groups),
            work_row_range=RowRange(start, max(row_count, start - 1)),
            row_controls=tuple(self._row_controls(values, row_count)),
            column_controls=tuple(self._column_controls(values)),
            row_count=row_count,
        )
        self.logger.debug(
            "Structure: %d group(s), work rows %d-%d",
            len(snapshot.task_groups),
            snapshot.work_row_range.start,
            snapshot.work_row_range.end,
        )
        return snapshot

    # ------------------------------------------------------------------
    def _find_control_rows(self, values: Sequence[Sequence[str]]) -> ControlRows:
        found = {}
        for index, row in enumerate(values[:HEADER_SCAN_ROWS]):
            label = _norm(row[0]) if row else ""
            for key, aliases in _ROW_LABELS.items():
                if key not in found and label in aliases:
                    found[key] = index
        missing = [key for key in ("menu", "ai") if key not in found]
        if missing:
            raise StructuralError(f"Control row(s) not found in column A: {', '.join(missing)}")
        return ControlRows(
            menu=found["menu"],
            ai=found["ai"],
            model=found.get("model"),
            function=found.get("function"),
        )

    def _build_groups(self, values: Sequence[Sequence[str]], control_rows: ControlRows) -> List[TaskGroup]:
        menu = values[control_rows.menu]
        groups: List[TaskGroup] = []
        draft: Optional[_GroupDraft] = None

        def close() -> None:
            nonlocal draft
            if draft is not None:
                group = self._finish(draft, values, control_rows, groups)
                if group is not None:
                    groups.append(group)
            draft = None

        for column in range(1, len(menu)):
            header = _norm(menu[column])
            if not header:
                continue
            special = self._special_kind(header)
            if special is not None:
                close()
                groups.append(self._special_group(column, special, groups))
            elif _contains_any(header, _LOG_HEADERS):
                close()
                draft = _GroupDraft(log_column=column)
            elif _contains_any(header, _PROMPT_HEADERS):
                if draft is None or draft.answer_columns:
                    close()
                    draft = _GroupDraft()
                draft.prompt_columns.append(column)
            elif _contains_any(header, _ANSWER_HEADERS):
                if draft is None or not draft.prompt_columns:
                    self.logger.warning("Answer column %s has no prompt column; ignored", index_to_column(column))
                    continue
                draft.answer_columns.append(column)
        close()
        return groups

    def _special_kind(self, header: str) -> Optional[Tuple[GroupType, str]]:
        if _contains_any(header, _REPORT_HEADERS):
            return GroupType.REPORT, "report"
        for kind, (names, variants) in _SIDE_EFFECT_HEADERS.items():
            if _contains_any(header, names) and _contains_any(header, variants):
                return GroupType.SIDE_EFFECT, kind
        return None

    def _special_group(self, column: int, special: Tuple[GroupType, str], groups: List[TaskGroup]) -> TaskGroup:
        group_type, kind = special
        return TaskGroup(
            id=f"group@{index_to_column(column)}",
            sequence_order=len(groups),
            column_range=ColumnRange(
                prompt_columns=(column - 1,),
                answer_columns=(),
                special_column=column,
            ),
            group_type=group_type,
            worker_kind=kind,
            dependencies=(groups[-1].id,) if groups else (),
        )

    def _finish(
        self,
        draft: _GroupDraft,
        values: Sequence[Sequence[str]],
        control_rows: ControlRows,
        groups: List[TaskGroup],
    ) -> Optional[TaskGroup]:
        group_id = f"group@{index_to_column(draft.anchor())}"
        if not draft.answer_columns:
            self.logger.info("Dropping %s: no answer columns", group_id)
            return None

        ai_row = values[control_rows.ai]
        ai_cells = [_cell(ai_row, col) for col in [draft.log_column, *draft.prompt_columns] if col is not None]
        ai_value = next((value for value in ai_cells if value), "")
        width = fanout_width(ai_value)
        group_kind = detect_worker_kind(ai_value) or _norm(ai_value) or self.default_worker_kind
        if width:
            group_kind = "fanout"

        answers: List[AnswerColumn] = []
        menu = values[control_rows.menu]
        for column in draft.answer_columns:
            label = _cell(menu, column)
            kind = (
                detect_worker_kind(label)
                or detect_worker_kind(_cell(ai_row, column))
                or (None if width else group_kind)
            )
            if kind is None:
                self.logger.warning(
                    "Dropping %s: cannot tell which worker answers column %s", group_id, index_to_column(column)
                )
                return None
            model_hint, feature_hint = self._hints(values, control_rows, draft.prompt_columns[0], column)
            answers.append(AnswerColumn(column, label, kind, model_hint=model_hint, feature_hint=feature_hint))

        if width:
            kinds = {answer.worker_kind for answer in answers}
            if len(answers) != width or len(kinds) != width:
                self.logger.warning(
                    "Dropping %s: fan-out expects %d distinct workers, found %s",
                    group_id,
                    width,
                    [answer.worker_kind for answer in answers],
                )
                return None

        return TaskGroup(
            id=group_id,
            sequence_order=len(groups),
            column_range=ColumnRange(
                prompt_columns=tuple(draft.prompt_columns),
                answer_columns=tuple(answers),
                log_column=draft.log_column,
            ),
            group_type=GroupType.FANOUT if width else GroupType.SINGLE,
            worker_kind=group_kind,
            dependencies=(groups[-1].id,) if groups else (),
            expected_kinds=width or 1,
        )

    @staticmethod
    def _hints(
        values: Sequence[Sequence[str]],
        control_rows: ControlRows,
        prompt_column: int,
        answer_column: int,
    ) -> Tuple[str, str]:
        def at(row_index: Optional[int], column: int) -> str:
            if row_index is None:
                return ""
            return _cell(values[row_index], column)

        feature = at(control_rows.function, answer_column) or at(control_rows.function, prompt_column) or DEFAULT_FUNCTION
        if _norm(feature) in DEFAULT_FUNCTION_ALIASES:
            model = at(control_rows.model, prompt_column) or at(control_rows.model, answer_column)
        else:
            model = at(control_rows.model, answer_column) or at(control_rows.model, prompt_column)
        return model, feature

    # ------------------------------------------------------------------
    def _row_controls(self, values: Sequence[Sequence[str]], row_count: int) -> List[RowControl]:
        controls: List[RowControl] = []
        for index, row in enumerate(values[:row_count]):
            text = _norm(_cell(row, 1))
            if not text:
                continue
            for mode, phrases in _ROW_CONTROLS.items():
                if _contains_any(text, phrases):
                    controls.append(RowControl(mode, index + 1))
                    break
        return controls

    def _column_controls(self, values: Sequence[Sequence[str]]) -> List[ColumnControl]:
        controls: List[ColumnControl] = []
        for row in values[:HEADER_SCAN_ROWS]:
            for column, raw in enumerate(row):
                text = _norm(raw)
                if not text:
                    continue
                for mode, phrases in _COLUMN_CONTROLS.items():
                    if _contains_any(text, phrases):
                        controls.append(ColumnControl(mode, column))
                        break
        return controls


def _cell(row: Sequence[str], column: int) -> str:
    if column < len(row) and row[column] is not None:
        return str(row[column]).strip()
    return ""


def work_rows(snapshot: StructureSnapshot) -> List[int]:
    """Rows to process after applying row controls."""

    rows = list(snapshot.work_row_range)
    only = {control.row for control in snapshot.row_controls if control.mode is ControlMode.ONLY}
    if only:
        return [row for row in rows if row in only]
    starts = [control.row for control in snapshot.row_controls if control.mode is ControlMode.FROM]
    stops = [control.row for control in snapshot.row_controls if control.mode is ControlMode.UNTIL]
    first = max(starts) if starts else rows[0] if rows else 0
    last = min(stops) if stops else rows[-1] if rows else -1
    return [row for row in rows if first <= row <= last]


def select_groups(snapshot: StructureSnapshot) -> List[TaskGroup]:
    """Groups permitted by column controls.

    Dependencies on groups excluded by a control are dropped, since the user
    asked to start past them.
    """

    groups = list(snapshot.task_groups)
    controls = snapshot.column_controls
    only = {control.column_index for control in controls if control.mode is ControlMode.ONLY}
    if only:
        groups = [group for group in groups if any(group.contains_column(column) for column in only)]
    else:
        starts = [control.column_index for control in controls if control.mode is ControlMode.FROM]
        stops = [control.column_index for control in controls if control.mode is ControlMode.UNTIL]
        if starts:
            first = max(starts)
            groups = [group for group in groups if max(group.column_range.all_columns()) >= first]
        if stops:
            last = min(stops)
            groups = [group for group in groups if min(group.column_range.all_columns()) <= last]
    kept = {group.id for group in groups}
    return [
        replace(group, dependencies=tuple(dep for dep in group.dependencies if dep in kept))
        for group in groups
    ]


__all__ = [
    "StructureAnalyzer",
    "work_rows",
    "select_groups",
    "detect_worker_kind",
    "fanout_width",
    "DEFAULT_FUNCTION",
    "KNOWN_WORKER_KINDS",
]
