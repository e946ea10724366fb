"""Classification of answer cell contents."""

from __future__ import annotations

import re

from .markers import is_lease_marker

# Values that occupy a cell without being an answer. Compared case-insensitively.
PLACEHOLDER_VALUES = frozenset(
    value.casefold()
    for value in (
        "please wait...",
        "please wait",
        "processing",
        "processing complete",
        "todo",
        "pending",
        "-",
        "n/a",
        "unanswered",
        "unprocessed",
        "error",
        "未回答",
        "未処理",
        "処理中",
        "処理完了",
        "エラー",
        "お待ちください...",
    )
)

_BRACKETED = re.compile(r"^(\[[^\]]*\]|\{\{[^}]*\}\})$")
_ERROR_PREFIXES = ("error:", "エラー:")


def is_placeholder(value: str) -> bool:
    text = value.strip()
    if text.casefold() in PLACEHOLDER_VALUES:
        return True
    if _BRACKETED.match(text):
        return True
    return text.casefold().startswith(_ERROR_PREFIXES)


def has_answer(value: object) -> bool:
    """Return True when ``value`` is a usable answer.

    Blank cells, placeholder/pending/error markers and lease markers all count
    as "no answer". The result depends on the value alone.
    """

    if value is None:
        return False
    text = str(value).strip()
    if not text:
        return False
    if is_lease_marker(text):
        return False
    return not is_placeholder(text)


__all__ = ["has_answer", "is_placeholder", "PLACEHOLDER_VALUES"]
