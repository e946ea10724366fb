"""Lease marker codec.

A marker is written into an answer cell while a worker owns it::

    Currently processing | 2026-10-19T09:22:00+00:00 | host-3f2a1c | Deep Research

``LeaseMarker.encode`` and ``LeaseMarker.decode`` are the only functions that
know this layout.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

MARKER_PREFIX = "Currently processing"
SEPARATOR = " | "


@dataclass(frozen=True)
class LeaseMarker:
    timestamp: Optional[datetime]
    worker_id: str
    function_hint: str = ""

    @property
    def is_legacy(self) -> bool:
        """Markers without a parseable timestamp or owner."""

        return self.timestamp is None or not self.worker_id

    def age_seconds(self, now: datetime) -> float:
        if self.timestamp is None:
            return float("inf")
        return max(0.0, (now - self.timestamp).total_seconds())

    def encode(self) -> str:
        if self.timestamp is None:
            raise ValueError("Cannot encode a marker without a timestamp")
        parts = [MARKER_PREFIX, self.timestamp.astimezone(timezone.utc).isoformat(timespec="seconds"), self.worker_id]
        if self.function_hint:
            parts.append(self.function_hint)
        return SEPARATOR.join(parts)

    @classmethod
    def decode(cls, value: object) -> Optional["LeaseMarker"]:
        """Parse a cell value; ``None`` when it is not a marker at all."""

        if not isinstance(value, str):
            return None
        text = value.strip()
        if not text.startswith(MARKER_PREFIX):
            return None
        parts = [part.strip() for part in text.split(SEPARATOR.strip())]
        if len(parts) < 3 or parts[0] != MARKER_PREFIX:
            return cls(timestamp=None, worker_id="")
        try:
            timestamp = datetime.fromisoformat(parts[1])
        except ValueError:
            return cls(timestamp=None, worker_id="")
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        function_hint = SEPARATOR.join(parts[3:]) if len(parts) > 3 else ""
        return cls(timestamp=timestamp, worker_id=parts[2], function_hint=function_hint)


def is_lease_marker(value: object) -> bool:
    return LeaseMarker.decode(value) is not None


__all__ = ["LeaseMarker", "MARKER_PREFIX", "SEPARATOR", "is_lease_marker"]
