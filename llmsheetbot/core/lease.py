"""Cell-level leases shared between cooperating processes.

Leases are best effort. Two processes can both read a free cell and both write
a marker; the later answer write wins and the result is still a valid answer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping, Optional

from ..errors import ClaimDenied, StoreError, WriteBackFailure
from .markers import LeaseMarker

STRATEGIES = ("smart", "polite", "aggressive")

DEFAULT_TIMEOUTS: Dict[str, float] = {
    "deep research": 40 * 60,
    "agent": 40 * 60,
    "canvas": 10 * 60,
    "web search": 8 * 60,
    "normal": 5 * 60,
    "default": 5 * 60,
}

POLITE_MIN_WAIT = 5 * 60


@dataclass(frozen=True)
class ClaimDecision:
    proceed: bool
    reason: str
    wait_seconds: float = 0.0
    holder: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExclusiveControlManager:
    def __init__(
        self,
        store,
        *,
        worker_id: str,
        strategy: str = "smart",
        timeouts: Mapping[str, float] | None = None,
        answer_filter: Callable[[object], bool] | None = None,
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown lease strategy {strategy!r}; expected one of {STRATEGIES}")
        self.store = store
        self.worker_id = worker_id
        self.strategy = strategy
        self.timeouts = {key.lower(): float(value) for key, value in (timeouts or DEFAULT_TIMEOUTS).items()}
        self.timeouts.setdefault("default", DEFAULT_TIMEOUTS["default"])
        self.answer_filter = answer_filter
        self.clock = clock
        self.logger = logger or logging.getLogger("LLMSheetBot.lease")
        self._held: Dict[str, LeaseMarker] = {}

    # ------------------------------------------------------------------
    def timeout_for(self, function_hint: str | None) -> float:
        hint = (function_hint or "").strip().lower()
        if hint in self.timeouts:
            return self.timeouts[hint]
        for key, value in self.timeouts.items():
            if key != "default" and key in hint:
                return value
        return self.timeouts["default"]

    def is_stale(self, marker: LeaseMarker) -> bool:
        if marker.is_legacy:
            return True
        return marker.age_seconds(self.clock()) >= self.timeout_for(marker.function_hint)

    def recommended_wait(self, marker: LeaseMarker) -> float:
        if marker.is_legacy:
            return 0.0
        return max(0.0, self.timeout_for(marker.function_hint) - marker.age_seconds(self.clock()))

    def is_claimed_by_other(self, cell_value: object) -> bool:
        marker = LeaseMarker.decode(cell_value)
        if marker is None or marker.worker_id == self.worker_id:
            return False
        return not self.is_stale(marker)

    def evaluate(self, cell_value: object, function_hint: str | None = None) -> ClaimDecision:
        """Decide whether this identity may work on a cell holding ``cell_value``."""

        marker = LeaseMarker.decode(cell_value)
        if marker is None:
            return ClaimDecision(True, "free")
        if marker.worker_id == self.worker_id:
            return ClaimDecision(True, "own", holder=marker.worker_id)
        if self.strategy == "aggressive":
            return ClaimDecision(True, "forced", holder=marker.worker_id)
        if self.strategy == "polite":
            wait = max(self.recommended_wait(marker), POLITE_MIN_WAIT)
            return ClaimDecision(False, "polite", wait_seconds=wait, holder=marker.worker_id)
        if self.is_stale(marker):
            return ClaimDecision(True, "stale", holder=marker.worker_id or None)
        return ClaimDecision(False, "active", wait_seconds=self.recommended_wait(marker), holder=marker.worker_id)

    def new_marker(self, function_hint: str | None = None) -> LeaseMarker:
        return LeaseMarker(timestamp=self.clock(), worker_id=self.worker_id, function_hint=function_hint or "")

    # ------------------------------------------------------------------
    async def claim(self, cell: str, function_hint: str | None = None) -> LeaseMarker:
        """Re-read ``cell`` and write our marker.

        Raises :class:`ClaimDenied` when the cell is already answered or
        another worker holds a lease this strategy must respect.
        """

        current = (await asyncio.to_thread(self.store.batch_get, [cell])).get(cell, "")
        if self.answer_filter is not None and self.answer_filter(current):
            self.logger.debug("%s already answered; skipping claim", cell)
            raise ClaimDenied(cell, holder="an existing answer")
        decision = self.evaluate(current, function_hint)
        if not decision.proceed:
            self.logger.info(
                "%s held by %s (%s); recheck in %.0fs", cell, decision.holder, decision.reason, decision.wait_seconds
            )
            raise ClaimDenied(cell, holder=decision.holder, wait_seconds=decision.wait_seconds)
        if decision.reason in ("stale", "forced"):
            self.logger.warning("Reclaiming %s from %s (%s lease)", cell, decision.holder or "unknown", decision.reason)
        marker = self.new_marker(function_hint)
        await asyncio.to_thread(self.store.set_cell, cell, marker.encode())
        self._held[cell] = marker
        return marker

    async def try_claim(self, cell: str, function_hint: str | None = None) -> bool:
        try:
            await self.claim(cell, function_hint)
        except ClaimDenied:
            return False
        return True

    async def release(self, cell: str, final_value: str) -> None:
        """Overwrite our marker with the final value."""

        try:
            await asyncio.to_thread(self.store.set_cell, cell, final_value)
        except StoreError as exc:
            raise WriteBackFailure(f"{cell}: {exc}") from exc
        self._held.pop(cell, None)

    async def abandon(self, cell: str) -> None:
        """Clear our marker after a failure, leaving foreign values untouched."""

        if cell not in self._held:
            return
        current = (await asyncio.to_thread(self.store.batch_get, [cell])).get(cell, "")
        marker = LeaseMarker.decode(current)
        if marker is not None and marker.worker_id == self.worker_id:
            await asyncio.to_thread(self.store.set_cell, cell, "")
        self._held.pop(cell, None)

    def held_cells(self) -> Dict[str, LeaseMarker]:
        return dict(self._held)


__all__ = ["ExclusiveControlManager", "ClaimDecision", "DEFAULT_TIMEOUTS", "STRATEGIES"]
