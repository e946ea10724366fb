"""Per-worker dispatch statistics."""

from __future__ import annotations

from dataclasses import dataclass
from statistics import mean
from typing import Dict, List


@dataclass
class DispatchRecord:
    worker_kind: str
    elapsed: float
    status: str
    tokens: int = 0


class MetricsTracker:
    def __init__(self) -> None:
        self.records: List[DispatchRecord] = []

    def record(self, worker_kind: str, elapsed: float, *, status: str, tokens: int = 0) -> None:
        self.records.append(
            DispatchRecord(worker_kind=worker_kind, elapsed=float(elapsed), status=status, tokens=int(tokens))
        )

    def summary(self) -> Dict[str, object]:
        per_kind: Dict[str, Dict[str, object]] = {}
        for record in self.records:
            bucket = per_kind.setdefault(record.worker_kind, {"statuses": {}, "elapsed": [], "tokens": 0})
            statuses = bucket["statuses"]
            statuses[record.status] = statuses.get(record.status, 0) + 1
            bucket["elapsed"].append(record.elapsed)
            bucket["tokens"] += record.tokens
        workers: Dict[str, object] = {}
        for kind, data in sorted(per_kind.items()):
            elapsed_values = data["elapsed"]
            workers[kind] = {
                "dispatches": len(elapsed_values),
                "statuses": dict(sorted(data["statuses"].items())),
                "tokens": data["tokens"],
                "avg_elapsed": round(mean(elapsed_values), 3) if elapsed_values else 0.0,
            }
        return {"total_dispatches": len(self.records), "workers": workers}


__all__ = ["MetricsTracker", "DispatchRecord"]
