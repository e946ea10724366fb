"""Runtime wiring for LLMSheetBot."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict, Optional

from .core import (
    ExclusiveControlManager,
    GracefulShutdown,
    GroupScheduler,
    MetricsTracker,
    RetryManager,
    RunOptions,
    SchedulerSettings,
    StructureAnalyzer,
    TaskGenerator,
    has_answer,
)
from .core.retry_manager import DEFAULT_DELAYS
from .models import RunSummary
from .reports import build_producers
from .store import build_store
from .workers import build_registry


class LLMSheetBotRuntime:
    def __init__(self, config: Dict[str, Any], logger, *, worker_id: str, store=None) -> None:
        self.config = config
        self.logger = logger
        self.worker_id = worker_id
        self.store = store
        self.scheduler: Optional[GroupScheduler] = None
        self.metrics = MetricsTracker()

    def build_scheduler(self, store) -> GroupScheduler:
        workers_cfg = self.config.get("workers", {})
        exclusive_cfg = self.config.get("exclusive", {})
        scheduler_cfg = self.config.get("scheduler", {})
        retry_cfg = self.config.get("retry", {})
        structure_cfg = self.config.get("structure", {})
        testing_cfg = self.config.get("testing", {})
        paths = self.config.get("paths", {})

        registry = build_registry(workers_cfg, logger=self.logger.getChild("workers"), dry_run=bool(testing_cfg.get("dry_run")))
        exclusive = ExclusiveControlManager(
            store,
            worker_id=self.worker_id,
            strategy=str(exclusive_cfg.get("strategy", "smart")),
            timeouts=exclusive_cfg.get("timeouts") or None,
            answer_filter=has_answer,
            logger=self.logger.getChild("lease"),
        )
        batch_size = int(scheduler_cfg.get("batch_size", 3))
        generator = TaskGenerator(
            exclusive=exclusive,
            max_batch=batch_size,
            default_models=workers_cfg.get("default_models") or {},
            logger=self.logger.getChild("tasks"),
        )
        return GroupScheduler(
            analyzer=StructureAnalyzer(
                first_work_row=int(structure_cfg.get("first_work_row", 9)),
                max_rows=int(structure_cfg.get("max_rows", 600)),
                default_worker_kind=str(workers_cfg.get("default_kind", "claude")),
                logger=self.logger.getChild("structure"),
            ),
            generator=generator,
            exclusive=exclusive,
            retry_manager=RetryManager(
                delays=retry_cfg.get("delays") or DEFAULT_DELAYS,
                ceiling=int(retry_cfg.get("ceiling", 10)),
                logger=self.logger.getChild("retry"),
            ),
            registry=registry,
            producers=build_producers(
                self.config.get("reports", {}),
                registry=registry,
                report_dir=paths.get("reports") or "reports",
                logger=self.logger.getChild("reports"),
            ),
            metrics=self.metrics,
            settings=SchedulerSettings(
                max_iterations=int(scheduler_cfg.get("max_iterations", 50)),
                poll_interval=float(scheduler_cfg.get("poll_interval", 5.0)),
                batch_size=batch_size,
                fanout_max_slots=int(scheduler_cfg.get("fanout_max_slots", 4)),
                max_batches_per_group=int(scheduler_cfg.get("max_batches_per_group", 100)),
                test_max_tasks=int(testing_cfg.get("max_tasks", 5)),
            ),
            logger=self.logger.getChild("scheduler"),
        )

    async def run(self) -> RunSummary:
        store = self.store or build_store(self.config.get("store", {}), logger=self.logger.getChild("store"))
        self.scheduler = self.build_scheduler(store)
        testing_cfg = self.config.get("testing", {})
        test_mode = bool(testing_cfg.get("enabled"))
        if test_mode:
            self.logger.info("Test mode active: at most %s task(s)", testing_cfg.get("max_tasks"))
        self.logger.info("Worker id %s using %s lease strategy", self.worker_id, self.scheduler.exclusive.strategy)

        shutdown = GracefulShutdown()
        shutdown.on_trigger(self.scheduler.stop)
        shutdown.install()
        try:
            summary = await self.scheduler.run(store, RunOptions(test_mode=test_mode))
        finally:
            shutdown.uninstall()

        self._write_summary(self.config.get("paths", {}).get("summaries"), summary)
        return summary

    def _write_summary(self, directory: Optional[str], summary: RunSummary) -> None:
        if not directory:
            return
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        timestamp = time.strftime("%Y%m%dT%H%M%S", time.gmtime())
        payload = {
            "worker_id": self.worker_id,
            "run": summary.as_dict(),
            "metrics": self.metrics.summary(),
        }
        summary_path = target_dir / f"run-summary-{timestamp}.json"
        tmp_path = summary_path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp_path.replace(summary_path)
        self.logger.info("Run summary written to %s", summary_path)


__all__ = ["LLMSheetBotRuntime"]
