from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from llmsheetbot.config import DEFAULT_CONFIG, deep_merge
from llmsheetbot.core.metrics import MetricsTracker
from llmsheetbot.core.retry_manager import DEFAULT_DELAYS
from llmsheetbot.models import Task
from llmsheetbot.reports import (
    FileReportProducer,
    ProduceContext,
    WorkerBackedProducer,
    build_producers,
)
from llmsheetbot.runtime import LLMSheetBotRuntime
from llmsheetbot.store import InMemoryStore
from llmsheetbot.workers import EchoAdapter, WorkerRegistry
from llmsheetbot.workers.base import DispatchResult

from conftest import StubAdapter, make_registry


def runtime_config(tmp_path: Path, **overrides) -> dict:
    base = {
        "testing": {"dry_run": True},
        "scheduler": {"poll_interval": 0},
        "paths": {"summaries": str(tmp_path / "summaries"), "reports": str(tmp_path / "reports")},
    }
    return deep_merge(deep_merge(DEFAULT_CONFIG, base), overrides)


def test_dry_run_answers_with_echo_worker_and_writes_summary(tmp_path: Path, two_group_store: InMemoryStore) -> None:
    runtime = LLMSheetBotRuntime(
        runtime_config(tmp_path),
        logging.getLogger("test-runtime"),
        worker_id="desk-1",
        store=two_group_store,
    )

    summary = asyncio.run(runtime.run())

    assert summary.success is True
    assert two_group_store.value("E9") == "[dry-run:claude] What is A?"
    assert two_group_store.value("H11") == "[dry-run:chatgpt] Summarise C"
    (summary_file,) = (tmp_path / "summaries").glob("run-summary-*.json")
    payload = json.loads(summary_file.read_text(encoding="utf-8"))
    assert payload["worker_id"] == "desk-1"
    assert payload["run"]["completed"] == 5
    assert payload["metrics"]["total_dispatches"] == 5
    assert payload["metrics"]["workers"]["claude"]["statuses"] == {"completed": 2}


def test_test_mode_limits_the_run(tmp_path: Path, two_group_store: InMemoryStore) -> None:
    config = runtime_config(tmp_path, testing={"enabled": True, "max_tasks": 2})
    runtime = LLMSheetBotRuntime(config, logging.getLogger("test-runtime"), worker_id="desk-1", store=two_group_store)

    summary = asyncio.run(runtime.run())

    assert summary.total == 2
    assert two_group_store.value("H9") == ""


def test_file_report_producer_writes_markdown(tmp_path: Path) -> None:
    producer = FileReportProducer(tmp_path / "reports", logger=logging.getLogger("test"))
    context = ProduceContext(group_id="group@E", row=9, cell="E9", source_cell="D9", kind="report")

    result = asyncio.run(producer.produce("  The answer.  ", context))

    assert result.success is True
    path = Path(result.result_ref)
    assert path.name.startswith("group-E-E9-")
    assert path.read_text(encoding="utf-8") == "# Report for D9\n\nThe answer.\n"


def test_worker_backed_producer_returns_worker_reply() -> None:
    adapter = StubAdapter(lambda task: f"slides from: {task.prompt_text.splitlines()[-1]}")
    producer = WorkerBackedProducer(
        make_registry(adapter),
        worker_kind="genspark",
        instruction="Make slides.",
        logger=logging.getLogger("test"),
    )
    context = ProduceContext(group_id="group@F", row=9, cell="F9", source_cell="E9", kind="genspark-slides")

    result = asyncio.run(producer.produce("answer text", context))

    assert result.success is True
    assert result.result_ref == "slides from: answer text"
    assert adapter.calls[0].prompt_text == "Make slides.\n\nanswer text"
    assert adapter.closed == ["handle:genspark"]


def test_worker_backed_producer_reports_failures() -> None:
    adapter = StubAdapter(lambda task: DispatchResult(False, error="quota"))
    producer = WorkerBackedProducer(
        make_registry(adapter), worker_kind="genspark", instruction="x", logger=logging.getLogger("test")
    )
    context = ProduceContext(group_id="group@F", row=9, cell="F9", source_cell="E9", kind="genspark-factcheck")

    result = asyncio.run(producer.produce("answer text", context))

    assert result.success is False
    assert result.error == "quota"


def test_build_producers_registers_report_and_side_effect_kinds(tmp_path: Path) -> None:
    registry = WorkerRegistry()
    registry.register("*", EchoAdapter())

    producers = build_producers(
        {"side_effects": {"genspark-slides": {"worker_kind": "claude", "instruction": "Outline it."}}},
        registry=registry,
        report_dir=tmp_path,
        logger=logging.getLogger("test"),
    )

    assert isinstance(producers.producer_for("report"), FileReportProducer)
    slides = producers.producer_for("genspark-slides")
    assert slides.worker_kind == "claude"
    assert slides.instruction == "Outline it."
    assert producers.producer_for("genspark-factcheck").worker_kind == "genspark"


def test_metrics_summary_groups_by_worker() -> None:
    metrics = MetricsTracker()
    metrics.record("claude", 1.0, status="completed", tokens=10)
    metrics.record("claude", 3.0, status="failed")
    metrics.record("chatgpt", 2.0, status="completed", tokens=5)

    summary = metrics.summary()

    assert summary["total_dispatches"] == 3
    assert list(summary["workers"]) == ["chatgpt", "claude"]
    assert summary["workers"]["claude"] == {
        "dispatches": 2,
        "statuses": {"completed": 1, "failed": 1},
        "tokens": 10,
        "avg_elapsed": 2.0,
    }


def test_task_retry_keeps_the_cell_and_bumps_attempt() -> None:
    task = Task(
        group_id="group@C",
        row=9,
        column_index=4,
        worker_kind="claude",
        model_hint="",
        feature_hint="normal",
        prompt_text="q",
    )

    retried = task.retry()

    assert retried.cell == task.cell == "E9"
    assert retried.attempt == 2
    assert retried.id != task.id


def test_retry_delays_fall_back_to_the_default_table(tmp_path: Path) -> None:
    config = runtime_config(tmp_path)
    config["retry"] = {"ceiling": 4}
    runtime = LLMSheetBotRuntime(config, logging.getLogger("test-runtime"), worker_id="desk-1")

    scheduler = runtime.build_scheduler(InMemoryStore())

    assert scheduler.retry_manager.delays == tuple(float(delay) for delay in DEFAULT_DELAYS)
    assert scheduler.retry_manager.ceiling == 4
