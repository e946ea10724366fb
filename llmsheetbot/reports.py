"""Side-effect producers for report and side-effect groups."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

from .errors import SheetBotError
from .models import Task

_SAFE = re.compile(r"[^A-Za-z0-9_.-]+")

DEFAULT_INSTRUCTIONS = {
    "genspark-slides": "Turn the following answer into an outline for a short slide deck.",
    "genspark-factcheck": "Fact-check the following answer. List each claim with a verdict.",
}


@dataclass(frozen=True)
class ProduceContext:
    group_id: str
    row: int
    cell: str
    source_cell: str
    kind: str


@dataclass(frozen=True)
class ProducerResult:
    success: bool
    result_ref: str = ""
    error: Optional[str] = None


class SideEffectProducer(Protocol):
    async def produce(self, source_text: str, context: ProduceContext) -> ProducerResult:
        ...


class FileReportProducer:
    """Write the source answer to a Markdown report and return its path."""

    def __init__(self, directory: str | Path, *, logger) -> None:
        self.directory = Path(directory)
        self.logger = logger

    async def produce(self, source_text: str, context: ProduceContext) -> ProducerResult:
        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = time.strftime("%Y%m%dT%H%M%S", time.gmtime())
        name = _SAFE.sub("-", f"{context.group_id}-{context.cell}-{stamp}").strip("-")
        path = self.directory / f"{name}.md"
        body = f"# Report for {context.source_cell}\n\n{source_text.strip()}\n"
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp_path.write_text(body, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            self.logger.error("Could not write report %s: %s", path, exc)
            return ProducerResult(False, error=str(exc))
        self.logger.info("Report for %s written to %s", context.source_cell, path)
        return ProducerResult(True, str(path))


class WorkerBackedProducer:
    """Ask a worker to transform the source answer; the reply becomes the result."""

    def __init__(self, registry, *, worker_kind: str, instruction: str, logger) -> None:
        self.registry = registry
        self.worker_kind = worker_kind
        self.instruction = instruction
        self.logger = logger

    async def produce(self, source_text: str, context: ProduceContext) -> ProducerResult:
        adapter = self.registry.adapter_for(self.worker_kind)
        task = Task(
            group_id=context.group_id,
            row=context.row,
            column_index=0,
            worker_kind=self.worker_kind,
            model_hint="",
            feature_hint=context.kind,
            prompt_text=f"{self.instruction}\n\n{source_text.strip()}",
        )
        handle = await adapter.open(self.worker_kind)
        try:
            result = await adapter.dispatch(handle, task)
        finally:
            await adapter.close(handle)
        if not result.success or not result.output_text.strip():
            return ProducerResult(False, error=result.error or "empty result")
        return ProducerResult(True, result.output_text.strip())


class ProducerRegistry:
    def __init__(self) -> None:
        self._producers: Dict[str, SideEffectProducer] = {}

    def register(self, kind: str, producer: SideEffectProducer) -> None:
        self._producers[kind] = producer

    def producer_for(self, kind: str) -> SideEffectProducer:
        try:
            return self._producers[kind]
        except KeyError:
            raise SheetBotError(f"No side-effect producer registered for {kind!r}") from None


def build_producers(config: Mapping[str, Any], *, registry, report_dir: str | Path, logger) -> ProducerRegistry:
    producers = ProducerRegistry()
    producers.register("report", FileReportProducer(config.get("directory") or report_dir, logger=logger))
    side_effects = config.get("side_effects") or {}
    for kind, instruction in DEFAULT_INSTRUCTIONS.items():
        options = side_effects.get(kind) or {}
        producers.register(
            kind,
            WorkerBackedProducer(
                registry,
                worker_kind=str(options.get("worker_kind", "genspark")),
                instruction=str(options.get("instruction", instruction)),
                logger=logger,
            ),
        )
    return producers


__all__ = [
    "ProduceContext",
    "ProducerResult",
    "SideEffectProducer",
    "FileReportProducer",
    "WorkerBackedProducer",
    "ProducerRegistry",
    "build_producers",
]
