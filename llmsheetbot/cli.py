"""Command-line entry point for LLMSheetBot."""

from __future__ import annotations

import argparse
import asyncio
from typing import Any, Dict, Optional, Sequence

from .config import load_config
from .errors import ConfigError, StructuralError
from .identity import resolve_worker_id
from .logging_utils import configure_logging
from .runtime import LLMSheetBotRuntime


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="llmsheetbot", description="Fill spreadsheet answer cells with AI workers.")
    parser.add_argument("--config", help="Extra YAML config layered over config/config.yaml")
    parser.add_argument("--log-level", help="Console log level (DEBUG, INFO, ...)")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--csv", help="Process a local CSV sheet")
    source.add_argument("--spreadsheet-id", help="Process a Google Sheets document")
    parser.add_argument("--sheet", help="Sheet (tab) name for --spreadsheet-id")
    parser.add_argument("--worker-id", help="Identity written into lease markers")
    parser.add_argument("--strategy", choices=("smart", "polite", "aggressive"), help="Lease strategy")
    parser.add_argument("--test-mode", action="store_true", help="Stop after testing.max_tasks tasks")
    parser.add_argument("--dry-run", action="store_true", help="Answer with the offline echo worker")
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.csv:
        overrides.setdefault("store", {}).update({"backend": "csv", "csv_path": args.csv})
    if args.spreadsheet_id:
        overrides.setdefault("store", {}).update({"backend": "sheets", "spreadsheet_id": args.spreadsheet_id})
    if args.sheet:
        overrides.setdefault("store", {})["sheet"] = args.sheet
    if args.worker_id:
        overrides.setdefault("exclusive", {})["worker_id"] = args.worker_id
    if args.strategy:
        overrides.setdefault("exclusive", {})["strategy"] = args.strategy
    if args.test_mode:
        overrides.setdefault("testing", {})["enabled"] = True
    if args.dry_run:
        overrides.setdefault("testing", {})["dry_run"] = True
    if args.log_level:
        overrides.setdefault("logging", {})["console_level"] = args.log_level.upper()
    return overrides


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        result = load_config(args.config, overrides=_overrides(args), include_sources=True)
    except ConfigError as exc:
        print(f"Configuration error: {exc}")
        return 1
    config, sources = result.config, result.sources
    worker_id = resolve_worker_id(config.get("exclusive", {}).get("worker_id"))

    logging_config = dict(config.get("logging", {}))
    logging_config.setdefault("log_dir", config.get("paths", {}).get("logs"))
    logger = configure_logging(logging_config, worker_id=worker_id)
    logger.info("Loaded configuration from: %s", ", ".join(sources) or "<defaults>")

    runtime = LLMSheetBotRuntime(config, logger, worker_id=worker_id)
    try:
        summary = asyncio.run(runtime.run())
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        logger.warning("Interrupted by user.")
        return 1
    except (StructuralError, ConfigError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception as exc:  # pragma: no cover - defensive logging
        logger.exception("Runtime terminated due to unexpected error: %s", exc)
        return 1
    return 0 if summary.success else 2


__all__ = ["main", "build_parser"]
