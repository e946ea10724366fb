"""Centralised logging configuration helpers."""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping

LOGGER_NAME = "LLMSheetBot"


class WorkerIdFilter(logging.Filter):
    """Stamp records with the worker id so logs from several machines can be merged."""

    def __init__(self, worker_id: str) -> None:
        super().__init__()
        self.worker_id = worker_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.worker_id = self.worker_id
        return True


class ColorFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, *, use_color: bool) -> None:
        super().__init__(fmt)
        self.use_color = use_color and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - colour branch
        message = super().format(record)
        color = self.COLORS.get(record.levelname) if self.use_color else None
        return f"{color}{message}{self.RESET}" if color else message


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "worker_id": getattr(record, "worker_id", None),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(config: Mapping[str, object], *, worker_id: str = "-") -> logging.Logger:
    """Configure console and file handlers on the application logger."""

    console_level = _coerce_level(config.get("console_level"))
    file_level = _coerce_level(config.get("file_level"))
    json_logs = bool(config.get("json_logs"))
    use_color = bool(config.get("color", True))
    log_dir = config.get("log_dir") or config.get("logs")

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Drop handlers from earlier calls so tests and re-runs don't duplicate output.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for existing in list(logger.filters):
        logger.removeFilter(existing)

    id_filter = WorkerIdFilter(worker_id)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.addFilter(id_filter)
    console_handler.setFormatter(
        ColorFormatter("%(asctime)s [%(levelname)s] %(worker_id)s %(message)s", use_color=use_color)
    )
    logger.addHandler(console_handler)

    if log_dir:
        path = Path(str(log_dir))
        path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path / "llmsheetbot.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(file_level)
        file_handler.addFilter(id_filter)
        if json_logs:
            file_handler.setFormatter(JsonFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(worker_id)s %(name)s: %(message)s")
            )
        logger.addHandler(file_handler)

    return logger


def _coerce_level(level: object) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        value = getattr(logging, level.upper(), None)
        if isinstance(value, int):
            return value
    return logging.INFO


__all__ = ["configure_logging", "JsonFormatter", "WorkerIdFilter", "LOGGER_NAME"]
