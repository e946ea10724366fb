"""Configuration loading and validation for LLMSheetBot."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional, Tuple

import yaml

from .errors import ConfigError
from .core.lease import STRATEGIES

PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = PROJECT_ROOT / "config"
CONFIG_PATH = CONFIG_DIR / "config.yaml"
ENV_CONFIG_PATH = "LLMSHEETBOT_CONFIG"


DEFAULT_CONFIG: Dict[str, Any] = {
    "store": {
        "backend": "csv",
        "csv_path": "data/sheet.csv",
        "spreadsheet_id": "",
        "sheet": "Sheet1",
        "sheet_gid": 0,
        "timeout": 30,
        "lock": {
            "timeout": 10.0,
            "stale_seconds": 60.0,
        },
    },
    "workers": {
        "default_kind": "claude",
        "base_url": "http://localhost:11434",
        "timeout": 120,
        "temperature": 0.7,
        "discover_models": False,
        "default_models": {},
        "kinds": {},
        "fallback": {
            "adapter": "chat",
        },
    },
    "scheduler": {
        "max_iterations": 50,
        "poll_interval": 5.0,
        "batch_size": 3,
        "fanout_max_slots": 4,
        "max_batches_per_group": 100,
    },
    "retry": {
        "ceiling": 10,
        "delays": [30, 60, 300, 600, 1200, 2400, 3600, 5400, 7200, 9000],
    },
    "exclusive": {
        "strategy": "smart",
        "worker_id": None,
        "timeouts": {
            "deep research": 2400,
            "agent": 2400,
            "canvas": 600,
            "web search": 480,
            "normal": 300,
            "default": 300,
        },
    },
    "structure": {
        "first_work_row": 9,
        "max_rows": 600,
    },
    "reports": {
        "directory": None,
        "side_effects": {},
    },
    "paths": {
        "data": "data",
        "reports": "data/reports",
        "summaries": "data/summaries",
        "logs": "logs",
    },
    "logging": {
        "console_level": "INFO",
        "file_level": "DEBUG",
        "json_logs": False,
        "color": True,
    },
    "testing": {
        "enabled": False,
        "dry_run": False,
        "max_tasks": 5,
    },
}


@dataclass(frozen=True)
class ConfigLoadResult:
    """Container for the merged configuration."""

    config: Dict[str, Any]
    sources: Tuple[str, ...]


def _ensure_default_config(path: Path) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(DEFAULT_CONFIG, handle, sort_keys=True, allow_unicode=True)
    tmp.replace(path)


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Configuration file {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, MutableMapping):
        raise ConfigError(f"Configuration file {path} must contain a mapping at the root")
    return dict(data)


def deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        if (
            key in merged
            and isinstance(merged[key], MutableMapping)
            and isinstance(value, MutableMapping)
        ):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve_path(base_dir: Path, value: str) -> Path:
    path = Path(value)
    if path.is_absolute():
        return path
    return (base_dir / value).resolve()


def _apply_path_defaults(config: Dict[str, Any], base_dir: Path) -> Dict[str, Any]:
    paths = dict(config.get("paths", {}))
    for key, rel_path in paths.items():
        if isinstance(rel_path, str) and rel_path:
            paths[key] = str(_resolve_path(base_dir, rel_path))
    config["paths"] = paths
    store = dict(config.get("store", {}))
    csv_path = store.get("csv_path")
    if isinstance(csv_path, str) and csv_path:
        store["csv_path"] = str(_resolve_path(base_dir, csv_path))
    config["store"] = store
    return config


def _ensure_directories(config: Mapping[str, Any]) -> None:
    for key in ("data", "summaries", "logs"):
        value = config.get("paths", {}).get(key)
        if value:
            Path(value).mkdir(parents=True, exist_ok=True)


def _collect_sources(explicit: Optional[Path]) -> Iterable[Tuple[Path, bool]]:
    yield CONFIG_PATH, True
    env_path = os.getenv(ENV_CONFIG_PATH)
    if env_path:
        yield Path(env_path), False
    if explicit is not None:
        if not explicit.exists():
            raise ConfigError(f"Configuration file not found: {explicit}")
        yield explicit, False


def _validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    store = config.get("store", {})
    if str(store.get("backend")) not in ("csv", "sheets", "memory"):
        raise ConfigError("store.backend must be one of: csv, sheets, memory")
    strategy = config.get("exclusive", {}).get("strategy")
    if strategy not in STRATEGIES:
        raise ConfigError(f"exclusive.strategy must be one of: {', '.join(STRATEGIES)}")
    retry = config.get("retry", {})
    if int(retry.get("ceiling", 0)) <= 0:
        raise ConfigError("retry.ceiling must be > 0")
    delays = retry.get("delays")
    if not isinstance(delays, list) or not delays or any(float(delay) < 0 for delay in delays):
        raise ConfigError("retry.delays must be a non-empty list of non-negative numbers")
    scheduler = config.get("scheduler", {})
    for key in ("max_iterations", "batch_size", "fanout_max_slots", "max_batches_per_group"):
        if int(scheduler.get(key, 0)) <= 0:
            raise ConfigError(f"scheduler.{key} must be > 0")
    if float(scheduler.get("poll_interval", -1)) < 0:
        raise ConfigError("scheduler.poll_interval must be >= 0")
    if int(config.get("testing", {}).get("max_tasks", 0)) <= 0:
        raise ConfigError("testing.max_tasks must be > 0")
    return config


def load_config(
    path: str | Path | None = None,
    *,
    overrides: Mapping[str, Any] | None = None,
    include_sources: bool = False,
    base_dir: Path = PROJECT_ROOT,
) -> ConfigLoadResult | Dict[str, Any]:
    """Load and validate configuration settings.

    Layers, lowest first: built-in defaults, ``config/config.yaml`` (created
    on first use), the file named by ``LLMSHEETBOT_CONFIG``, ``path``, then
    ``overrides``.
    """

    config: Dict[str, Any] = json.loads(json.dumps(DEFAULT_CONFIG))
    sources: list[str] = []

    for source, required in _collect_sources(Path(path) if path else None):
        if required:
            _ensure_default_config(source)
        if not source.exists():
            continue
        config = deep_merge(config, _load_yaml(source))
        sources.append(str(source.resolve()))

    if overrides:
        config = deep_merge(config, overrides)
        sources.append("<command line>")

    config = json.loads(json.dumps(config))
    config = _apply_path_defaults(config, base_dir)
    _ensure_directories(config)
    config = _validate_config(config)

    result = ConfigLoadResult(config=config, sources=tuple(sources))
    if include_sources:
        return result
    return result.config


__all__ = ["DEFAULT_CONFIG", "ConfigLoadResult", "load_config", "deep_merge", "ENV_CONFIG_PATH"]
