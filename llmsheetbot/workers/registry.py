"""Map worker kinds to adapters."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping

from ..errors import ConfigError, WorkerFailure
from .chat_completion import ChatCompletionAdapter
from .echo import EchoAdapter
from .endpoints import pick_model

FALLBACK_KIND = "*"


def _chat_adapter(options: Mapping[str, Any], defaults: Mapping[str, Any], logger) -> ChatCompletionAdapter:
    base_url = str(options.get("base_url") or defaults.get("base_url") or "http://localhost:11434")
    model = options.get("model") or ""
    if not model and options.get("discover_models", defaults.get("discover_models", False)):
        model = pick_model(None, base_url, logger)
    return ChatCompletionAdapter(
        base_url=base_url,
        model=str(model),
        timeout=float(options.get("timeout", defaults.get("timeout", 120))),
        temperature=float(options.get("temperature", defaults.get("temperature", 0.7))),
        api_key=options.get("api_key"),
        api_key_env=options.get("api_key_env"),
        logger=logger,
    )


def _echo_adapter(options: Mapping[str, Any], defaults: Mapping[str, Any], logger) -> EchoAdapter:
    return EchoAdapter(prefix=str(options.get("prefix", "echo")))


ADAPTER_TYPES: Dict[str, Callable[[Mapping[str, Any], Mapping[str, Any], Any], Any]] = {
    "chat": _chat_adapter,
    "echo": _echo_adapter,
}


class WorkerRegistry:
    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._adapters: Dict[str, Any] = {}
        self.logger = logger or logging.getLogger("LLMSheetBot.workers")

    def register(self, worker_kind: str, adapter: Any) -> None:
        self._adapters[worker_kind.lower()] = adapter

    def kinds(self) -> list:
        return sorted(self._adapters)

    def adapter_for(self, worker_kind: str | None) -> Any:
        key = (worker_kind or "").lower()
        adapter = self._adapters.get(key) or self._adapters.get(FALLBACK_KIND)
        if adapter is None:
            raise WorkerFailure(f"No worker adapter registered for {worker_kind!r}")
        return adapter


def build_registry(config: Mapping[str, Any], *, logger, dry_run: bool = False) -> WorkerRegistry:
    """Create adapters from the ``workers`` config section.

    ``workers.kinds`` maps a worker kind (chatgpt, claude, ...) to adapter
    options; ``workers.fallback`` serves any kind not listed. Dry runs replace
    everything with the echo adapter.
    """

    registry = WorkerRegistry(logger=logger)
    if dry_run:
        registry.register(FALLBACK_KIND, EchoAdapter(prefix="dry-run"))
        return registry

    defaults = {key: value for key, value in config.items() if not isinstance(value, Mapping)}
    entries = dict(config.get("kinds") or {})
    fallback = config.get("fallback")
    if fallback:
        entries[FALLBACK_KIND] = fallback
    if not entries:
        raise ConfigError("workers.kinds or workers.fallback must configure at least one adapter")
    for kind, options in entries.items():
        options = options or {}
        adapter_type = str(options.get("adapter", "chat"))
        factory = ADAPTER_TYPES.get(adapter_type)
        if factory is None:
            raise ConfigError(f"Unknown adapter type {adapter_type!r} for worker kind {kind!r}")
        registry.register(str(kind), factory(options, defaults, logger))
    logger.info("Worker adapters: %s", ", ".join(registry.kinds()))
    return registry


__all__ = ["WorkerRegistry", "ADAPTER_TYPES", "FALLBACK_KIND", "build_registry"]
