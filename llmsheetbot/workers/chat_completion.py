"""Async adapter for OpenAI-compatible chat-completion endpoints."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from ..models import Task
from .base import DispatchResult

DEFAULT_FEATURE = "normal"


@dataclass
class ChatHandle:
    worker_kind: str
    client: httpx.AsyncClient
    model: str


class ChatCompletionAdapter:
    def __init__(
        self,
        *,
        base_url: str,
        model: str = "",
        timeout: float = 120.0,
        temperature: float = 0.7,
        api_key: Optional[str] = None,
        api_key_env: Optional[str] = None,
        logger,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.api_key = api_key or (os.getenv(api_key_env) if api_key_env else None)
        self.logger = logger
        self._transport = transport

    async def open(self, worker_kind: str) -> ChatHandle:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
        )
        return ChatHandle(worker_kind=worker_kind, client=client, model=self.model)

    async def dispatch(self, handle: ChatHandle, task: Task) -> DispatchResult:
        model = task.model_hint or handle.model
        messages = []
        if task.feature_hint and task.feature_hint.lower() != DEFAULT_FEATURE:
            messages.append({"role": "system", "content": f"Respond using the '{task.feature_hint}' mode."})
        messages.append({"role": "user", "content": task.prompt_text})
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "stream": False,
        }
        start = time.perf_counter()
        try:
            response = await handle.client.post("/v1/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            elapsed = time.perf_counter() - start
            self.logger.warning("%s (%s) request failed for %s: %s", handle.worker_kind, model, task.cell, exc)
            return DispatchResult(False, error=f"HTTPError: {exc}", elapsed=elapsed)
        except ValueError as exc:
            elapsed = time.perf_counter() - start
            return DispatchResult(False, error=f"Invalid JSON response: {exc}", elapsed=elapsed)
        elapsed = time.perf_counter() - start
        tokens = 0
        usage = data.get("usage") if isinstance(data, Mapping) else None
        if isinstance(usage, Mapping):
            tokens = int(usage.get("total_tokens") or 0)
        self.logger.debug("%s (%s) answered %s in %.2fs", handle.worker_kind, model, task.cell, elapsed)
        return DispatchResult(True, self.extract_text(data), elapsed=elapsed, tokens=tokens)

    async def close(self, handle: ChatHandle) -> None:
        await handle.client.aclose()

    @staticmethod
    def extract_text(payload: Any) -> str:
        choices = payload.get("choices") if isinstance(payload, Mapping) else None
        if isinstance(choices, list) and choices:
            choice = choices[0]
            if isinstance(choice, Mapping):
                message = choice.get("message")
                if isinstance(message, Mapping):
                    text = message.get("content")
                    if isinstance(text, str):
                        return text.strip()
        return ""


__all__ = ["ChatCompletionAdapter", "ChatHandle"]
