from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest
import requests

from llmsheetbot.errors import ConfigError, WorkerFailure
from llmsheetbot.models import Task
from llmsheetbot.workers import ChatCompletionAdapter, EchoAdapter, WorkerRegistry, build_registry
from llmsheetbot.workers import endpoints
from llmsheetbot.workers.registry import FALLBACK_KIND


def make_task(**overrides) -> Task:
    values = dict(
        group_id="group@C",
        row=9,
        column_index=4,
        worker_kind="claude",
        model_hint="",
        feature_hint="normal",
        prompt_text="What is A?",
    )
    values.update(overrides)
    return Task(**values)


def run_dispatch(adapter: ChatCompletionAdapter, task: Task):
    async def scenario():
        handle = await adapter.open(task.worker_kind)
        try:
            return await adapter.dispatch(handle, task)
        finally:
            await adapter.close(handle)

    return asyncio.run(scenario())


def test_chat_adapter_posts_prompt_and_reads_answer() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": "  A is a letter.  "}}], "usage": {"total_tokens": 12}},
        )

    adapter = ChatCompletionAdapter(
        base_url="http://models.local/",
        model="default-model",
        api_key="key",
        logger=logging.getLogger("test"),
        transport=httpx.MockTransport(handler),
    )

    result = run_dispatch(adapter, make_task())

    assert result.success is True
    assert result.output_text == "A is a letter."
    assert result.tokens == 12
    assert seen["path"] == "/v1/chat/completions"
    assert seen["auth"] == "Bearer key"
    assert seen["body"]["model"] == "default-model"
    assert seen["body"]["messages"] == [{"role": "user", "content": "What is A?"}]


def test_chat_adapter_prefers_task_model_and_adds_feature_instruction() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    adapter = ChatCompletionAdapter(
        base_url="http://models.local",
        model="default-model",
        logger=logging.getLogger("test"),
        transport=httpx.MockTransport(handler),
    )

    run_dispatch(adapter, make_task(model_hint="opus", feature_hint="web search"))

    assert seen["body"]["model"] == "opus"
    assert seen["body"]["messages"][0]["role"] == "system"
    assert "web search" in seen["body"]["messages"][0]["content"]


def test_chat_adapter_reports_http_errors_as_failed_dispatch() -> None:
    adapter = ChatCompletionAdapter(
        base_url="http://models.local",
        logger=logging.getLogger("test"),
        transport=httpx.MockTransport(lambda request: httpx.Response(503, text="busy")),
    )

    result = run_dispatch(adapter, make_task())

    assert result.success is False
    assert result.error.startswith("HTTPError")


def test_chat_adapter_reports_invalid_json() -> None:
    adapter = ChatCompletionAdapter(
        base_url="http://models.local",
        logger=logging.getLogger("test"),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="not json")),
    )

    result = run_dispatch(adapter, make_task())

    assert result.success is False
    assert "Invalid JSON" in result.error


def test_extract_text_tolerates_unexpected_payloads() -> None:
    assert ChatCompletionAdapter.extract_text({"choices": []}) == ""
    assert ChatCompletionAdapter.extract_text(["not", "a", "mapping"]) == ""


def test_echo_adapter_answers_with_first_prompt_line() -> None:
    adapter = EchoAdapter(prefix="dry-run")

    result = asyncio.run(adapter.dispatch("claude", make_task(prompt_text="line one\nline two")))

    assert result.success is True
    assert result.output_text == "[dry-run:claude] line one"


def test_registry_falls_back_and_reports_missing_kinds() -> None:
    registry = WorkerRegistry()
    claude = EchoAdapter(prefix="claude")
    registry.register("Claude", claude)

    assert registry.adapter_for("CLAUDE") is claude
    with pytest.raises(WorkerFailure):
        registry.adapter_for("gemini")

    fallback = EchoAdapter()
    registry.register(FALLBACK_KIND, fallback)
    assert registry.adapter_for("gemini") is fallback


def test_build_registry_uses_kinds_and_fallback() -> None:
    registry = build_registry(
        {
            "base_url": "http://models.local",
            "kinds": {"chatgpt": {"adapter": "chat", "model": "gpt"}, "claude": {"adapter": "echo"}},
            "fallback": {"adapter": "echo", "prefix": "any"},
        },
        logger=logging.getLogger("test"),
    )

    assert registry.kinds() == ["*", "chatgpt", "claude"]
    chat = registry.adapter_for("chatgpt")
    assert isinstance(chat, ChatCompletionAdapter)
    assert chat.base_url == "http://models.local"
    assert chat.model == "gpt"
    assert registry.adapter_for("gemini").prefix == "any"


def test_build_registry_dry_run_answers_every_kind_offline() -> None:
    registry = build_registry({"kinds": {"claude": {"adapter": "chat"}}}, logger=logging.getLogger("test"), dry_run=True)

    assert isinstance(registry.adapter_for("claude"), EchoAdapter)
    assert registry.kinds() == ["*"]


def test_build_registry_rejects_bad_configuration() -> None:
    logger = logging.getLogger("test")
    with pytest.raises(ConfigError):
        build_registry({"kinds": {"claude": {"adapter": "telepathy"}}}, logger=logger)
    with pytest.raises(ConfigError):
        build_registry({"kinds": {}}, logger=logger)


class FakeModelsResponse:
    def __init__(self, payload) -> None:
        self.payload = payload

    def raise_for_status(self) -> None:
        return None

    def json(self):
        return self.payload


def test_fetch_served_models_lists_ids(monkeypatch) -> None:
    calls = []

    def fake_get(url, timeout):
        calls.append(url)
        return FakeModelsResponse({"data": [{"id": "model-a"}, {"id": 3}, {"id": "model-b"}]})

    monkeypatch.setattr(endpoints.requests, "get", fake_get)

    assert endpoints.fetch_served_models("http://models.local/") == ["model-a", "model-b"]
    assert calls == ["http://models.local/v1/models"]
    assert endpoints.pick_model(None, "http://models.local") == "model-a"
    assert endpoints.pick_model("pinned", "http://models.local") == "pinned"


def test_fetch_served_models_returns_empty_when_unreachable(monkeypatch) -> None:
    def fake_get(url, timeout):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(endpoints.requests, "get", fake_get)

    assert endpoints.fetch_served_models("http://models.local", logging.getLogger("test")) == []
