"""Tests for the OpenAI-compatible AI client."""

from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Iterable, cast

import httpx
import pytest
from openai import APIConnectionError, AsyncOpenAI, AuthenticationError

from hostpilot.ai.client import AIClient, ClientSettings


@dataclass
class _FakeEvent:
    """Simple structure emulating ChatCompletionStreamEvent attributes."""

    type: str
    delta: str | None = None


class _FakeStream:
    def __init__(self, events: Iterable[_FakeEvent]):
        self._iterator = iter(list(events))

    def __aiter__(self) -> "_FakeStream":
        return self

    async def __anext__(self) -> _FakeEvent:
        try:
            return next(self._iterator)
        except StopIteration as exc:  # pragma: no cover - exhaust iterator
            raise StopAsyncIteration from exc


class _FakeStreamContext:
    def __init__(self, events: Iterable[_FakeEvent]):
        self._events = list(events)

    async def __aenter__(self) -> _FakeStream:
        return _FakeStream(self._events)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeCompletions:
    def __init__(self, replies: Iterable[Any] = (), events: Iterable[_FakeEvent] = ()):
        self._replies = list(replies)
        self._events = list(events)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])

    def stream(self, **kwargs: Any) -> _FakeStreamContext:
        self.calls.append(kwargs)
        return _FakeStreamContext(self._events)


class _FakeModels:
    def __init__(self, payload: list[SimpleNamespace]):
        self._payload = payload
        self.calls = 0

    async def list(self) -> SimpleNamespace:
        self.calls += 1
        return SimpleNamespace(data=self._payload)


class _FakeAsyncOpenAI:
    def __init__(self, completions: _FakeCompletions, models: list[SimpleNamespace] | None = None):
        self.chat = SimpleNamespace(completions=completions)
        self.models = _FakeModels(models or [])
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _settings(**overrides: Any) -> ClientSettings:
    values: dict[str, Any] = {
        "base_url": "http://localhost:11434/v1",
        "api_key": "",
        "model": "llama3.1",
        "retry_min_seconds": 0.0,
        "retry_max_seconds": 0.0,
    }
    values.update(overrides)
    return ClientSettings(**values)


def _client(completions: _FakeCompletions, **overrides: Any) -> tuple[AIClient, _FakeAsyncOpenAI]:
    fake = _FakeAsyncOpenAI(completions, [SimpleNamespace(id="llama3.1"), SimpleNamespace(id="qwen2.5")])
    return AIClient(_settings(**overrides), client=cast(AsyncOpenAI, fake)), fake


def _request() -> httpx.Request:
    return httpx.Request("POST", "http://localhost:11434/v1/chat/completions")


@pytest.mark.asyncio
async def test_complete_returns_assistant_text() -> None:
    completions = _FakeCompletions(["Hello there"])
    client, _ = _client(completions, metadata={"session": "abc"})

    reply = await client.complete([{"role": "user", "content": "hi"}])

    assert reply == "Hello there"
    payload = completions.calls[0]
    assert payload["model"] == "llama3.1"
    assert payload["temperature"] == 0.2
    assert payload["metadata"] == {"session": "abc"}
    assert payload["messages"] == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_complete_passes_overrides() -> None:
    completions = _FakeCompletions(["ok"])
    client, _ = _client(completions)

    await client.complete([{"role": "user", "content": "hi"}], temperature=0.0, max_tokens=64)

    assert completions.calls[0]["temperature"] == 0.0
    assert completions.calls[0]["max_tokens"] == 64


@pytest.mark.asyncio
async def test_missing_content_is_empty_text() -> None:
    client, _ = _client(_FakeCompletions([None]))

    assert await client.complete([{"role": "user", "content": "hi"}]) == ""


@pytest.mark.asyncio
async def test_empty_message_list_is_rejected() -> None:
    client, _ = _client(_FakeCompletions())

    with pytest.raises(ValueError):
        await client.complete([])


@pytest.mark.asyncio
async def test_unknown_role_is_rejected() -> None:
    completions = _FakeCompletions(["unused"])
    client, _ = _client(completions)

    with pytest.raises(ValueError, match="role"):
        await client.complete([{"role": "tool", "content": "{}"}])

    assert completions.calls == []


@pytest.mark.asyncio
async def test_connection_errors_are_retried() -> None:
    completions = _FakeCompletions([APIConnectionError(request=_request()), "recovered"])
    client, _ = _client(completions, max_retries=3)

    reply = await client.complete([{"role": "user", "content": "hi"}])

    assert reply == "recovered"
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_last_retryable_failure_propagates() -> None:
    completions = _FakeCompletions([APIConnectionError(request=_request()) for _ in range(3)])
    client, _ = _client(completions, max_retries=2)

    with pytest.raises(APIConnectionError):
        await client.complete([{"role": "user", "content": "hi"}])

    assert len(completions.calls) == 3


@pytest.mark.asyncio
async def test_zero_retries_means_a_single_attempt() -> None:
    completions = _FakeCompletions([APIConnectionError(request=_request()), "unused"])
    client, _ = _client(completions, max_retries=0)

    with pytest.raises(APIConnectionError):
        await client.complete([{"role": "user", "content": "hi"}])

    assert len(completions.calls) == 1


@pytest.mark.asyncio
async def test_client_errors_are_not_retried() -> None:
    response = httpx.Response(401, request=_request())
    completions = _FakeCompletions([AuthenticationError("bad key", response=response, body=None), "never"])
    client, _ = _client(completions, max_retries=3)

    with pytest.raises(AuthenticationError):
        await client.complete([{"role": "user", "content": "hi"}])

    assert len(completions.calls) == 1


@pytest.mark.asyncio
async def test_streaming_forwards_content_deltas() -> None:
    events = [
        _FakeEvent(type="chunk"),
        _FakeEvent(type="content.delta", delta="Hel"),
        _FakeEvent(type="content.delta", delta=""),
        _FakeEvent(type="content.delta", delta="lo"),
        _FakeEvent(type="content.done"),
    ]
    client, _ = _client(_FakeCompletions(events=events))
    seen: list[str] = []

    async def on_delta(fragment: str) -> None:
        seen.append(fragment)

    reply = await client.complete([{"role": "user", "content": "hi"}], on_delta=on_delta)

    assert reply == "Hello"
    assert seen == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_list_models_is_cached() -> None:
    client, fake = _client(_FakeCompletions())

    first = await client.list_models()
    second = await client.list_models()
    refreshed = await client.list_models(force_refresh=True)

    assert first == second == refreshed == ["llama3.1", "qwen2.5"]
    assert fake.models.calls == 2


@pytest.mark.asyncio
async def test_aclose_closes_the_underlying_client() -> None:
    client, fake = _client(_FakeCompletions())

    await client.aclose()

    assert fake.closed is True


def test_default_client_points_at_configured_endpoint() -> None:
    client = AIClient(_settings(api_key="sk-test", base_url="http://example.test/v1"))

    assert client.settings.model == "llama3.1"
    assert str(client._client.base_url).startswith("http://example.test/v1")  # type: ignore[attr-defined]
