"""Model-turn provider for OpenAI-compatible chat endpoints (Ollama, LM Studio, OpenAI)."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

LOGGER = logging.getLogger(__name__)

DeltaCallback = Callable[[str], Any]

_ROLES = frozenset({"system", "user", "assistant"})


@dataclass(slots=True)
class ClientSettings:
    """Connection and sampling options for :class:`AIClient`."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    temperature: float | None = 0.2
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


def _is_transient(exc: BaseException) -> bool:
    """Connection drops, rate limits, timeouts and 5xx responses are worth another attempt."""
    if isinstance(exc, APIStatusError):
        return exc.status_code >= 500 or isinstance(exc, RateLimitError)
    return isinstance(exc, (APIConnectionError, httpx.TimeoutException))


class AIClient:
    """Produces assistant turns for the agent loop.

    Transient failures are retried with exponential backoff; anything else,
    and the final transient failure, propagates to the caller unchanged.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client if client is not None else AsyncOpenAI(
            api_key=settings.api_key or "not-needed",
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            # Retries are handled here so they can be logged and tuned.
            max_retries=0,
            default_headers=dict(settings.default_headers or {}) or None,
        )
        self._models: list[str] | None = None
        self._models_guard = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def complete(
        self,
        messages: Iterable[Mapping[str, Any]],
        *,
        on_delta: DeltaCallback | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **extra: Any,
    ) -> str:
        """Return the assistant text for ``messages``.

        With ``on_delta`` the reply is streamed and every content fragment is
        handed to the callback as it arrives.
        """
        request = self._request(
            _chat_messages(messages),
            temperature=self._settings.temperature if temperature is None else temperature,
            max_tokens=max_tokens,
            extra=extra,
        )
        LOGGER.debug("Chat request to %s: %d message(s)", request["model"], len(request["messages"]))
        if self._settings.debug_logging:
            LOGGER.debug("Chat request body:\n%s", json.dumps(request, ensure_ascii=False, indent=2, default=str))

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(0, self._settings.max_retries) + 1),
            wait=wait_exponential(multiplier=self._settings.retry_min_seconds, max=self._settings.retry_max_seconds),
            retry=retry_if_exception(_is_transient),
            before_sleep=lambda state: LOGGER.warning(
                "Model request failed (attempt %d): %s", state.attempt_number, state.outcome.exception()
            ),
        )
        async for attempt in retrying:
            with attempt:
                if on_delta is None:
                    return await self._single_reply(request)
                return await self._streamed_reply(request, on_delta)
        raise RuntimeError("retry loop ended without a reply")  # pragma: no cover

    async def _single_reply(self, request: Mapping[str, Any]) -> str:
        response = await self._client.chat.completions.create(**request)
        choices = response.choices or []
        return (choices[0].message.content or "") if choices else ""

    async def _streamed_reply(self, request: Mapping[str, Any], on_delta: DeltaCallback) -> str:
        fragments: list[str] = []
        async with self._client.chat.completions.stream(**request) as stream:
            async for event in stream:
                fragment = getattr(event, "delta", None) if getattr(event, "type", None) == "content.delta" else None
                if not fragment:
                    continue
                fragments.append(str(fragment))
                pending = on_delta(str(fragment))
                if inspect.isawaitable(pending):
                    await pending
        return "".join(fragments)

    async def list_models(self, *, force_refresh: bool = False) -> list[str]:
        """Model ids advertised by the endpoint, cached after the first call."""
        async with self._models_guard:
            if self._models is None or force_refresh:
                page = await self._client.models.list()
                self._models = [model.id for model in page.data if getattr(model, "id", None)]
                LOGGER.debug("Endpoint %s offers %d model(s)", self._settings.base_url, len(self._models))
            return list(self._models)

    def _request(
        self,
        messages: list[dict[str, Any]],
        *,
        temperature: float | None,
        max_tokens: int | None,
        extra: Mapping[str, Any],
    ) -> dict[str, Any]:
        request: dict[str, Any] = {"model": self._settings.model, "messages": messages}
        optional = {
            "temperature": temperature,
            "max_tokens": max_tokens,
            "metadata": dict(self._settings.metadata) if self._settings.metadata else None,
        }
        request.update({key: value for key, value in optional.items() if value is not None})
        request.update(extra)
        return request

    async def aclose(self) -> None:
        """Release the HTTP connection pool."""
        await self._client.close()


def _chat_messages(messages: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    prepared = []
    for message in messages:
        role = message.get("role")
        if role not in _ROLES:
            raise ValueError(f"Unsupported message role: {role!r}")
        prepared.append({"role": role, "content": str(message.get("content") or "")})
    if not prepared:
        raise ValueError("A chat request needs at least one message")
    return prepared


__all__ = ["AIClient", "ClientSettings", "DeltaCallback"]
