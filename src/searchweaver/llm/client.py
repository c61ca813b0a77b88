"""OpenAI-compatible LLM client.

This wraps the `openai` Python SDK's Responses API and provides a minimal interface for
non-streaming generation, token streaming and continuation via ``previous_response_id``. Every
request goes through a circuit breaker wrapped around a retry loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Literal, Protocol, Sequence

import openai
from openai import AsyncOpenAI

from searchweaver.config import Settings
from searchweaver.core.concurrency import CircuitBreaker, get_circuit_breaker
from searchweaver.core.retry import RetryPolicy, with_retry
from searchweaver.logging import get_logger

logger = get_logger(__name__)

Role = Literal["system", "user", "assistant", "developer"]


@dataclass(frozen=True)
class ChatMessage:
    """A chat message."""

    role: Role
    content: str


@dataclass(frozen=True)
class LLMResponse:
    """A completed generation. ``id`` is the continuation handle for later calls."""

    id: str
    text: str


@dataclass(frozen=True)
class StreamChunk:
    """One streamed item: a content delta, or ``done`` carrying the response id."""

    type: Literal["content", "done"]
    content: str = ""
    id: str | None = None


class LLMError(RuntimeError):
    pass


class LanguageModel(Protocol):
    """Language model interface used by the engine."""

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        *,
        previous_response_id: str | None = None,
        temperature: float | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a full response."""

    def stream(
        self,
        messages: Sequence[ChatMessage],
        *,
        previous_response_id: str | None = None,
        temperature: float | None = None,
        model: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response chunk by chunk, ending with a ``done`` chunk."""


class LLMClient:
    """LLM client using the OpenAI Responses API."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: AsyncOpenAI | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._settings = settings
        if client is None:
            if not settings.openai_api_key:
                raise ValueError(
                    "Missing SEARCHWEAVER_OPENAI_API_KEY. "
                    "Set it in environment variables or a .env file."
                )
            client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.openai_timeout_s,
                max_retries=0,
            )
        self._client = client
        self._breaker = breaker or get_circuit_breaker(
            "openai",
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout=settings.circuit_reset_timeout_s,
            success_threshold=settings.circuit_success_threshold,
        )
        self._retry = RetryPolicy(
            max_retries=settings.llm_max_retries,
            base_delay_s=settings.llm_retry_base_delay_s,
            max_delay_s=settings.llm_retry_max_delay_s,
            jitter=settings.retry_jitter,
        )

    def _request(
        self,
        messages: Sequence[ChatMessage],
        *,
        previous_response_id: str | None,
        temperature: float | None,
        model: str | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model or self._settings.openai_model,
            "input": [{"role": m.role, "content": m.content} for m in messages],
        }
        if previous_response_id:
            payload["previous_response_id"] = previous_response_id
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    async def _guarded(self, payload: dict[str, Any]) -> Any:
        """Send ``payload`` through the breaker and retry loop.

        Rejected credentials open the breaker at once, so later calls fail fast until it resets.
        """

        async def attempt() -> Any:
            return await self._client.responses.create(**payload)

        try:
            return await self._breaker.call(with_retry, attempt, self._retry)
        except (openai.AuthenticationError, openai.PermissionDeniedError):
            logger.error("LLM credentials rejected; opening circuit", extra={"breaker": self._breaker.name})
            self._breaker.trip()
            raise

    async def generate(
        self,
        messages: Sequence[ChatMessage],
        *,
        previous_response_id: str | None = None,
        temperature: float | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a response.

        Args:
            messages: Input messages.
            previous_response_id: Continuation handle from an earlier response.
            temperature: Sampling temperature; omitted from the request when ``None``.
            model: Model override.

        Returns:
            Response id and output text.
        """

        payload = self._request(
            messages,
            previous_response_id=previous_response_id,
            temperature=temperature,
            model=model,
        )
        resp = await self._guarded(payload)
        text = getattr(resp, "output_text", None) or ""
        logger.debug(
            "LLM generate ok",
            extra={"model": payload["model"], "response_id": resp.id, "output_len": len(text)},
        )
        return LLMResponse(id=resp.id, text=text)

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        *,
        previous_response_id: str | None = None,
        temperature: float | None = None,
        model: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response.

        Opening the stream is retried and breaker-protected; once tokens flow, a failure is
        raised to the caller as :class:`LLMError`.
        """

        payload = self._request(
            messages,
            previous_response_id=previous_response_id,
            temperature=temperature,
            model=model,
        )
        payload["stream"] = True
        events = await self._guarded(payload)

        response_id: str | None = None
        async for ev in events:
            ev_type = getattr(ev, "type", "")
            if ev_type == "response.output_text.delta":
                yield StreamChunk(type="content", content=ev.delta)
            elif ev_type == "response.created":
                response_id = ev.response.id
            elif ev_type == "response.completed":
                response_id = ev.response.id
            elif ev_type in {"response.failed", "error"}:
                raise LLMError(f"LLM stream failed: {getattr(ev, 'message', None) or ev_type}")
        yield StreamChunk(type="done", id=response_id)
