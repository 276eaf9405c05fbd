"""Caller backed by litellm, covering every provider litellm supports."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import Any

import structlog

from ctxiq.llm.base import BaseCaller, CallOptions, LLMResponse, LLMUsage, StreamChunk
from ctxiq.models.message import Message


def to_provider_messages(messages: Sequence[Message]) -> list[dict[str, str]]:
    """Chat-completion dicts. Summaries are sent as assistant turns."""
    return [
        {"role": "assistant" if m.is_summary else m.role, "content": m.content}
        for m in messages
    ]


class LiteLLMCaller(BaseCaller):
    """
    Calls ``litellm.acompletion`` with a litellm model string.

    Example::

        caller = LiteLLMCaller(model="anthropic/claude-haiku-3-5", temperature=0.2)
        response = await caller.call(await session.build_prompt())
    """

    name = "litellm"
    supports_streaming = True

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **extra: Any,
    ) -> None:
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.extra = extra
        self._logger = structlog.get_logger("ctxiq.llm.litellm").bind(model=model)

    def _kwargs(self, messages: Sequence[Message], options: CallOptions | None) -> dict[str, Any]:
        opts = options or CallOptions()
        call_kwargs: dict[str, Any] = {
            "model": opts.model or self.model,
            "messages": to_provider_messages(messages),
            **self.extra,
            **opts.provider_options,
        }
        optional = {
            "api_key": self.api_key,
            "temperature": opts.temperature if opts.temperature is not None else self.temperature,
            "max_tokens": opts.max_tokens or self.max_tokens,
            "top_p": opts.top_p,
            "stop": opts.stop,
            "timeout": opts.timeout_secs,
        }
        call_kwargs.update({k: v for k, v in optional.items() if v is not None})
        return call_kwargs

    async def call(
        self, messages: Sequence[Message], options: CallOptions | None = None
    ) -> LLMResponse:
        import litellm

        response = await litellm.acompletion(**self._kwargs(messages, options))
        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        self._logger.debug("llm_call_completed", finish_reason=choice.finish_reason)
        return LLMResponse(
            text=choice.message.content or "",
            usage=LLMUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            )
            if usage
            else None,
            id=getattr(response, "id", None),
            model=getattr(response, "model", None),
            finish_reason=choice.finish_reason,
            raw=response,
        )

    async def stream(
        self, messages: Sequence[Message], options: CallOptions | None = None
    ) -> AsyncIterator[StreamChunk]:
        import litellm

        async for chunk in await litellm.acompletion(
            **self._kwargs(messages, options), stream=True
        ):
            delta = chunk.choices[0].delta if chunk.choices else None
            if delta is not None and delta.content:
                yield StreamChunk(type="delta", text=delta.content, raw=chunk)
        yield StreamChunk(type="info", raw={"finished": True})
