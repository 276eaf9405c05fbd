"""Deterministic caller for tests and local development."""

from __future__ import annotations

import math
from collections.abc import AsyncIterator, Sequence

from ctxiq.llm.base import BaseCaller, CallOptions, LLMResponse, LLMUsage, StreamChunk
from ctxiq.models.message import Message


class MockCaller(BaseCaller):
    """
    Echoes the last user, system or assistant message behind ``reply_prefix``.

    ``stream()`` yields the reply word by word, then a final ``info`` chunk.
    No network access.
    """

    name = "mock"
    supports_streaming = True

    def __init__(self, reply_prefix: str = "Mock reply: ") -> None:
        self.reply_prefix = reply_prefix
        self.calls: list[list[Message]] = []

    async def call(
        self, messages: Sequence[Message], options: CallOptions | None = None
    ) -> LLMResponse:
        self.calls.append(list(messages))
        last = next(
            (m for m in reversed(messages) if m.role in ("user", "system", "assistant")),
            None,
        )
        text = f"{self.reply_prefix}{last.content if last else ''}"
        tokens = math.ceil(len(text) / 4)
        return LLMResponse(
            text=text,
            usage=LLMUsage(completion_tokens=tokens, total_tokens=tokens),
            model=options.model if options else None,
            finish_reason="stop",
            raw={"messages_length": len(messages)},
        )

    async def stream(
        self, messages: Sequence[Message], options: CallOptions | None = None
    ) -> AsyncIterator[StreamChunk]:
        response = await self.call(messages, options)
        words = response.text.split()
        for i, word in enumerate(words):
            yield StreamChunk(type="token", text=word + (" " if i < len(words) - 1 else ""))
        yield StreamChunk(type="info", raw={"finished": True})
