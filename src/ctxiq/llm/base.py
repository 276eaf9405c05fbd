"""Provider-agnostic LLM caller interface and response models."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from ctxiq.models.message import Message


class CallOptions(BaseModel):
    """Options passed to a caller. ``provider_options`` is the provider-specific escape hatch."""

    model: str | None = None
    max_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = None
    top_p: float | None = None
    stop: list[str] | None = None
    timeout_secs: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    """Caller-side metadata. Never sent to the provider."""
    provider_options: dict[str, Any] = Field(default_factory=dict)


class LLMUsage(BaseModel):
    """Token usage reported by a provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LLMResponse(BaseModel):
    """Unified non-streaming response."""

    text: str
    usage: LLMUsage | None = None
    id: str | None = None
    model: str | None = None
    finish_reason: str | None = None
    raw: Any = None


class StreamChunk(BaseModel):
    """One envelope yielded by :meth:`Caller.stream`."""

    type: Literal["chunk", "delta", "token", "info"] = "chunk"
    text: str = ""
    raw: Any = None


@runtime_checkable
class Caller(Protocol):
    """Anything that can turn a message list into an :class:`LLMResponse`."""

    name: str

    async def call(
        self, messages: Sequence[Message], options: CallOptions | None = None
    ) -> LLMResponse: ...


class BaseCaller(ABC):
    """
    Minimal base class for caller adapters. Subclasses implement :meth:`call`.

    The default :meth:`stream` awaits :meth:`call` and yields a single chunk
    with the final text. Adapters with real streaming override it.
    """

    name: str = "base"
    supports_streaming: bool = False

    @abstractmethod
    async def call(
        self, messages: Sequence[Message], options: CallOptions | None = None
    ) -> LLMResponse:
        """Request a completion for ``messages``."""

    async def stream(
        self, messages: Sequence[Message], options: CallOptions | None = None
    ) -> AsyncIterator[StreamChunk]:
        response = await self.call(messages, options)
        yield StreamChunk(type="chunk", text=response.text, raw=response.raw)
