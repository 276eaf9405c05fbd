"""Pluggable LLM callers. Used by LLM-backed summarizers; the session core never calls them."""

from ctxiq.llm.base import (
    BaseCaller,
    CallOptions,
    Caller,
    LLMResponse,
    LLMUsage,
    StreamChunk,
)
from ctxiq.llm.factory import (
    CallerFactory,
    LazyCaller,
    LLMConfig,
    ProviderRegistry,
    create_caller,
)
from ctxiq.llm.litellm_caller import LiteLLMCaller, to_provider_messages
from ctxiq.llm.mock import MockCaller

__all__ = [
    "BaseCaller",
    "CallOptions",
    "Caller",
    "CallerFactory",
    "LLMConfig",
    "LLMResponse",
    "LLMUsage",
    "LazyCaller",
    "LiteLLMCaller",
    "MockCaller",
    "ProviderRegistry",
    "StreamChunk",
    "create_caller",
    "to_provider_messages",
]
