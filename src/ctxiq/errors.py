"""Exceptions raised by ctxiq components."""

from __future__ import annotations


class CtxIQError(Exception):
    """Base class for all ctxiq errors."""


class SummaryBudgetError(CtxIQError, ValueError):
    """Raised when a summary exceeds its reserved budget and truncation fallback is disabled."""

    def __init__(self, tokens: int, reserve: int, *, existing: bool = False) -> None:
        kind = "Existing summary" if existing else "Summary"
        super().__init__(f"{kind} ({tokens} tokens) exceeds reserved budget ({reserve})")
        self.tokens = tokens
        self.reserve = reserve
        self.existing = existing


class FormatterOutputError(CtxIQError, TypeError):
    """Raised when an ``llm_formatter`` hook returns something other than a list."""

    def __init__(self, got: object) -> None:
        super().__init__(
            f"llm_formatter must return a list of messages, got {type(got).__name__}"
        )
        self.got = got


class MergeNotSupportedError(CtxIQError, NotImplementedError):
    """Raised by ``ConversationSession.merge()``. Merging sessions is not supported."""

    def __init__(self) -> None:
        super().__init__("Merging conversation sessions is not supported.")


class UnknownProviderError(CtxIQError, ValueError):
    """Raised when an ``LLMConfig`` names a provider that has no registered factory."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Unknown LLM provider: {provider!r}")
        self.provider = provider
