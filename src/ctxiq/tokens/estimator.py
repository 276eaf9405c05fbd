"""Token estimation backends with caching and graceful fallback."""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

from ctxiq.models.message import Message

Encoding = Literal["cl100k_base", "o200k_base", "heuristic"]


class MessageTokens(BaseModel):
    """Per-message breakdown inside :class:`TokenMetadata`."""

    role: str
    tokens: int
    chars: int
    words: int


class TokenMetadata(BaseModel):
    """Result of :meth:`TokenEstimator.count`."""

    tokens: int
    chars: int
    words: int
    method: Literal["approx", "tiktoken"]
    model: str | None = None
    messages: list[MessageTokens] | None = Field(
        default=None,
        description="Per-message counts, present only when a message list was counted.",
    )


def _words(text: str) -> int:
    return len(text.split())


class TokenEstimator:
    """
    Token counting backend usable as a session ``token_counter`` hook.

    Priority order:
    1. tiktoken for the ``cl100k_base`` / ``o200k_base`` encodings
    2. Character-based heuristic (``ceil(len / 4)``) otherwise, or when
       tiktoken is unavailable

    Encoder objects are cached by encoding name (one load per estimator).

    Example::

        estimator = TokenEstimator(encoding="cl100k_base")
        session = ConversationSession("sess_1", "Chat", token_counter=estimator)
    """

    def __init__(self, encoding: Encoding = "heuristic", model: str | None = None) -> None:
        self.encoding = encoding
        self.model = model
        self._encoder_cache: dict[str, Any] = {}
        self._force_heuristic: bool = encoding == "heuristic"
        """Set to True in tests to skip tiktoken import."""
        self._logger = structlog.get_logger("ctxiq.tokens.estimator")
        self.last_metadata: TokenMetadata | None = None

    def __call__(self, text: str) -> int:
        return self.estimate(text)

    def estimate(self, text: str) -> int:
        """
        Estimate the token count for a string.

        Returns:
            Estimated token count, always >= 1 for non-empty text.
        """
        if not text:
            return 0
        if not self._force_heuristic:
            try:
                return self._tiktoken_estimate(text, self.encoding)
            except Exception as exc:
                self._logger.warning(
                    "tiktoken_unavailable_fallback", encoding=self.encoding, error=str(exc)
                )
                self._force_heuristic = True
        return self._heuristic(text)

    def count(
        self, source: str | Sequence[Message], *, include_roles: bool = True
    ) -> TokenMetadata:
        """
        Compute token metadata for a string or a list of messages.

        When a message list is given, the messages are joined one per line
        (prefixed with ``role: `` when ``include_roles``) and a per-message
        breakdown is included.
        """
        if isinstance(source, str):
            text = source
            breakdown = None
        else:
            text = "\n".join(
                f"{m.role}: {m.content}" if include_roles else m.content for m in source
            )
            breakdown = [
                MessageTokens(
                    role=m.role,
                    tokens=self.estimate(m.content),
                    chars=len(m.content),
                    words=_words(m.content),
                )
                for m in source
            ]

        tokens = self.estimate(text)
        metadata = TokenMetadata(
            tokens=tokens,
            chars=len(text),
            words=_words(text),
            method="approx" if self._force_heuristic else "tiktoken",
            model=self.model,
            messages=breakdown,
        )
        self.last_metadata = metadata
        return metadata

    def _heuristic(self, text: str) -> int:
        """Conservative heuristic: 4 characters per token, minimum 1."""
        return max(1, math.ceil(len(text) / 4))

    def _tiktoken_estimate(self, text: str, encoding_name: str) -> int:
        """Encode with tiktoken, caching the encoder object."""
        if encoding_name not in self._encoder_cache:
            import tiktoken

            self._encoder_cache[encoding_name] = tiktoken.get_encoding(encoding_name)
        encoder = self._encoder_cache[encoding_name]
        return len(encoder.encode(text))
