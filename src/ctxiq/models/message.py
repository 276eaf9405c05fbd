"""Core message data model for ctxiq."""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, Field, field_validator

Role = Literal["user", "assistant", "system", "summary"]


def now_ms() -> int:
    """Current wall-clock time as a Unix millisecond timestamp."""
    return int(time.time() * 1000)


class Message(BaseModel):
    """
    A single conversation entry. Summaries are messages with ``role="summary"``.

    ``id`` is assigned by the session on insertion; any caller-supplied value
    is overwritten by ``add_message`` / ``add_summary``. ``tokens`` is computed
    at insertion time when left at ``0``.

    ``summary_of`` is a frozenset so membership tests are O(1) and a reference
    handed out by the session can never be used to mutate coverage. Lists and
    sets are accepted on construction and normalised.
    """

    id: str = ""
    role: Role
    content: str
    tokens: int = Field(default=0, ge=0)
    timestamp: int = Field(default_factory=now_ms)
    """Unix millisecond timestamp."""
    summary_of: frozenset[str] = Field(default_factory=frozenset)
    """IDs of the raw messages this summary replaces. Empty on non-summary messages."""

    @field_validator("summary_of", mode="before")
    @classmethod
    def _coerce_summary_of(cls, value: object) -> object:
        if value is None:
            return frozenset()
        return value

    @property
    def is_summary(self) -> bool:
        return self.role == "summary"

    @property
    def is_system(self) -> bool:
        return self.role == "system"

    def to_llm(self) -> dict[str, str]:
        """Default provider-agnostic shape: ``{"role": ..., "content": ...}``."""
        return {"role": self.role, "content": self.content}
