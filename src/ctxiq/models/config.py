"""Configuration models for ctxiq sessions."""

from __future__ import annotations

from pydantic import BaseModel, Field

DEFAULT_RESERVE_RATIO: float = 0.15


class SessionConfig(BaseModel):
    """
    Token-budget and id-generation settings for a ``ConversationSession``.

    Example::

        config = SessionConfig(window_token_limit=4_000, reserve_ratio=0.2)
        session = ConversationSession("sess_1", "Support chat", config=config)
    """

    window_token_limit: int = Field(
        default=0,
        ge=0,
        description=(
            "Default token budget for build_prompt(). 0 disables the add_summary() size "
            "gate; build_prompt() then needs an explicit limit to be useful."
        ),
    )

    reserve_ratio: float = Field(
        default=DEFAULT_RESERVE_RATIO,
        gt=0.0,
        lt=1.0,
        description=(
            "Fraction of the budget left after system messages that is set aside for a "
            "summary when a summarizer is configured."
        ),
    )

    use_sequential_ids: bool = False
    """Generate ``msg-1``, ``msg-2``, ... instead of ULID-based ids. Intended for tests."""

    @classmethod
    def default(cls) -> SessionConfig:
        """Return a config instance with all defaults."""
        return cls()
