"""Prompt assembly algorithm."""

from __future__ import annotations

import inspect
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from ctxiq.context.window import get_message_window
from ctxiq.errors import SummaryBudgetError
from ctxiq.models.message import Message
from ctxiq.tokens.counting import acount_tokens

if TYPE_CHECKING:
    from ctxiq.session import ConversationSession

Summarizer = Callable[
    [list[Message], int],
    "Message | Mapping[str, Any] | Awaitable[Message | Mapping[str, Any]]",
]


@dataclass
class PromptBudget:
    """Token arithmetic for a single ``build()`` call."""

    window_token_limit: int
    system_tokens: int
    remaining: int
    reserve: int = 0

    @property
    def usable(self) -> int:
        """Tokens available for raw (non-summary) content."""
        return self.remaining - self.reserve

    @classmethod
    def compute(
        cls, window_token_limit: int, system_tokens: int, reserve_ratio: float | None
    ) -> PromptBudget:
        remaining = max(1, window_token_limit - system_tokens)
        reserve = 0 if reserve_ratio is None else max(1, math.floor(remaining * reserve_ratio))
        return cls(window_token_limit, system_tokens, remaining, reserve)


class PromptBuilder:
    """
    Assembles the ordered message list sent to the LLM for a session.

    Invariants:
    1. System messages are always included, first, in full. They are never
       summarized and never counted against the summarizable overflow.
    2. The remaining budget never drops below 1 token, however large the
       system messages are.
    3. With a summarizer, ``reserve`` tokens are held back for one summary
       that replaces the overflowing head of the compacted history.
    4. An existing summary covering the whole overflow is reused instead of
       generating a new one.
    5. A summary larger than ``reserve`` triggers plain truncation over the
       full remaining budget, or ``SummaryBudgetError`` when fallback is off.
    """

    def __init__(self, session: ConversationSession) -> None:
        self._session = session
        self._logger = structlog.get_logger("ctxiq.prompt_builder").bind(session_id=session.id)

    async def build(
        self,
        window_token_limit: int,
        fallback_to_truncation: bool = True,
    ) -> list[Message]:
        """
        Build the prompt for the next LLM call.

        Args:
            window_token_limit: Total token budget, system messages included.
            fallback_to_truncation: Truncate instead of raising when a summary
                does not fit its reserve.

        Returns:
            System messages, then at most one summary, then the most recent
            messages that fit.

        Raises:
            SummaryBudgetError: If a summary exceeds its reserve and
                ``fallback_to_truncation`` is False.
        """
        session = self._session
        compacted = session.get_compacted_messages()
        system_messages = [m for m in compacted if m.is_system]
        non_system = [m for m in compacted if not m.is_system]
        system_tokens = sum(m.tokens for m in system_messages)

        summarizer = session.summarizer
        budget = PromptBudget.compute(
            window_token_limit,
            system_tokens,
            session.reserve_ratio if summarizer is not None else None,
        )

        # Step 1: no summarizer means plain truncation
        if summarizer is None:
            window = get_message_window(budget.remaining, non_system)
            return self._done(system_messages + window.fitting, budget, "truncated")

        if budget.usable <= 0:
            return self._done(list(system_messages), budget, "system_only")

        # Step 2: find what overflows the usable budget
        window = get_message_window(budget.usable, non_system)
        if not window.overflow:
            return self._done(system_messages + window.fitting, budget, "fits")

        overflow_ids = {m.id for m in window.overflow}

        # Step 3: reuse an existing summary when it already covers the overflow
        if all(session.is_message_summarized(m) for m in window.overflow):
            existing = next(
                (s for s in session.summaries.values() if overflow_ids <= s.summary_of),
                None,
            )
            if existing is not None:
                if existing.tokens <= budget.reserve:
                    self._logger.debug("summary_reused", summary_id=existing.id)
                    return self._done(
                        [*system_messages, existing, *window.fitting], budget, "summary_reused"
                    )
                return self._fallback(
                    system_messages, non_system, budget, existing.tokens,
                    fallback_to_truncation, existing=True,
                )

        # Step 4: summarize the overflow
        to_summarize = [m for m in window.overflow if not m.is_system]
        result = summarizer(to_summarize, budget.reserve)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, Message):
            candidate = result
        else:
            candidate = Message.model_validate({"role": "summary", **result})
        candidate = candidate.model_copy(
            update={"role": "summary", "summary_of": frozenset(overflow_ids)}
        )
        if not candidate.tokens:
            candidate.tokens = await acount_tokens(candidate.content, session.token_counter)

        if candidate.tokens > budget.reserve:
            return self._fallback(
                system_messages, non_system, budget, candidate.tokens, fallback_to_truncation
            )

        stored = session.add_summary(candidate)
        if stored is None:
            self._logger.info(
                "summary_not_persisted",
                covered=len(overflow_ids),
                tokens=candidate.tokens,
                reserve=budget.reserve,
            )
            summary = candidate
        else:
            self._logger.info(
                "summary_created",
                summary_id=stored.id,
                covered=len(overflow_ids),
                tokens=stored.tokens,
                reserve=budget.reserve,
            )
            summary = stored
        return self._done([*system_messages, summary, *window.fitting], budget, "summarized")

    def _fallback(
        self,
        system_messages: list[Message],
        non_system: list[Message],
        budget: PromptBudget,
        summary_tokens: int,
        fallback_to_truncation: bool,
        *,
        existing: bool = False,
    ) -> list[Message]:
        if not fallback_to_truncation:
            raise SummaryBudgetError(summary_tokens, budget.reserve, existing=existing)
        self._logger.warning(
            "summary_fallback_truncation",
            summary_tokens=summary_tokens,
            reserve=budget.reserve,
            existing=existing,
        )
        window = get_message_window(budget.remaining, non_system)
        return self._done(system_messages + window.fitting, budget, "fallback_truncated")

    def _done(self, messages: list[Message], budget: PromptBudget, outcome: str) -> list[Message]:
        self._logger.debug(
            "prompt_built",
            outcome=outcome,
            message_count=len(messages),
            window_token_limit=budget.window_token_limit,
            system_tokens=budget.system_tokens,
            reserve=budget.reserve,
        )
        return messages
