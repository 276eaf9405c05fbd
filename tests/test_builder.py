"""Tests for PromptBuilder via ConversationSession.build_prompt()."""

from __future__ import annotations

from typing import Any

import pytest
from structlog.testing import capture_logs

from ctxiq.compaction.summarizers import make_truncation_summarizer
from ctxiq.context.builder import PromptBudget
from ctxiq.errors import FormatterOutputError, SummaryBudgetError
from ctxiq.models.config import SessionConfig
from ctxiq.models.message import Message
from ctxiq.session import ConversationSession
from tests.conftest import fill, make_message


class RecordingSummarizer:
    """Summarizer hook that records its inputs and returns a fixed-size summary."""

    def __init__(self, tokens: int = 1, content: str = "summary") -> None:
        self.tokens = tokens
        self.content = content
        self.calls: list[tuple[list[Message], int]] = []

    def __call__(self, messages: list[Message], reserve: int) -> Message:
        self.calls.append((messages, reserve))
        return Message(role="assistant", content=self.content, tokens=self.tokens)


def _session(summarizer: Any = None, **config: Any) -> ConversationSession:
    return ConversationSession(
        "sess_BUILD",
        config=SessionConfig(use_sequential_ids=True, **config),
        summarizer=summarizer,
    )


def _snapshot_with_detached_summary(summary_tokens: int) -> dict[str, Any]:
    """Five 2-token messages plus a summary of the first four that is not in the order."""
    messages = [
        {"id": f"r{i}", "role": "user", "content": f"r{i}", "tokens": 2, "timestamp": 0}
        for i in range(1, 6)
    ]
    return {
        "id": "sess_SNAP",
        "createdAt": 0,
        "lastModifiedAt": 0,
        "sessionName": "snap",
        "reservePercentage": 0.15,
        "windowTokenLimit": 0,
        "useSequentialIds": True,
        "messageOrder": [m["id"] for m in messages],
        "messages": messages,
        "summaries": [
            {
                "id": "s1",
                "role": "summary",
                "content": "old summary",
                "tokens": summary_tokens,
                "timestamp": 0,
                "summaryOf": ["r1", "r2", "r3", "r4"],
            }
        ],
    }


class TestPromptBudget:
    def test_reserve_and_usable(self):
        budget = PromptBudget.compute(100, 0, 0.15)
        assert budget.remaining == 100
        assert budget.reserve == 15
        assert budget.usable == 85

    def test_remaining_floor_is_one(self):
        budget = PromptBudget.compute(0, 10, 0.15)
        assert budget.remaining == 1
        assert budget.reserve == 1
        assert budget.usable == 0

    def test_no_reserve_without_ratio(self):
        budget = PromptBudget.compute(10, 3, None)
        assert budget.reserve == 0
        assert budget.usable == 7


class TestTruncation:
    async def test_pure_truncation(self):
        session = _session()
        a, b, c = fill(session, 3, tokens=2)
        prompt = await session.build_prompt(4)
        assert prompt == [b, c]

    async def test_uses_session_window_by_default(self):
        session = _session(window_token_limit=4)
        _, b, c = fill(session, 3, tokens=2)
        assert await session.build_prompt() == [b, c]

    async def test_system_tokens_reserved_first(self):
        session = _session()
        system = session.add_message(make_message("sys", role="system", tokens=2))
        _, b, c = fill(session, 3, tokens=2)
        prompt = await session.build_prompt(6)
        assert prompt == [system, b, c]

    async def test_system_messages_lead_even_when_interleaved(self):
        session = _session()
        a = session.add_message(make_message("a", tokens=1))
        system = session.add_message(make_message("sys", role="system", tokens=1))
        prompt = await session.build_prompt(10)
        assert prompt == [system, a]

    async def test_summaries_kept_by_compaction(self):
        session = _session()
        a, b, c = fill(session, 3, tokens=2)
        summary = session.add_summary(
            Message(role="summary", content="s", tokens=1, summary_of=[a.id, b.id])
        )
        assert await session.build_prompt(10) == [summary, c]


class TestSystemPinning:
    @pytest.mark.parametrize("summarizer", [None, RecordingSummarizer()])
    async def test_system_message_always_first(self, summarizer):
        session = _session(summarizer)
        system = session.add_message(make_message("You are helpful.", role="system"))
        fill(session, 50, tokens=1)
        prompt = await session.build_prompt(1)
        assert prompt[0] == system

    async def test_zero_budget_with_summarizer_returns_only_system(self):
        summarizer = RecordingSummarizer()
        session = _session(summarizer)
        system = session.add_message(make_message("sys", role="system", tokens=5))
        fill(session, 3)
        assert await session.build_prompt(0) == [system]
        assert summarizer.calls == []

    async def test_system_messages_never_summarized(self):
        summarizer = RecordingSummarizer()
        session = _session(summarizer)
        session.add_message(make_message("sys", role="system", tokens=2))
        fill(session, 10, tokens=2)
        await session.build_prompt(8)
        (messages, _), = summarizer.calls
        assert all(m.role != "system" for m in messages)


class TestSummarization:
    async def test_overflow_summarized(self):
        summarizer = RecordingSummarizer(tokens=1)
        session = _session(summarizer)
        msgs = fill(session, 5, tokens=2)

        prompt = await session.build_prompt(4)

        assert len(prompt) == 2
        summary, last = prompt
        assert summary.role == "summary"
        assert summary.summary_of == {m.id for m in msgs[:4]}
        assert last == msgs[4]
        (covered, reserve), = summarizer.calls
        assert covered == msgs[:4]
        assert reserve == 1

    async def test_new_summary_persisted_after_covered_span(self):
        session = _session(RecordingSummarizer())
        msgs = fill(session, 5, tokens=2)
        summary, _ = await session.build_prompt(4)
        assert session.get_summary_by_id(summary.id) == summary
        assert session.message_order == [*(m.id for m in msgs[:4]), summary.id, msgs[4].id]

    async def test_second_build_reuses_compacted_history(self):
        summarizer = RecordingSummarizer()
        session = _session(summarizer)
        fill(session, 5, tokens=2)
        first = await session.build_prompt(4)
        second = await session.build_prompt(4)
        assert first == second
        assert len(summarizer.calls) == 1

    async def test_no_overflow_skips_summarizer(self):
        summarizer = RecordingSummarizer()
        session = _session(summarizer)
        msgs = fill(session, 3, tokens=1)
        assert await session.build_prompt(100) == msgs
        assert summarizer.calls == []

    async def test_async_summarizer(self):
        async def summarize(messages, reserve):
            return Message(role="summary", content="async", tokens=1)

        session = _session(summarize)
        fill(session, 5, tokens=2)
        prompt = await session.build_prompt(4)
        assert prompt[0].content == "async"

    async def test_mapping_result_and_missing_tokens_counted(self):
        def summarize(messages, reserve):
            return {"content": "brief"}

        session = _session(summarize)
        fill(session, 5, tokens=2)
        prompt = await session.build_prompt(4)
        assert prompt[0].role == "summary"
        assert prompt[0].tokens == 1

    async def test_async_token_counter_awaited_for_summary(self):
        async def counter(text: str) -> int:
            return 1

        def summarize(messages, reserve):
            return Message(role="summary", content="a much longer summary text")

        session = ConversationSession(
            "s", config=SessionConfig(use_sequential_ids=True), summarizer=summarize,
            token_counter=counter,
        )
        fill(session, 5, tokens=2)
        prompt = await session.build_prompt(4)
        assert prompt[0].content == "a much longer summary text"
        assert prompt[0].tokens == 1

    async def test_truncation_summarizer_end_to_end(self):
        session = _session(make_truncation_summarizer())
        msgs = fill(session, 5, tokens=2)
        prompt = await session.build_prompt(4)
        assert prompt[0].role == "summary"
        assert prompt[0].tokens <= 1
        assert prompt[1] == msgs[4]


class TestOversizedSummary:
    async def test_new_summary_too_large_falls_back_to_truncation(self):
        session = _session(RecordingSummarizer(tokens=50))
        msgs = fill(session, 5, tokens=2)
        prompt = await session.build_prompt(4)
        assert prompt == msgs[3:]
        assert not session.has_summaries()

    async def test_new_summary_too_large_raises_without_fallback(self):
        session = _session(RecordingSummarizer(tokens=50))
        fill(session, 5, tokens=2)
        with pytest.raises(SummaryBudgetError) as exc_info:
            await session.build_prompt(4, fallback_to_truncation=False)
        assert exc_info.value.tokens == 50
        assert exc_info.value.reserve == 1
        assert not session.has_summaries()


class TestExistingSummary:
    async def test_existing_summary_reused(self):
        summarizer = RecordingSummarizer()
        session = ConversationSession.restore(
            _snapshot_with_detached_summary(summary_tokens=1), summarizer=summarizer
        )
        prompt = await session.build_prompt(4)
        assert [m.id for m in prompt] == ["s1", "r5"]
        assert summarizer.calls == []

    async def test_existing_summary_too_large_falls_back(self):
        session = ConversationSession.restore(
            _snapshot_with_detached_summary(summary_tokens=5), summarizer=RecordingSummarizer()
        )
        prompt = await session.build_prompt(4)
        assert [m.id for m in prompt] == ["r4", "r5"]

    async def test_existing_summary_too_large_raises_without_fallback(self):
        session = ConversationSession.restore(
            _snapshot_with_detached_summary(summary_tokens=5), summarizer=RecordingSummarizer()
        )
        with pytest.raises(SummaryBudgetError) as exc_info:
            await session.build_prompt(4, fallback_to_truncation=False)
        assert exc_info.value.existing is True


class TestLLMMessages:
    async def test_default_shape(self):
        session = _session()
        session.add_message(make_message("hi", role="user"))
        session.add_message(make_message("hello", role="assistant"))
        assert await session.get_llm_messages(100) == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    async def test_sync_formatter(self):
        session = _session()
        session.llm_formatter = lambda msgs: [m.content.upper() for m in msgs]
        session.add_message(make_message("hi"))
        assert await session.get_llm_messages(100) == ["HI"]

    async def test_async_formatter(self):
        async def formatter(msgs):
            return [len(msgs)]

        session = _session()
        session.llm_formatter = formatter
        fill(session, 2)
        assert await session.get_llm_messages(100) == [2]

    async def test_formatter_must_return_list(self):
        session = _session()
        session.llm_formatter = lambda msgs: {"messages": msgs}
        session.add_message(make_message("hi"))
        with pytest.raises(FormatterOutputError, match="must return a list"):
            await session.get_llm_messages(100)


class TestRejectedSummary:
    async def test_summary_over_session_limit_used_but_not_persisted(self):
        with capture_logs() as logs:
            session = _session(RecordingSummarizer(tokens=3), window_token_limit=2)
            msgs = fill(session, 20, tokens=2)
            prompt = await session.build_prompt(20)

        assert prompt[0].role == "summary"
        assert prompt[0].id == ""
        assert prompt[1:] == msgs[12:]
        assert not session.has_summaries()
        events = [e["event"] for e in logs]
        assert "summary_not_persisted" in events
        assert "summary_created" not in events
