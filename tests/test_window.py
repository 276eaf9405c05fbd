"""Tests for window selection and compaction."""

from __future__ import annotations

from ctxiq.context.window import compact_messages, get_message_window
from ctxiq.models.message import Message
from tests.conftest import fill, make_message, summary_of


def _with_tokens(*tokens: int) -> list[Message]:
    return [
        Message(id=f"m{i}", role="user", content=f"m{i}", tokens=t) for i, t in enumerate(tokens)
    ]


class TestMessageWindow:
    def test_maximal_trailing_run(self):
        messages = _with_tokens(5, 3, 4, 10, 6, 8)
        window = get_message_window(8, messages)
        assert [m.tokens for m in window.fitting] == [8]
        assert window.overflow == messages[:5]

    def test_everything_fits(self):
        messages = _with_tokens(1, 2, 3)
        window = get_message_window(6, messages)
        assert window.fitting == messages
        assert window.overflow == []

    def test_trailing_slice_stops_at_first_gap(self):
        messages = _with_tokens(1, 1, 5, 1, 1)
        window = get_message_window(3, messages)
        assert [m.id for m in window.fitting] == ["m3", "m4"]

    def test_lone_oversized_tail_is_kept(self):
        messages = _with_tokens(3, 10)
        window = get_message_window(8, messages)
        assert [m.id for m in window.fitting] == ["m1"]
        assert [m.id for m in window.overflow] == ["m0"]

    def test_single_oversized_message_is_kept(self):
        messages = _with_tokens(50)
        window = get_message_window(1, messages)
        assert window.fitting == messages
        assert window.overflow == []

    def test_oversized_middle_message_overflows(self):
        messages = _with_tokens(1, 20, 1, 1)
        window = get_message_window(5, messages)
        assert [m.id for m in window.fitting] == ["m2", "m3"]

    def test_empty_input(self):
        window = get_message_window(10, [])
        assert window.fitting == []
        assert window.overflow == []

    def test_session_default_uses_raw_messages(self, session):
        fill(session, 3, tokens=2)
        window = session.get_message_window(4)
        assert [m.id for m in window.fitting] == ["msg-2", "msg-3"]


class TestCompaction:
    def test_summary_replaces_covered_span(self, session):
        a, b, c = fill(session, 3)
        summary = session.add_summary(summary_of(a, b, c))
        d = session.add_message(make_message("after"))
        assert session.get_compacted_messages() == [summary, d]

    def test_partial_coverage(self, session):
        a, b, c = fill(session, 3)
        summary = session.add_summary(summary_of(a, b))
        assert session.get_compacted_messages() == [summary, c]

    def test_later_summary_suppresses_messages_of_earlier_one(self, session):
        a, b, c = fill(session, 3)
        first = session.add_summary(summary_of(a))
        second = session.add_summary(summary_of(a, b, c))
        # summaries are always kept; raw messages are suppressed by either
        assert session.get_compacted_messages() == [first, second]

    def test_summary_placed_before_its_messages_does_not_hide_them(self):
        messages = {"a": Message(id="a", role="user", content="a", tokens=1)}
        summaries = {
            "s": Message(id="s", role="summary", content="s", tokens=1, summary_of=["a"])
        }
        result = compact_messages(["s", "a"], messages, summaries)
        assert [m.id for m in result] == ["s", "a"]

    def test_unknown_ids_skipped(self):
        messages = {"a": Message(id="a", role="user", content="a", tokens=1)}
        assert [m.id for m in compact_messages(["ghost", "a"], messages, {})] == ["a"]

    def test_idempotent(self, session):
        a, b, c = fill(session, 3)
        session.add_summary(summary_of(a, b))
        first = session.get_compacted_messages()
        second = session.get_compacted_messages()
        assert first == second
        assert session.message_order == [a.id, b.id, "msg-4", c.id]
