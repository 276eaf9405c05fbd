"""Shared fixtures for ctxiq tests."""

from __future__ import annotations

from typing import Any

import pytest

from ctxiq.events.bus import EventBus, SessionEvent
from ctxiq.models.config import SessionConfig
from ctxiq.models.message import Message
from ctxiq.session import ConversationSession
from ctxiq.tokens.estimator import TokenEstimator


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[SessionEvent, dict[str, Any]]] = []

    def _collect(event: SessionEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def session(event_bus):
    """Empty session with sequential ids and no budget."""
    return ConversationSession(
        "sess_TEST01",
        "Test session",
        config=SessionConfig(use_sequential_ids=True),
        event_bus=event_bus,
    )


@pytest.fixture
def estimator():
    """TokenEstimator using heuristic only (no tiktoken required in tests)."""
    return TokenEstimator(encoding="heuristic")


def make_message(content: str = "hello", role: str = "user", tokens: int = 0) -> Message:
    """Helper to create a test Message."""
    return Message(role=role, content=content, tokens=tokens)


def fill(session: ConversationSession, count: int, tokens: int = 2, role: str = "user") -> list[Message]:
    """Add ``count`` messages of ``tokens`` each and return the stored copies."""
    return [
        session.add_message(make_message(f"message {i}", role=role, tokens=tokens))
        for i in range(count)
    ]


def summary_of(*messages: Message, content: str = "summary", tokens: int = 1) -> Message:
    """Helper to create a summary covering ``messages``."""
    return Message(
        role="summary",
        content=content,
        tokens=tokens,
        summary_of=[m.id for m in messages],
    )
