"""Typed payload definitions for each SessionEvent.

Usage example::

    from ctxiq.events.bus import SessionEvent
    from ctxiq.events.payloads import SummaryAddedPayload

    def on_summary(event: SessionEvent, payload: SummaryAddedPayload) -> None:
        print(f"{payload['summary_id']} replaces {len(payload['summary_of'])} messages")

    session.subscribe(SessionEvent.SUMMARY_ADDED, on_summary)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import TypedDict

# ── Raw messages ──────────────────────────────────────────────────────────────


class MessageAddedPayload(TypedDict):
    """Payload for :attr:`SessionEvent.MESSAGE_ADDED`."""

    session_id: str
    message_id: str
    role: str


class MessageEditedPayload(TypedDict):
    """Payload for :attr:`SessionEvent.MESSAGE_EDITED`."""

    session_id: str
    message_id: str
    role: str


class MessageDeletedPayload(TypedDict):
    """Payload for :attr:`SessionEvent.MESSAGE_DELETED`."""

    session_id: str
    message_id: str
    existed: bool
    """``False`` when the id was unknown; the event still fires."""


class MessagesReplacedPayload(TypedDict):
    """Payload for :attr:`SessionEvent.MESSAGES_REPLACED` and ``SUMMARIES_REPLACED``."""

    session_id: str
    ids: list[str]


class SessionOnlyPayload(TypedDict):
    """Payload for ``MESSAGES_CLEARED``, ``SUMMARIES_CLEARED`` and ``SESSION_LOADED``."""

    session_id: str


# ── Summaries ─────────────────────────────────────────────────────────────────


class SummaryAddedPayload(TypedDict):
    """Payload for :attr:`SessionEvent.SUMMARY_ADDED`."""

    session_id: str
    summary_id: str
    summary_of: list[str]


class SummaryDeletedPayload(TypedDict):
    """Payload for :attr:`SessionEvent.SUMMARY_DELETED`."""

    session_id: str
    summary_id: str
    existed: bool


# ── Session ───────────────────────────────────────────────────────────────────


class SessionClonedPayload(TypedDict):
    """Payload for :attr:`SessionEvent.SESSION_CLONED`. Published on the source session."""

    session_id: str
    clone_id: str
    clone_name: str
