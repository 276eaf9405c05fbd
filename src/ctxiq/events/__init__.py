"""ctxiq event bus."""

from ctxiq.events.bus import EventBus, Handler, SessionEvent
from ctxiq.events.payloads import (
    MessageAddedPayload,
    MessageDeletedPayload,
    MessageEditedPayload,
    MessagesReplacedPayload,
    SessionClonedPayload,
    SessionOnlyPayload,
    SummaryAddedPayload,
    SummaryDeletedPayload,
)

__all__ = [
    "EventBus",
    "Handler",
    "MessageAddedPayload",
    "MessageDeletedPayload",
    "MessageEditedPayload",
    "MessagesReplacedPayload",
    "SessionClonedPayload",
    "SessionEvent",
    "SessionOnlyPayload",
    "SummaryAddedPayload",
    "SummaryDeletedPayload",
]
