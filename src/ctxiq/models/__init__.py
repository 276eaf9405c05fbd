"""ctxiq data models."""

from ctxiq.models.config import DEFAULT_RESERVE_RATIO, SessionConfig
from ctxiq.models.message import Message, Role, now_ms
from ctxiq.models.snapshot import MessageRecord, SessionSnapshot

__all__ = [
    # Config
    "DEFAULT_RESERVE_RATIO",
    "SessionConfig",
    # Message
    "Message",
    "Role",
    "now_ms",
    # Snapshot
    "MessageRecord",
    "SessionSnapshot",
]
