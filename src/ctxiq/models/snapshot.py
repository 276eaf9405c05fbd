"""Serialized session layout used by ``to_json()`` / ``from_json()``.

The layout is camelCase so that snapshots can be stored verbatim as JSON by
any storage adaptor and read back by clients that share the format::

    {
        "id": "sess_...",
        "createdAt": 1718000000000,
        "lastModifiedAt": 1718000000123,
        "sessionName": "Support chat",
        "reservePercentage": 0.15,
        "windowTokenLimit": 4000,
        "useSequentialIds": false,
        "messageOrder": ["msg_...", ...],
        "messages": [{"id": ..., "role": ..., "content": ..., "tokens": ...,
                      "timestamp": ..., "summaryOf": null}, ...],
        "summaries": [...]
    }

``summaryOf`` is the only place a set leaks into plain data: it is written as
a list, or ``null`` when the message covers nothing.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ctxiq.models.message import Message, Role


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageRecord(_CamelModel):
    """A single message or summary as stored in a snapshot."""

    id: str
    role: Role
    content: str
    tokens: int = 0
    timestamp: int = 0
    summary_of: list[str] | None = None

    @classmethod
    def from_message(cls, msg: Message) -> MessageRecord:
        return cls(
            id=msg.id,
            role=msg.role,
            content=msg.content,
            tokens=msg.tokens,
            timestamp=msg.timestamp,
            summary_of=sorted(msg.summary_of) if msg.summary_of else None,
        )

    def to_message(self) -> Message:
        return Message(
            id=self.id,
            role=self.role,
            content=self.content,
            tokens=self.tokens,
            timestamp=self.timestamp,
            summary_of=frozenset(self.summary_of or ()),
        )


class SessionSnapshot(_CamelModel):
    """Complete, lossless session state."""

    id: str
    created_at: int
    last_modified_at: int
    session_name: str
    reserve_percentage: float
    window_token_limit: int = 0
    use_sequential_ids: bool = False
    message_order: list[str] = Field(default_factory=list)
    messages: list[MessageRecord] = Field(default_factory=list)
    summaries: list[MessageRecord] = Field(default_factory=list)

    def to_plain(self) -> dict[str, Any]:
        """Dump to a JSON-safe dict using the camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
