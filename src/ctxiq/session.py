"""ConversationSession: ordered message history with summaries and prompt building."""

from __future__ import annotations

import inspect
import re
from collections.abc import Awaitable, Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any

import structlog
from ulid import ULID

from ctxiq.context.builder import PromptBuilder, Summarizer
from ctxiq.context.window import MessageWindow, compact_messages, get_message_window
from ctxiq.errors import FormatterOutputError, MergeNotSupportedError
from ctxiq.events.bus import EventBus, Handler, SessionEvent
from ctxiq.models.config import SessionConfig
from ctxiq.models.message import Message, now_ms
from ctxiq.models.snapshot import MessageRecord, SessionSnapshot
from ctxiq.tokens.counting import TokenCounter, count_tokens

LLMFormatter = Callable[[list[Message]], "list[Any] | Awaitable[list[Any]]"]

_SEQUENTIAL_ID = re.compile(r"^msg-(\d+)$")


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (e.g. ``"msg"``, ``"sess"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


def _highest_sequential_id(ids: Iterable[str]) -> int:
    """Largest ``N`` among ``msg-N`` ids, so restored sequential sessions never reuse one."""
    numbers = [int(m.group(1)) for m in map(_SEQUENTIAL_ID.match, ids) if m]
    return max(numbers, default=0)


class ConversationSession:
    """
    A single conversation: raw messages, summaries, and their canonical order.

    Raw messages and summaries live in separate dicts. ``message_order`` is the
    one sequence that interleaves both; summaries are threaded into it right
    after the last message they cover, not appended at the tail.

    Usage::

        session = ConversationSession.create(
            "Support chat",
            config=SessionConfig(window_token_limit=4_000),
            summarizer=make_truncation_summarizer(),
        )
        session.add_message(Message(role="system", content="You are helpful."))
        session.add_message(Message(role="user", content="Hi!"))

        prompt = await session.build_prompt()
        llm_messages = await session.get_llm_messages()

    All CRUD operations are synchronous and run to completion before any
    event handler is called. Concurrent mutation of one instance must be
    serialized by the caller.
    """

    def __init__(
        self,
        session_id: str,
        session_name: str = "",
        *,
        config: SessionConfig | None = None,
        created_at: int | None = None,
        last_modified_at: int | None = None,
        token_counter: TokenCounter | None = None,
        summarizer: Summarizer | None = None,
        llm_formatter: LLMFormatter | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        cfg = config or SessionConfig()
        created = created_at if created_at is not None else now_ms()

        self.id = session_id
        self.session_name = session_name
        self.created_at = created
        self.last_modified_at = last_modified_at if last_modified_at is not None else created

        self.window_token_limit = cfg.window_token_limit
        self.reserve_ratio = cfg.reserve_ratio
        self.use_sequential_ids = cfg.use_sequential_ids

        self.token_counter = token_counter
        self.summarizer = summarizer
        self.llm_formatter = llm_formatter

        self._messages: dict[str, Message] = {}
        self._summaries: dict[str, Message] = {}
        self._order: list[str] = []
        self._message_counter = 0
        self._event_bus = event_bus or EventBus()
        self._prompt_builder = PromptBuilder(self)
        self._logger = structlog.get_logger("ctxiq.session").bind(session_id=session_id)

    @classmethod
    def create(cls, session_name: str = "", **kwargs: Any) -> ConversationSession:
        """Create an empty session with a fresh ``sess_<ulid>`` id."""
        return cls(make_id("sess"), session_name, **kwargs)

    @classmethod
    def restore(cls, data: Mapping[str, Any], **kwargs: Any) -> ConversationSession:
        """
        Rebuild a session from a :meth:`to_json` snapshot.

        Hooks (``token_counter``, ``summarizer``, ``llm_formatter``) and the
        ``event_bus`` are not part of the snapshot and may be passed here.
        """
        snapshot = SessionSnapshot.model_validate(data)
        session = cls(snapshot.id, snapshot.session_name, **kwargs)
        session._load_snapshot(snapshot)
        return session

    # ── Read-side ──────────────────────────────────────────────────────────────

    @property
    def messages(self) -> Mapping[str, Message]:
        """Read-only view of raw messages by id (insertion order, not prompt order)."""
        return MappingProxyType(self._messages)

    @property
    def summaries(self) -> Mapping[str, Message]:
        """Read-only view of summaries by id, in insertion order."""
        return MappingProxyType(self._summaries)

    @property
    def message_order(self) -> list[str]:
        """Copy of the canonical order over raw message and summary ids."""
        return list(self._order)

    def _resolve(self, msg_id: str) -> Message | None:
        return self._messages.get(msg_id) or self._summaries.get(msg_id)

    def get_messages(self) -> list[Message]:
        """Raw (non-summary) messages in canonical order."""
        return [self._messages[i] for i in self._order if i in self._messages]

    def get_visible_messages(self) -> list[Message]:
        return self.get_messages()

    def get_message_by_id(self, msg_id: str) -> Message | None:
        return self._messages.get(msg_id)

    def get_summaries(self) -> list[Message]:
        """Summaries in canonical order."""
        return [self._summaries[i] for i in self._order if i in self._summaries]

    def get_summary_by_id(self, summary_id: str) -> Message | None:
        return self._summaries.get(summary_id)

    def filter_messages_by_role(self, role: str) -> list[Message]:
        """All entries of ``role`` (raw or summary) in canonical order."""
        resolved = (self._resolve(i) for i in self._order)
        return [m for m in resolved if m is not None and m.role == role]

    def get_system_prompt(self) -> list[Message]:
        return self.filter_messages_by_role("system")

    def is_message_summarized(self, msg: Message) -> bool:
        """True if any summary covers ``msg``."""
        return any(msg.id in s.summary_of for s in self._summaries.values())

    def has_summaries(self) -> bool:
        return bool(self._summaries)

    def has_messages(self) -> bool:
        return bool(self._order)

    def get_first_message(self) -> Message | None:
        return self._resolve(self._order[0]) if self._order else None

    def get_last_message(self) -> Message | None:
        return self._resolve(self._order[-1]) if self._order else None

    def get_compacted_messages(self) -> list[Message]:
        """History with every summarized span collapsed into its summary."""
        return compact_messages(self._order, self._messages, self._summaries)

    def get_message_window(
        self,
        token_limit: int | None = None,
        messages: list[Message] | None = None,
    ) -> MessageWindow:
        """Window selection over ``messages`` (default: raw messages) within ``token_limit``."""
        limit = self.window_token_limit if token_limit is None else token_limit
        return get_message_window(limit, self.get_messages() if messages is None else messages)

    def count_tokens(self, text: str) -> int:
        """Count tokens with the session's counter hook, falling back to a word count."""
        return count_tokens(text, self.token_counter)

    # ── Raw messages ───────────────────────────────────────────────────────────

    def add_message(self, msg: Message) -> Message | None:
        """
        Append a message to the conversation.

        Summary-role messages are routed to :meth:`add_summary`. Any
        caller-supplied id is replaced; ``tokens`` is counted when falsy.

        Returns:
            The stored message (a copy of ``msg``), or ``None`` when a
            summary was rejected.
        """
        if msg.is_summary:
            return self.add_summary(msg)

        msg_id = self._generate_id()
        stored = msg.model_copy(
            update={"id": msg_id, "tokens": msg.tokens or self.count_tokens(msg.content)}
        )
        self._messages[msg_id] = stored
        self._remove_from_order(msg_id)
        self._order.append(msg_id)
        self._touch()
        self._emit(SessionEvent.MESSAGE_ADDED, message_id=msg_id, role=stored.role)
        return stored

    def edit_message(self, msg_id: str, new_msg: Message) -> Message | None:
        """
        Replace the raw message ``msg_id`` in place, keeping its id and position.

        Summaries are not touched. Returns ``None`` if ``msg_id`` is unknown.
        """
        if msg_id not in self._messages:
            self._logger.debug("edit_unknown_message", message_id=msg_id)
            return None
        stored = new_msg.model_copy(
            update={"id": msg_id, "tokens": new_msg.tokens or self.count_tokens(new_msg.content)}
        )
        self._messages[msg_id] = stored
        self._touch()
        self._emit(SessionEvent.MESSAGE_EDITED, message_id=msg_id, role=stored.role)
        return stored

    def delete_message(self, msg_id: str) -> bool:
        """
        Delete a raw message and strip it from every summary's coverage.

        A summary left covering nothing is deleted as well.

        Returns:
            Whether the message existed.
        """
        existed = self._messages.pop(msg_id, None) is not None
        if existed:
            self._remove_from_order(msg_id)
            for summary in list(self._summaries.values()):
                if msg_id not in summary.summary_of:
                    continue
                remaining = summary.summary_of - {msg_id}
                if remaining:
                    self._summaries[summary.id] = summary.model_copy(
                        update={"summary_of": remaining}
                    )
                else:
                    self.delete_summary(summary.id)
        self._touch()
        self._emit(SessionEvent.MESSAGE_DELETED, message_id=msg_id, existed=existed)
        return existed

    def set_messages(self, messages: Iterable[Message]) -> None:
        """Replace all raw messages. Items keep their ids and are appended to the order."""
        old_ids = set(self._messages)
        self._messages = {}
        for msg in messages:
            msg_id = msg.id or self._generate_id()
            self._messages[msg_id] = msg.model_copy(
                update={"id": msg_id, "tokens": msg.tokens or self.count_tokens(msg.content)}
            )
        new_ids = list(self._messages)
        self._sync_sequential_counter(new_ids)
        stale = old_ids | set(new_ids)
        self._order = [i for i in self._order if i not in stale] + new_ids
        self._touch()
        self._emit(SessionEvent.MESSAGES_REPLACED, ids=new_ids)

    def clear_messages(self) -> None:
        """Remove all raw messages. Summaries are kept."""
        old_ids = set(self._messages)
        self._messages = {}
        self._order = [i for i in self._order if i not in old_ids]
        self._touch()
        self._emit(SessionEvent.MESSAGES_CLEARED)

    # ── Summaries ──────────────────────────────────────────────────────────────

    def add_summary(self, summary: Message) -> Message | None:
        """
        Store a summary and thread it into the order after the last message it covers.

        Summaries larger than a non-zero ``window_token_limit`` are skipped with
        a warning.

        Returns:
            The stored summary, or ``None`` if it was rejected.
        """
        tokens = summary.tokens or self.count_tokens(summary.content)
        if self.window_token_limit > 0 and tokens > self.window_token_limit:
            self._logger.warning(
                "summary_rejected_too_large",
                tokens=tokens,
                window_token_limit=self.window_token_limit,
            )
            return None

        summary_id = self._generate_id()
        stored = summary.model_copy(
            update={
                "id": summary_id,
                "role": "summary",
                "tokens": tokens,
                "summary_of": frozenset(summary.summary_of),
            }
        )
        self._summaries[summary_id] = stored
        self._place_summary(stored)
        self._touch()
        self._emit(
            SessionEvent.SUMMARY_ADDED,
            summary_id=summary_id,
            summary_of=sorted(stored.summary_of),
        )
        return stored

    def delete_summary(self, summary_id: str) -> bool:
        """Delete a summary. Returns whether it existed."""
        existed = self._summaries.pop(summary_id, None) is not None
        if existed:
            self._remove_from_order(summary_id)
        self._touch()
        self._emit(SessionEvent.SUMMARY_DELETED, summary_id=summary_id, existed=existed)
        return existed

    def set_summaries(self, summaries: Iterable[Message]) -> None:
        """Replace all summaries. Items keep their ids and are placed after what they cover."""
        old_ids = set(self._summaries)
        self._order = [i for i in self._order if i not in old_ids]
        self._summaries = {}
        for summary in summaries:
            summary_id = summary.id or self._generate_id()
            stored = summary.model_copy(
                update={
                    "id": summary_id,
                    "role": "summary",
                    "tokens": summary.tokens or self.count_tokens(summary.content),
                }
            )
            self._summaries[summary_id] = stored
            self._place_summary(stored)
        self._sync_sequential_counter(self._summaries)
        self._touch()
        self._emit(SessionEvent.SUMMARIES_REPLACED, ids=list(self._summaries))

    def clear_summaries(self) -> None:
        """Remove all summaries. Raw messages are kept."""
        old_ids = set(self._summaries)
        self._summaries = {}
        self._order = [i for i in self._order if i not in old_ids]
        self._touch()
        self._emit(SessionEvent.SUMMARIES_CLEARED)

    def _place_summary(self, summary: Message) -> None:
        self._remove_from_order(summary.id)
        positions = [self._order.index(i) for i in summary.summary_of if i in self._order]
        if positions:
            self._order.insert(max(positions) + 1, summary.id)
        else:
            self._order.append(summary.id)

    # ── Prompt building ────────────────────────────────────────────────────────

    async def build_prompt(
        self,
        window_token_limit: int | None = None,
        fallback_to_truncation: bool = True,
    ) -> list[Message]:
        """
        Build the ordered message list for the next LLM call.

        See :class:`~ctxiq.context.builder.PromptBuilder` for the algorithm.
        A newly generated summary is persisted via :meth:`add_summary`.

        Raises:
            SummaryBudgetError: If a summary exceeds its reserve and
                ``fallback_to_truncation`` is False.
        """
        limit = self.window_token_limit if window_token_limit is None else window_token_limit
        return await self._prompt_builder.build(limit, fallback_to_truncation)

    async def get_llm_messages(self, window_size: int | None = None) -> list[Any]:
        """
        Build the prompt and shape it for an LLM API.

        Uses ``llm_formatter`` when configured (sync or async); otherwise
        returns ``{"role": ..., "content": ...}`` dicts.

        Raises:
            FormatterOutputError: If the formatter does not return a list.
        """
        prompt = await self.build_prompt(window_size)
        if self.llm_formatter is None:
            return [m.to_llm() for m in prompt]
        out = self.llm_formatter(prompt)
        if inspect.isawaitable(out):
            out = await out
        if not isinstance(out, list):
            raise FormatterOutputError(out)
        return out

    # ── Session-level ──────────────────────────────────────────────────────────

    def clone(self, new_id: str, new_name: str | None = None) -> ConversationSession:
        """
        Deep-copy this session under ``new_id``. The source is left untouched.

        The clone shares the hooks but gets its own event bus.
        """
        now = now_ms()
        cloned = ConversationSession(
            new_id,
            new_name if new_name is not None else f"{self.session_name} (Clone)",
            config=SessionConfig(
                window_token_limit=self.window_token_limit,
                reserve_ratio=self.reserve_ratio,
                use_sequential_ids=self.use_sequential_ids,
            ),
            created_at=now,
            last_modified_at=now,
            token_counter=self.token_counter,
            summarizer=self.summarizer,
            llm_formatter=self.llm_formatter,
        )
        cloned._messages = {k: m.model_copy() for k, m in self._messages.items()}
        cloned._summaries = {k: s.model_copy() for k, s in self._summaries.items()}
        cloned._order = list(self._order)
        cloned._message_counter = self._message_counter
        self._emit(SessionEvent.SESSION_CLONED, clone_id=new_id, clone_name=cloned.session_name)
        return cloned

    def merge(self, *args: Any, **kwargs: Any) -> None:
        """Not supported. Always raises :class:`~ctxiq.errors.MergeNotSupportedError`."""
        raise MergeNotSupportedError()

    def to_json(self) -> dict[str, Any]:
        """Lossless, JSON-safe snapshot. See :mod:`ctxiq.models.snapshot` for the layout."""
        snapshot = SessionSnapshot(
            id=self.id,
            created_at=self.created_at,
            last_modified_at=self.last_modified_at,
            session_name=self.session_name,
            reserve_percentage=self.reserve_ratio,
            window_token_limit=self.window_token_limit,
            use_sequential_ids=self.use_sequential_ids,
            message_order=list(self._order),
            messages=[MessageRecord.from_message(m) for m in self._messages.values()],
            summaries=[MessageRecord.from_message(s) for s in self._summaries.values()],
        )
        return snapshot.to_plain()

    def from_json(self, data: Mapping[str, Any]) -> None:
        """Replace this session's state with a :meth:`to_json` snapshot."""
        self._load_snapshot(SessionSnapshot.model_validate(data))

    def _load_snapshot(self, snapshot: SessionSnapshot) -> None:
        self.id = snapshot.id
        self.created_at = snapshot.created_at
        self.last_modified_at = snapshot.last_modified_at
        self.session_name = snapshot.session_name
        self.reserve_ratio = snapshot.reserve_percentage
        self.window_token_limit = snapshot.window_token_limit
        self.use_sequential_ids = snapshot.use_sequential_ids
        self._order = list(snapshot.message_order)
        self._messages = {r.id: r.to_message() for r in snapshot.messages}
        self._summaries = {r.id: r.to_message() for r in snapshot.summaries}
        self._message_counter = 0
        self._sync_sequential_counter([*self._messages, *self._summaries])
        self._logger = structlog.get_logger("ctxiq.session").bind(session_id=self.id)
        self._prompt_builder = PromptBuilder(self)
        self._logger.debug(
            "session_loaded",
            messages=len(self._messages),
            summaries=len(self._summaries),
        )
        self._emit(SessionEvent.SESSION_LOADED)

    # ── Events ─────────────────────────────────────────────────────────────────

    @property
    def event_bus(self) -> EventBus:
        """The event bus for this session. Subscribe to mirror state changes."""
        return self._event_bus

    def subscribe(self, event: SessionEvent, handler: Handler) -> None:
        """Convenience wrapper for ``session.event_bus.subscribe()``."""
        self._event_bus.subscribe(event, handler)

    def unsubscribe(self, event: SessionEvent, handler: Handler) -> None:
        """Convenience wrapper for ``session.event_bus.unsubscribe()``."""
        self._event_bus.unsubscribe(event, handler)

    def _emit(self, event: SessionEvent, **payload: Any) -> None:
        self._event_bus.publish(event, {"session_id": self.id, **payload})

    # ── Internals ──────────────────────────────────────────────────────────────

    def _generate_id(self) -> str:
        if self.use_sequential_ids:
            self._message_counter += 1
            return f"msg-{self._message_counter}"
        return make_id("msg")

    def _sync_sequential_counter(self, ids: Iterable[str]) -> None:
        """Move the ``msg-N`` counter past every id in ``ids``."""
        self._message_counter = max(self._message_counter, _highest_sequential_id(ids))

    def _remove_from_order(self, item_id: str) -> None:
        try:
            self._order.remove(item_id)
        except ValueError:
            pass

    def _touch(self) -> None:
        """Advance ``last_modified_at``, by at least 1 ms even if the clock has not moved."""
        now = now_ms()
        if now <= self.last_modified_at:
            now = self.last_modified_at + 1
        self.last_modified_at = now
