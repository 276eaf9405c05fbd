"""In-process pub/sub event bus for conversation session change notifications."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["SessionEvent", dict[str, Any]], None | Awaitable[None]]


class SessionEvent(StrEnum):
    """All change notifications published by ``ConversationSession``.

    Typed payload definitions for each event live in
    :mod:`ctxiq.events.payloads`.

    **Payload schemas by event:**

    ``MESSAGE_ADDED``, ``MESSAGE_EDITED``
        ``session_id: str``, ``message_id: str``, ``role: str``

    ``MESSAGE_DELETED``
        ``session_id: str``, ``message_id: str``, ``existed: bool``

    ``MESSAGES_REPLACED``, ``SUMMARIES_REPLACED``
        ``session_id: str``, ``ids: list[str]``

    ``MESSAGES_CLEARED``, ``SUMMARIES_CLEARED``, ``SESSION_LOADED``
        ``session_id: str``

    ``SUMMARY_ADDED``
        ``session_id: str``, ``summary_id: str``, ``summary_of: list[str]``

    ``SUMMARY_DELETED``
        ``session_id: str``, ``summary_id: str``, ``existed: bool``

    ``SESSION_CLONED``
        ``session_id: str``, ``clone_id: str``, ``clone_name: str``
    """

    # Raw message lifecycle
    MESSAGE_ADDED = "message.added"
    MESSAGE_EDITED = "message.edited"
    MESSAGE_DELETED = "message.deleted"
    MESSAGES_CLEARED = "messages.cleared"
    MESSAGES_REPLACED = "messages.replaced"

    # Summary lifecycle
    SUMMARY_ADDED = "summary.added"
    SUMMARY_DELETED = "summary.deleted"
    SUMMARIES_REPLACED = "summaries.replaced"
    SUMMARIES_CLEARED = "summaries.cleared"

    # Session lifecycle
    SESSION_CLONED = "session.cloned"
    SESSION_LOADED = "session.loaded"


class EventBus:
    """
    In-process publish/subscribe for session change notifications.

    - ``publish()`` is called by the session only after a mutation is complete,
      so handlers always observe the new state.
    - Coroutine handlers are scheduled on the running loop and never awaited;
      with no loop running they are closed unrun.
    - A raising handler is logged as ``event_handler_error``; the mutation that
      published the event is not affected.
    - Sessions get a private bus by default. Share one bus across sessions to
      monitor them together.

    Example::

        bus = EventBus()

        def on_summary(event, payload):
            print(f"Summary {payload['summary_id']} covers {len(payload['summary_of'])} messages")

        bus.subscribe(SessionEvent.SUMMARY_ADDED, on_summary)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[SessionEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._logger = logger or structlog.get_logger("ctxiq.events")

    def subscribe(self, event: SessionEvent, handler: Handler) -> None:
        """
        Subscribe ``handler`` to one event type.

        Args:
            event: Event to receive.
            handler: ``(event, payload)`` callable, sync or async.
        """
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Subscribe ``handler`` to every event type."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: SessionEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def unsubscribe_all(self, handler: Handler) -> None:
        """Remove a handler registered with :meth:`subscribe_all`. No-op if not found."""
        try:
            self._global_handlers.remove(handler)
        except ValueError:
            pass

    def publish(self, event: SessionEvent, payload: dict[str, Any]) -> None:
        """
        Deliver ``payload`` to the handlers of ``event``, then to global handlers.

        Sync handlers run before this method returns, in subscription order.
        Coroutine handlers are handed to the running loop and not awaited.
        A failing handler is logged and does not stop delivery to the rest.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                        _task = loop.create_task(result)  # noqa: RUF006
                    except RuntimeError:
                        # No running event loop: drop the coroutine without warnings
                        result.close()
            except Exception as exc:
                self._logger.error(
                    "event_handler_error",
                    event_type=str(event),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )
