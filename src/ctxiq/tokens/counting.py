"""Token-counting glue between sessions and pluggable counter hooks."""

from __future__ import annotations

import inspect
import re
from collections.abc import Awaitable, Callable

import structlog

TokenCounter = Callable[[str], "int | Awaitable[int]"]

logger = structlog.get_logger("ctxiq.tokens")

_NEWLINES = re.compile(r"[\r\n]+")


def naive_token_count(text: str) -> int:
    """Word count: newlines collapsed to spaces, split on whitespace, empties dropped."""
    return len(_NEWLINES.sub(" ", text).split())


def _valid(count: object) -> bool:
    # bool is an int subclass; True must not count as one token
    return isinstance(count, int) and not isinstance(count, bool) and count > 0


def count_tokens(text: str, counter: TokenCounter | None = None) -> int:
    """
    Count tokens in ``text`` using ``counter`` when it yields a positive integer.

    Any exception from the counter, a non-positive or non-integer result, or an
    awaitable result (which cannot be awaited here) falls back silently to
    :func:`naive_token_count`.
    """
    if counter is not None:
        try:
            count = counter(text)
        except Exception as exc:
            logger.debug("token_counter_failed", error=str(exc))
        else:
            if inspect.isawaitable(count):
                if inspect.iscoroutine(count):
                    count.close()
                logger.debug("token_counter_async_in_sync_context")
            elif _valid(count):
                return count
            else:
                logger.debug("token_counter_invalid_result", result=repr(count))
    return naive_token_count(text)


async def acount_tokens(text: str, counter: TokenCounter | None = None) -> int:
    """Async twin of :func:`count_tokens` that awaits awaitable counter results."""
    if counter is not None:
        try:
            count = counter(text)
            if inspect.isawaitable(count):
                count = await count
        except Exception as exc:
            logger.debug("token_counter_failed", error=str(exc))
        else:
            if _valid(count):
                return count
            logger.debug("token_counter_invalid_result", result=repr(count))
    return naive_token_count(text)
