"""Window selection and compaction over ordered message lists."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from ctxiq.models.message import Message


@dataclass
class MessageWindow:
    """Split of a message list into the trailing slice that fits and the head that doesn't."""

    fitting: list[Message] = field(default_factory=list)
    overflow: list[Message] = field(default_factory=list)


def get_message_window(token_limit: int, messages: Sequence[Message]) -> MessageWindow:
    """
    Select the maximal trailing slice of ``messages`` whose token sum fits ``token_limit``.

    Two pointers slide left to right; whenever the running sum exceeds the
    limit the left pointer advances. The left pointer never passes the
    current right pointer, so a trailing message that alone exceeds the limit
    is still returned in ``fitting``.

    Example: tokens ``[5, 3, 4, 10, 6, 8]`` with limit 8 yields
    ``fitting == [8]`` and the first five messages as ``overflow``.
    """
    left = 0
    total = 0
    for right, msg in enumerate(messages):
        total += msg.tokens
        while total > token_limit and left < right:
            total -= messages[left].tokens
            left += 1
    return MessageWindow(fitting=list(messages[left:]), overflow=list(messages[:left]))


def compact_messages(
    order: Sequence[str],
    messages: Mapping[str, Message],
    summaries: Mapping[str, Message],
) -> list[Message]:
    """
    Collapse summarized spans of ``order`` into their summaries.

    Walks the order backwards. Summaries are always kept and mark every id
    they cover; raw messages are kept only while no later summary covers
    them. Ids missing from both collections are skipped.
    """
    result: list[Message] = []
    covered: set[str] = set()
    for msg_id in reversed(order):
        msg = messages.get(msg_id) or summaries.get(msg_id)
        if msg is None:
            continue
        if msg.is_summary:
            result.append(msg)
            covered.update(msg.summary_of)
        elif msg_id not in covered:
            result.append(msg)
    result.reverse()
    return result
