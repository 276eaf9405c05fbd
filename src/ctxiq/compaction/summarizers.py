"""Ready-made summarizer hooks for ``ConversationSession(summarizer=...)``.

Two strategies:

* **Truncation**: deterministic, no LLM. Keeps the most recent overflow
  messages that fit the reserve behind a truncation header. Always succeeds.

* **LLM**: renders the overflow into a transcript, asks a :class:`Caller`
  for a summary capped at the reserve, and falls back to truncation when the
  call fails or the result is too large.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence

import structlog
from jinja2 import Template

from ctxiq.llm.base import Caller, CallOptions
from ctxiq.llm.factory import LazyCaller, LLMConfig, ProviderRegistry
from ctxiq.models.message import Message
from ctxiq.tokens.counting import TokenCounter, acount_tokens, count_tokens

logger = structlog.get_logger("ctxiq.compaction.summarizers")

TRUNCATION_HEADER = "[Earlier conversation truncated]"
_MIN_CONTENT = "[truncated]"
_MAX_LINE_CHARS = 500

SUMMARY_PROMPT = """\
You are compressing the earlier part of a conversation so it can continue
within a limited context window. Write a summary of at most {{ reserve }} tokens.
Preserve goals, instructions, constraints, decisions and open questions.
Drop pleasantries and repetition.

<conversation>
{% for m in messages -%}
[{{ m.role | upper }}]: {{ m.content }}
{% endfor -%}
</conversation>
"""


def _line(msg: Message) -> str:
    return f"[{msg.role.upper()}]: {msg.content[:_MAX_LINE_CHARS]}"


def truncate_to_summary(
    messages: Sequence[Message],
    reserve: int,
    counter: TokenCounter | None = None,
) -> Message:
    """
    Deterministic summary of ``messages`` that fits ``reserve`` whenever possible.

    Keeps the most recent messages (one line each, capped at 500 characters)
    that fit after the truncation header. If not even the header fits, the
    content collapses to a single ``[truncated]`` marker.
    """
    header_tokens = count_tokens(TRUNCATION_HEADER, counter)
    if header_tokens > reserve:
        return Message(
            role="summary", content=_MIN_CONTENT, tokens=count_tokens(_MIN_CONTENT, counter)
        )

    kept: list[str] = []
    used = header_tokens
    for msg in reversed(messages):
        line = _line(msg)
        line_tokens = count_tokens(line, counter)
        if used + line_tokens > reserve:
            break
        kept.append(line)
        used += line_tokens
    kept.reverse()

    content = "\n".join([TRUNCATION_HEADER, *kept])
    tokens = count_tokens(content, counter)
    logger.debug(
        "truncation_summary_produced",
        kept_messages=len(kept),
        total_messages=len(messages),
        tokens=tokens,
        reserve=reserve,
    )
    return Message(role="summary", content=content, tokens=tokens)


def make_truncation_summarizer(
    counter: TokenCounter | None = None,
) -> Callable[[list[Message], int], Message]:
    """Summarizer hook wrapping :func:`truncate_to_summary`. Use the session's counter."""

    def summarize(messages: list[Message], reserve: int) -> Message:
        return truncate_to_summary(messages, reserve, counter)

    return summarize


def make_llm_summarizer(
    caller: Caller | LLMConfig,
    *,
    prompt: str | None = None,
    counter: TokenCounter | None = None,
    registry: ProviderRegistry | None = None,
) -> Callable[[list[Message], int], Awaitable[Message]]:
    """
    Async summarizer hook that asks an LLM to summarize the overflow.

    Args:
        caller: A ready caller, or an ``LLMConfig`` resolved lazily on first use.
        prompt: Jinja2 template with ``messages`` and ``reserve`` variables.
            Defaults to :data:`SUMMARY_PROMPT`.
        counter: Token counter used to check the result against the reserve.
        registry: Provider registry for resolving an ``LLMConfig``.

    Returns:
        ``async (messages, reserve) -> Message``. Never raises for LLM
        errors; falls back to :func:`truncate_to_summary` instead.
    """
    lazy = LazyCaller(caller, registry)
    template = Template(prompt if prompt is not None else SUMMARY_PROMPT)

    async def summarize(messages: list[Message], reserve: int) -> Message:
        rendered = template.render(messages=messages, reserve=reserve)
        try:
            response = await lazy.get().call(
                [Message(role="user", content=rendered)],
                CallOptions(max_tokens=reserve),
            )
        except Exception as exc:
            logger.warning("llm_summary_failed", error=str(exc))
            return truncate_to_summary(messages, reserve, counter)

        text = response.text.strip()
        tokens = await acount_tokens(text, counter) if text else 0
        if not text or tokens > reserve:
            logger.info("llm_summary_unusable", tokens=tokens, reserve=reserve)
            return truncate_to_summary(messages, reserve, counter)

        logger.info("llm_summary_produced", tokens=tokens, covered=len(messages))
        return Message(role="summary", content=text, tokens=tokens)

    return summarize
