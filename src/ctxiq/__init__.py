"""
ctxiq: conversation memory for LLM assistants.

Keeps an ordered message history within a token budget by combining
truncation and summarization, and builds a deterministic prompt for each call.

Primary entry point::

    from ctxiq import ConversationSession, Message, SessionConfig

    session = ConversationSession.create(
        "Support chat", config=SessionConfig(window_token_limit=4_000)
    )
    session.add_message(Message(role="user", content="Hello!"))
    prompt = await session.build_prompt()
"""

from ctxiq.compaction.summarizers import make_llm_summarizer, make_truncation_summarizer
from ctxiq.context.builder import PromptBuilder
from ctxiq.context.window import MessageWindow, compact_messages, get_message_window
from ctxiq.errors import (
    CtxIQError,
    FormatterOutputError,
    MergeNotSupportedError,
    SummaryBudgetError,
    UnknownProviderError,
)
from ctxiq.events.bus import EventBus, SessionEvent
from ctxiq.llm import Caller, LazyCaller, LLMConfig, MockCaller, create_caller
from ctxiq.models import Message, SessionConfig, SessionSnapshot
from ctxiq.session import ConversationSession, make_id
from ctxiq.tokens.counting import count_tokens, naive_token_count
from ctxiq.tokens.estimator import TokenEstimator

__version__ = "0.1.0"

__all__ = [
    # Core
    "ConversationSession",
    "make_id",
    # Models
    "Message",
    "SessionConfig",
    "SessionSnapshot",
    # Prompt assembly
    "PromptBuilder",
    "MessageWindow",
    "compact_messages",
    "get_message_window",
    # Events
    "EventBus",
    "SessionEvent",
    # Errors
    "CtxIQError",
    "FormatterOutputError",
    "MergeNotSupportedError",
    "SummaryBudgetError",
    "UnknownProviderError",
    # Tokens
    "TokenEstimator",
    "count_tokens",
    "naive_token_count",
    # Summarizers
    "make_llm_summarizer",
    "make_truncation_summarizer",
    # LLM callers
    "Caller",
    "LLMConfig",
    "LazyCaller",
    "MockCaller",
    "create_caller",
]
