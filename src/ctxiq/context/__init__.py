"""Prompt assembly: compaction, window selection and the prompt builder."""

from ctxiq.context.builder import PromptBudget, PromptBuilder, Summarizer
from ctxiq.context.window import MessageWindow, compact_messages, get_message_window

__all__ = [
    "MessageWindow",
    "PromptBudget",
    "PromptBuilder",
    "Summarizer",
    "compact_messages",
    "get_message_window",
]
