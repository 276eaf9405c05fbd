"""ctxiq summarizer hooks."""

from ctxiq.compaction.summarizers import (
    SUMMARY_PROMPT,
    TRUNCATION_HEADER,
    make_llm_summarizer,
    make_truncation_summarizer,
    truncate_to_summary,
)

__all__ = [
    "SUMMARY_PROMPT",
    "TRUNCATION_HEADER",
    "make_llm_summarizer",
    "make_truncation_summarizer",
    "truncate_to_summary",
]
