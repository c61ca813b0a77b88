from __future__ import annotations

from searchweaver.prompts.search import (
    ALTERNATIVE_QUERIES_SYSTEM_PROMPT,
    ANSWER_CHECK_SYSTEM_PROMPT,
    CONTEXT_SUMMARY_SYSTEM_PROMPT,
    FOLLOW_UP_SYSTEM_PROMPT,
    NOT_RELEVANT_MARKER,
    ROUTER_SYSTEM_PROMPT,
    SUBQUERY_SYSTEM_PROMPT,
    SUMMARIZER_SYSTEM_PROMPT,
    SYNTHESIS_SYSTEM_PROMPT,
    UNDERSTAND_SYSTEM_PROMPT,
)

__all__ = [
    "ALTERNATIVE_QUERIES_SYSTEM_PROMPT",
    "ANSWER_CHECK_SYSTEM_PROMPT",
    "CONTEXT_SUMMARY_SYSTEM_PROMPT",
    "FOLLOW_UP_SYSTEM_PROMPT",
    "NOT_RELEVANT_MARKER",
    "ROUTER_SYSTEM_PROMPT",
    "SUBQUERY_SYSTEM_PROMPT",
    "SUMMARIZER_SYSTEM_PROMPT",
    "SYNTHESIS_SYSTEM_PROMPT",
    "UNDERSTAND_SYSTEM_PROMPT",
]
