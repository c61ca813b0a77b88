"""Run-level enums shared by the engine and its events."""

from __future__ import annotations

from enum import Enum


class Phase(str, Enum):
    """Orchestration phases."""

    UNDERSTANDING = "understanding"
    PLANNING = "planning"
    SEARCHING = "searching"
    SCRAPING = "scraping"
    ANALYZING = "analyzing"
    SYNTHESIZING = "synthesizing"
    COMPLETE = "complete"
    ERROR = "error"


class ErrorKind(str, Enum):
    """Which kind of operation failed."""

    SEARCH = "search"
    SCRAPE = "scrape"
    LLM = "llm"
    UNKNOWN = "unknown"


class SourceStage(str, Enum):
    BROWSING = "browsing"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
