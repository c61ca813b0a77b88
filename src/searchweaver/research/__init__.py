"""Source evidence classification and context selection."""

from __future__ import annotations

from searchweaver.research.context import ContextProcessor, ContextResult, ProcessedSource
from searchweaver.research.evidence import (
    ResearchContext,
    ResearchDomain,
    build_research_context,
    detect_research_domain,
    enrich_sources,
)

__all__ = [
    "ContextProcessor",
    "ContextResult",
    "ProcessedSource",
    "ResearchContext",
    "ResearchDomain",
    "build_research_context",
    "detect_research_domain",
    "enrich_sources",
]
