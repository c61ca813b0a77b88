"""Context selection for synthesis.

The processor scores each source by keyword relevance, cuts the relevant windows out of its
content and distributes a fixed character budget across sources in proportion to relevance.
Optionally each source is instead condensed by the model to a length that shrinks as the number
of sources grows.
"""

from __future__ import annotations

import asyncio
import math
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence

from pydantic import Field

from searchweaver.config import Settings
from searchweaver.logging import get_logger
from searchweaver.models.source import EnhancedSource, EvidenceClass, Source

logger = get_logger(__name__)

STOPWORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
        "with", "by", "from", "as", "is", "was", "are", "were", "been", "be", "have",
        "has", "had", "do", "does", "did", "will", "would", "could", "should", "may",
        "might", "must", "can", "what", "when", "where", "how", "why", "who",
    }
)  # fmt: skip

SECTION_SEPARATOR = "\n\n[...]\n\n"
TRUNCATION_MARKER = "\n[... content truncated]"
FALLBACK_SOURCE_COUNT = 5

LOW_RELEVANCE_PHRASES = (
    "not directly related",
    "no specific information",
    "doesn't mention",
    "no relevant content",
    "unrelated to",
)
HIGH_RELEVANCE_PHRASES = (
    "specifically mentions",
    "directly addresses",
    "provides detailed",
    "explains how",
    "data shows",
    "research indicates",
)

# (source, target length in characters) -> digest
Condenser = Callable[[Source, int], Awaitable[str]]


class ProcessedSource(Source):
    """Source whose content has been cut down to its budgeted share."""

    relevance_score: float = 0.0
    extracted_sections: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class ContextResult:
    """Outcome of :meth:`ContextProcessor.process` or :meth:`ContextProcessor.summarize`.

    On failure ``ok`` is false, ``sources`` is empty and ``error`` says why; callers fall back to
    the unprocessed sources.
    """

    ok: bool
    sources: list[ProcessedSource] = field(default_factory=list)
    error: str | None = None


def extract_keywords(query: str, search_queries: Sequence[str] = ()) -> list[str]:
    text = " ".join([query, *search_queries]).lower()
    words = [w for w in re.split(r"\W+", text) if len(w) > 2 and w not in STOPWORDS]
    phrases = re.findall(r'"([^"]+)"', text)
    return list(dict.fromkeys([*words, *phrases]))


def _base_fields(source: Source) -> dict[str, object]:
    return source.model_dump(include=set(Source.model_fields))


def summary_length_for(source_count: int) -> int:
    """Target summary length for a batch of ``source_count`` sources."""

    if source_count <= 5:
        return 4000
    if source_count <= 10:
        return 3000
    if source_count <= 20:
        return 2000
    if source_count <= 30:
        return 1500
    return 1000


def relevance_from_digest(digest: str, keywords: Sequence[str]) -> float:
    """Relevance of a model digest: 0.6 x length/phrase score + 0.4 x keyword coverage."""

    lowered = digest.lower()
    if any(phrase in lowered for phrase in LOW_RELEVANCE_PHRASES):
        return 0.1
    score = min(len(digest) / 2000, 1.0)
    if any(phrase in lowered for phrase in HIGH_RELEVANCE_PHRASES):
        score = min(score + 0.3, 1.0)
    coverage = sum(1 for k in keywords if k in lowered) / len(keywords) if keywords else 0.5
    return score * 0.6 + coverage * 0.4


class ContextProcessor:
    def __init__(
        self,
        *,
        max_total_chars: int = 100_000,
        min_chars_per_source: int = 2000,
        max_chars_per_source: int = 15_000,
        window_chars: int = 500,
        min_content_length: int = 100,
    ) -> None:
        self.max_total_chars = max_total_chars
        self.min_chars_per_source = min_chars_per_source
        self.max_chars_per_source = max_chars_per_source
        self.window_chars = window_chars
        self.min_content_length = min_content_length

    @classmethod
    def from_settings(cls, settings: Settings) -> ContextProcessor:
        return cls(
            max_total_chars=settings.context_max_total_chars,
            min_chars_per_source=settings.context_min_chars_per_source,
            max_chars_per_source=settings.context_max_chars_per_source,
            window_chars=settings.context_window_chars,
            min_content_length=settings.min_content_length,
        )

    def process(self, query: str, sources: Sequence[Source], search_queries: Sequence[str]) -> ContextResult:
        """Select and budget the context for ``query``. Never raises."""

        try:
            keywords = extract_keywords(query, search_queries)
            scored = [self.score_source(s, keywords) for s in sources]
            budgeted = self.distribute_budget(scored)
        except Exception as e:
            logger.exception("Context processing failed", extra={"sources": len(sources)})
            return ContextResult(ok=False, error=f"{type(e).__name__}: {e}")
        logger.info(
            "Context selected",
            extra={
                "sources_in": len(sources),
                "sources_out": len(budgeted),
                "chars": sum(len(s.content or "") for s in budgeted),
            },
        )
        return ContextResult(ok=True, sources=budgeted)

    async def summarize(
        self,
        query: str,
        sources: Sequence[Source],
        search_queries: Sequence[str],
        condense: Condenser,
    ) -> ContextResult:
        """Replace each source's content with a model-written digest of the relevant parts.

        The digest length comes from :func:`summary_length_for`. A source whose digest fails goes
        through keyword selection instead. Sources with no relevance are dropped and the rest are
        ordered by relevance. Never raises.
        """

        try:
            keywords = extract_keywords(query, search_queries)
            target = summary_length_for(len(sources))
            condensed = await asyncio.gather(*[self._condense_one(s, keywords, target, condense) for s in sources])
        except Exception as e:
            logger.exception("Context summarization failed", extra={"sources": len(sources)})
            return ContextResult(ok=False, error=f"{type(e).__name__}: {e}")
        kept = sorted((s for s in condensed if s.relevance_score > 0), key=lambda s: s.relevance_score, reverse=True)
        logger.info(
            "Context summarized",
            extra={"sources_in": len(sources), "sources_out": len(kept), "target": target},
        )
        return ContextResult(ok=True, sources=kept)

    async def _condense_one(
        self, source: Source, keywords: Sequence[str], target: int, condense: Condenser
    ) -> ProcessedSource:
        if len(source.content or "") < self.min_content_length:
            return ProcessedSource(**_base_fields(source), relevance_score=0.0)
        try:
            digest = (await condense(source, target)).strip()
        except Exception as e:
            logger.warning("Source digest failed", extra={"url": source.url, "error_type": type(e).__name__})
            scored = self.score_source(source, keywords)
            budgeted = self.distribute_budget([scored])
            return budgeted[0] if budgeted else scored
        return ProcessedSource(
            **{**_base_fields(source), "content": digest},
            relevance_score=relevance_from_digest(digest, keywords),
            extracted_sections=[digest],
            keywords=list(keywords),
        )


    def score_source(self, source: Source, keywords: Sequence[str]) -> ProcessedSource:
        content = source.content or ""
        if len(content) < self.min_content_length:
            return ProcessedSource(**_base_fields(source), relevance_score=0.0)

        positions: list[int] = []
        found: list[str] = []
        for keyword in keywords:
            hits = [m.start() for m in re.finditer(f"(?={re.escape(keyword)})", content, re.IGNORECASE)]
            if hits:
                found.append(keyword)
                positions.extend(hits)

        coverage = len(found) / len(keywords) if keywords else 0.0
        density = len(positions) / len(content) * 1000
        relevance = coverage * 0.7 + min(density / 10, 1.0) * 0.3
        return ProcessedSource(
            **_base_fields(source),
            relevance_score=relevance,
            extracted_sections=self.extract_sections(content, positions),
            keywords=found,
        )

    def extract_sections(self, content: str, positions: Sequence[int]) -> list[str]:
        """Windows around keyword hits, merged and widened to sentence boundaries."""

        if not positions:
            return [content[: self.min_chars_per_source]]

        windows: list[list[int]] = []
        for pos in sorted(positions):
            start = max(0, pos - self.window_chars)
            end = min(len(content), pos + self.window_chars)
            if windows and start <= windows[-1][1]:
                windows[-1][1] = end
            else:
                windows.append([start, end])

        sections: list[str] = []
        for start, end in windows:
            start = max(content.rfind(".", 0, start + 1) + 1, content.rfind("\n", 0, start + 1) + 1)
            next_period = content.find(".", end)
            next_newline = content.find("\n", end)
            if next_period != -1 or next_newline != -1:
                end = min(
                    next_period + 1 if next_period != -1 else len(content),
                    next_newline if next_newline != -1 else len(content),
                )
            section = content[start:end].strip()
            if section:
                sections.append(section)
        return sections

    def distribute_budget(self, sources: Sequence[ProcessedSource]) -> list[ProcessedSource]:
        """Share ``max_total_chars`` across relevant sources.

        Each source gets ``min(max(MIN, min(share, MAX)), remaining)`` characters, so the total
        never exceeds the budget. When nothing is relevant, the first few sources are passed on
        truncated to the per-source maximum.
        """

        relevant = sorted((s for s in sources if s.relevance_score > 0), key=lambda s: s.relevance_score, reverse=True)
        if not relevant:
            return [
                s.model_copy(update={"content": (s.content or "")[: self.max_chars_per_source]})
                for s in sources[:FALLBACK_SOURCE_COUNT]
            ]

        total_relevance = sum(s.relevance_score for s in relevant)
        remaining = self.max_total_chars
        out: list[ProcessedSource] = []
        for source in relevant:
            if remaining <= 0:
                break
            share = math.floor(source.relevance_score / total_relevance * self.max_total_chars)
            target = min(max(self.min_chars_per_source, min(share, self.max_chars_per_source)), remaining)
            content = self._fit(source, target)
            remaining -= len(content)
            out.append(source.model_copy(update={"content": content}))
        return out

    @staticmethod
    def _fit(source: ProcessedSource, target: int) -> str:
        raw = source.content or ""
        if source.extracted_sections:
            content = SECTION_SEPARATOR.join(source.extracted_sections)
            if len(content) < target and raw:
                content = raw[: target - len(content)] + SECTION_SEPARATOR + content
        else:
            content = raw[:target]

        if len(content) > target:
            if target <= len(TRUNCATION_MARKER):
                return content[:target]
            content = content[: target - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
        return content


EVIDENCE_SYMBOLS = {
    EvidenceClass.PRIMARY: "🟢",
    EvidenceClass.META: "🔵",
    EvidenceClass.PEER: "🟡",
    EvidenceClass.EXPERT: "🟠",
    EvidenceClass.GRAY: "⚪",
    EvidenceClass.ANECDOTAL: "🔴",
}


def source_quality_table(sources: Sequence[EnhancedSource]) -> str:
    """Markdown table of the evidence class and authority of each source."""

    rows = []
    for i, s in enumerate(sources, start=1):
        filled = round(s.authority_score * 5)
        authority = "█" * filled + "░" * (5 - filled)
        conflicts = s.conflicts_of_interest[0][:30] + "..." if s.conflicts_of_interest else "None"
        title = s.title if len(s.title) <= 40 else s.title[:37] + "..."
        rows.append(
            f"| {i} | {title} | {EVIDENCE_SYMBOLS.get(s.evidence_class, '⚪')} | {authority} | "
            f"{s.publication_date or 'N/A'} | {'Yes' if s.open_access else 'No'} | {conflicts} |"
        )
    header = "| # | Source | Type | Auth. | Date | Open | Conflicts |\n|---|--------|------|-------|------|------|-----------|"
    return "\n".join([header, *rows])


def integrity_statement(sources: Sequence[EnhancedSource], confidence: int, current_date: str) -> str:
    primary = sum(1 for s in sources if s.evidence_class == EvidenceClass.PRIMARY)
    peer = sum(1 for s in sources if s.evidence_class in (EvidenceClass.PEER, EvidenceClass.META))
    gray = sum(1 for s in sources if s.evidence_class in (EvidenceClass.GRAY, EvidenceClass.ANECDOTAL))
    conflicts = any(s.conflicts_of_interest for s in sources)
    contested = sum(1 for s in sources if s.contradicted_by)

    if confidence >= 80:
        level = "Very High"
    elif confidence >= 60:
        level = "High"
    elif confidence >= 40:
        level = "Medium"
    else:
        level = "Low"

    lines = [
        "---",
        "**Research Integrity Note**",
        f"- Sources analyzed: {len(sources)}",
        f"- Primary: {primary} | Peer-reviewed: {peer} | Gray literature: {gray}",
        f"- Potential conflicts identified: {'Yes' if conflicts else 'No'}",
    ]
    if contested:
        lines.append(f"- Sources with contradicting claims: {contested}")
    lines += [f"- Overall confidence: {level} ({confidence}%)", f"- Analysis date: {current_date}"]
    return "\n".join(lines)
