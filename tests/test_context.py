"""Tests for context selection and budgeting."""

from __future__ import annotations

import asyncio

from searchweaver.models.source import EnhancedSource, EvidenceClass, Source
from searchweaver.research.context import (
    TRUNCATION_MARKER,
    ContextProcessor,
    extract_keywords,
    integrity_statement,
    source_quality_table,
    summary_length_for,
)


def _processor(**overrides: int) -> ContextProcessor:
    params = dict(
        max_total_chars=3000,
        min_chars_per_source=500,
        max_chars_per_source=2000,
        window_chars=50,
        min_content_length=10,
    )
    params.update(overrides)
    return ContextProcessor(**params)


def test_extract_keywords_drops_stopwords_and_keeps_phrases() -> None:
    """It should drop stopwords and short words and keep quoted phrases."""

    keywords = extract_keywords('What is the "rust borrow checker"', ["borrow checker rules"])
    assert "what" not in keywords
    assert "the" not in keywords
    assert "rust borrow checker" in keywords
    assert keywords.count("borrow") == 1


def test_budget_never_exceeds_total() -> None:
    """It should keep total content within the budget and truncate with a marker."""

    content = "python release notes. " * 250
    sources = [Source(url=f"https://s{i}", title=f"S{i}", content=content) for i in range(4)]

    result = _processor().process("python release", sources, [])

    assert result.ok
    assert len(result.sources) == 4
    total = sum(len(s.content or "") for s in result.sources)
    assert total <= 3000
    for s in result.sources:
        assert 740 <= len(s.content or "") <= 750
        assert (s.content or "").endswith(TRUNCATION_MARKER)
        assert s.relevance_score > 0


def test_more_relevant_sources_come_first() -> None:
    """It should order relevant sources by relevance and drop irrelevant ones."""

    sources = [
        Source(url="https://weak", content="python appears once here. " + "filler text. " * 40),
        Source(url="https://none", content="nothing related at all. " * 20),
        Source(url="https://strong", content="python release python release. " * 40),
    ]
    result = _processor().process("python release", sources, [])
    assert [s.url for s in result.sources] == ["https://strong", "https://weak"]


def test_zero_relevance_falls_back_to_first_sources() -> None:
    """It should pass the first five sources truncated when nothing matches."""

    sources = [Source(url=f"https://s{i}", content="lorem ipsum " * 20) for i in range(7)]
    result = _processor(max_chars_per_source=100).process("python", sources, [])

    assert result.ok
    assert [s.url for s in result.sources] == [f"https://s{i}" for i in range(5)]
    assert all(len(s.content or "") == 100 for s in result.sources)


def test_tiny_target_is_cut_without_marker() -> None:
    """It should hard-cut content when the target is shorter than the marker."""

    sources = [Source(url="https://s", content="python " * 50)]
    result = _processor(max_total_chars=10, min_chars_per_source=5, max_chars_per_source=10).process(
        "python", sources, []
    )
    assert len(result.sources[0].content or "") == 10
    assert TRUNCATION_MARKER not in (result.sources[0].content or "")


def test_short_content_is_not_relevant() -> None:
    """It should give zero relevance to content shorter than the minimum."""

    processor = _processor(min_content_length=100)
    scored = processor.score_source(Source(url="https://s", content="python"), ["python"])
    assert scored.relevance_score == 0.0


def test_process_reports_failure_instead_of_raising() -> None:
    """It should return a failed result when scoring raises."""

    processor = _processor()

    def boom(source: Source, keywords: list[str]) -> None:
        raise RuntimeError("scoring broke")

    processor.score_source = boom  # type: ignore[method-assign]
    result = processor.process("python", [Source(url="https://s", content="python " * 50)], [])
    assert not result.ok
    assert result.sources == []
    assert "scoring broke" in (result.error or "")


def test_processed_sources_keep_enhanced_input() -> None:
    """It should accept enhanced sources as input."""

    src = EnhancedSource(url="https://s", title="S", content="python " * 100, evidence_class=EvidenceClass.PEER)
    result = _processor().process("python", [src], [])
    assert result.ok
    assert result.sources[0].url == "https://s"


def test_summary_length_for() -> None:
    """It should shrink the summary length as the source count grows."""

    assert summary_length_for(5) == 4000
    assert summary_length_for(6) == 3000
    assert summary_length_for(20) == 2000
    assert summary_length_for(30) == 1500
    assert summary_length_for(31) == 1000


def test_integrity_statement_and_table() -> None:
    """It should summarise evidence classes and flag contradicting sources."""

    sources = [
        EnhancedSource(url="https://a", title="A", evidence_class=EvidenceClass.PRIMARY, contradicted_by=["https://b"]),
        EnhancedSource(url="https://b", title="B", evidence_class=EvidenceClass.GRAY),
    ]
    statement = integrity_statement(sources, 65, "2024-01-01")
    assert "Sources analyzed: 2" in statement
    assert "Primary: 1 | Peer-reviewed: 0 | Gray literature: 1" in statement
    assert "Sources with contradicting claims: 1" in statement
    assert "High (65%)" in statement

    table = source_quality_table(sources)
    assert table.count("\n") == 3


def test_summarize_condenses_sources_with_length_target() -> None:
    """It should digest each source to the batch target, fall back on failure and drop empty sources."""

    digests = {
        "https://a": "Python data shows rapid adoption.",
        "https://d": "This page is unrelated to the question.",
    }
    targets: list[int] = []

    async def condense(source: Source, target: int) -> str:
        targets.append(target)
        if source.url not in digests:
            raise RuntimeError("model unavailable")
        return digests[source.url] + "\n"

    sources = [
        Source(url="https://a", title="A", content="python " * 50),
        Source(url="https://b", title="B", content="tiny"),
        Source(url="https://c", title="C", content="python " * 50),
        Source(url="https://d", title="D", content="gardening tips " * 20),
    ]
    result = asyncio.run(_processor().summarize("python", sources, [], condense))

    assert result.ok
    assert targets == [summary_length_for(4)] * 3
    assert [s.url for s in result.sources] == ["https://c", "https://a", "https://d"]
    by_url = {s.url: s for s in result.sources}
    assert by_url["https://a"].content == "Python data shows rapid adoption."
    assert by_url["https://a"].extracted_sections == ["Python data shows rapid adoption."]
    assert by_url["https://d"].relevance_score == 0.1
    assert by_url["https://c"].content.startswith("python")
