"""Tests for evidence classification and cross-referencing."""

from __future__ import annotations

from searchweaver.models.source import ConsensusLevel, EnhancedSource, EvidenceClass, Source
from searchweaver.research.evidence import (
    QualityFlag,
    ResearchDomain,
    ResearchPhase,
    build_research_context,
    calculate_authority_score,
    classify_evidence_type,
    cross_reference_sources,
    detect_conflicts_of_interest,
    detect_research_domain,
    enrich_source,
    enrich_sources,
    extract_doi,
    extract_event_years,
    extract_publication_date,
)


def _cls(url: str, title: str = "", content: str = "") -> EvidenceClass:
    return classify_evidence_type(Source(url=url, title=title, content=content))


def test_classify_evidence_type_by_url() -> None:
    """It should classify sources by their URL patterns."""

    assert _cls("https://clinicaltrials.gov/ct2/show/NCT0001") == EvidenceClass.PRIMARY
    assert _cls("https://www.reddit.com/r/science/comments/x") == EvidenceClass.ANECDOTAL
    assert _cls("https://x.com/someone/status/1") == EvidenceClass.ANECDOTAL
    assert _cls("https://www.nature.com/articles/s41586") == EvidenceClass.PEER
    assert _cls("https://www.nature.com/news/story") == EvidenceClass.GRAY
    assert _cls("https://www.cdc.gov/flu/index.html") == EvidenceClass.EXPERT
    assert _cls("https://en.wikipedia.org/wiki/Python") == EvidenceClass.EXPERT
    assert _cls("https://example.com/page") == EvidenceClass.GRAY


def test_x_com_pattern_needs_a_boundary() -> None:
    """It should not treat hosts that merely end in 'x.com' as social media."""

    assert _cls("https://www.dropbox.com/s/file") == EvidenceClass.GRAY


def test_meta_analysis_detected_from_title() -> None:
    """It should classify systematic reviews as meta-analyses."""

    assert _cls("https://example.com/paper", title="A systematic review of sleep studies") == EvidenceClass.META


def test_authority_score_bonuses_and_penalties() -> None:
    """It should start from the class weight, add a .gov bonus and penalise thin content."""

    source = Source(url="https://www.cdc.gov/flu/index.html", content="")
    assert calculate_authority_score(source, EvidenceClass.EXPERT) == 0.7

    missing = Source(url="https://example.com", content="404 page not found")
    assert calculate_authority_score(missing, EvidenceClass.GRAY) == 0.1


def test_extract_doi_from_content_and_url() -> None:
    """It should find DOIs in either the content or the URL."""

    assert extract_doi(Source(url="https://example.com", content="See doi:10.1000/xyz123 for details")) == "10.1000/xyz123"
    assert extract_doi(Source(url="https://doi.org/10.1038/nature12373")) == "10.1038/nature12373"
    assert extract_doi(Source(url="https://example.com", content="no identifiers")) is None


def test_detect_conflicts_of_interest() -> None:
    """It should report industry funding and ignore declared absence of conflicts."""

    conflicts = detect_conflicts_of_interest("This study was funded by Acme Pharma Inc. Results follow.")
    assert conflicts == ["Industry funding: Acme Pharma Inc"]
    assert detect_conflicts_of_interest("Conflict of interest: none declared.") == []


def test_extract_publication_date() -> None:
    """It should prefer an explicit published date."""

    assert extract_publication_date(Source(url="u", content="Published: 2023-04-05 by staff")) == "2023-04-05"
    assert extract_publication_date(Source(url="u", content="no dates here")) is None


def _company(url: str, year: str) -> EnhancedSource:
    content = f"Acme Robotics was founded in {year} in Boston and builds warehouse robots for logistics companies."
    return EnhancedSource(url=url, title="Acme", content=content)


def test_extract_event_years() -> None:
    """It should map event verbs to the years stated next to them."""

    assert extract_event_years("The firm was founded in 1998 and acquired in 2015.") == {
        "founded": {"1998"},
        "acquired": {"2015"},
    }


def test_cross_reference_strong_consensus() -> None:
    """It should mark sources corroborated by two others as strong consensus."""

    sources = [_company(f"https://s{i}", "1998") for i in range(3)]
    out = cross_reference_sources(sources)
    assert all(s.consensus_level == ConsensusLevel.STRONG for s in out)
    assert out[0].corroborated_by == ["https://s1", "https://s2"]


def test_cross_reference_detects_conflicting_years() -> None:
    """It should mark related sources with different event years as conflicting."""

    a = _company("https://a", "1998")
    b = _company("https://b", "2001")
    c = _company("https://c", "1998")
    out = {s.url: s for s in cross_reference_sources([a, b, c])}

    assert out["https://a"].consensus_level == ConsensusLevel.CONFLICTING
    assert out["https://a"].corroborated_by == ["https://c"]
    assert out["https://a"].contradicted_by == ["https://b"]
    assert out["https://b"].contradicted_by == ["https://a", "https://c"]
    assert out["https://b"].corroborated_by == []


def test_cross_reference_unrelated_is_sole() -> None:
    """It should leave unrelated sources as sole."""

    a = _company("https://a", "1998")
    b = EnhancedSource(url="https://b", content="Completely different material about tropical weather systems.")
    out = cross_reference_sources([a, b])
    assert [s.consensus_level for s in out] == [ConsensusLevel.SOLE, ConsensusLevel.SOLE]


def test_enrich_source_is_idempotent() -> None:
    """It should return already enhanced sources unchanged."""

    enhanced = enrich_source(Source(url="https://pubmed.ncbi.nlm.nih.gov/123", title="T", content="peer-reviewed"))
    assert enhanced.evidence_class == EvidenceClass.PEER
    assert enhanced.peer_reviewed
    assert enrich_source(enhanced) is enhanced
    assert len(enrich_sources([enhanced, Source(url="https://example.com")])) == 2


def test_build_research_context() -> None:
    """It should derive phase, sensitivity, quantitative need and flags."""

    ctx = build_research_context([], ResearchDomain.MEDICAL_DRUG, "compare how many patients respond versus placebo")
    assert ctx.phase == ResearchPhase.REVIEW
    assert ctx.temporal_sensitivity == "high"
    assert ctx.requires_quantitative_data
    assert ctx.quality_flags == [QualityFlag.LIMITED_DATA]
    assert ctx.overall_confidence == 0

    gray = [EnhancedSource(url=f"https://g{i}", evidence_class=EvidenceClass.GRAY, authority_score=0.5) for i in range(3)]
    ctx = build_research_context(gray, ResearchDomain.GENERAL, "confirm the claim")
    assert ctx.phase == ResearchPhase.CONFIRMATORY
    assert QualityFlag.EMERGING in ctx.quality_flags
    assert 10 <= ctx.overall_confidence <= 95


def test_detect_research_domain() -> None:
    """It should map the provider and suggested mode to a research domain."""

    assert detect_research_domain("semantic-scholar", None) == ResearchDomain.SCIENTIFIC_DISCOVERY
    assert detect_research_domain("tavily", "medical") == ResearchDomain.MEDICAL_DRUG
    assert detect_research_domain("clinicaltrials", "search") == ResearchDomain.MEDICAL_DRUG
    assert detect_research_domain("crossref", None) == ResearchDomain.SCIENTIFIC_DISCOVERY
    assert detect_research_domain(None, None) == ResearchDomain.GENERAL
