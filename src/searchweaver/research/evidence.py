"""Evidence classification for retrieved sources.

Sources are classified by URL and content heuristics into an :class:`EvidenceClass`, given an
authority score, and cross-referenced against each other to estimate consensus. All functions
here are pure: they take sources and return new copies.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable, Sequence
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from searchweaver.models.source import (
    EVIDENCE_WEIGHTS,
    ConsensusLevel,
    EnhancedSource,
    EvidenceClass,
    Source,
)


class ResearchDomain(str, Enum):
    SCIENTIFIC_DISCOVERY = "scientific_discovery"
    MEDICAL_DRUG = "medical_drug"
    ENVIRONMENTAL = "environmental"
    LEGAL = "legal"
    ECONOMIC = "economic"
    HISTORICAL = "historical"
    GENERAL = "general"


class ResearchPhase(str, Enum):
    EXPLORATORY = "exploratory"
    REVIEW = "review"
    CONFIRMATORY = "confirmatory"


class QualityFlag(str, Enum):
    LIMITED_DATA = "limited_data"
    FUNDING_CONCERN = "funding_concern"
    EMERGING = "emerging"


class ResearchContext(BaseModel):
    """Summary of evidence quality handed to the synthesis prompt."""

    domain: ResearchDomain = ResearchDomain.GENERAL
    phase: ResearchPhase = ResearchPhase.EXPLORATORY
    requires_quantitative_data: bool = False
    temporal_sensitivity: str = "low"
    quality_flags: list[QualityFlag] = Field(default_factory=list)
    overall_confidence: int = 0


def _compile(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


PRIMARY_SOURCE_PATTERNS = _compile(
    [
        # trial registries
        r"clinicaltrials\.gov",
        r"who\.int/clinical-trials",
        r"isrctn\.com",
        # government data
        r"data\.gov",
        r"census\.gov",
        r"bls\.gov",
        r"cdc\.gov/data",
        r"fda\.gov",
        # original datasets
        r"ncbi\.nlm\.nih\.gov/geo",
        r"ebi\.ac\.uk/arrayexpress",
        r"wwpdb\.org",
        r"finds\.org\.uk",
        r"awois\.noaa\.gov",
    ]
)

META_ANALYSIS_PATTERNS = _compile([r"cochrane", r"systematic.?review", r"meta.?analysis", r"prisma"])

PEER_REVIEWED_DOMAINS = (
    "nature.com",
    "science.org",
    "sciencedirect.com",
    "springer.com",
    "wiley.com",
    "tandfonline.com",
    "sagepub.com",
    "oup.com",
    "cambridge.org",
    "cell.com",
    "nejm.org",
    "thelancet.com",
    "bmj.com",
    "jamanetwork.com",
    "pnas.org",
    "plos.org",
    "frontiersin.org",
    "mdpi.com",
    "hindawi.com",
    "acs.org",
    "rsc.org",
    "iop.org",
    "aps.org",
    "ieee.org",
    "acm.org",
    "jstor.org",
    "pubmed.ncbi.nlm.nih.gov",
    "ncbi.nlm.nih.gov/pmc",
    "europepmc.org",
    "doaj.org",
    "arxiv.org",
    "biorxiv.org",
    "medrxiv.org",
    "ssrn.com",
)

EXPERT_INSTITUTIONAL_PATTERNS = _compile(
    [
        r"\.gov($|/)",
        r"\.gov\.[a-z]{2}($|/)",
        r"who\.int",
        r"worldbank\.org",
        r"imf\.org",
        r"un\.org",
        r"oecd\.org",
        r"europa\.eu",
        r"ama-assn\.org",
        r"heart\.org",
        r"cancer\.org",
        r"diabetes\.org",
        r"\.edu($|/)",
        r"\.ac\.[a-z]{2}($|/)",
        r"nih\.gov",
        r"nasa\.gov",
        r"noaa\.gov",
        r"usgs\.gov",
        r"brookings\.edu",
        r"rand\.org",
        r"pewresearch\.org",
    ]
)

GRAY_LITERATURE_PATTERNS = _compile(
    [
        # preprints
        r"arxiv\.org",
        r"biorxiv\.org",
        r"medrxiv\.org",
        r"ssrn\.com",
        r"preprints\.org",
        r"osf\.io/preprints",
        # news
        r"reuters\.com",
        r"apnews\.com",
        r"bbc\.com|bbc\.co\.uk",
        r"nytimes\.com",
        r"washingtonpost\.com",
        r"theguardian\.com",
        r"economist\.com",
        r"nature\.com/news",
        r"sciencemag\.org/news",
        r"techcrunch\.com",
        r"wired\.com",
        r"arstechnica\.com",
        r"theverge\.com",
        # blogs
        r"blog\.",
        r"medium\.com",
        r"substack\.com",
    ]
)

ANECDOTAL_PATTERNS = _compile(
    [
        r"reddit\.com",
        r"quora\.com",
        r"stackexchange\.com",
        r"stackoverflow\.com",
        r"twitter\.com|(?:^|[/.])x\.com",
        r"facebook\.com",
        r"linkedin\.com",
        r"fandom\.com",
        r"wikia\.com",
    ]
)

OPEN_ACCESS_PATTERNS = _compile(
    [
        r"plos\.",
        r"frontiersin\.org",
        r"mdpi\.com",
        r"hindawi\.com",
        r"bmc[a-z]*\.biomedcentral\.com",
        r"ncbi\.nlm\.nih\.gov/pmc",
        r"europepmc\.org",
        r"doaj\.org",
        r"arxiv\.org",
        r"biorxiv\.org",
        r"medrxiv\.org",
        r"wikipedia\.org",
        r"wikimedia\.org",
    ]
)

PEER_REVIEW_INDICATORS = (
    "peer-reviewed",
    "peer reviewed",
    "refereed",
    "accepted for publication",
    "manuscript received",
    "revised manuscript",
)

OPEN_ACCESS_INDICATORS = (
    "open access",
    "creative commons",
    "cc by",
    "cc-by",
    "freely available",
    "public domain",
)

DATE_PATTERNS = _compile(
    [
        r"(?:published|date|posted|updated)[:\s]+(\d{4}-\d{2}-\d{2})",
        r"(?:published|date|posted)[:\s]+([A-Z][a-z]+ \d{1,2},? \d{4})",
        r"(?:published|date|posted)[:\s]+(\d{1,2} [A-Z][a-z]+ \d{4})",
        r"(?:published|date)[:\s]+(\d{4}-\d{2})(?!\d)",
    ]
)

DOI_PATTERNS = _compile(
    [
        r"doi[:\s]+?(10\.\d{4,}/[^\s\"'<>]+)",
        r"doi\.org/(10\.\d{4,}/[^\s\"'<>]+)",
        r"https?://dx\.doi\.org/(10\.\d{4,}/[^\s\"'<>]+)",
    ]
)

FUNDING_PATTERNS = _compile(
    [
        r"funded by ([^.]+)",
        r"supported by ([^.]+)",
        r"grant from ([^.]+)",
        r"financial support from ([^.]+)",
    ]
)

_INDUSTRY_RE = re.compile(r"pharma|inc\.|corp\.|ltd\.|llc|company|industry", re.IGNORECASE)
_COI_RE = re.compile(r"conflict.{0,20}interest[:\s]+([^.]+)", re.IGNORECASE)
_NO_COI_RE = re.compile(r"no conflict|none declared|nothing to declare", re.IGNORECASE)
_AUTHOR_INDUSTRY_RE = re.compile(r"author.{0,30}(pharma|biotech|inc\.|corp\.)", re.IGNORECASE)

_EVENT_YEAR_RE = re.compile(
    r"\b(founded|released|launched|established|published|acquired)\b[^.\n]{0,40}?\b(1[5-9]\d{2}|20\d{2})\b",
    re.IGNORECASE,
)

CROSS_REFERENCE_STOPWORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
        "be", "have", "has", "had", "do", "does", "did", "will", "would",
        "could", "should", "may", "might", "must", "can", "this", "that",
        "these", "those", "it", "its", "they", "their", "them", "we", "our",
    }
)  # fmt: skip

# Share of a source's keywords another source must contain to count as related.
RELATED_OVERLAP_RATIO = 0.3


def _domain(url: str) -> str:
    host = urlparse(url).hostname
    if not host:
        return url
    return host[4:] if host.startswith("www.") else host


def _matches_peer_domain(url: str) -> bool:
    # Some entries carry a path, so check both the host and the host+path.
    host = _domain(url)
    path = urlparse(url).path
    return any(d in host or d in f"{host}{path}" for d in PEER_REVIEWED_DOMAINS)


def classify_evidence_type(source: Source) -> EvidenceClass:
    url = source.url.lower()
    content = (source.content or "").lower()
    title = (source.title or "").lower()

    head = content[:1000]
    if any(p.search(title) or p.search(head) for p in META_ANALYSIS_PATTERNS):
        return EvidenceClass.META
    if any(p.search(url) for p in PRIMARY_SOURCE_PATTERNS):
        return EvidenceClass.PRIMARY
    if any(p.search(url) for p in ANECDOTAL_PATTERNS):
        return EvidenceClass.ANECDOTAL
    if any(p.search(url) for p in GRAY_LITERATURE_PATTERNS):
        return EvidenceClass.GRAY
    if _matches_peer_domain(url):
        return EvidenceClass.PEER
    if any(p.search(url) for p in EXPERT_INSTITUTIONAL_PATTERNS):
        return EvidenceClass.EXPERT
    if "wikipedia.org" in url:
        return EvidenceClass.EXPERT
    return EvidenceClass.GRAY


def calculate_authority_score(source: Source, evidence_class: EvidenceClass) -> float:
    """Score in [0.1, 1.0], starting from the class weight."""

    score = EVIDENCE_WEIGHTS[evidence_class]
    url = source.url.lower()
    content = source.content or ""

    if re.search(r"\.gov($|/)", url):
        score += 0.1
    if re.search(r"\.edu($|/)", url):
        score += 0.05
    if re.search(r"doi\.org|doi:", content, re.IGNORECASE) or re.search(r"doi\.org|doi:", url):
        score += 0.05
    if re.search(r"cited by|citations?:\s*\d+", content, re.IGNORECASE):
        score += 0.03
    score = min(score, 1.0)

    if len(content) < 500:
        score -= 0.1
    if re.search(r"page not found|404|access denied|paywall", content[:500], re.IGNORECASE):
        score -= 0.3
    return round(max(0.1, min(score, 1.0)), 2)


def is_peer_reviewed(source: Source) -> bool:
    url = source.url.lower()
    if _matches_peer_domain(url) and "/news/" not in url and "/blog/" not in url:
        return True
    content = (source.content or "").lower()
    return any(indicator in content for indicator in PEER_REVIEW_INDICATORS)


def is_open_access(source: Source) -> bool:
    if any(p.search(source.url) for p in OPEN_ACCESS_PATTERNS):
        return True
    content = (source.content or "").lower()
    return any(indicator in content for indicator in OPEN_ACCESS_INDICATORS)


def extract_publication_date(source: Source) -> str | None:
    content = source.content or ""
    for pattern in DATE_PATTERNS:
        m = pattern.search(content)
        if m:
            return m.group(1)
    m = re.search(r"\b(20[0-2]\d)\b", content[:1000])
    return m.group(1) if m else None


def detect_conflicts_of_interest(content: str) -> list[str]:
    conflicts: list[str] = []
    for pattern in FUNDING_PATTERNS:
        for m in pattern.finditer(content):
            funder = m.group(1).strip()
            if _INDUSTRY_RE.search(funder):
                conflicts.append(f"Industry funding: {funder[:100]}")

    coi = _COI_RE.search(content)
    if coi and not _NO_COI_RE.search(coi.group(1)):
        conflicts.append(f"Declared COI: {coi.group(1)[:100]}")

    if _AUTHOR_INDUSTRY_RE.search(content):
        conflicts.append("Author affiliated with industry")
    return conflicts


def extract_doi(source: Source) -> str | None:
    for text in (source.url, source.content or ""):
        for pattern in DOI_PATTERNS:
            m = pattern.search(text)
            if m:
                return m.group(1)
    return None


def extract_keywords(content: str) -> list[str]:
    """First 50 non-stopword tokens longer than three characters."""

    words = [w for w in re.split(r"\W+", content.lower()) if len(w) > 3 and w not in CROSS_REFERENCE_STOPWORDS]
    return words[:50]


def extract_event_years(content: str) -> dict[str, set[str]]:
    """Map event verbs ("founded", "released", ...) to the years stated next to them."""

    years: dict[str, set[str]] = {}
    for m in _EVENT_YEAR_RE.finditer(content):
        years.setdefault(m.group(1).lower(), set()).add(m.group(2))
    return years


def _contradicts(a: dict[str, set[str]], b: dict[str, set[str]]) -> bool:
    for verb, years in a.items():
        other = b.get(verb)
        if other and years.isdisjoint(other):
            return True
    return False


def cross_reference_sources(sources: Sequence[EnhancedSource]) -> list[EnhancedSource]:
    """Fill corroboration, contradiction and consensus fields.

    Two sources are related when the other source contains more than 30% of this source's
    keywords. Related sources that give different years for the same event contradict each
    other; any contradiction makes the consensus ``conflicting``.
    """

    keywords = [extract_keywords(s.content or "") for s in sources]
    keyword_sets = [set(k) for k in keywords]
    events = [extract_event_years(s.content or "") for s in sources]

    out: list[EnhancedSource] = []
    for i, source in enumerate(sources):
        corroborated: list[str] = []
        contradicted: list[str] = []
        for j, other in enumerate(sources):
            if other.url == source.url:
                continue
            overlap = sum(1 for k in keywords[i] if k in keyword_sets[j])
            if overlap <= len(keywords[i]) * RELATED_OVERLAP_RATIO:
                continue
            if _contradicts(events[i], events[j]):
                contradicted.append(other.url)
            else:
                corroborated.append(other.url)

        if contradicted:
            level = ConsensusLevel.CONFLICTING
        elif len(corroborated) >= 2:
            level = ConsensusLevel.STRONG
        elif corroborated:
            level = ConsensusLevel.MODERATE
        else:
            level = ConsensusLevel.SOLE
        out.append(
            source.model_copy(
                update={
                    "corroborated_by": corroborated,
                    "contradicted_by": contradicted,
                    "consensus_level": level,
                }
            )
        )
    return out


def enrich_source(source: Source) -> EnhancedSource:
    if isinstance(source, EnhancedSource):
        return source
    evidence_class = classify_evidence_type(source)
    return EnhancedSource(
        **source.model_dump(include=set(Source.model_fields)),
        evidence_class=evidence_class,
        evidence_weight=EVIDENCE_WEIGHTS[evidence_class],
        authority_score=calculate_authority_score(source, evidence_class),
        publication_date=extract_publication_date(source),
        peer_reviewed=is_peer_reviewed(source),
        open_access=is_open_access(source),
        conflicts_of_interest=detect_conflicts_of_interest(source.content or ""),
        doi=extract_doi(source),
    )


def enrich_sources(sources: Sequence[Source]) -> list[EnhancedSource]:
    """Classify each source once, then cross-reference the batch."""

    return cross_reference_sources([enrich_source(s) for s in sources])


def detect_quality_flags(sources: Sequence[EnhancedSource]) -> list[QualityFlag]:
    flags: list[QualityFlag] = []
    strong = {EvidenceClass.PRIMARY, EvidenceClass.META, EvidenceClass.PEER}
    if sum(1 for s in sources if s.evidence_class in strong) < 3:
        flags.append(QualityFlag.LIMITED_DATA)
    if sum(1 for s in sources if s.conflicts_of_interest) > len(sources) * 0.5:
        flags.append(QualityFlag.FUNDING_CONCERN)
    if sum(1 for s in sources if s.evidence_class == EvidenceClass.GRAY) > len(sources) * 0.5:
        flags.append(QualityFlag.EMERGING)
    return flags


_REVIEW_RE = re.compile(r"review|meta-analysis|systematic|compare|versus", re.IGNORECASE)
_CONFIRM_RE = re.compile(r"confirm|validate|replicate|verify", re.IGNORECASE)
_QUANT_RE = re.compile(r"how many|percentage|rate|statistics|data|numbers|figures", re.IGNORECASE)


def build_research_context(
    sources: Sequence[EnhancedSource],
    domain: ResearchDomain,
    query: str,
) -> ResearchContext:
    flags = detect_quality_flags(sources)

    confidence = 0.0
    if sources:
        avg_authority = sum(s.authority_score for s in sources) / len(sources)
        count_bonus = min(len(sources) * 5, 25)
        confidence = avg_authority * 75 + count_bonus - len(flags) * 10
        confidence = min(max(confidence, 10), 95)

    if _REVIEW_RE.search(query):
        phase = ResearchPhase.REVIEW
    elif _CONFIRM_RE.search(query):
        phase = ResearchPhase.CONFIRMATORY
    else:
        phase = ResearchPhase.EXPLORATORY

    if domain in (ResearchDomain.MEDICAL_DRUG, ResearchDomain.ECONOMIC):
        sensitivity = "high"
    elif domain in (ResearchDomain.SCIENTIFIC_DISCOVERY, ResearchDomain.LEGAL):
        sensitivity = "medium"
    else:
        sensitivity = "low"

    return ResearchContext(
        domain=domain,
        phase=phase,
        requires_quantitative_data=bool(_QUANT_RE.search(query)),
        temporal_sensitivity=sensitivity,
        quality_flags=flags,
        overall_confidence=round(confidence),
    )


_MODE_DOMAINS = {
    "academic": ResearchDomain.SCIENTIFIC_DISCOVERY,
    "medical": ResearchDomain.MEDICAL_DRUG,
    "nature": ResearchDomain.ENVIRONMENTAL,
    "legal": ResearchDomain.LEGAL,
    "economic": ResearchDomain.ECONOMIC,
    "cultural": ResearchDomain.HISTORICAL,
}

_PROVIDER_DOMAINS = {
    "semantic-scholar": ResearchDomain.SCIENTIFIC_DISCOVERY,
    "crossref": ResearchDomain.SCIENTIFIC_DISCOVERY,
    "clinicaltrials": ResearchDomain.MEDICAL_DRUG,
}


def detect_research_domain(provider: str | None, suggested_mode: str | None) -> ResearchDomain:
    if provider in _PROVIDER_DOMAINS:
        return _PROVIDER_DOMAINS[provider]
    return _MODE_DOMAINS.get(suggested_mode or "", ResearchDomain.GENERAL)
