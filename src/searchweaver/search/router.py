"""Query classification and provider routing."""

from __future__ import annotations

import re

from searchweaver.llm.client import ChatMessage, LanguageModel
from searchweaver.logging import get_logger
from searchweaver.models.query import QueryClassification
from searchweaver.prompts import ROUTER_SYSTEM_PROMPT
from searchweaver.utils.tags import extract_json_object
from searchweaver.utils.text import is_crawl_or_map_query

logger = get_logger(__name__)

KNOWN_PROVIDERS = ("tavily", "exa", "semantic-scholar", "crossref", "clinicaltrials", "firecrawl", "duckduckgo")

# Heuristic matches at or above this confidence skip the model call.
HEURISTIC_ACCEPT_CONFIDENCE = 0.9

_DOI_RE = re.compile(r"doi:|\b10\.\d{4,}/|doi\.org/", re.IGNORECASE)
_CLINICAL_TRIAL_MARKERS = (
    "clinical trial",
    "clinical study",
    "recruiting trial",
    "phase 1",
    "phase 2",
    "phase 3",
    "drug trial",
    "intervention study",
    "randomized controlled",
    "placebo controlled",
    "clinicaltrials.gov",
    "nct0",
    "nct1",
    "nct2",
    "trial enrollment",
    "recruiting study",
    "ongoing trial",
    "completed trial",
)
_ACADEMIC_MARKERS = (
    "paper",
    "citation",
    "arxiv",
    "pubmed",
    "journal",
    "10.",
    "neurips",
    "icml",
    "acl ",
    "cvpr",
    "iclr",
    "aaai",
    "publications by",
    "papers by",
    "peer-reviewed",
    "scholarly",
)
_SIMILARITY_MARKERS = ("similar to", "like ", "alternatives to", "companies like")
_RESEARCH_MARKERS = ("research on", "studies on", "scientific", "academic")
_TECHNICAL_MARKERS = (
    "documentation",
    "github",
    "stackoverflow",
    "how to implement",
    "code example",
    "api reference",
)
_FACTUAL_PREFIXES = ("who ", "what is ", "when ", "where ", "how many ", "how much ")
_CURRENT_MARKERS = ("latest", "current", "today", "now", "price", "news")


def quick_classify(query: str) -> QueryClassification:
    """Classify ``query`` with keyword heuristics only."""

    q = query.lower()

    if "http://" in q or "https://" in q or "scrape " in q or "crawl " in q:
        return QueryClassification(
            provider="firecrawl",
            confidence=0.95,
            reason="Query contains URL or explicit scraping request",
            suggested_mode="map" if is_crawl_or_map_query(q) else "scrape",
        )
    if _DOI_RE.search(q):
        return QueryClassification(
            provider="crossref", confidence=0.98, reason="DOI lookup query", suggested_mode="academic"
        )
    if any(m in q for m in _SIMILARITY_MARKERS):
        return QueryClassification(
            provider="exa", confidence=0.9, reason="Similarity search query", suggested_mode="similar"
        )
    if any(m in q for m in _CLINICAL_TRIAL_MARKERS):
        return QueryClassification(
            provider="clinicaltrials", confidence=0.95, reason="Clinical trial query", suggested_mode="medical"
        )
    if any(m in q for m in _ACADEMIC_MARKERS):
        return QueryClassification(
            provider="semantic-scholar",
            confidence=0.92,
            reason="Academic paper/citation query",
            suggested_mode="academic",
        )
    if any(m in q for m in _RESEARCH_MARKERS):
        return QueryClassification(
            provider="exa", confidence=0.85, reason="General research query", suggested_mode="academic"
        )
    if any(m in q for m in _TECHNICAL_MARKERS):
        return QueryClassification(
            provider="exa",
            confidence=0.85,
            reason="Technical/code documentation query",
            suggested_mode="technical",
        )
    if q.startswith(_FACTUAL_PREFIXES):
        return QueryClassification(
            provider="tavily", confidence=0.85, reason="Factual question pattern", suggested_mode="search"
        )
    if any(m in q for m in _CURRENT_MARKERS):
        return QueryClassification(
            provider="tavily",
            confidence=0.85,
            reason="Current/real-time information query",
            suggested_mode="search",
        )
    return QueryClassification(
        provider="tavily", confidence=0.4, reason="No clear pattern match", suggested_mode="search"
    )


class SearchRouter:
    """Pick a provider per query.

    Obvious queries are decided by heuristics; the rest go to a cheap model call. Decisions are
    cached per normalized query for the lifetime of the router.
    """

    def __init__(self, llm: LanguageModel | None = None) -> None:
        self._llm = llm
        self._cache: dict[str, QueryClassification] = {}

    async def classify(self, query: str) -> QueryClassification:
        key = query.lower().strip()
        cached = self._cache.get(key)
        if cached is not None:
            return cached.model_copy()

        quick = quick_classify(query)
        if quick.confidence >= HEURISTIC_ACCEPT_CONFIDENCE or self._llm is None:
            self._cache[key] = quick
            return quick.model_copy()

        try:
            resp = await self._llm.generate(
                [
                    ChatMessage(role="system", content=ROUTER_SYSTEM_PROMPT),
                    ChatMessage(role="user", content=f'Query: "{query}"'),
                ],
                temperature=0,
            )
            classification = self._parse(resp.text)
        except Exception:
            logger.exception("Query classification failed", extra={"query_len": len(query)})
            classification = None

        if classification is None:
            classification = (
                quick
                if quick.confidence > 0.5
                else QueryClassification(
                    provider="tavily",
                    confidence=0.5,
                    reason="Fallback to default provider",
                    suggested_mode="search",
                )
            )
        self._cache[key] = classification
        return classification.model_copy()

    @staticmethod
    def _parse(text: str) -> QueryClassification | None:
        obj = extract_json_object(text)
        if obj is None:
            logger.warning("Router returned non-JSON classification")
            return None
        provider = str(obj.get("provider") or "").strip().lower()
        if provider not in KNOWN_PROVIDERS:
            logger.warning("Router returned unknown provider", extra={"provider": provider})
            return None
        try:
            confidence = max(0.0, min(1.0, float(obj.get("confidence", 0.5))))
        except (TypeError, ValueError):
            confidence = 0.5
        return QueryClassification(
            provider=provider,
            confidence=confidence,
            reason=str(obj.get("reason") or "Model classification"),
            suggested_mode=str(obj.get("suggestedMode") or obj.get("suggested_mode") or "search"),
        )
