"""Retrieval providers.

Every provider exposes the same async ``search`` call and returns normalized
:class:`~searchweaver.models.source.Source` objects. HTTP providers retry transient statuses
through :func:`~searchweaver.core.retry.with_retry`, honouring ``retry-after`` on 429.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from duckduckgo_search import DDGS

from searchweaver.core.retry import RetryPolicy, with_retry
from searchweaver.logging import get_logger
from searchweaver.models.source import Source

logger = get_logger(__name__)

_TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


class SearchProviderError(RuntimeError):
    pass


class ProviderUnavailableError(SearchProviderError):
    """Raised when a provider is requested but not configured."""


@dataclass(frozen=True)
class ProviderResult:
    """Normalized provider output."""

    sources: list[Source]
    pre_answer: str | None = None
    total_results: int | None = None


class SearchProvider(Protocol):
    """Search provider interface."""

    name: str

    async def search(self, query: str, *, max_results: int, mode: str = "search") -> ProviderResult:
        """Search and return normalized sources."""


def _clamp(value: Any) -> float:
    try:
        f = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, f))


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _TRANSIENT_STATUSES
    return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))


def _retry_after_s(exc: BaseException) -> float | None:
    """Seconds from a 429 ``retry-after`` header, if it is numeric."""

    if not isinstance(exc, httpx.HTTPStatusError) or exc.response.status_code != 429:
        return None
    try:
        return float(exc.response.headers.get("retry-after", ""))
    except ValueError:
        return None


@dataclass(frozen=True)
class _HttpJsonProvider:
    """Base for providers that call a JSON API over httpx."""

    timeout_s: float = 30.0
    max_retries: int = 3
    retry_backoff_s: float = 0.75
    retry_max_backoff_s: float = 8.0
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False, compare=False)

    name = "http"

    def _retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_s=self.retry_backoff_s,
            max_delay_s=self.retry_max_backoff_s,
            jitter=0.0,
            should_retry=_is_transient,
            retry_after=_retry_after_s,
        )

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        query: str = "",
    ) -> Any:
        """Send one request, retrying 429/5xx and network errors.

        Raises:
            SearchProviderError: When the request still fails after retries, or the body is
                not JSON.
        """

        started = time.monotonic()
        attempts = 0

        def on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            status = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
            logger.warning(
                "Provider request retry",
                extra={"provider": self.name, "attempt": attempt, "status_code": status, "sleep_s": delay},
            )

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_s),
            follow_redirects=True,
            transport=self.transport,
        ) as client:

            async def send() -> Any:
                nonlocal attempts
                attempts += 1
                attempt_started = time.monotonic()
                resp = await client.request(method, url, json=json, params=params, headers=headers)
                resp.raise_for_status()
                data = resp.json()
                logger.info(
                    "Provider request ok",
                    extra={
                        "provider": self.name,
                        "query_len": len(query),
                        "attempt": attempts,
                        "status_code": resp.status_code,
                        "request_id": resp.headers.get("x-request-id") or resp.headers.get("x-amzn-trace-id"),
                        "latency_ms": int((time.monotonic() - attempt_started) * 1000),
                    },
                )
                return data

            try:
                return await with_retry(send, self._retry_policy(), on_retry=on_retry)
            except (httpx.HTTPError, ValueError) as e:
                msg = f"{self.name} search failed"
                logger.error(
                    msg,
                    extra={
                        "provider": self.name,
                        "query_len": len(query),
                        "attempts": attempts,
                        "elapsed_ms": int((time.monotonic() - started) * 1000),
                        "error_type": type(e).__name__,
                        "error": str(e),
                    },
                )
                raise SearchProviderError(msg) from e


@dataclass(frozen=True)
class TavilySearchProvider(_HttpJsonProvider):
    """Tavily API search provider.

    Notes:
        - Requests ``include_answer`` so the provider's pre-synthesized answer is surfaced.
        - Raw page content is preferred over the snippet when Tavily returns it.
    """

    api_key: str = ""
    base_url: str = "https://api.tavily.com"
    search_depth: str = "advanced"
    summary_char_limit: int = 100

    name = "tavily"

    async def search(self, query: str, *, max_results: int, mode: str = "search") -> ProviderResult:
        """Search using Tavily.

        Args:
            query: Search query.
            max_results: Maximum number of results.
            mode: Unused; Tavily has a single search mode.

        Returns:
            Normalized sources and Tavily's answer, if any.
        """

        payload = {
            "api_key": self.api_key,
            "query": query,
            "max_results": max_results,
            "search_depth": self.search_depth,
            "include_answer": True,
            "include_raw_content": True,
            "include_images": False,
        }
        data = await self._request_json(
            "POST", f"{self.base_url.rstrip('/')}/search", json=payload, query=query
        )
        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            raise SearchProviderError("tavily response missing results list")

        sources: list[Source] = []
        for item in data["results"]:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            content = item.get("raw_content") or item.get("content") or ""
            sources.append(
                Source(
                    url=item["url"],
                    title=item.get("title") or item["url"],
                    content=content,
                    quality=_clamp(item.get("score")),
                    summary=content[: self.summary_char_limit] or None,
                )
            )
        answer = data.get("answer")
        return ProviderResult(
            sources=sources,
            pre_answer=answer if isinstance(answer, str) and answer else None,
            total_results=len(sources),
        )


@dataclass(frozen=True)
class ExaSearchProvider(_HttpJsonProvider):
    """Exa neural search provider."""

    api_key: str = ""
    base_url: str = "https://api.exa.ai"
    summary_char_limit: int = 100

    name = "exa"

    async def search(self, query: str, *, max_results: int, mode: str = "search") -> ProviderResult:
        payload: dict[str, Any] = {
            "query": query,
            "numResults": max_results,
            "type": "auto",
            "contents": {"text": {"maxCharacters": 8000}, "highlights": True},
        }
        if mode == "academic":
            payload["type"] = "neural"
            payload["category"] = "research paper"
        elif mode == "technical":
            payload["includeDomains"] = [
                "github.com",
                "stackoverflow.com",
                "docs.python.org",
                "developer.mozilla.org",
                "readthedocs.io",
            ]

        data = await self._request_json(
            "POST",
            f"{self.base_url.rstrip('/')}/search",
            json=payload,
            headers={"x-api-key": self.api_key},
            query=query,
        )
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise SearchProviderError("exa response missing results list")

        sources: list[Source] = []
        for item in results:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            highlights = [h for h in item.get("highlights") or [] if isinstance(h, str)]
            content = item.get("text") or "\n\n".join(highlights)
            summary = highlights[0] if highlights else content[: self.summary_char_limit]
            sources.append(
                Source(
                    url=item["url"],
                    title=item.get("title") or item["url"],
                    content=content,
                    quality=_clamp(item.get("score")),
                    summary=summary or None,
                )
            )
        return ProviderResult(sources=sources, total_results=len(sources))


_S2_FIELDS = "paperId,title,abstract,url,year,authors,venue,citationCount,openAccessPdf"


@dataclass(frozen=True)
class SemanticScholarSearchProvider(_HttpJsonProvider):
    """Semantic Scholar paper search. The API key is optional."""

    api_key: str | None = None
    base_url: str = "https://api.semanticscholar.org/graph/v1"
    summary_char_limit: int = 100

    name = "semantic-scholar"

    async def search(self, query: str, *, max_results: int, mode: str = "search") -> ProviderResult:
        headers = {"x-api-key": self.api_key} if self.api_key else None
        data = await self._request_json(
            "GET",
            f"{self.base_url.rstrip('/')}/paper/search",
            params={"query": query, "limit": max_results, "offset": 0, "fields": _S2_FIELDS},
            headers=headers,
            query=query,
        )
        papers = data.get("data") if isinstance(data, dict) else None
        if not isinstance(papers, list):
            raise SearchProviderError("semantic-scholar response missing data list")

        sources = [self._to_source(p) for p in papers if isinstance(p, dict) and p.get("paperId")]
        total = data.get("total") if isinstance(data.get("total"), int) else len(sources)
        return ProviderResult(sources=sources, total_results=total)

    def _to_source(self, paper: dict[str, Any]) -> Source:
        authors = [a.get("name") for a in paper.get("authors") or [] if isinstance(a, dict) and a.get("name")]
        meta = [
            f"Authors: {', '.join(authors)}" if authors else "",
            f"Year: {paper['year']}" if paper.get("year") else "",
            f"Venue: {paper['venue']}" if paper.get("venue") else "",
            f"Citations: {paper['citationCount']}" if paper.get("citationCount") is not None else "",
        ]
        content = "\n".join(
            part for part in [paper.get("abstract") or "", " | ".join(m for m in meta if m)] if part
        )
        citations = paper.get("citationCount") or 0
        return Source(
            url=paper.get("url") or f"https://www.semanticscholar.org/paper/{paper['paperId']}",
            title=paper.get("title") or "Untitled",
            content=content,
            quality=min(citations / 1000, 1.0) if citations else 0.0,
            summary=content[: self.summary_char_limit] or None,
        )


_DOI_RE = re.compile(r"\b(10\.\d{4,}/[^\s\"'<>]+)")
_JATS_TAG_RE = re.compile(r"<[^>]+>")


def _first(values: Any) -> str:
    if isinstance(values, list) and values and isinstance(values[0], str):
        return values[0]
    return ""


@dataclass(frozen=True)
class CrossrefSearchProvider(_HttpJsonProvider):
    """Crossref scholarly metadata. Needs no key; ``mailto`` joins the polite pool.

    A query containing a DOI is resolved directly instead of searched.
    """

    base_url: str = "https://api.crossref.org"
    mailto: str | None = None
    summary_char_limit: int = 100

    name = "crossref"

    async def search(self, query: str, *, max_results: int, mode: str = "search") -> ProviderResult:
        base = self.base_url.rstrip("/")
        params: dict[str, Any] = {"mailto": self.mailto} if self.mailto else {}
        doi = _DOI_RE.search(query)
        if doi:
            data = await self._request_json(
                "GET", f"{base}/works/{doi.group(1).rstrip('.,;)?')}", params=params or None, query=query
            )
            message = data.get("message") if isinstance(data, dict) else None
            if not isinstance(message, dict):
                raise SearchProviderError("crossref response missing message")
            return ProviderResult(sources=[self._to_source(message)], total_results=1)

        data = await self._request_json(
            "GET", f"{base}/works", params={"query": query, "rows": max_results, **params}, query=query
        )
        message = data.get("message") if isinstance(data, dict) else None
        items = message.get("items") if isinstance(message, dict) else None
        if not isinstance(items, list):
            raise SearchProviderError("crossref response missing items list")

        sources = [self._to_source(w) for w in items if isinstance(w, dict) and w.get("DOI")]
        total = message.get("total-results") if isinstance(message.get("total-results"), int) else len(sources)
        return ProviderResult(sources=sources, total_results=total)

    def _to_source(self, work: dict[str, Any]) -> Source:
        authors: list[str] = []
        for a in work.get("author") or []:
            if not isinstance(a, dict):
                continue
            if a.get("name"):
                authors.append(a["name"])
            elif a.get("family") and a.get("given"):
                authors.append(f"{a['family']}, {a['given']}")
            elif a.get("family") or a.get("given"):
                authors.append(a.get("family") or a.get("given"))

        year = None
        for key in ("published", "published-print", "published-online", "issued"):
            parts = (work.get(key) or {}).get("date-parts")
            if isinstance(parts, list) and parts and isinstance(parts[0], list) and parts[0]:
                year = parts[0][0]
                break

        citations = work.get("is-referenced-by-count") or 0
        journal = _first(work.get("container-title"))
        abstract = " ".join(_JATS_TAG_RE.sub("", work.get("abstract") or "").split())
        meta = [
            f"Authors: {', '.join(authors[:10])}" if authors else "",
            f"Journal: {journal}" if journal else "",
            f"Year: {year}" if year else "",
            f"Citations: {citations}" if citations else "",
            f"DOI: {work['DOI']}" if work.get("DOI") else "",
        ]
        content = "\n".join(part for part in [abstract, *meta] if part)
        return Source(
            url=work.get("URL") or f"https://doi.org/{work.get('DOI')}",
            title=_first(work.get("title")) or "Untitled",
            content=content,
            quality=min(citations / 1000, 1.0) if isinstance(citations, int) and citations > 0 else 0.0,
            summary=content[: self.summary_char_limit] or None,
        )


@dataclass(frozen=True)
class ClinicalTrialsSearchProvider(_HttpJsonProvider):
    """ClinicalTrials.gov study search (API v2). Needs no key."""

    base_url: str = "https://clinicaltrials.gov/api/v2"
    summary_char_limit: int = 100

    name = "clinicaltrials"

    async def search(self, query: str, *, max_results: int, mode: str = "search") -> ProviderResult:
        data = await self._request_json(
            "GET",
            f"{self.base_url.rstrip('/')}/studies",
            params={"query.term": query, "pageSize": max_results, "format": "json", "countTotal": "true"},
            query=query,
        )
        studies = data.get("studies") if isinstance(data, dict) else None
        if not isinstance(studies, list):
            raise SearchProviderError("clinicaltrials response missing studies list")

        sources = [s for s in (self._to_source(st) for st in studies if isinstance(st, dict)) if s is not None]
        total = data.get("totalCount") if isinstance(data.get("totalCount"), int) else len(sources)
        return ProviderResult(sources=sources, total_results=total)

    def _to_source(self, study: dict[str, Any]) -> Source | None:
        protocol = study.get("protocolSection") or {}
        ident = protocol.get("identificationModule") or {}
        nct_id = ident.get("nctId")
        if not nct_id:
            return None
        status = protocol.get("statusModule") or {}
        description = protocol.get("descriptionModule") or {}
        design = protocol.get("designModule") or {}
        conditions = (protocol.get("conditionsModule") or {}).get("conditions") or []
        interventions = [
            f"{i.get('type')}: {i.get('name')}"
            for i in (protocol.get("armsInterventionsModule") or {}).get("interventions") or []
            if isinstance(i, dict) and i.get("name")
        ]
        sponsor = ((protocol.get("sponsorCollaboratorsModule") or {}).get("leadSponsor") or {}).get("name")
        enrollment = (design.get("enrollmentInfo") or {}).get("count")
        start = (status.get("startDateStruct") or {}).get("date")

        summary_text = "\n\n".join(
            part for part in [description.get("briefSummary"), description.get("detailedDescription")] if part
        )[:3000]
        meta = [
            f"NCT ID: {nct_id}",
            f"Status: {status['overallStatus']}" if status.get("overallStatus") else "",
            f"Phase: {', '.join(design['phases'])}" if design.get("phases") else "",
            f"Conditions: {', '.join(conditions)}" if conditions else "",
            f"Interventions: {'; '.join(interventions)}" if interventions else "",
            f"Sponsor: {sponsor}" if sponsor else "",
            f"Enrollment: {enrollment}" if enrollment else "",
            f"Start: {start}" if start else "",
        ]
        content = "\n".join(part for part in [summary_text, *meta] if part)
        return Source(
            url=f"https://clinicaltrials.gov/study/{nct_id}",
            title=ident.get("briefTitle") or ident.get("officialTitle") or nct_id,
            content=content,
            quality=0.85,
            summary=content[: self.summary_char_limit] or None,
        )


@dataclass(frozen=True)
class FirecrawlSearchProvider(_HttpJsonProvider):
    """Firecrawl search; results come back already scraped as markdown."""

    api_key: str = ""
    base_url: str = "https://api.firecrawl.dev"

    name = "firecrawl"

    async def search(self, query: str, *, max_results: int, mode: str = "search") -> ProviderResult:
        data = await self._request_json(
            "POST",
            f"{self.base_url.rstrip('/')}/v1/search",
            json={"query": query, "limit": max_results, "scrapeOptions": {"formats": ["markdown"]}},
            headers={"Authorization": f"Bearer {self.api_key}"},
            query=query,
        )
        if isinstance(data, dict) and data.get("success") is False:
            raise SearchProviderError(f"firecrawl search failed: {data.get('error') or 'unknown'}")
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise SearchProviderError("firecrawl response missing data list")

        sources: list[Source] = []
        for item in items:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            metadata = item.get("metadata") or {}
            sources.append(
                Source(
                    url=item["url"],
                    title=item.get("title") or metadata.get("title") or "Untitled",
                    content=item.get("markdown") or item.get("content") or item.get("description") or "",
                    quality=0.0,
                )
            )
        return ProviderResult(sources=sources, total_results=len(sources))


@dataclass(frozen=True)
class DuckDuckGoSearchProvider:
    """DuckDuckGo search provider. Needs no API key."""

    name = "duckduckgo"

    def _search_sync(self, query: str, max_results: int) -> list[Source]:
        sources: list[Source] = []
        with DDGS() as ddgs:
            for r in ddgs.text(query, max_results=max_results):
                url = r.get("href") or r.get("url")
                if not url:
                    continue
                sources.append(
                    Source(
                        url=url,
                        title=r.get("title") or url,
                        content=r.get("body") or r.get("snippet") or "",
                        quality=0.0,
                    )
                )
        return sources

    async def search(self, query: str, *, max_results: int, mode: str = "search") -> ProviderResult:
        """Search using DuckDuckGo.

        The client library is blocking, so it runs in a worker thread.
        """

        try:
            sources = await asyncio.to_thread(self._search_sync, query, max_results)
        except Exception as e:
            logger.exception("DuckDuckGo search failed", extra={"query_len": len(query)})
            raise SearchProviderError("duckduckgo search failed") from e
        return ProviderResult(sources=sources, total_results=len(sources))
