"""Unified multi-provider search with routing and fallback."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Mapping, Sequence

from searchweaver.config import Settings
from searchweaver.llm.client import LanguageModel
from searchweaver.logging import get_logger
from searchweaver.models.query import QueryClassification
from searchweaver.models.source import Source
from searchweaver.search.providers import (
    ClinicalTrialsSearchProvider,
    CrossrefSearchProvider,
    DuckDuckGoSearchProvider,
    ExaSearchProvider,
    FirecrawlSearchProvider,
    ProviderUnavailableError,
    SearchProvider,
    SearchProviderError,
    SemanticScholarSearchProvider,
    TavilySearchProvider,
)
from searchweaver.search.router import SearchRouter
from searchweaver.tools.scraper import FirecrawlScraper
from searchweaver.utils.text import extract_urls

logger = get_logger(__name__)

DEFAULT_FALLBACK_ORDER = ("tavily", "firecrawl", "exa", "duckduckgo")


@dataclass(frozen=True)
class UnifiedSearchResult:
    sources: list[Source]
    provider: str
    classification: QueryClassification
    pre_answer: str | None = None
    total_results: int | None = None


@dataclass
class UnifiedSearch:
    """Route each query to the best available provider.

    A provider that is not configured is replaced by the first available one in
    ``fallback_order``. A provider that fails is retried once with each remaining fallback
    before the error is raised.
    """

    providers: Mapping[str, SearchProvider]
    router: SearchRouter
    fallback_order: Sequence[str] = DEFAULT_FALLBACK_ORDER
    firecrawl: FirecrawlScraper | None = None

    def __post_init__(self) -> None:
        logger.info("Search providers available", extra={"providers": sorted(self.providers)})

    def is_available(self, name: str) -> bool:
        return name in self.providers

    def fallback_for(self, preferred: str, *, exclude: set[str] | frozenset[str] = frozenset()) -> str | None:
        for name in self.fallback_order:
            if name != preferred and name not in exclude and self.is_available(name):
                return name
        for name in self.providers:
            if name != preferred and name not in exclude:
                return name
        return None

    async def classify(self, query: str) -> QueryClassification:
        return await self.router.classify(query)

    async def search(
        self,
        query: str,
        *,
        max_results: int,
        force_provider: str | None = None,
        classification: QueryClassification | None = None,
    ) -> UnifiedSearchResult:
        """Search with automatic routing.

        Raises:
            SearchProviderError: If every candidate provider failed.
        """

        classification = classification or await self.router.classify(query)
        tried: set[str] = set()
        provider = force_provider or classification.provider

        if not self.is_available(provider):
            fallback = self.fallback_for(provider)
            if fallback is None:
                raise ProviderUnavailableError("no search provider is configured")
            classification = classification.model_copy(
                update={
                    "provider": fallback,
                    "reason": f"Fallback to {fallback} (original provider unavailable)",
                }
            )
            provider = fallback

        last_err: Exception | None = None
        while provider is not None:
            tried.add(provider)
            try:
                result = await self._search_with(provider, query, classification, max_results)
                return result
            except Exception as e:
                last_err = e
                logger.warning(
                    "Search provider failed",
                    extra={"provider": provider, "error_type": type(e).__name__, "error": str(e)},
                )
            next_provider = self.fallback_for(provider, exclude=tried)
            if next_provider is not None:
                logger.info("Falling back to next provider", extra={"from": provider, "to": next_provider})
                classification = classification.model_copy(
                    update={"provider": next_provider, "reason": f"Fallback to {next_provider} after {provider} failed"}
                )
            provider = next_provider

        raise SearchProviderError(f"all search providers failed for query: {query}") from last_err

    async def _search_with(
        self,
        provider: str,
        query: str,
        classification: QueryClassification,
        max_results: int,
    ) -> UnifiedSearchResult:
        if provider == "firecrawl" and self.firecrawl is not None:
            urls = extract_urls(query)
            if urls and classification.suggested_mode == "scrape":
                return await self._firecrawl_scrape(urls[0], classification)
            if urls and classification.suggested_mode == "map":
                return await self._firecrawl_map(urls[0], classification, max_results)

        impl = self.providers.get(provider)
        if impl is None:
            raise ProviderUnavailableError(f"{provider} is not configured")
        result = await impl.search(query, max_results=max_results, mode=classification.suggested_mode)
        return UnifiedSearchResult(
            sources=result.sources[:max_results],
            provider=provider,
            classification=classification,
            pre_answer=result.pre_answer,
            total_results=result.total_results,
        )

    def _require_firecrawl(self) -> FirecrawlScraper:
        if self.firecrawl is None:
            raise ProviderUnavailableError("firecrawl scraping is not configured")
        return self.firecrawl

    async def _firecrawl_scrape(self, url: str, classification: QueryClassification) -> UnifiedSearchResult:
        scraped = await self._require_firecrawl().scrape(url, only_main_content=True)
        sources: list[Source] = []
        if scraped.success and scraped.markdown:
            sources.append(Source(url=url, title=scraped.title or url, content=scraped.markdown, quality=1.0))
        return UnifiedSearchResult(sources=sources, provider="firecrawl", classification=classification)

    async def _firecrawl_map(
        self, url: str, classification: QueryClassification, max_results: int
    ) -> UnifiedSearchResult:
        firecrawl = self._require_firecrawl()
        links = await firecrawl.map_site(url, limit=max(max_results, 100))
        sources = [
            Source(url=link, title=link, content=f"Discovered URL: {link}", quality=0.5) for link in links[:20]
        ]

        async def scrape_one(link: str) -> Source | None:
            result = await firecrawl.scrape(link, only_main_content=True)
            if result.success and result.markdown:
                return Source(url=link, title=result.title or link, content=result.markdown, quality=0.8)
            return None

        scraped = await asyncio.gather(*[scrape_one(link) for link in links[:3]], return_exceptions=True)
        for item in scraped:
            if isinstance(item, Source):
                sources = [s for s in sources if s.url != item.url]
                sources.insert(0, item)
        return UnifiedSearchResult(
            sources=sources, provider="firecrawl", classification=classification, total_results=len(links)
        )


def build_providers(settings: Settings) -> dict[str, SearchProvider]:
    """Instantiate every provider that has the credentials it needs."""

    http_kwargs = dict(
        timeout_s=settings.tavily_timeout_s,
        max_retries=settings.tavily_max_retries,
        retry_backoff_s=settings.tavily_retry_backoff_s,
        retry_max_backoff_s=settings.tavily_retry_max_backoff_s,
    )
    providers: dict[str, SearchProvider] = {}
    if settings.tavily_api_key:
        providers["tavily"] = TavilySearchProvider(
            api_key=settings.tavily_api_key,
            base_url=settings.tavily_api_base_url,
            search_depth=settings.tavily_search_depth,
            summary_char_limit=settings.summary_char_limit,
            **http_kwargs,
        )
    if settings.exa_api_key:
        providers["exa"] = ExaSearchProvider(
            api_key=settings.exa_api_key,
            base_url=settings.exa_api_base_url,
            summary_char_limit=settings.summary_char_limit,
            **http_kwargs,
        )
    if settings.semantic_scholar_enabled:
        providers["semantic-scholar"] = SemanticScholarSearchProvider(
            api_key=settings.semantic_scholar_api_key,
            base_url=settings.semantic_scholar_api_base_url,
            summary_char_limit=settings.summary_char_limit,
            **http_kwargs,
        )
    if settings.crossref_enabled:
        providers["crossref"] = CrossrefSearchProvider(
            base_url=settings.crossref_api_base_url,
            mailto=settings.crossref_mailto,
            summary_char_limit=settings.summary_char_limit,
            **http_kwargs,
        )
    if settings.clinicaltrials_enabled:
        providers["clinicaltrials"] = ClinicalTrialsSearchProvider(
            base_url=settings.clinicaltrials_api_base_url,
            summary_char_limit=settings.summary_char_limit,
            **http_kwargs,
        )
    if settings.firecrawl_api_key:
        providers["firecrawl"] = FirecrawlSearchProvider(
            api_key=settings.firecrawl_api_key,
            base_url=settings.firecrawl_api_base_url,
            **http_kwargs,
        )
    if settings.duckduckgo_enabled:
        providers["duckduckgo"] = DuckDuckGoSearchProvider()
    return providers


def build_unified_search(
    settings: Settings,
    *,
    llm: LanguageModel | None = None,
    firecrawl: FirecrawlScraper | None = None,
) -> UnifiedSearch:
    providers = build_providers(settings)
    if not providers:
        raise ValueError(
            "No search provider configured. Set SEARCHWEAVER_TAVILY_API_KEY or another provider key, "
            "or enable duckduckgo."
        )
    return UnifiedSearch(
        providers=providers,
        router=SearchRouter(llm),
        fallback_order=settings.search_fallback_order,
        firecrawl=firecrawl,
    )
