"""Tests for unified search routing and fallback."""

from __future__ import annotations

import json

import httpx
import pytest

from searchweaver.models.query import QueryClassification
from searchweaver.models.source import Source
from searchweaver.search.providers import ProviderResult, ProviderUnavailableError, SearchProviderError
from searchweaver.search.router import SearchRouter
from searchweaver.search.unified import UnifiedSearch
from searchweaver.tools.scraper import FirecrawlScraper


class _FakeProvider:
    def __init__(self, name: str, *, fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    async def search(self, query: str, *, max_results: int, mode: str = "search") -> ProviderResult:
        self.calls.append((query, mode))
        if self.fail:
            raise SearchProviderError(f"{self.name} down")
        sources = [Source(url=f"https://{self.name}.example/{i}", title=str(i)) for i in range(max_results + 2)]
        return ProviderResult(sources=sources, pre_answer=f"{self.name} answer")


def _classification(provider: str, mode: str = "search") -> QueryClassification:
    return QueryClassification(provider=provider, confidence=0.9, reason="test", suggested_mode=mode)


@pytest.mark.asyncio
async def test_unavailable_provider_falls_back_with_reason() -> None:
    """It should use the first configured fallback and say why."""

    tavily = _FakeProvider("tavily")
    search = UnifiedSearch(providers={"tavily": tavily}, router=SearchRouter())

    result = await search.search("q", max_results=3, classification=_classification("exa"))

    assert result.provider == "tavily"
    assert result.classification.reason == "Fallback to tavily (original provider unavailable)"
    assert len(result.sources) == 3
    assert result.pre_answer == "tavily answer"


@pytest.mark.asyncio
async def test_failing_provider_moves_to_next_fallback() -> None:
    """It should try the next untried provider after a failure."""

    tavily = _FakeProvider("tavily", fail=True)
    ddg = _FakeProvider("duckduckgo")
    search = UnifiedSearch(providers={"tavily": tavily, "duckduckgo": ddg}, router=SearchRouter())

    result = await search.search("q", max_results=2, classification=_classification("tavily"))

    assert result.provider == "duckduckgo"
    assert result.classification.reason == "Fallback to duckduckgo after tavily failed"
    assert len(tavily.calls) == 1


@pytest.mark.asyncio
async def test_all_providers_failing_raises() -> None:
    """It should raise once every provider has failed."""

    search = UnifiedSearch(
        providers={"tavily": _FakeProvider("tavily", fail=True), "exa": _FakeProvider("exa", fail=True)},
        router=SearchRouter(),
    )
    with pytest.raises(SearchProviderError):
        await search.search("q", max_results=2, classification=_classification("tavily"))


@pytest.mark.asyncio
async def test_no_providers_configured() -> None:
    """It should report that nothing is configured."""

    search = UnifiedSearch(providers={}, router=SearchRouter())
    with pytest.raises(ProviderUnavailableError):
        await search.search("q", max_results=2, classification=_classification("tavily"))


@pytest.mark.asyncio
async def test_force_provider_and_mode_passthrough() -> None:
    """It should honour a forced provider and pass the suggested mode."""

    exa = _FakeProvider("exa")
    search = UnifiedSearch(providers={"tavily": _FakeProvider("tavily"), "exa": exa}, router=SearchRouter())

    result = await search.search("q", max_results=1, force_provider="exa", classification=_classification("tavily", "academic"))
    assert result.provider == "exa"
    assert exa.calls == [("q", "academic")]


@pytest.mark.asyncio
async def test_router_used_when_no_classification() -> None:
    """It should classify the query itself when no decision is passed in."""

    exa = _FakeProvider("exa")
    search = UnifiedSearch(providers={"tavily": _FakeProvider("tavily"), "exa": exa}, router=SearchRouter())
    result = await search.search("companies like Stripe", max_results=1)
    assert result.provider == "exa"
    assert search.is_available("tavily") and search.is_available("exa")
    assert not search.is_available("firecrawl")


def _firecrawl() -> FirecrawlScraper:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/map":
            return httpx.Response(200, json={"success": True, "links": [f"https://site.com/p{i}" for i in range(30)]})
        page = json.loads(request.content)["url"].rsplit("/", 1)[-1]
        return httpx.Response(
            200, json={"success": True, "data": {"markdown": f"# {page}", "metadata": {"title": page}}}
        )

    return FirecrawlScraper(api_key="k", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_firecrawl_scrape_mode_scrapes_url() -> None:
    """It should scrape the URL in the query directly."""

    search = UnifiedSearch(
        providers={"firecrawl": _FakeProvider("firecrawl")}, router=SearchRouter(), firecrawl=_firecrawl()
    )
    result = await search.search("summarize https://site.com/home", max_results=5)

    assert result.provider == "firecrawl"
    assert [s.url for s in result.sources] == ["https://site.com/home"]
    assert result.sources[0].quality == 1.0
    assert result.sources[0].content == "# home"


@pytest.mark.asyncio
async def test_firecrawl_map_mode_scrapes_top_links_first() -> None:
    """It should list discovered URLs and put the scraped pages first."""

    search = UnifiedSearch(
        providers={"firecrawl": _FakeProvider("firecrawl")}, router=SearchRouter(), firecrawl=_firecrawl()
    )
    result = await search.search("crawl https://site.com and list all urls", max_results=5)

    assert result.total_results == 30
    assert len(result.sources) == 20
    scraped = [s for s in result.sources if s.quality == 0.8]
    assert {s.url for s in scraped} == {"https://site.com/p0", "https://site.com/p1", "https://site.com/p2"}
    assert all(s.quality == 0.8 for s in result.sources[:3])


@pytest.mark.asyncio
async def test_firecrawl_scrape_without_scraper_is_unavailable() -> None:
    """It should raise ProviderUnavailableError when no firecrawl scraper is configured."""

    search = UnifiedSearch(providers={"firecrawl": _FakeProvider("firecrawl")}, router=SearchRouter())

    with pytest.raises(ProviderUnavailableError, match="not configured"):
        await search._firecrawl_scrape("https://site.com/home", _classification("firecrawl", "scrape"))
    with pytest.raises(ProviderUnavailableError):
        await search._firecrawl_map("https://site.com", _classification("firecrawl", "map"), 5)
