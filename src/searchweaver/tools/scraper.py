"""Content extraction.

Two backends share the :class:`Scraper` interface: the Firecrawl API and a local pipeline built
on :class:`PageFetcher` and :class:`PageParser`. Scrapers report failures through
:class:`ScrapeResult` instead of raising, so one failed page never fails a batch.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from searchweaver.config import Settings
from searchweaver.logging import get_logger
from searchweaver.tools.page_fetcher import PageFetcher
from searchweaver.tools.page_parser import PageParser

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScrapeResult:
    """Outcome of a scrape.

    ``error`` is one of ``timeout``, ``unsupported`` or ``failed`` when ``success`` is false.
    """

    url: str
    success: bool
    markdown: str | None = None
    title: str | None = None
    error: str | None = None
    detail: str | None = None


class Scraper(Protocol):
    """Content extraction interface."""

    name: str

    async def scrape(
        self,
        url: str,
        *,
        only_main_content: bool = True,
        include_links: bool = False,
        timeout_s: float | None = None,
    ) -> ScrapeResult:
        """Extract the readable content of ``url``."""


class ScrapeError(RuntimeError):
    pass


@dataclass
class FirecrawlScraper:
    """Firecrawl REST client (``/v1/scrape`` and ``/v1/map``)."""

    api_key: str
    base_url: str = "https://api.firecrawl.dev"
    timeout_s: float = 15.0
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)

    name = "firecrawl"

    def __post_init__(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self.base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=httpx.Timeout(self.timeout_s + 5.0),
            transport=self.transport,
        )

    async def scrape(
        self,
        url: str,
        *,
        only_main_content: bool = True,
        include_links: bool = False,
        timeout_s: float | None = None,
    ) -> ScrapeResult:
        timeout = timeout_s or self.timeout_s
        formats = ["markdown", "links"] if include_links else ["markdown"]
        payload = {
            "url": url,
            "formats": formats,
            "onlyMainContent": only_main_content,
            "timeout": int(timeout * 1000),
        }
        try:
            resp = await asyncio.wait_for(self._client.post("/v1/scrape", json=payload), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("Scrape timed out", extra={"url": url, "timeout_s": timeout})
            return ScrapeResult(url=url, success=False, error="timeout", detail="Scraping took too long and was stopped")
        except httpx.RequestError as e:
            logger.warning("Scrape request failed", extra={"url": url, "error": str(e)})
            return ScrapeResult(url=url, success=False, error="failed", detail=str(e))

        if resp.status_code == 403:
            return ScrapeResult(url=url, success=False, error="unsupported", detail="This website is not supported")
        if resp.status_code >= 400:
            return ScrapeResult(url=url, success=False, error="failed", detail=f"status={resp.status_code}")

        try:
            body: dict[str, Any] = resp.json()
        except ValueError:
            return ScrapeResult(url=url, success=False, error="failed", detail="non-JSON response")
        if not body.get("success", True):
            return ScrapeResult(url=url, success=False, error="failed", detail=str(body.get("error")))

        data = body.get("data") or {}
        metadata = data.get("metadata") or {}
        markdown = data.get("markdown") or ""
        links = data.get("links") or []
        if include_links and links:
            markdown += "\n\nLinks:\n" + "\n".join(f"- {link}" for link in links if isinstance(link, str))
        return ScrapeResult(
            url=url,
            success=True,
            markdown=markdown,
            title=metadata.get("title"),
        )

    async def map_site(self, url: str, *, limit: int = 100, search: str | None = None) -> list[str]:
        """Discover URLs on a site.

        Raises:
            ScrapeError: If the map call fails.
        """

        payload: dict[str, Any] = {"url": url, "limit": limit}
        if search:
            payload["search"] = search
        try:
            resp = await self._client.post("/v1/map", json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ScrapeError(f"firecrawl map failed for {url}") from e
        if not body.get("success", True):
            raise ScrapeError(f"firecrawl map failed for {url}: {body.get('error')}")
        return [link for link in body.get("links") or [] if isinstance(link, str)]

    async def aclose(self) -> None:
        await self._client.aclose()


class LocalScraper:
    """Scrape by fetching the page directly and extracting readable text."""

    name = "local"

    def __init__(
        self,
        settings: Settings,
        *,
        fetcher: PageFetcher | None = None,
        parser: PageParser | None = None,
    ) -> None:
        self._timeout_s = settings.scrape_timeout_s
        self._fetcher = fetcher or PageFetcher(settings)
        self._parser = parser or PageParser()

    async def scrape(
        self,
        url: str,
        *,
        only_main_content: bool = True,
        include_links: bool = False,
        timeout_s: float | None = None,
    ) -> ScrapeResult:
        timeout = timeout_s or self._timeout_s
        try:
            page = await asyncio.wait_for(self._fetcher.fetch(url), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return ScrapeResult(url=url, success=False, error="timeout", detail="Scraping took too long and was stopped")
        except httpx.HTTPStatusError as e:
            error = "unsupported" if e.response.status_code == 403 else "failed"
            return ScrapeResult(url=url, success=False, error=error, detail=f"status={e.response.status_code}")
        except httpx.RequestError as e:
            return ScrapeResult(url=url, success=False, error="failed", detail=str(e))

        if page.content_type and "html" not in page.content_type and "text" not in page.content_type:
            return ScrapeResult(url=url, success=False, error="unsupported", detail=page.content_type)

        html = page.content.decode("utf-8", errors="replace")
        doc = await asyncio.to_thread(
            self._parser.parse_html,
            page.url,
            html,
            content_type=page.content_type,
            only_main_content=only_main_content,
            include_links=include_links,
        )
        return ScrapeResult(url=url, success=True, markdown=doc.text, title=doc.title)


def get_scraper(settings: Settings) -> Scraper:
    """Factory to create a scraper based on settings."""

    backend = settings.scraper_backend
    if backend == "firecrawl" and not settings.firecrawl_api_key:
        raise ValueError(
            "Missing SEARCHWEAVER_FIRECRAWL_API_KEY while scraper_backend=firecrawl. "
            "Set it in environment variables or .env."
        )
    if backend in {"firecrawl", "auto"} and settings.firecrawl_api_key:
        return FirecrawlScraper(
            api_key=settings.firecrawl_api_key,
            base_url=settings.firecrawl_api_base_url,
            timeout_s=settings.scrape_timeout_s,
        )
    return LocalScraper(settings)
