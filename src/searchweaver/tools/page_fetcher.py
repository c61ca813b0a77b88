"""Page fetching utilities."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from searchweaver.config import Settings
from searchweaver.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FetchedPage:
    """Fetched page payload."""

    url: str
    content: bytes
    content_type: str | None
    status_code: int


class PageFetcher:
    """Fetch pages over HTTP."""

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout_s),
            headers={"User-Agent": settings.http_user_agent},
            follow_redirects=True,
            transport=transport,
        )

    async def fetch(self, url: str) -> FetchedPage:
        """Fetch a URL.

        Raises:
            httpx.HTTPStatusError: On 4xx/5xx responses.
        """

        resp = await self._client.get(url)
        resp.raise_for_status()
        return FetchedPage(
            url=str(resp.url),
            content=resp.content,
            content_type=resp.headers.get("content-type"),
            status_code=resp.status_code,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
