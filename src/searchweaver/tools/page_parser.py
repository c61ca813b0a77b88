"""Page parsing utilities."""

from __future__ import annotations

from bs4 import BeautifulSoup
from readability import Document

from searchweaver.logging import get_logger
from searchweaver.models.document import ParsedDocument

logger = get_logger(__name__)


class PageParser:
    """Parse fetched HTML pages into cleaned text."""

    def __init__(self, *, max_chars: int = 25_000) -> None:
        self._max_chars = max_chars

    def parse_html(
        self,
        url: str,
        html: str,
        *,
        content_type: str | None = None,
        only_main_content: bool = True,
        include_links: bool = False,
    ) -> ParsedDocument:
        """Parse HTML into a readable document.

        With ``only_main_content`` the readability extract is used; otherwise the whole body.
        ``include_links`` appends the page's outbound links as a markdown list.
        """

        title: str | None
        if only_main_content:
            try:
                doc = Document(html)
                title = doc.short_title() or None
                soup = BeautifulSoup(doc.summary(html_partial=True), "lxml")
            except Exception:
                logger.exception("Readability extraction failed; using full page", extra={"url": url})
                soup = BeautifulSoup(html, "lxml")
                title = soup.title.get_text(strip=True) if soup.title else None
        else:
            soup = BeautifulSoup(html, "lxml")
            title = soup.title.get_text(strip=True) if soup.title else None

        text = self._normalize_text(soup.get_text("\n", strip=True))
        if include_links:
            links = self._links(BeautifulSoup(html, "lxml"))
            if links:
                text += "\n\nLinks:\n" + "\n".join(f"- {href}" for href in links)

        text = self._truncate(text, max_chars=self._max_chars)
        return ParsedDocument(url=url, title=title, text=text, content_type=content_type)

    @staticmethod
    def _links(soup: BeautifulSoup) -> list[str]:
        seen: list[str] = []
        for a in soup.find_all("a", href=True):
            href = a["href"].strip()
            if href.startswith("http") and href not in seen:
                seen.append(href)
        return seen

    @staticmethod
    def _normalize_text(text: str) -> str:
        return "\n".join([line.strip() for line in text.splitlines() if line.strip()])

    @staticmethod
    def _truncate(text: str, *, max_chars: int) -> str:
        if len(text) <= max_chars:
            return text
        return text[:max_chars] + "\n\n[TRUNCATED]"
