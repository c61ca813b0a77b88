"""Query text helpers."""

from __future__ import annotations

import re
from datetime import datetime
from urllib.parse import urlparse

_URL_RE = re.compile(r"https?://[^\s<>\"')\]]+")
_TRAILING_PUNCT_RE = re.compile(r"[.,;:!?]+$")

CRAWL_MAP_KEYWORDS = (
    "crawl",
    "all pages",
    "entire site",
    "full site",
    "map",
    "structure",
    "sitemap",
    "list all urls",
    "discover pages",
)


def extract_urls(text: str) -> list[str]:
    """Return literal http(s) URLs in ``text``, in order, without trailing punctuation."""

    urls: list[str] = []
    for match in _URL_RE.findall(text or ""):
        url = _TRAILING_PUNCT_RE.sub("", match)
        if url and url not in urls:
            urls.append(url)
    return urls


def is_crawl_or_map_query(text: str) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in CRAWL_MAP_KEYWORDS)


def hostname(url: str) -> str:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return url
    return host or url


def clean_query_lines(text: str) -> list[str]:
    """Turn a model's one-query-per-line answer into clean search strings."""

    out: list[str] = []
    for line in (text or "").split("\n"):
        q = line.strip()
        q = re.sub(r"^\d+\.\s*", "", q)
        q = re.sub(r"^[-*#]\s*", "", q)
        q = re.sub(r"^[\"']|[\"']$", "", q).strip()
        if not q or q.startswith("```") or len(q) <= 3:
            continue
        out.append(q)
    return out


def current_date_context(now: datetime | None = None) -> str:
    now = now or datetime.now()
    date_str = now.strftime("%A, %B %d, %Y")
    return (
        f"Today's date is {date_str}. "
        f"The current year is {now.year} and it's currently {now.month}/{now.year}."
    )
