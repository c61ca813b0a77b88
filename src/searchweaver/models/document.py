"""Parsed document models."""

from __future__ import annotations

from pydantic import BaseModel


class ParsedDocument(BaseModel):
    """A cleaned, readable representation of a fetched web page."""

    url: str
    title: str | None = None
    text: str
    content_type: str | None = None
