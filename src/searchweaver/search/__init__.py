"""Search providers, routing and the unified multi-provider search."""

from __future__ import annotations

from searchweaver.search.providers import ProviderResult, SearchProvider, SearchProviderError
from searchweaver.search.router import SearchRouter, quick_classify
from searchweaver.search.unified import UnifiedSearch, UnifiedSearchResult, build_unified_search

__all__ = [
    "ProviderResult",
    "SearchProvider",
    "SearchProviderError",
    "SearchRouter",
    "UnifiedSearch",
    "UnifiedSearchResult",
    "build_unified_search",
    "quick_classify",
]
