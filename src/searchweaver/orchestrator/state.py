"""Per-run orchestration state and its merge rules.

Nodes never mutate :class:`RunState`. They return a :class:`StateUpdate` naming only the fields
they change; :func:`apply_update` folds it into the state using the merge function registered for
each field. Fields left as :data:`UNSET` are untouched, so ``None`` is a real value (for example
when clearing ``error``).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, Iterable

from searchweaver.models.query import PriorTurn, SubQuery
from searchweaver.models.run import ErrorKind, Phase
from searchweaver.models.source import Source


class _Unset:
    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass
class RunState:
    query: str
    prior_context: list[PriorTurn] = field(default_factory=list)
    continuation_id: str | None = None

    understanding: str | None = None
    sub_queries: list[SubQuery] | None = None
    search_queries: list[str] = field(default_factory=list)
    current_search_index: int = 0

    # Keyed by URL; dict order is first-seen order.
    sources: dict[str, Source] = field(default_factory=dict)
    url_sources: list[Source] = field(default_factory=list)
    scraped_sources: list[Source] = field(default_factory=list)
    processed_sources: list[Source] | None = None

    phase: Phase = Phase.UNDERSTANDING
    search_attempt: int = 0
    retry_count: int = 0
    max_retries: int = 2

    provider: str | None = None
    provider_reason: str | None = None
    suggested_mode: str | None = None
    pre_answer: str | None = None

    final_answer: str | None = None
    follow_up_questions: list[str] = field(default_factory=list)
    response_id: str | None = None

    error: str | None = None
    error_kind: ErrorKind | None = None

    def source_list(self) -> list[Source]:
        return list(self.sources.values())

    def snapshot(self) -> dict[str, str | int | None]:
        return {
            "query": self.query,
            "phase": self.phase.value,
            "sub_queries": len(self.sub_queries) if self.sub_queries is not None else None,
            "search_queries": len(self.search_queries),
            "current_search_index": self.current_search_index,
            "sources": len(self.sources),
            "scraped_sources": len(self.scraped_sources),
            "search_attempt": self.search_attempt,
            "retry_count": self.retry_count,
            "provider": self.provider,
            "error_kind": self.error_kind.value if self.error_kind is not None else None,
        }


@dataclass
class StateUpdate:
    """Partial update returned by a node. Every field defaults to :data:`UNSET`."""

    prior_context: Any = UNSET
    understanding: Any = UNSET
    sub_queries: Any = UNSET
    search_queries: Any = UNSET
    current_search_index: Any = UNSET
    sources: Any = UNSET
    url_sources: Any = UNSET
    scraped_sources: Any = UNSET
    processed_sources: Any = UNSET
    phase: Any = UNSET
    search_attempt: Any = UNSET
    retry_count: Any = UNSET
    provider: Any = UNSET
    provider_reason: Any = UNSET
    suggested_mode: Any = UNSET
    pre_answer: Any = UNSET
    final_answer: Any = UNSET
    follow_up_questions: Any = UNSET
    response_id: Any = UNSET
    error: Any = UNSET
    error_kind: Any = UNSET

    def changed(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}


def merge_sources(existing: dict[str, Source], update: Iterable[Source]) -> dict[str, Source]:
    """Merge by URL. A later source replaces an earlier one but keeps its position."""

    merged = dict(existing)
    for source in update:
        merged[source.url] = source
    return merged


def append_sources(existing: list[Source], update: Iterable[Source]) -> list[Source]:
    return [*existing, *update]


def replace_value(_existing: Any, update: Any) -> Any:
    return update


MERGERS: dict[str, Callable[[Any, Any], Any]] = {
    "sources": merge_sources,
    "scraped_sources": append_sources,
}


def apply_update(state: RunState, update: StateUpdate) -> RunState:
    """Return a new state with ``update`` folded in."""

    changes = {
        name: MERGERS.get(name, replace_value)(getattr(state, name), value)
        for name, value in update.changed().items()
    }
    return replace(state, **changes) if changes else state
