"""Event model used for streaming output and replay.

A run produces an ordered sequence of events. Each event is one variant of a tagged union keyed
by ``type``, so consumers can match exhaustively. Events are wrapped in :class:`RunEvent`
envelopes and recorded to JSONL so a run can be replayed later.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, SerializeAsAny

from searchweaver.models.run import ErrorKind, Phase, SourceStage
from searchweaver.models.source import Source


class PhaseUpdateEvent(BaseModel):
    type: Literal["phase-update"] = "phase-update"
    phase: Phase
    message: str


class ThinkingEvent(BaseModel):
    type: Literal["thinking"] = "thinking"
    message: str


class ProviderSelectedEvent(BaseModel):
    type: Literal["provider-selected"] = "provider-selected"
    provider: str
    reason: str


class SearchingEvent(BaseModel):
    type: Literal["searching"] = "searching"
    query: str
    index: int
    total: int
    provider: str | None = None


class FoundEvent(BaseModel):
    type: Literal["found"] = "found"
    sources: list[SerializeAsAny[Source]]
    query: str
    provider: str | None = None


class ScrapingEvent(BaseModel):
    type: Literal["scraping"] = "scraping"
    url: str
    index: int
    total: int
    query: str


class SourceProcessingEvent(BaseModel):
    type: Literal["source-processing"] = "source-processing"
    url: str
    title: str
    stage: SourceStage


class SourceCompleteEvent(BaseModel):
    type: Literal["source-complete"] = "source-complete"
    url: str
    summary: str


class ContentChunkEvent(BaseModel):
    type: Literal["content-chunk"] = "content-chunk"
    chunk: str


class FinalResultEvent(BaseModel):
    type: Literal["final-result"] = "final-result"
    content: str
    sources: list[SerializeAsAny[Source]]
    follow_up_questions: list[str] | None = None
    response_id: str | None = None


class ErrorEvent(BaseModel):
    """Error report.

    Non-terminal errors are emitted when the engine is about to retry; exactly one terminal error
    ends a failed run.
    """

    type: Literal["error"] = "error"
    error: str
    error_type: ErrorKind | None = None
    terminal: bool = True


SearchEvent = Annotated[
    Union[
        PhaseUpdateEvent,
        ThinkingEvent,
        ProviderSelectedEvent,
        SearchingEvent,
        FoundEvent,
        ScrapingEvent,
        SourceProcessingEvent,
        SourceCompleteEvent,
        ContentChunkEvent,
        FinalResultEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]


def is_terminal(event: BaseModel) -> bool:
    """Whether ``event`` ends a run."""

    if isinstance(event, FinalResultEvent):
        return True
    return isinstance(event, ErrorEvent) and event.terminal


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunEvent(BaseModel):
    """A single recorded event in a run."""

    run_id: str
    seq: int = Field(ge=1)
    ts: datetime = Field(default_factory=_utcnow)
    event: SearchEvent
