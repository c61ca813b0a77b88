"""Tests for query and event models."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter, ValidationError

from searchweaver.events import (
    ContentChunkEvent,
    ErrorEvent,
    FinalResultEvent,
    RunEvent,
    SearchEvent,
    is_terminal,
)
from searchweaver.models.query import SubQuery
from searchweaver.models.run import ErrorKind
from searchweaver.models.source import EnhancedSource, EvidenceClass


def test_sub_query_confidence_never_decreases() -> None:
    """It should ignore a coverage result that is not more confident."""

    sq = SubQuery(question="Who?", search_query="who")
    sq = sq.apply_check(confidence=0.8, answer="Ada", sources=["https://a"], min_confidence=0.7)
    assert sq.answered
    assert sq.confidence == 0.8

    lower = sq.apply_check(confidence=0.4, answer="Bob", sources=["https://b"], min_confidence=0.7)
    assert lower is sq
    assert lower.answer == "Ada"


def test_sub_query_partial_answer_not_answered() -> None:
    """It should keep a low-confidence answer without marking it answered."""

    sq = SubQuery(question="Who?", search_query="who").apply_check(
        confidence=0.5, answer="maybe", sources=["https://a", "https://a"], min_confidence=0.7
    )
    assert not sq.answered
    assert sq.is_unanswered(0.7)
    assert sq.sources == ["https://a"]


def test_sub_query_confidence_bounds() -> None:
    """It should reject confidence outside [0, 1]."""

    with pytest.raises(ValidationError):
        SubQuery(question="q", search_query="q", confidence=1.5)


def test_event_union_discriminates_on_type() -> None:
    """It should parse an event by its type tag."""

    adapter = TypeAdapter(SearchEvent)
    ev = adapter.validate_python({"type": "error", "error": "boom", "error_type": "search", "terminal": False})
    assert isinstance(ev, ErrorEvent)
    assert ev.error_type == ErrorKind.SEARCH
    assert not is_terminal(ev)


def test_run_event_keeps_enhanced_source_fields() -> None:
    """It should serialize subclass fields of sources in a final result."""

    src = EnhancedSource(url="https://nih.gov/x", title="X", evidence_class=EvidenceClass.PRIMARY)
    envelope = RunEvent(run_id="r", seq=1, event=FinalResultEvent(content="done", sources=[src]))
    dumped = envelope.model_dump(mode="json")
    assert dumped["event"]["sources"][0]["evidence_class"] == "primary"

    restored = RunEvent.model_validate_json(envelope.model_dump_json())
    assert isinstance(restored.event, FinalResultEvent)
    assert is_terminal(restored.event)
    assert restored.event.sources[0].url == "https://nih.gov/x"


def test_run_event_seq_starts_at_one() -> None:
    """It should reject a zero sequence number."""

    with pytest.raises(ValidationError):
        RunEvent(run_id="r", seq=0, event=ContentChunkEvent(chunk="x"))
