"""Tests for the search state machine with fake clients."""

from __future__ import annotations

import asyncio
import json

from fakes import FakeLLM, FakeScraper, FakeSearch, make_engine

from searchweaver.config import Settings
from searchweaver.events import (
    ContentChunkEvent,
    ErrorEvent,
    FinalResultEvent,
    ProviderSelectedEvent,
    ScrapingEvent,
    SearchingEvent,
    SourceCompleteEvent,
    ThinkingEvent,
    is_terminal,
)
from searchweaver.models.run import ErrorKind, Phase
from searchweaver.models.source import Source
from searchweaver.orchestrator.engine import SearchEngine
from searchweaver.orchestrator.state import RunState
from searchweaver.research.context import ContextProcessor, ContextResult

PYTHON_TEXT = "Python is a high-level programming language created by Guido van Rossum. " * 5


def _answered(question: str, url: str = "https://a.example") -> str:
    return json.dumps([{"question": question, "answered": True, "confidence": 0.9, "answer": "yes", "sources": [url]}])


def _replies(question: str, **overrides: object) -> dict[str, object]:
    replies: dict[str, object] = {
        "understand": "### Python\nYou want to know what Python is.",
        "sub_queries": json.dumps([{"question": question, "searchQuery": "python programming language"}]),
        "check": _answered(question),
        "alternatives": "1. python language overview\n2. python history",
        "summary": "Python is a programming language created by Guido van Rossum.",
        "follow_ups": "Who maintains Python?\nWhat is Python used for?\nHow fast is Python?\nA fourth one?",
        "synthesis": "Full answer from a single generation.",
    }
    replies.update(overrides)
    return replies


def _run(engine, query: str):  # type: ignore[no-untyped-def]
    events: list = []
    state = asyncio.run(engine.run(query, events.append))
    return events, state


def _assert_single_terminal_last(events: list) -> None:
    terminals = [e for e in events if is_terminal(e)]
    assert len(terminals) == 1
    assert is_terminal(events[-1])


def test_simple_question_runs_to_final_result() -> None:
    """It should search once for a single question and end with one final result."""

    question = "What is Python?"
    search = FakeSearch([Source(url="https://a.example", title="A", content=PYTHON_TEXT)])
    scraper = FakeScraper({"https://a.example": PYTHON_TEXT})
    engine = make_engine(FakeLLM(_replies(question), stream_chunks=["Python ", "is great."]), search, scraper)

    events, state = _run(engine, question)

    _assert_single_terminal_last(events)
    final = events[-1]
    assert isinstance(final, FinalResultEvent)
    assert final.content.startswith("Python is great.")
    assert "Research Integrity Note" in final.content
    assert final.response_id == "resp_stream"
    assert final.follow_up_questions == ["Who maintains Python?", "What is Python used for?", "How fast is Python?"]
    assert [s.url for s in final.sources] == ["https://a.example"]

    searching = [e for e in events if isinstance(e, SearchingEvent)]
    assert len(searching) == 1
    assert searching[0].query == "python programming language"
    assert (searching[0].index, searching[0].total) == (1, 1)

    selected = next(i for i, e in enumerate(events) if isinstance(e, ProviderSelectedEvent))
    assert events[selected].provider == "tavily"
    assert selected < events.index(searching[0])
    assert state.phase == Phase.COMPLETE
    assert state.pre_answer == "Quick provider answer"


def test_user_urls_are_scraped_before_searching() -> None:
    """It should announce firecrawl and scrape each URL before any search."""

    question = "Compare https://a.example/x and https://b.example/y"
    scraper = FakeScraper({"https://a.example/x": PYTHON_TEXT, "https://b.example/y": PYTHON_TEXT})
    search = FakeSearch([Source(url="https://c.example", content=PYTHON_TEXT)])
    engine = make_engine(FakeLLM(_replies(question)), search, scraper)

    events, _ = _run(engine, question)

    _assert_single_terminal_last(events)
    selected = [e for e in events if isinstance(e, ProviderSelectedEvent)]
    assert selected[0].provider == "firecrawl"
    scraping = [e.url for e in events if isinstance(e, ScrapingEvent)]
    assert scraping[:2] == ["https://a.example/x", "https://b.example/y"]
    first_scrape = next(i for i, e in enumerate(events) if isinstance(e, ScrapingEvent))
    assert events.index(selected[0]) < first_scrape

    # Every question was answered by the URLs, so no search ran.
    assert search.queries == []
    final = events[-1]
    assert isinstance(final, FinalResultEvent)
    assert {s.url for s in final.sources} == {"https://a.example/x", "https://b.example/y"}


def test_understanding_failure_retries_then_fails_once() -> None:
    """It should emit non-terminal errors while retrying and exactly one terminal error."""

    engine = make_engine(FakeLLM(_replies("q", understand=RuntimeError("model down"))), max_retries=2)

    events, state = _run(engine, "q")

    _assert_single_terminal_last(events)
    errors = [e for e in events if isinstance(e, ErrorEvent)]
    assert [e.terminal for e in errors] == [False, False, True]
    assert all(e.error_type == ErrorKind.LLM for e in errors)
    assert errors[-1].error == "model down"
    assert state.phase == Phase.ERROR
    assert state.retry_count == 2


def test_step_limit_ends_with_unknown_error() -> None:
    """It should stop a run that exceeds the step limit with one terminal unknown error."""

    question = "What is Python?"
    search = FakeSearch([Source(url="https://a.example", content=PYTHON_TEXT)])
    engine = make_engine(FakeLLM(_replies(question, check="[]")), search, graph_step_limit=5)

    events, state = _run(engine, question)

    _assert_single_terminal_last(events)
    last = events[-1]
    assert isinstance(last, ErrorEvent)
    assert last.error_type == ErrorKind.UNKNOWN
    assert "5 steps" in last.error
    assert state.error_kind == ErrorKind.UNKNOWN


def test_search_failures_do_not_abort_the_run() -> None:
    """It should note failed searches, retry with alternatives and still answer."""

    question = "What is Python?"
    search = FakeSearch(fail=True)
    engine = make_engine(FakeLLM(_replies(question, check="[]")), search, max_search_attempts=3)

    events, state = _run(engine, question)

    _assert_single_terminal_last(events)
    assert isinstance(events[-1], FinalResultEvent)
    notes = [e.message for e in events if isinstance(e, ThinkingEvent)]
    assert any("failed, continuing" in n for n in notes)
    assert search.queries[0] == "python programming language"
    assert "python language overview" in search.queries
    assert state.search_attempt == 3


def test_streaming_failure_falls_back_to_generate() -> None:
    """It should emit the whole answer as one chunk when streaming breaks."""

    question = "What is Python?"
    search = FakeSearch([Source(url="https://a.example", content=PYTHON_TEXT)])
    llm = FakeLLM(_replies(question), stream_error=RuntimeError("stream reset"))
    engine = make_engine(llm, search)

    events, _ = _run(engine, question)

    chunks = [e.chunk for e in events if isinstance(e, ContentChunkEvent)]
    assert "Full answer from a single generation." in chunks
    final = events[-1]
    assert isinstance(final, FinalResultEvent)
    assert final.content.startswith("Full answer from a single generation.")
    assert final.response_id == "resp_synthesis"


def test_synthesis_failure_is_reported_once() -> None:
    """It should end in one terminal error when synthesis keeps failing."""

    question = "What is Python?"
    search = FakeSearch([Source(url="https://a.example", content=PYTHON_TEXT)])
    llm = FakeLLM(
        _replies(question, synthesis=RuntimeError("synthesis down")),
        stream_error=RuntimeError("stream reset"),
    )
    engine = make_engine(llm, search, max_retries=1)

    events, _ = _run(engine, question)

    _assert_single_terminal_last(events)
    assert isinstance(events[-1], ErrorEvent)
    assert not any(isinstance(e, FinalResultEvent) for e in events)


def _check(question: str, confidence: float, **extra: object) -> str:
    return json.dumps([{"question": question, "confidence": confidence, "answer": "partly", **extra}])


def test_partial_answers_stop_after_configured_attempts() -> None:
    """It should stop searching once partial answers exist and two attempts have elapsed."""

    question = "What is Python?"
    search = FakeSearch([Source(url="https://a.example", content=PYTHON_TEXT)])
    llm = FakeLLM(_replies(question, check=_check(question, 0.4)))
    engine = make_engine(llm, search, min_answer_confidence=0.5, max_search_attempts=3)

    events, state = _run(engine, question)

    _assert_single_terminal_last(events)
    assert isinstance(events[-1], FinalResultEvent)
    assert state.search_attempt == 2
    assert search.queries == ["python programming language", "python language overview", "python history"]
    notes = [e.message for e in events if isinstance(e, ThinkingEvent)]
    assert "Found partial information. Moving forward with what's available." in notes
    assert state.sub_queries is not None
    assert not state.sub_queries[0].answered


def test_malformed_answer_check_sources_are_ignored() -> None:
    """It should keep the run going when the answer check returns a non-list sources field."""

    question = "What is Python?"
    search = FakeSearch([Source(url="https://a.example", content=PYTHON_TEXT)])
    llm = FakeLLM(_replies(question, check=_check(question, 0.9, sources=5)))
    engine = make_engine(llm, search)

    events, state = _run(engine, question)

    _assert_single_terminal_last(events)
    assert isinstance(events[-1], FinalResultEvent)
    assert not any(isinstance(e, ErrorEvent) for e in events)
    assert state.sub_queries is not None
    assert state.sub_queries[0].answered
    assert state.sub_queries[0].sources == []


class _FlakyContextProcessor(ContextProcessor):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    def process(self, query, sources, search_queries) -> ContextResult:  # type: ignore[no-untyped-def]
        if self.failures:
            self.failures -= 1
            raise RuntimeError("context store offline")
        return super().process(query, sources, search_queries)


def test_node_exception_goes_through_error_handler() -> None:
    """It should report a raising node as a retryable unknown error and then finish."""

    question = "What is Python?"
    search = FakeSearch([Source(url="https://a.example", content=PYTHON_TEXT)])
    engine = SearchEngine(
        Settings(max_retries=2),
        llm=FakeLLM(_replies(question)),
        search=search,  # type: ignore[arg-type]
        scraper=FakeScraper(),
        context_processor=_FlakyContextProcessor(failures=1),
    )

    events, state = _run(engine, question)

    _assert_single_terminal_last(events)
    errors = [e for e in events if isinstance(e, ErrorEvent)]
    assert len(errors) == 1
    assert (errors[0].error, errors[0].error_type, errors[0].terminal) == (
        "context store offline",
        ErrorKind.UNKNOWN,
        False,
    )
    assert isinstance(events[-1], FinalResultEvent)
    assert state.phase == Phase.COMPLETE
    assert state.retry_count == 1


def test_node_exception_after_retries_is_terminal_once() -> None:
    """It should end with one terminal unknown error when a node keeps raising."""

    question = "What is Python?"
    search = FakeSearch([Source(url="https://a.example", content=PYTHON_TEXT)])
    engine = SearchEngine(
        Settings(max_retries=1),
        llm=FakeLLM(_replies(question)),
        search=search,  # type: ignore[arg-type]
        scraper=FakeScraper(),
        context_processor=_FlakyContextProcessor(failures=10),
    )

    events, state = _run(engine, question)

    _assert_single_terminal_last(events)
    errors = [e for e in events if isinstance(e, ErrorEvent)]
    assert [e.terminal for e in errors] == [False, True]
    assert all(e.error_type == ErrorKind.UNKNOWN for e in errors)
    assert state.phase == Phase.ERROR


def test_failed_extraction_keeps_existing_content() -> None:
    """It should enrich thin sources and keep a source whose extraction raises."""

    question = "What is Python?"
    scraped_text = PYTHON_TEXT + "Extracted in full."
    search = FakeSearch(
        [
            Source(url="https://a.example", title="A", content="short"),
            Source(url="https://b.example", title="B", content=PYTHON_TEXT),
        ]
    )
    scraper = FakeScraper(
        {"https://a.example": scraped_text}, errors={"https://b.example": RuntimeError("connection reset")}
    )
    engine = make_engine(FakeLLM(_replies(question)), search, scraper)

    events, state = _run(engine, question)

    assert isinstance(events[-1], FinalResultEvent)
    assert set(scraper.urls) == {"https://a.example", "https://b.example"}
    assert state.sources["https://a.example"].content == scraped_text
    assert state.sources["https://a.example"].title == "Page https://a.example"
    assert state.sources["https://b.example"].content == PYTHON_TEXT
    notes = [e.message for e in events if isinstance(e, ThinkingEvent)]
    assert "Couldn't access b.example, trying other sources..." in notes


def test_unparseable_sub_queries_fall_back_to_the_query() -> None:
    """It should search for the whole query when sub-questions cannot be parsed."""

    question = "What is Python?"
    search = FakeSearch([Source(url="https://a.example", content=PYTHON_TEXT)])
    llm = FakeLLM(_replies(question, sub_queries="I could not split this question."))
    engine = make_engine(llm, search)

    events, state = _run(engine, question)

    assert isinstance(events[-1], FinalResultEvent)
    assert search.queries[0] == question
    assert state.sub_queries is not None
    assert [sq.question for sq in state.sub_queries] == [question]


def test_irrelevant_summaries_are_dropped() -> None:
    """It should not attach or announce a summary that says the page is not relevant."""

    question = "What is Python?"
    search = FakeSearch([Source(url="https://a.example", content=PYTHON_TEXT)])
    scraper = FakeScraper({"https://a.example": PYTHON_TEXT})
    llm = FakeLLM(_replies(question, summary="No specific information about the question."))
    engine = make_engine(llm, search, scraper)

    events, state = _run(engine, question)

    assert isinstance(events[-1], FinalResultEvent)
    assert "summary" in llm.calls
    assert not any(isinstance(e, SourceCompleteEvent) for e in events)
    assert state.sources["https://a.example"].summary is None


def test_analyze_merges_pools_in_insertion_order() -> None:
    """It should let scraped beat searched beat user-URL sources while keeping first-seen order."""

    engine = make_engine(FakeLLM(_replies("q")))
    state = RunState(
        query="What is Python?",
        url_sources=[Source(url="https://x.example", title="from url", content=PYTHON_TEXT)],
        sources={
            "https://y.example": Source(url="https://y.example", title="searched y", content=PYTHON_TEXT),
            "https://x.example": Source(url="https://x.example", title="searched x", content=PYTHON_TEXT),
        },
        scraped_sources=[Source(url="https://x.example", title="scraped x", content=PYTHON_TEXT)],
    )
    events: list = []

    update = asyncio.run(engine.analyze(state, events.append))  # type: ignore[arg-type]

    assert [s.url for s in update.sources] == ["https://x.example", "https://y.example"]
    assert [s.title for s in update.sources] == ["scraped x", "searched y"]
    assert update.phase == Phase.SYNTHESIZING
    assert update.search_attempt == 1


def test_confidence_never_drops_across_attempts() -> None:
    """It should keep the higher confidence when a later check reports a lower one."""

    question = "What is Python?"
    search = FakeSearch([Source(url="https://a.example", content=PYTHON_TEXT)])
    llm = FakeLLM(_replies(question, check=[_check(question, 0.9), _check(question, 0.5)]))
    engine = make_engine(llm, search, min_answer_confidence=0.95)

    events, state = _run(engine, question)

    assert isinstance(events[-1], FinalResultEvent)
    assert llm.calls.count("check") == 2
    assert state.search_attempt == 2
    assert state.sub_queries is not None
    assert state.sub_queries[0].confidence == 0.9


def test_context_can_be_condensed_by_the_model() -> None:
    """It should replace each selected source's content with the model digest when enabled."""

    question = "What is Python?"
    digest = "Python is a programming language; the page specifically mentions its creator."
    search = FakeSearch([Source(url="https://a.example", content=PYTHON_TEXT)])
    llm = FakeLLM(_replies(question, context_summary=digest))
    engine = make_engine(llm, search, context_summarize=True)

    events, state = _run(engine, question)

    assert isinstance(events[-1], FinalResultEvent)
    assert "context_summary" in llm.calls
    assert state.processed_sources is not None
    assert [s.content for s in state.processed_sources] == [digest]
