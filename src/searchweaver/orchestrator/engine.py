"""Search orchestration state machine.

A run moves through ``understand -> plan -> search (one query per step) -> scrape -> analyze ->
synthesize -> complete``. ``analyze`` may loop back to ``plan`` with reformulated queries, and any
node may divert to ``handle_error``, which retries a bounded number of times.

Each node is an async method taking the current :class:`RunState` and returning a
:class:`StateUpdate`; each has a routing function that picks the next node from the updated
state. Events are reported through the ``on_event`` callback as they happen.
"""

from __future__ import annotations

import asyncio
import re
from typing import Awaitable, Callable, Sequence

from searchweaver.config import Settings
from searchweaver.events import (
    ContentChunkEvent,
    ErrorEvent,
    FinalResultEvent,
    FoundEvent,
    PhaseUpdateEvent,
    ProviderSelectedEvent,
    ScrapingEvent,
    SearchEvent,
    SearchingEvent,
    SourceCompleteEvent,
    SourceProcessingEvent,
    ThinkingEvent,
    is_terminal,
)
from searchweaver.llm.client import ChatMessage, LanguageModel, LLMClient
from searchweaver.logging import get_logger, log_exception, set_step
from searchweaver.models.query import PriorTurn, SubQuery
from searchweaver.models.run import ErrorKind, Phase, SourceStage
from searchweaver.models.source import EnhancedSource, Source
from searchweaver.orchestrator.state import RunState, StateUpdate, apply_update, merge_sources
from searchweaver.prompts import (
    ALTERNATIVE_QUERIES_SYSTEM_PROMPT,
    ANSWER_CHECK_SYSTEM_PROMPT,
    CONTEXT_SUMMARY_SYSTEM_PROMPT,
    FOLLOW_UP_SYSTEM_PROMPT,
    NOT_RELEVANT_MARKER,
    SUBQUERY_SYSTEM_PROMPT,
    SUMMARIZER_SYSTEM_PROMPT,
    SYNTHESIS_SYSTEM_PROMPT,
    UNDERSTAND_SYSTEM_PROMPT,
)
from searchweaver.research.context import ContextProcessor, integrity_statement, source_quality_table
from searchweaver.research.evidence import (
    ResearchContext,
    build_research_context,
    detect_research_domain,
    enrich_sources,
)
from searchweaver.search.unified import UnifiedSearch, build_unified_search
from searchweaver.tools.scraper import FirecrawlScraper, Scraper, get_scraper
from searchweaver.utils.tags import extract_json_array
from searchweaver.utils.text import (
    clean_query_lines,
    current_date_context,
    extract_urls,
    hostname,
    is_crawl_or_map_query,
)

logger = get_logger(__name__)

EventCallback = Callable[[SearchEvent], None]
Node = Callable[[RunState, "_EventSink"], Awaitable[StateUpdate]]
Router = Callable[[RunState], "str | None"]

_VERSION_RE = re.compile(r"\b\d{3,4}\b|\bv\d+\.\d+|\bversion\s+\d+", re.IGNORECASE)
_VERSION_QUALIFIER_RE = re.compile(r"0528|specific version", re.IGNORECASE)
_LOW_RELEVANCE_MARKERS = ("no specific", NOT_RELEVANT_MARKER.lower())


class GraphStepLimitError(RuntimeError):
    pass


class _EventSink:
    """Forward events to the caller and refuse anything after a terminal event."""

    def __init__(self, on_event: EventCallback) -> None:
        self._on_event = on_event
        self.finished = False

    def __call__(self, event: SearchEvent) -> None:
        if self.finished:
            logger.warning("Event after terminal event dropped", extra={"event_type": event.type})
            return
        if is_terminal(event):
            self.finished = True
        self._on_event(event)


def score_content(content: str, query: str) -> float:
    """+0.2 per query word found in ``content``, capped at 1."""

    lowered = content.lower()
    score = sum(0.2 for word in query.lower().split() if word in lowered)
    return min(score, 1.0)


def _is_low_relevance(summary: str) -> bool:
    lowered = summary.lower()
    return any(marker in lowered for marker in _LOW_RELEVANCE_MARKERS)


class SearchEngine:
    """Runs one search workflow per :meth:`run` call.

    Clients are injected and shared across runs; all per-run data lives in :class:`RunState`.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        llm: LanguageModel,
        search: UnifiedSearch,
        scraper: Scraper,
        context_processor: ContextProcessor | None = None,
    ) -> None:
        self.settings = settings
        self.llm = llm
        self.search = search
        self.scraper = scraper
        self.context_processor = context_processor or ContextProcessor.from_settings(settings)

        self._nodes: dict[str, tuple[Node, Router]] = {
            "understand": (self.understand, self._after_understand),
            "plan": (self.plan, self._after_plan),
            "search": (self.search_step, self._after_search),
            "scrape": (self.scrape, self._after_scrape),
            "analyze": (self.analyze, self._after_analyze),
            "synthesize": (self.synthesize, self._after_synthesize),
            "handle_error": (self.handle_error, self._after_handle_error),
            "complete": (self.complete, self._after_complete),
        }

    async def run(
        self,
        query: str,
        on_event: EventCallback,
        prior_context: Sequence[PriorTurn] | None = None,
        continuation_id: str | None = None,
    ) -> RunState:
        """Run the workflow to completion.

        Exactly one terminal event (``final-result`` or a terminal ``error``) is emitted, and it
        is the last event. Nothing is raised; failures surface as events.
        """

        emit = _EventSink(on_event)
        state = RunState(
            query=query,
            prior_context=list(prior_context or []),
            continuation_id=continuation_id,
            max_retries=self.settings.max_retries,
        )
        node: str | None = "understand"
        steps = 0
        try:
            while node is not None:
                steps += 1
                if steps > self.settings.graph_step_limit:
                    raise GraphStepLimitError(f"workflow exceeded {self.settings.graph_step_limit} steps")
                set_step(node)
                handler, route = self._nodes[node]
                try:
                    update = await handler(state, emit)
                except Exception as e:
                    # handle_error and complete failures end the run below
                    if node in ("handle_error", "complete") or emit.finished:
                        raise
                    log_exception(logger, "Node failed", node=node, steps=steps)
                    state = apply_update(
                        state,
                        StateUpdate(phase=Phase.ERROR, error=str(e) or f"{node} failed", error_kind=ErrorKind.UNKNOWN),
                    )
                    node = "handle_error"
                    continue
                state = apply_update(state, update)
                next_node = route(state)
                logger.debug("Node finished", extra={"node": node, "next": next_node, **state.snapshot()})
                node = next_node
        except Exception as e:
            log_exception(logger, "Search run failed", steps=steps, node=node)
            state = apply_update(
                state, StateUpdate(phase=Phase.ERROR, error=str(e) or "Search failed", error_kind=ErrorKind.UNKNOWN)
            )
            if not emit.finished:
                emit(ErrorEvent(error=state.error, error_type=ErrorKind.UNKNOWN, terminal=True))
        return state

    # -------- routing --------

    @staticmethod
    def _after_understand(state: RunState) -> str | None:
        return "handle_error" if state.phase == Phase.ERROR else "plan"

    @staticmethod
    def _after_plan(state: RunState) -> str | None:
        if state.phase == Phase.ERROR:
            return "handle_error"
        if state.phase == Phase.ANALYZING:
            return "analyze"
        return "search" if state.search_queries else "scrape"

    @staticmethod
    def _after_search(state: RunState) -> str | None:
        if state.phase == Phase.ERROR:
            return "handle_error"
        if state.current_search_index < len(state.search_queries):
            return "search"
        return "scrape"

    @staticmethod
    def _after_scrape(state: RunState) -> str | None:
        return "handle_error" if state.phase == Phase.ERROR else "analyze"

    @staticmethod
    def _after_analyze(state: RunState) -> str | None:
        if state.phase == Phase.ERROR:
            return "handle_error"
        if state.phase == Phase.PLANNING:
            return "plan"
        return "synthesize"

    @staticmethod
    def _after_synthesize(state: RunState) -> str | None:
        return "handle_error" if state.phase == Phase.ERROR else "complete"

    @staticmethod
    def _after_handle_error(state: RunState) -> str | None:
        if state.phase == Phase.SEARCHING:
            return "search"
        if state.phase == Phase.UNDERSTANDING:
            return "understand"
        return None

    @staticmethod
    def _after_complete(state: RunState) -> str | None:
        return None

    # -------- nodes --------

    async def understand(self, state: RunState, emit: _EventSink) -> StateUpdate:
        emit(PhaseUpdateEvent(phase=Phase.UNDERSTANDING, message="Analyzing your request..."))

        url_sources: list[Source] = []
        urls = extract_urls(state.query)
        if urls and not is_crawl_or_map_query(state.query):
            emit(
                ProviderSelectedEvent(
                    provider="firecrawl",
                    reason="User provided explicit URL(s) - scraping them directly",
                )
            )
            targets = urls[: self.settings.max_url_scrapes]
            results = await asyncio.gather(
                *[self._scrape_user_url(url, i + 1, len(targets), state.query, emit) for i, url in enumerate(targets)]
            )
            url_sources = [s for s in results if s is not None]
            if url_sources:
                emit(
                    FoundEvent(
                        sources=url_sources,
                        query=f"Scraped {len(url_sources)} URL(s)",
                        provider="firecrawl",
                    )
                )

        try:
            understanding = await self.analyze_query(state.query, state.prior_context)
        except Exception as e:
            logger.warning("Understanding failed", extra={"error_type": type(e).__name__, "error": str(e)})
            return StateUpdate(
                url_sources=url_sources,
                error=str(e) or "Failed to understand query",
                error_kind=ErrorKind.LLM,
                phase=Phase.ERROR,
            )

        emit(ThinkingEvent(message=understanding))
        return StateUpdate(understanding=understanding, url_sources=url_sources, phase=Phase.PLANNING)

    async def plan(self, state: RunState, emit: _EventSink) -> StateUpdate:
        emit(PhaseUpdateEvent(phase=Phase.PLANNING, message="Planning search strategy..."))
        min_conf = self.settings.min_answer_confidence

        try:
            sub_queries = state.sub_queries
            if sub_queries is None:
                sub_queries = [
                    SubQuery(question=q, search_query=sq) for q, sq in await self.extract_sub_queries(state.query)
                ]

            if state.url_sources and state.search_attempt == 0:
                sub_queries = await self.check_answers(sub_queries, state.url_sources)
                answered = sum(1 for sq in sub_queries if sq.answered)
                total = len(sub_queries)
                if answered == total:
                    emit(ThinkingEvent(message=f"Found answers to all {total} questions in the provided URL(s)"))
                    return StateUpdate(sub_queries=sub_queries, sources=state.url_sources, phase=Phase.ANALYZING)
                if answered:
                    emit(
                        ThinkingEvent(
                            message=f"Found answers to {answered} of {total} questions in the URL. "
                            "Searching for more info..."
                        )
                    )

            unanswered = [sq for sq in sub_queries if sq.is_unanswered(min_conf)]
            if not unanswered:
                return StateUpdate(sub_queries=sub_queries, phase=Phase.ANALYZING)

            if state.search_attempt > 0:
                queries = await self.generate_alternative_queries(sub_queries, state.search_attempt)
                pending = iter(queries)
                sub_queries = [
                    sq.model_copy(update={"search_query": next(pending, sq.search_query)})
                    if sq.is_unanswered(min_conf)
                    else sq
                    for sq in sub_queries
                ]
                emit(
                    ThinkingEvent(
                        message="Trying alternative search strategies for: "
                        + ", ".join(sq.question for sq in unanswered)
                    )
                )
            else:
                queries = [sq.search_query for sq in unanswered]
                emit(
                    ThinkingEvent(
                        message=f"I detected {len(sub_queries)} different questions. "
                        "I'll search for each one separately."
                        if len(queries) > 3
                        else "I'll search for information to answer your question."
                    )
                )
        except Exception as e:
            logger.warning("Planning failed", extra={"error_type": type(e).__name__, "error": str(e)})
            return StateUpdate(error=str(e) or "Failed to plan search", error_kind=ErrorKind.LLM, phase=Phase.ERROR)

        return StateUpdate(
            sub_queries=sub_queries,
            search_queries=queries,
            current_search_index=0,
            phase=Phase.SEARCHING,
        )

    async def search_step(self, state: RunState, emit: _EventSink) -> StateUpdate:
        """Run the query at ``current_search_index``."""

        index = state.current_search_index
        queries = state.search_queries
        if index == 0:
            emit(PhaseUpdateEvent(phase=Phase.SEARCHING, message="Searching the web..."))
        if index >= len(queries):
            return StateUpdate(phase=Phase.SCRAPING)

        query = queries[index]
        next_phase = Phase.SEARCHING if index + 1 < len(queries) else Phase.SCRAPING
        try:
            result = await self.search.search(query, max_results=self.settings.max_sources_per_search)
        except Exception as e:
            logger.warning(
                "Search failed",
                extra={"query": query, "error_type": type(e).__name__, "error": str(e)},
            )
            emit(ThinkingEvent(message=f'Search for "{query}" failed, continuing with the remaining queries...'))
            return StateUpdate(current_search_index=index + 1, error_kind=ErrorKind.SEARCH, phase=next_phase)

        if index == 0:
            emit(ProviderSelectedEvent(provider=result.provider, reason=result.classification.reason))
        emit(SearchingEvent(query=query, index=index + 1, total=len(queries), provider=result.provider))
        emit(FoundEvent(sources=result.sources, query=query, provider=result.provider))

        processed = await asyncio.gather(
            *[self._process_search_source(s, query, state.query, emit) for s in result.sources]
        )
        return StateUpdate(
            sources=processed,
            current_search_index=index + 1,
            provider=result.provider,
            provider_reason=result.classification.reason,
            suggested_mode=result.classification.suggested_mode,
            pre_answer=result.pre_answer if result.pre_answer else state.pre_answer,
            phase=next_phase,
        )

    async def scrape(self, state: RunState, emit: _EventSink) -> StateUpdate:
        min_len = self.settings.min_content_length
        sources = state.source_list()
        thin = [s for s in sources if len(s.content or "") < min_len]
        with_content = [s for s in sources if len(s.content or "") >= min_len]
        top = sorted(with_content, key=lambda s: s.quality, reverse=True)[: self.settings.top_sources_to_rescrape]

        targets: dict[str, Source] = {}
        for s in [*thin, *top]:
            targets.setdefault(s.url, s)
        batch = list(targets.values())[: self.settings.max_sources_to_scrape]

        if batch:
            emit(ThinkingEvent(message=f"Extracting deep content from {len(batch)} sources..."))
        results = await asyncio.gather(
            *[self._scrape_source(s, i + 1, len(batch), state.query, emit) for i, s in enumerate(batch)]
        )
        scraped = [*with_content, *(r for r in results if r is not None)]
        return StateUpdate(scraped_sources=scraped, phase=Phase.ANALYZING)

    async def analyze(self, state: RunState, emit: _EventSink) -> StateUpdate:
        emit(PhaseUpdateEvent(phase=Phase.ANALYZING, message="Analyzing gathered information..."))

        merged = merge_sources({}, state.url_sources)
        merged = merge_sources(merged, state.sources.values())
        merged = merge_sources(merged, state.scraped_sources)
        all_sources = list(merged.values())
        attempt = state.search_attempt + 1
        sub_queries = state.sub_queries

        if sub_queries:
            sub_queries = await self.check_answers(sub_queries, all_sources)
            answered = sum(1 for sq in sub_queries if sq.answered)
            total = len(sub_queries)
            partial = sum(1 for sq in sub_queries if sq.confidence >= self.settings.partial_answer_confidence)
            has_partial = partial > answered
            stop_on_partial = has_partial and attempt >= self.settings.partial_answer_stop_attempts

            if answered == total:
                message = f"Found answers to all {total} questions across {len(all_sources)} sources"
            elif answered:
                missing = ", ".join(sq.question for sq in sub_queries if not sq.answered)
                message = f"Found answers to {answered} of {total} questions. Still missing: {missing}"
            elif attempt >= self.settings.max_search_attempts:
                message = (
                    f"Could not find specific answers in {len(all_sources)} sources. "
                    "The information may not be publicly available."
                )
            elif stop_on_partial:
                message = "Found partial information. Moving forward with what's available."
            else:
                message = "Searching for more specific information..."
            emit(ThinkingEvent(message=message))

            if answered < total and attempt < self.settings.max_search_attempts and not stop_on_partial:
                return StateUpdate(
                    sources=all_sources,
                    sub_queries=sub_queries,
                    search_attempt=attempt,
                    phase=Phase.PLANNING,
                )
        elif all_sources:
            emit(ThinkingEvent(message=f"Found {len(all_sources)} sources with quality information"))

        if self.settings.context_summarize:

            async def condense(source: Source, target: int) -> str:
                return await self.condense_source(source, state.query, state.search_queries, target)

            result = await self.context_processor.summarize(state.query, all_sources, state.search_queries, condense)
        else:
            result = self.context_processor.process(state.query, all_sources, state.search_queries)
        if not result.ok:
            logger.warning("Context selection failed; using raw sources", extra={"error": result.error})
        processed: list[Source] = list(result.sources) if result.ok else all_sources
        return StateUpdate(
            sources=all_sources,
            processed_sources=processed,
            sub_queries=sub_queries if sub_queries is not None else state.sub_queries,
            search_attempt=attempt,
            phase=Phase.SYNTHESIZING,
        )

    async def synthesize(self, state: RunState, emit: _EventSink) -> StateUpdate:
        emit(PhaseUpdateEvent(phase=Phase.SYNTHESIZING, message="Creating comprehensive answer..."))

        sources = state.processed_sources or state.source_list()
        domain = detect_research_domain(state.provider, state.suggested_mode)
        enriched = enrich_sources(sources)
        research = build_research_context(enriched, domain, state.query)
        logger.info(
            "Synthesizing",
            extra={"sources": len(enriched), "domain": domain.value, "confidence": research.overall_confidence},
        )

        try:
            answer, response_id = await self.generate_answer(state, enriched, research, emit)
        except Exception as e:
            logger.warning("Synthesis failed", extra={"error_type": type(e).__name__, "error": str(e)})
            return StateUpdate(error=str(e) or "Failed to generate answer", error_kind=ErrorKind.LLM, phase=Phase.ERROR)

        if enriched:
            note = "\n\n" + integrity_statement(enriched, research.overall_confidence, current_date_context())
            emit(ContentChunkEvent(chunk=note))
            answer += note

        follow_ups = await self.generate_follow_ups(state.query, answer, state.prior_context)
        return StateUpdate(
            final_answer=answer,
            follow_up_questions=follow_ups,
            response_id=response_id,
            phase=Phase.COMPLETE,
        )

    async def handle_error(self, state: RunState, emit: _EventSink) -> StateUpdate:
        message = state.error or "An unknown error occurred"
        if state.retry_count < state.max_retries:
            retry_phase = Phase.SEARCHING if state.error_kind == ErrorKind.SEARCH else Phase.UNDERSTANDING
            logger.info(
                "Retrying after error",
                extra={"retry": state.retry_count + 1, "error_kind": state.error_kind, "resume": retry_phase.value},
            )
            emit(ErrorEvent(error=message, error_type=state.error_kind, terminal=False))
            update = StateUpdate(retry_count=state.retry_count + 1, phase=retry_phase, error=None, error_kind=None)
            if retry_phase == Phase.SEARCHING:
                update.current_search_index = 0
            return update

        logger.error("Retries exhausted", extra={"error_kind": state.error_kind, "error": message})
        emit(ErrorEvent(error=message, error_type=state.error_kind, terminal=True))
        return StateUpdate(phase=Phase.ERROR)

    async def complete(self, state: RunState, emit: _EventSink) -> StateUpdate:
        emit(PhaseUpdateEvent(phase=Phase.COMPLETE, message="Search complete!"))
        emit(
            FinalResultEvent(
                content=state.final_answer or "",
                sources=state.source_list(),
                follow_up_questions=state.follow_up_questions,
                response_id=state.response_id,
            )
        )
        return StateUpdate(phase=Phase.COMPLETE)

    # -------- per-source work (failures isolated) --------

    async def _scrape_user_url(self, url: str, index: int, total: int, query: str, emit: _EventSink) -> Source | None:
        emit(ScrapingEvent(url=url, index=index, total=total, query=query))
        try:
            result = await self.scraper.scrape(url, only_main_content=True, include_links=False)
            if not (result.success and result.markdown):
                logger.info("User URL not scraped", extra={"url": url, "error": result.error})
                return None
            source = Source(url=url, title=result.title or url, content=result.markdown, quality=1.0)
            summary = await self.summarize_content(result.markdown, query)
            if summary:
                source = source.model_copy(update={"summary": summary})
                emit(SourceCompleteEvent(url=url, summary=summary))
            return source
        except Exception as e:
            logger.warning("User URL scrape failed", extra={"url": url, "error_type": type(e).__name__})
            return None

    async def _process_search_source(
        self, source: Source, search_query: str, query: str, emit: _EventSink
    ) -> Source:
        try:
            emit(SourceProcessingEvent(url=source.url, title=source.title, stage=SourceStage.BROWSING))
            content = source.content or ""
            updated = source.model_copy(update={"quality": score_content(content, query)})
            if not updated.summary and len(content) > self.settings.min_content_length:
                summary = await self.summarize_content(content, search_query)
                if summary and not _is_low_relevance(summary):
                    updated = updated.model_copy(update={"summary": summary})
                    emit(SourceCompleteEvent(url=source.url, summary=summary))
            elif updated.summary:
                emit(SourceCompleteEvent(url=source.url, summary=updated.summary))
            return updated
        except Exception as e:
            logger.warning("Source processing failed", extra={"url": source.url, "error_type": type(e).__name__})
            return source

    async def _scrape_source(
        self, source: Source, index: int, total: int, query: str, emit: _EventSink
    ) -> Source | None:
        host = hostname(source.url)
        emit(ScrapingEvent(url=source.url, index=index, total=total, query=query))
        emit(SourceProcessingEvent(url=source.url, title=source.title, stage=SourceStage.EXTRACTING))
        try:
            result = await self.scraper.scrape(source.url, only_main_content=True, include_links=False)
        except Exception as e:
            logger.warning("Scrape failed", extra={"url": source.url, "error_type": type(e).__name__})
            emit(ThinkingEvent(message=f"Couldn't access {host}, trying other sources..."))
            return source if source.content else None

        if not (result.success and result.markdown):
            emit(ThinkingEvent(message=f"Couldn't fully extract {host}, using available content..."))
            return source if source.content else None

        enriched = source.model_copy(
            update={
                "title": result.title or source.title,
                "content": result.markdown,
                "quality": score_content(result.markdown, query),
            }
        )
        summary = await self.summarize_content(result.markdown, query)
        if summary and not _is_low_relevance(summary):
            enriched = enriched.model_copy(update={"summary": summary})
            emit(SourceCompleteEvent(url=source.url, summary=summary))
        return enriched

    # -------- model calls --------

    async def analyze_query(self, query: str, prior_context: Sequence[PriorTurn]) -> str:
        context = ""
        if prior_context:
            preview = self.settings.context_preview_length
            context = "\n\nPrevious conversation:\n" + "".join(
                f"User: {t.query}\nAssistant: {t.response[:preview]}...\n\n" for t in prior_context
            )
        resp = await self.llm.generate(
            [
                ChatMessage(role="system", content=f"{current_date_context()}\n\n{UNDERSTAND_SYSTEM_PROMPT}"),
                ChatMessage(role="user", content=f'Query: "{query}"{context}'),
            ]
        )
        return resp.text

    async def extract_sub_queries(self, query: str) -> list[tuple[str, str]]:
        """Decompose ``query`` into ``(question, search_query)`` pairs.

        Falls back to the query itself when the model fails or returns nothing usable.
        """

        try:
            resp = await self.llm.generate(
                [
                    ChatMessage(role="system", content=SUBQUERY_SYSTEM_PROMPT),
                    ChatMessage(role="user", content=f'Query: "{query}"'),
                ]
            )
        except Exception as e:
            logger.warning("Sub-query extraction failed", extra={"error_type": type(e).__name__})
            return [(query, query)]

        pairs: list[tuple[str, str]] = []
        for item in extract_json_array(resp.text) or []:
            if not isinstance(item, dict):
                continue
            question = str(item.get("question") or "").strip()
            if not question:
                continue
            search_query = str(item.get("searchQuery") or item.get("search_query") or question).strip()
            pairs.append((question, search_query))
        if not pairs:
            logger.warning("Sub-query extraction returned nothing usable; using the query as-is")
            return [(query, query)]
        return pairs

    async def check_answers(self, sub_queries: list[SubQuery], sources: Sequence[Source]) -> list[SubQuery]:
        """Ask the model which sub-questions ``sources`` answer.

        Returns ``sub_queries`` unchanged on any failure.
        """

        if not sources:
            return sub_queries

        preview = self.settings.answer_check_preview
        blocks = []
        for s in sources[: self.settings.max_sources_to_check]:
            block = f"URL: {s.url}\nTitle: {s.title}\n"
            if s.summary:
                block += f"Summary: {s.summary}\n"
            if s.content:
                block += f"Content: {s.content[:preview]}\n"
            blocks.append(block)
        user = (
            "Questions to check:\n"
            + "\n".join(sq.question for sq in sub_queries)
            + "\n\nSources:\n"
            + "\n---\n".join(blocks)
        )

        try:
            resp = await self.llm.generate(
                [
                    ChatMessage(role="system", content=ANSWER_CHECK_SYSTEM_PROMPT),
                    ChatMessage(role="user", content=user),
                ]
            )
        except Exception as e:
            logger.warning("Answer check failed", extra={"error_type": type(e).__name__})
            return sub_queries

        results = extract_json_array(resp.text)
        if results is None:
            logger.warning("Answer check returned non-JSON output")
            return sub_queries

        by_question = {str(r.get("question")): r for r in results if isinstance(r, dict)}
        updated: list[SubQuery] = []
        for sq in sub_queries:
            r = by_question.get(sq.question)
            if r is None:
                updated.append(sq)
                continue
            try:
                confidence = max(0.0, min(1.0, float(r.get("confidence") or 0.0)))
                answer = r.get("answer")
                raw_sources = r.get("sources")
                urls = [u for u in raw_sources if isinstance(u, str)] if isinstance(raw_sources, list) else []
            except (TypeError, ValueError) as e:
                logger.warning("Answer check result rejected", extra={"question": sq.question, "error": str(e)})
                updated.append(sq)
                continue
            updated.append(
                sq.apply_check(
                    confidence=confidence,
                    answer=str(answer) if answer is not None else None,
                    sources=urls,
                    min_confidence=self.settings.min_answer_confidence,
                )
            )
        return updated

    async def generate_alternative_queries(self, sub_queries: Sequence[SubQuery], attempt: int) -> list[str]:
        min_conf = self.settings.min_answer_confidence
        limit = self.settings.max_search_queries
        unanswered = [sq for sq in sub_queries if sq.is_unanswered(min_conf)]

        if attempt >= 2:
            versioned = [sq for sq in unanswered if _VERSION_RE.search(sq.question)]
            if versioned:
                return [_VERSION_QUALIFIER_RE.sub("", sq.question).strip()[:50] for sq in versioned]

        previous = "\n".join(f'- Question: "{sq.question}"\n  Previous search: "{sq.search_query}"' for sq in unanswered)
        system = ALTERNATIVE_QUERIES_SYSTEM_PROMPT.format(attempts=attempt, previous=previous)
        try:
            resp = await self.llm.generate(
                [
                    ChatMessage(role="system", content=f"{current_date_context()}\n\n{system}"),
                    ChatMessage(
                        role="user",
                        content=f"Generate alternative searches for these {len(unanswered)} unanswered questions.",
                    ),
                ]
            )
            return clean_query_lines(resp.text)[:limit]
        except Exception as e:
            logger.warning("Alternative query generation failed", extra={"error_type": type(e).__name__})
            return [f"{sq.search_query} news reports" for sq in unanswered][:limit]

    async def summarize_content(self, content: str, query: str) -> str:
        """One-sentence finding relevant to ``query``; empty string on failure."""

        system = SUMMARIZER_SYSTEM_PROMPT.format(limit=self.settings.summary_char_limit)
        try:
            resp = await self.llm.generate(
                [
                    ChatMessage(role="system", content=f"{current_date_context()}\n\n{system}"),
                    ChatMessage(role="user", content=f'Query: "{query}"\n\nContent: {content[:2000]}'),
                ]
            )
        except Exception as e:
            logger.debug("Summarization failed", extra={"error_type": type(e).__name__})
            return ""
        return resp.text.strip()

    async def condense_source(self, source: Source, query: str, search_queries: Sequence[str], limit: int) -> str:
        """Digest of ``source`` focused on ``query``, about ``limit`` characters long."""

        cap = self.settings.context_max_chars_per_source
        content = source.content or ""
        if len(content) > cap:
            content = content[:cap] + "\n[... content truncated]"
        resp = await self.llm.generate(
            [
                ChatMessage(role="system", content=CONTEXT_SUMMARY_SYSTEM_PROMPT.format(limit=limit)),
                ChatMessage(
                    role="user",
                    content=f'Question: "{query}"\nSearch queries: {", ".join(search_queries)}\n\n'
                    f"Title: {source.title}\nURL: {source.url}\n\n{content}",
                ),
            ]
        )
        return resp.text

    def _synthesis_messages(
        self, state: RunState, sources: Sequence[EnhancedSource], research: ResearchContext
    ) -> list[ChatMessage]:
        sources_text = "\n\n".join(
            f"[{i}] {s.title}\n{s.content}" if s.content else f"[{i}] {s.title}\n[No content available]"
            for i, s in enumerate(sources, start=1)
        )
        context = ""
        if state.prior_context:
            context = "\n\nPrevious conversation for context:\n" + "".join(
                f"User: {t.query}\nAssistant: {t.response[:300]}...\n\n" for t in state.prior_context
            )
        evidence = (
            f"Research domain: {research.domain.value}. Phase: {research.phase.value}. "
            f"Temporal sensitivity: {research.temporal_sensitivity}. "
            f"Quality flags: {', '.join(f.value for f in research.quality_flags) or 'none'}."
        )
        if research.requires_quantitative_data:
            evidence += " The question asks for quantitative data; report exact figures."
        if sources:
            evidence += "\n\nSource quality:\n" + source_quality_table(sources)
        pre_answer = f"\n\nQuick answer from the search provider: {state.pre_answer}" if state.pre_answer else ""

        return [
            ChatMessage(
                role="system",
                content=f"{current_date_context()}\n\n{SYNTHESIS_SYSTEM_PROMPT}\n\n{evidence}",
            ),
            ChatMessage(
                role="user",
                content=f'Question: "{state.query}"{context}{pre_answer}\n\nBased on these sources:\n{sources_text}',
            ),
        ]

    async def generate_answer(
        self,
        state: RunState,
        sources: Sequence[EnhancedSource],
        research: ResearchContext,
        emit: _EventSink,
    ) -> tuple[str, str | None]:
        """Stream the answer; fall back to a single non-streamed generation if streaming fails."""

        messages = self._synthesis_messages(state, sources, research)
        model = self.settings.openai_synthesis_model
        parts: list[str] = []
        response_id: str | None = None
        try:
            async for chunk in self.llm.stream(messages, previous_response_id=state.continuation_id, model=model):
                if chunk.type == "content" and chunk.content:
                    parts.append(chunk.content)
                    emit(ContentChunkEvent(chunk=chunk.content))
                elif chunk.type == "done":
                    response_id = chunk.id
            return "".join(parts), response_id
        except Exception as e:
            logger.warning(
                "Streaming failed; falling back to a single generation",
                extra={"error_type": type(e).__name__, "streamed_chars": sum(len(p) for p in parts)},
            )

        resp = await self.llm.generate(messages, previous_response_id=state.continuation_id, model=model)
        emit(ContentChunkEvent(chunk=resp.text))
        return resp.text, resp.id

    async def generate_follow_ups(self, query: str, answer: str, prior_context: Sequence[PriorTurn]) -> list[str]:
        context = ""
        if prior_context:
            context = (
                "\n\nPrevious conversation topics:\n"
                + "".join(f"- {t.query}\n" for t in prior_context)
                + "\nConsider the full conversation flow when generating follow-ups.\n"
            )
        summary = answer[:1000] + "..." if len(answer) > 1000 else answer
        try:
            resp = await self.llm.generate(
                [
                    ChatMessage(role="system", content=f"{current_date_context()}\n\n{FOLLOW_UP_SYSTEM_PROMPT}"),
                    ChatMessage(role="user", content=f'Original query: "{query}"\n\nAnswer summary: {summary}{context}'),
                ]
            )
        except Exception as e:
            logger.warning("Follow-up generation failed", extra={"error_type": type(e).__name__})
            return []
        lines = [line.strip() for line in resp.text.split("\n")]
        return [line for line in lines if 0 < len(line) < 80][:3]


def build_engine(settings: Settings) -> SearchEngine:
    """Construct the engine and its shared clients from settings."""

    llm = LLMClient(settings)
    scraper = get_scraper(settings)
    firecrawl = scraper if isinstance(scraper, FirecrawlScraper) else None
    search = build_unified_search(settings, llm=llm, firecrawl=firecrawl)
    return SearchEngine(
        settings,
        llm=llm,
        search=search,
        scraper=scraper,
        context_processor=ContextProcessor.from_settings(settings),
    )
