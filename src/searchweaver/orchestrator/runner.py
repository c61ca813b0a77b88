"""Run streaming, recording and replay.

:func:`run_search_stream_async` drives one :class:`SearchEngine` run and yields its events wrapped
in :class:`RunEvent` envelopes, recording each one to ``<artifacts>/runs/<run_id>/events.jsonl``
(and to Redis when enabled).
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Callable, Iterator, Sequence, TypeVar

from searchweaver.config import Settings
from searchweaver.events import ErrorEvent, FinalResultEvent, RunEvent, SearchEvent
from searchweaver.logging import get_logger, run_context
from searchweaver.models.query import PriorTurn
from searchweaver.orchestrator.engine import SearchEngine, build_engine
from searchweaver.recording.file_recorder import FileEventRecorder, iter_events
from searchweaver.recording.redis_recorder import RedisEventRecorder

logger = get_logger(__name__)

T = TypeVar("T")

_DONE = object()


class SearchFailedError(RuntimeError):
    pass


@dataclass(frozen=True)
class RunPaths:
    root: Path

    @property
    def events_path(self) -> Path:
        return self.root / "events.jsonl"


def run_dir(artifacts_dir: Path, run_id: str) -> Path:
    return artifacts_dir / "runs" / run_id


def _prepare_run_dir(base: Path) -> tuple[str, Path]:
    # Time-based for readability, with a random suffix to avoid collisions.
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    run_id = f"{ts}_{uuid.uuid4().hex[:8]}"
    root = run_dir(base, run_id)
    root.mkdir(parents=True, exist_ok=True)
    return run_id, root


async def run_search_stream_async(
    *,
    query: str,
    settings: Settings,
    engine: SearchEngine | None = None,
    prior_context: Sequence[PriorTurn] | None = None,
    continuation_id: str | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> AsyncIterator[RunEvent]:
    """Run a search and yield its events as they happen.

    ``should_stop`` is polled before each event; once it returns true the run is cancelled and the
    stream ends without a terminal event.
    """

    engine = engine or build_engine(settings)
    run_id, root = _prepare_run_dir(settings.artifacts_dir)
    paths = RunPaths(root=root)
    recorder = FileEventRecorder(paths.events_path) if settings.record_events else None

    redis_recorder: RedisEventRecorder | None = None
    if settings.redis_enabled:
        redis_recorder = RedisEventRecorder(
            redis_url=settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            run_id=run_id,
        )
        redis_recorder.set_meta({"run_root": str(paths.root), "query": query})

    queue: asyncio.Queue[object] = asyncio.Queue()

    def on_event(event: SearchEvent) -> None:
        queue.put_nowait(event)

    async def drive() -> None:
        try:
            await engine.run(query, on_event, prior_context=prior_context, continuation_id=continuation_id)
        finally:
            queue.put_nowait(_DONE)

    seq = 0
    with run_context(run_id=run_id, step="init"):
        logger.info("Run started", extra={"query": query, "artifacts": str(paths.root)})
        task = asyncio.create_task(drive())
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                if should_stop is not None and should_stop():
                    logger.info("Run cancelled by consumer", extra={"events": seq})
                    break
                seq += 1
                envelope = RunEvent(run_id=run_id, seq=seq, event=item)
                if recorder is not None:
                    recorder.append(envelope)
                if redis_recorder is not None:
                    redis_recorder.append(envelope)
                yield envelope
        finally:
            if not task.done():
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            logger.info("Run finished", extra={"events": seq})


def run_search(
    *,
    query: str,
    settings: Settings,
    engine: SearchEngine | None = None,
    prior_context: Sequence[PriorTurn] | None = None,
    continuation_id: str | None = None,
) -> FinalResultEvent:
    """Run a search to completion and return its final result.

    Raises:
        SearchFailedError: If the run ended with a terminal error.
    """

    async def collect() -> FinalResultEvent:
        async for envelope in run_search_stream_async(
            query=query,
            settings=settings,
            engine=engine,
            prior_context=prior_context,
            continuation_id=continuation_id,
        ):
            ev = envelope.event
            if isinstance(ev, FinalResultEvent):
                return ev
            if isinstance(ev, ErrorEvent) and ev.terminal:
                raise SearchFailedError(ev.error)
        raise SearchFailedError("run ended without a result")

    return asyncio.run(collect())


class SearchSession:
    """A consumer-side handle supporting cooperative cancellation."""

    def __init__(self, settings: Settings, *, engine: SearchEngine | None = None) -> None:
        self._settings = settings
        self._engine = engine
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    async def stream(
        self,
        query: str,
        *,
        prior_context: Sequence[PriorTurn] | None = None,
        continuation_id: str | None = None,
    ) -> AsyncIterator[RunEvent]:
        self._cancelled = False
        if self._engine is None:
            self._engine = build_engine(self._settings)
        async for envelope in run_search_stream_async(
            query=query,
            settings=self._settings,
            engine=self._engine,
            prior_context=prior_context,
            continuation_id=continuation_id,
            should_stop=lambda: self._cancelled,
        ):
            yield envelope


@dataclass(frozen=True)
class IdleTimeout:
    """Yielded by :func:`iter_with_idle_timeout` when the stream has been quiet too long."""

    idle_s: float


async def iter_with_idle_timeout(stream: AsyncIterator[T], idle_timeout_s: float) -> AsyncIterator[T | IdleTimeout]:
    """Re-yield ``stream``, inserting an :class:`IdleTimeout` after each quiet window.

    The pending read is never cancelled by a timeout, so no item is lost.
    """

    it = stream.__aiter__()
    pending: asyncio.Future | None = None
    try:
        while True:
            if pending is None:
                pending = asyncio.ensure_future(it.__anext__())
            done, _ = await asyncio.wait({pending}, timeout=idle_timeout_s)
            if not done:
                yield IdleTimeout(idle_timeout_s)
                continue
            fut, pending = pending, None
            try:
                item = fut.result()
            except StopAsyncIteration:
                return
            yield item
    finally:
        if pending is not None and not pending.done():
            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                await pending
        aclose = getattr(it, "aclose", None)
        if aclose is not None:
            await aclose()


def replay_run(*, run_id: str, artifacts_dir: Path, settings: Settings | None = None) -> Iterator[RunEvent]:
    """Replay a run from its recorded events, falling back to Redis when enabled."""

    file_events = iter_events(RunPaths(root=run_dir(artifacts_dir, run_id)).events_path)
    if file_events:
        yield from file_events
        return

    if settings is None or not settings.redis_enabled:
        return
    recorder = RedisEventRecorder(redis_url=settings.redis_url, key_prefix=settings.redis_key_prefix, run_id=run_id)
    if not recorder.exists():
        logger.info("No recorded events", extra={"replay_run_id": run_id})
        return
    yield from recorder.iter_events()
