"""FastAPI app with SSE streaming and replay endpoints."""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Generator

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from searchweaver import __version__
from searchweaver.config import Settings, load_settings
from searchweaver.events import RunEvent
from searchweaver.logging import configure_logging, get_logger
from searchweaver.models.query import PriorTurn
from searchweaver.orchestrator.engine import SearchEngine, build_engine
from searchweaver.orchestrator.runner import replay_run, run_search_stream_async


class RunRequest(BaseModel):
    """Run request."""

    query: str = Field(min_length=1)
    context: list[PriorTurn] = Field(default_factory=list)
    continuation_id: str | None = None


def _sse(ev: RunEvent) -> bytes:
    payload = json.dumps(ev.model_dump(mode="json"), ensure_ascii=False)
    return f"data: {payload}\n\n".encode("utf-8")


def create_app(settings: Settings | None = None, engine: SearchEngine | None = None) -> FastAPI:
    """Create FastAPI app.

    The engine is built on the first streamed run so the app can start (and serve replays) without
    an LLM key configured.
    """

    settings = settings or load_settings()
    configure_logging(settings.log_level)
    logger = get_logger(__name__)

    app = FastAPI(title="SearchWeaver", version=__version__)
    holder: dict[str, SearchEngine] = {}
    if engine is not None:
        holder["engine"] = engine

    def get_engine() -> SearchEngine:
        if "engine" not in holder:
            holder["engine"] = build_engine(settings)
        return holder["engine"]

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/runs/stream")
    async def runs_stream(req: RunRequest) -> StreamingResponse:
        logger.info("API run requested", extra={"query_len": len(req.query)})
        try:
            run_engine = get_engine()
        except ValueError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

        async def gen() -> AsyncGenerator[bytes, None]:
            async for ev in run_search_stream_async(
                query=req.query,
                settings=settings,
                engine=run_engine,
                prior_context=req.context,
                continuation_id=req.continuation_id,
            ):
                yield _sse(ev)

        return StreamingResponse(gen(), media_type="text/event-stream")

    @app.get("/runs/{run_id}/replay")
    def runs_replay(run_id: str) -> StreamingResponse:
        logger.info("API replay requested", extra={"replay_run_id": run_id})

        def gen() -> Generator[bytes, None, None]:
            for ev in replay_run(run_id=run_id, artifacts_dir=settings.artifacts_dir, settings=settings):
                yield _sse(ev)

        return StreamingResponse(gen(), media_type="text/event-stream")

    @app.get("/runs/{run_id}/events")
    def runs_events(run_id: str) -> list[RunEvent]:
        logger.info("API events requested", extra={"replay_run_id": run_id})
        events = list(replay_run(run_id=run_id, artifacts_dir=settings.artifacts_dir, settings=settings))
        if not events:
            raise HTTPException(status_code=404, detail="run not found")
        return events

    return app
