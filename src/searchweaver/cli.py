"""CLI entrypoints for SearchWeaver."""

from __future__ import annotations

import asyncio
import contextlib
import json
from pathlib import Path

import typer

from searchweaver.config import Settings, load_settings
from searchweaver.events import ContentChunkEvent, ErrorEvent, FinalResultEvent, PhaseUpdateEvent, ThinkingEvent
from searchweaver.logging import configure_logging, get_logger
from searchweaver.orchestrator.runner import IdleTimeout, iter_with_idle_timeout, replay_run, run_search_stream_async

app = typer.Typer(add_completion=False, help="SearchWeaver multi-step research search CLI")
logger = get_logger(__name__)


def _render_answer(content: str, final: FinalResultEvent | None) -> str:
    parts = [content.strip()]
    if final is not None and final.sources:
        parts.append("## Sources\n\n" + "\n".join(f"{i}. [{s.title or s.url}]({s.url})" for i, s in enumerate(final.sources, start=1)))
    if final is not None and final.follow_up_questions:
        parts.append("## Follow-up questions\n\n" + "\n".join(f"- {q}" for q in final.follow_up_questions))
    return "\n\n".join(p for p in parts if p) + "\n"


async def _consume(
    *,
    query: str,
    settings: Settings,
    continuation_id: str | None,
    as_json: bool,
) -> tuple[str, FinalResultEvent | None, ErrorEvent | None]:
    chunks: list[str] = []
    final: FinalResultEvent | None = None
    error: ErrorEvent | None = None

    stream = run_search_stream_async(query=query, settings=settings, continuation_id=continuation_id)
    async with contextlib.aclosing(iter_with_idle_timeout(stream, settings.idle_timeout_s)) as items:
        async for item in items:
            if isinstance(item, IdleTimeout):
                # Only force-finish once the answer has started streaming.
                if chunks:
                    logger.warning("Stream idle; finishing with the content received", extra={"idle_s": item.idle_s})
                    break
                continue

            if as_json:
                typer.echo(json.dumps(item.model_dump(mode="json"), ensure_ascii=False))
            ev = item.event
            if isinstance(ev, ContentChunkEvent):
                chunks.append(ev.chunk)
                if not as_json:
                    typer.echo(ev.chunk, nl=False)
            elif isinstance(ev, (PhaseUpdateEvent, ThinkingEvent)):
                logger.info(ev.message)
            elif isinstance(ev, FinalResultEvent):
                final = ev
            elif isinstance(ev, ErrorEvent):
                if ev.terminal:
                    error = ev
                else:
                    logger.warning("Retrying after error", extra={"error": ev.error})

    content = final.content if final is not None else "".join(chunks)
    return content, final, error


@app.command()
def run(
    query: str = typer.Argument(
        "",
        help="Research query. If omitted, you must provide --query-file pointing to a UTF-8 text file.",
        show_default=False,
    ),
    query_file: Path | None = typer.Option(
        None,
        "--query-file",
        help="Path to a UTF-8 text file containing the query (useful for long or multi-line queries).",
    ),
    output: Path | None = typer.Option(None, "--output", "-o", help="Also write the answer to this markdown file"),
    continuation_id: str | None = typer.Option(
        None,
        "--continuation-id",
        help="Response id of a previous answer, to continue that conversation",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print every event envelope as a JSON line"),
    artifacts_dir: Path | None = typer.Option(
        None,
        "--artifacts-dir",
        help="Artifacts directory (overrides SEARCHWEAVER_ARTIFACTS_DIR)",
    ),
) -> None:
    """Run a search, streaming the answer to stdout."""

    if not query:
        if query_file is None:
            raise typer.BadParameter("You must provide either a positional QUERY or --query-file pointing to a text file.")
        query = query_file.read_text(encoding="utf-8").strip()
        if not query:
            raise typer.BadParameter("The query file is empty.")

    settings = load_settings()
    if artifacts_dir is not None:
        settings.artifacts_dir = artifacts_dir
    configure_logging(settings.log_level)
    logger.info("CLI run requested", extra={"query_len": len(query)})

    content, final, error = asyncio.run(
        _consume(query=query, settings=settings, continuation_id=continuation_id, as_json=as_json)
    )
    if error is not None and not content:
        typer.echo(f"Search failed: {error.error}", err=True)
        raise typer.Exit(code=1)

    rendered = _render_answer(content, final)
    if not as_json:
        typer.echo("")
        if final is not None and final.sources:
            typer.echo("\nSources:")
            for i, source in enumerate(final.sources, start=1):
                typer.echo(f"  {i}. {source.title or source.url} <{source.url}>")
        if final is not None and final.follow_up_questions:
            typer.echo("\nFollow-up questions:")
            for question in final.follow_up_questions:
                typer.echo(f"  - {question}")
        if final is not None and final.response_id:
            typer.echo(f"continuation id: {final.response_id}", err=True)
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(rendered, encoding="utf-8")
        typer.echo(str(output), err=True)


@app.command()
def replay(
    run_id: str = typer.Argument(..., help="Run id printed in the logs of a previous run"),
    artifacts_dir: Path | None = typer.Option(None, "--artifacts-dir", help="Artifacts directory"),
) -> None:
    """Print the recorded events of a run as JSON lines."""

    settings = load_settings()
    configure_logging(settings.log_level)
    count = 0
    for ev in replay_run(run_id=run_id, artifacts_dir=artifacts_dir or settings.artifacts_dir, settings=settings):
        typer.echo(json.dumps(ev.model_dump(mode="json"), ensure_ascii=False))
        count += 1
    if count == 0:
        typer.echo(f"No events recorded for run {run_id}", err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
