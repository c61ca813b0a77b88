"""``searchweaver-serve``: run the SSE API under uvicorn."""

from __future__ import annotations

import typer
import uvicorn

from searchweaver.config import load_settings
from searchweaver.logging import configure_logging


def main(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
    reload: bool = typer.Option(False, help="Restart on source changes (development only)"),
) -> None:
    """Start the SearchWeaver API server."""

    settings = load_settings()
    configure_logging(settings.log_level)
    # create_app is a factory so each worker builds its own clients.
    uvicorn.run(
        "searchweaver.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


def cli() -> None:
    typer.run(main)


if __name__ == "__main__":
    cli()
