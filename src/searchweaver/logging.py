"""Logging setup.

Every record carries the ``run_id`` and current workflow ``phase`` of the run it was emitted from,
so interleaved output from concurrent runs stays attributable.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
from typing import Any, Iterator

from rich.logging import RichHandler

_run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("searchweaver_run_id", default="-")
_phase_var: contextvars.ContextVar[str] = contextvars.ContextVar("searchweaver_phase", default="-")

LOG_FORMAT = "run=%(run_id)s node=%(step)s %(name)s: %(message)s"


class _RunContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.run_id = _run_id_var.get()  # type: ignore[attr-defined]
        record.step = _phase_var.get()  # type: ignore[attr-defined]
        return True


@contextlib.contextmanager
def run_context(*, run_id: str, step: str | None = None) -> Iterator[None]:
    """Bind ``run_id`` (and optionally the starting phase) for records logged inside the block."""

    run_token = _run_id_var.set(run_id)
    phase_token = _phase_var.set(step or _phase_var.get())
    try:
        yield
    finally:
        _phase_var.reset(phase_token)
        _run_id_var.reset(run_token)


def set_step(step: str) -> None:
    """Record the workflow node now executing."""

    _phase_var.set(step)


def configure_logging(level: str = "INFO") -> None:
    """Install a single rich console handler on the root logger.

    Safe to call more than once; later calls replace the handler installed by earlier ones.
    """

    root = logging.getLogger()
    for existing in [h for h in root.handlers if getattr(h, "_searchweaver", False)]:
        root.removeHandler(existing)

    handler = RichHandler(rich_tracebacks=True, show_time=True, show_level=True, show_path=False)
    handler._searchweaver = True  # type: ignore[attr-defined]
    handler.addFilter(_RunContextFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level.upper())

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_exception(logger: logging.Logger, msg: str, **context: Any) -> None:
    """Log the active exception with ``context`` rendered as ``key=value`` pairs."""

    if not context:
        logger.exception(msg)
        return
    pairs = " ".join(f"{k}={v!r}" for k, v in sorted(context.items()))
    logger.exception("%s (%s)", msg, pairs)
