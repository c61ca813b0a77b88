"""File-based event recorder.

Each run's event envelopes are appended to ``events.jsonl`` in the run directory so the run can be
replayed later.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from searchweaver.events import RunEvent
from searchweaver.logging import get_logger

logger = get_logger(__name__)


@dataclass
class FileEventRecorder:
    """Append-only JSONL recorder."""

    path: Path

    def __post_init__(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, event: RunEvent) -> None:
        line = json.dumps(event.model_dump(mode="json"), ensure_ascii=False)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")


def iter_events(path: Path) -> list[RunEvent]:
    """Load all events from a JSONL file; a missing file yields no events.

    A truncated final line (from a run killed mid-write) is skipped.
    """

    events: list[RunEvent] = []
    if not path.exists():
        return events
    lines = path.read_text(encoding="utf-8").splitlines()
    for i, line in enumerate(lines):
        line = line.strip()
        if not line:
            continue
        try:
            events.append(RunEvent.model_validate_json(line))
        except ValueError:
            if i == len(lines) - 1:
                logger.warning("Skipping truncated event line", extra={"path": str(path)})
                continue
            raise
    return events
