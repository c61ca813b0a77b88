"""Recording utilities for run events."""

from __future__ import annotations

from searchweaver.recording.file_recorder import FileEventRecorder, iter_events
from searchweaver.recording.redis_recorder import RedisEventRecorder

__all__ = ["FileEventRecorder", "RedisEventRecorder", "iter_events"]
