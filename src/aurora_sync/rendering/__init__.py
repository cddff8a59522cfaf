"""Timeline rendering: audio-to-light mapping and latency compensation."""

from aurora_sync.rendering.io import export_timeline, import_timeline
from aurora_sync.rendering.timeline import TimelineGenerator, optimize_timeline, timeline_statistics

__all__ = [
    "TimelineGenerator",
    "optimize_timeline",
    "timeline_statistics",
    "export_timeline",
    "import_timeline",
]
