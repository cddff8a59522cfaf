"""
Live input sources.

A live source (microphone, screen capture, camera) pushes feature frames to
subscribers. No source ships with Aurora Sync; this is the interface a
future implementation plugs into.
"""

from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from aurora_sync.core.models import FrequencySlice

FrameCallback = Callable[[FrequencySlice], None]


@runtime_checkable
class InputSource(Protocol):
    """Start/stop a live feed and subscribe to its frames."""

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def on_frame(self, callback: FrameCallback) -> None:
        ...
