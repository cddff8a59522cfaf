"""
Periodic tick driver.

Runs an async callback on a fixed interval until stopped. Deadlines are
computed from a monotonic clock so a slow tick shortens the next sleep
instead of accumulating drift.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()

TickCallback = Callable[[], Awaitable[None]]


class Ticker:
    """A timer plus a cancellation token, usable from any event loop."""

    def __init__(self, interval_s: float, callback: TickCallback, name: str = "ticker"):
        if interval_s <= 0:
            raise ValueError(f"interval_s must be > 0, got {interval_s}")
        self.interval_s = interval_s
        self.callback = callback
        self.name = name
        self.ticks = 0
        self._task: Optional[asyncio.Task[None]] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        """Signal the loop to exit and wait for the current tick to finish."""
        task = self._task
        if task is None:
            return
        self._stopping.set()
        if task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None

    def cancel(self) -> None:
        """Stop without waiting; the running tick is cancelled."""
        self._stopping.set()
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        next_deadline = time.monotonic()
        while not self._stopping.is_set():
            started = time.monotonic()
            try:
                await self.callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # a failing tick must not kill the loop
                logger.error("Tick failed", ticker=self.name, error=str(e), exc_info=True)
            self.ticks += 1

            next_deadline += self.interval_s
            now = time.monotonic()
            if next_deadline < now:
                logger.debug(
                    "Tick overrun",
                    ticker=self.name,
                    elapsed_ms=round((now - started) * 1000, 2),
                    target_ms=self.interval_s * 1000,
                )
                next_deadline = now
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=next_deadline - now)
            except asyncio.TimeoutError:
                pass
