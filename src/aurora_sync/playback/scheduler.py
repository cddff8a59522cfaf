"""
Playback Scheduler.

Executes a Timeline in real time against the service-invoke interface.

Each tick computes the current timeline position from a monotonic clock
anchored at play time, advances every track's cursor over the commands whose
dispatch time falls inside the lookahead window, and stages them in a bounded
per-device queue. A queue head is sent once its dispatch time has arrived,
concurrently across devices with at most one call in flight per device, so
a device's commands go out in timestamp order while a slow device never
holds up the others.

Every control transition that invalidates pending work (seek, stop) bumps an
epoch; calls issued under an older epoch still complete, but their results
are discarded.
"""

from __future__ import annotations

import asyncio
import bisect
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

import structlog

from aurora_sync.core.config import PlaybackConfig
from aurora_sync.core.exceptions import (
    CapabilityMismatch,
    DeviceUnresponsiveError,
    InvalidTransitionError,
)
from aurora_sync.core.models import (
    Command,
    CommandType,
    DeviceCapability,
    LightDevice,
    PlaybackSession,
    PlaybackStatus,
    QueueStats,
    Timeline,
    Track,
)
from aurora_sync.hass.client import HomeAssistantAPI
from aurora_sync.playback.ticker import Ticker

logger = structlog.get_logger()

REQUIRED_CAPABILITY: Dict[CommandType, DeviceCapability] = {
    CommandType.SET_BRIGHTNESS: DeviceCapability.BRIGHTNESS,
    CommandType.SET_COLOR: DeviceCapability.COLOR,
    CommandType.SET_COLOR_TEMP: DeviceCapability.COLOR_TEMP,
    CommandType.SET_EFFECT: DeviceCapability.EFFECTS,
}

PAYLOAD_CAPABILITY: Dict[str, DeviceCapability] = {
    "brightness": DeviceCapability.BRIGHTNESS,
    "rgb_color": DeviceCapability.COLOR,
    "color_temp": DeviceCapability.COLOR_TEMP,
    "effect": DeviceCapability.EFFECTS,
}


def service_call(
    entity_id: str,
    command: Command,
    device: Optional[LightDevice] = None,
) -> Tuple[str, Dict[str, Any]]:
    """
    Translate a timeline command into a light service call.

    Raises CapabilityMismatch when the device cannot execute the command.
    Payload keys for capabilities the device lacks are stripped.
    """
    if device is not None:
        required = REQUIRED_CAPABILITY.get(command.type)
        if required is not None and not device.capabilities & required:
            raise CapabilityMismatch(entity_id, command.type.value)
        if (
            command.type is CommandType.SET_EFFECT
            and device.effects
            and command.payload.get("effect") not in device.effects
        ):
            raise CapabilityMismatch(entity_id, f"effect {command.payload.get('effect')}")

    payload: Dict[str, Any] = {"entity_id": entity_id}
    if command.transition_ms > 0:
        payload["transition"] = round(command.transition_ms / 1000.0, 3)

    if command.type is CommandType.TURN_OFF:
        return "turn_off", payload

    for key, value in command.payload.items():
        cap = PAYLOAD_CAPABILITY.get(key)
        if device is not None and cap is not None and not device.capabilities & cap:
            continue
        payload[key] = list(value) if isinstance(value, tuple) else value
    return "turn_on", payload


@dataclass(frozen=True)
class _Pending:
    """A staged command awaiting dispatch."""

    dispatch_time: float
    index: int
    command: Command


class PlaybackScheduler:
    """
    Real-time timeline executor.

    State machine: idle -> playing <-> paused -> stopped (terminal).
    seek() is valid while playing or paused and keeps the status.
    """

    def __init__(
        self,
        hass: HomeAssistantAPI,
        config: Optional[PlaybackConfig] = None,
        devices: Optional[Mapping[str, LightDevice]] = None,
        clock: Callable[[], float] = time.monotonic,
        auto_tick: bool = True,
    ):
        self.hass = hass
        self.config = config or PlaybackConfig()
        self.devices: Dict[str, LightDevice] = dict(devices or {})
        self.clock = clock
        self.auto_tick = auto_tick

        self.session: Optional[PlaybackSession] = None
        self.stats = QueueStats()

        self._anchor = 0.0
        self._paused_position = 0.0
        self._epoch = 0
        self._cursors: Dict[str, int] = {}
        self._queues: Dict[str, Deque[_Pending]] = {}
        self._in_flight: Dict[str, asyncio.Task[None]] = {}
        self._ticker: Optional[Ticker] = None
        self._finished = asyncio.Event()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> PlaybackStatus:
        return self.session.status if self.session else PlaybackStatus.IDLE

    @property
    def timeline(self) -> Optional[Timeline]:
        return self.session.timeline if self.session else None

    @property
    def position(self) -> float:
        """Current timeline position in seconds."""
        if self.session is None:
            return 0.0
        if self.session.status is PlaybackStatus.PLAYING:
            return self.clock() - self._anchor
        if self.session.status is PlaybackStatus.PAUSED:
            return self._paused_position
        return self.session.position

    def queue_depths(self) -> Dict[str, int]:
        return {entity_id: len(q) for entity_id, q in self._queues.items()}

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def snapshot(self) -> Dict[str, Any]:
        timeline = self.timeline
        return {
            "session_id": self.session.session_id if self.session else None,
            "timeline_id": timeline.id if timeline else None,
            "status": self.status.value,
            "position": round(self.position, 3),
            "duration": timeline.duration if timeline else 0.0,
            "stats": self.stats.as_dict(),
        }

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def play(
        self,
        timeline: Timeline,
        start_position: float = 0.0,
        session_id: Optional[str] = None,
    ) -> PlaybackSession:
        """Start playing timeline from start_position seconds."""
        if self.session is not None:
            raise InvalidTransitionError("play", self.status.value)

        start_position = max(0.0, min(float(start_position), timeline.duration))
        self.session = PlaybackSession(
            session_id=session_id or str(uuid.uuid4()),
            timeline=timeline,
            status=PlaybackStatus.PLAYING,
            position=start_position,
            start_wall_clock=time.time(),
        )
        self._queues = {t.entity_id: deque() for t in timeline.tracks}
        self._position_cursors(start_position)
        self._anchor = self.clock() - start_position

        logger.info(
            "Playback started",
            session_id=self.session.session_id,
            timeline_id=timeline.id,
            position=start_position,
            tracks=len(timeline.tracks),
        )

        if self.auto_tick:
            self._ticker = Ticker(self.config.tick_interval_s, self.tick, name=f"playback-{self.session.session_id}")
            self._ticker.start()
        return self.session

    def pause(self) -> None:
        session = self._require("pause", PlaybackStatus.PLAYING)
        self._paused_position = self.clock() - self._anchor
        session.position = self._paused_position
        session.status = PlaybackStatus.PAUSED
        logger.info("Playback paused", session_id=session.session_id, position=round(session.position, 3))

    def resume(self) -> None:
        session = self._require("resume", PlaybackStatus.PAUSED)
        self._anchor = self.clock() - self._paused_position
        session.status = PlaybackStatus.PLAYING
        logger.info("Playback resumed", session_id=session.session_id, position=round(session.position, 3))

    def seek(self, position: float) -> None:
        """Jump to position; unplayed commands in between are skipped."""
        session = self._require("seek", PlaybackStatus.PLAYING, PlaybackStatus.PAUSED)
        position = max(0.0, min(float(position), session.timeline.duration))
        previous = self.position

        self._epoch += 1
        for queue in self._queues.values():
            queue.clear()
        self._position_cursors(position)

        if session.status is PlaybackStatus.PAUSED:
            self._paused_position = position
        else:
            self._anchor = self.clock() - position
        session.position = position

        logger.info(
            "Playback seek",
            session_id=session.session_id,
            from_position=round(previous, 3),
            to_position=round(position, 3),
        )

    async def stop(self) -> None:
        """Stop playback; no later tick dispatches anything."""
        session = self._require("stop", PlaybackStatus.PLAYING, PlaybackStatus.PAUSED)
        self._halt(session)
        logger.info(
            "Playback stopped",
            session_id=session.session_id,
            position=round(session.position, 3),
            **self.stats.as_dict(),
        )
        if self._ticker is not None:
            await self._ticker.stop()
            self._ticker = None

    async def wait(self) -> None:
        """Block until playback stops or finishes."""
        await self._finished.wait()

    async def drain(self) -> None:
        """Wait for every call currently in flight to return."""
        tasks = list(self._in_flight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> None:
        """One scheduling pass: stage due commands, dispatch queue heads."""
        session = self.session
        if session is None or session.status is not PlaybackStatus.PLAYING:
            return

        now = self.clock() - self._anchor
        session.position = now
        window_end = now + self.config.lookahead_s

        for track in session.timeline.tracks:
            self._stage(track, window_end)

        self._dispatch_ready(now)

        if self._exhausted() and now >= session.timeline.duration:
            self._halt(session)
            session.position = session.timeline.duration
            logger.info("Playback finished", session_id=session.session_id, **self.stats.as_dict())
            if self._ticker is not None:
                await self._ticker.stop()
                self._ticker = None

    def _stage(self, track: Track, window_end: float) -> None:
        cursor = self._cursors.get(track.entity_id, 0)
        queue = self._queues.setdefault(track.entity_id, deque())
        commands = track.commands

        while cursor < len(commands):
            command = commands[cursor]
            dispatch_time = track.dispatch_time(command)
            if dispatch_time > window_end:
                break
            if len(queue) >= self.config.max_queue_size:
                self.stats.dropped += 1
                logger.warning(
                    "Command dropped, device queue full",
                    entity_id=track.entity_id,
                    timestamp=command.timestamp_seconds,
                    max_queue_size=self.config.max_queue_size,
                )
            else:
                queue.append(_Pending(dispatch_time, cursor, command))
                self.stats.queued += 1
            cursor += 1
        self._cursors[track.entity_id] = cursor

    def _dispatch_ready(self, now: float) -> None:
        for entity_id, queue in self._queues.items():
            if not queue or queue[0].dispatch_time > now:
                continue
            if len(self._in_flight) >= self.config.max_concurrent_commands:
                break
            if entity_id in self._in_flight:
                continue
            pending = queue.popleft()
            task = asyncio.get_running_loop().create_task(
                self._dispatch(entity_id, pending, self._epoch)
            )
            self._in_flight[entity_id] = task

    async def _dispatch(self, entity_id: str, pending: _Pending, epoch: int) -> None:
        command = pending.command
        try:
            try:
                service, payload = service_call(entity_id, command, self.devices.get(entity_id))
            except CapabilityMismatch as e:
                self.stats.capability_skipped += 1
                logger.debug("Capability mismatch, command skipped", entity_id=entity_id, reason=e.message)
                return

            started = self.clock()
            try:
                await self._invoke(entity_id, service, payload)
            except DeviceUnresponsiveError as e:
                if epoch == self._epoch:
                    self.stats.timed_out += 1
                    logger.warning(
                        "Command timed out",
                        entity_id=entity_id,
                        timestamp=command.timestamp_seconds,
                        error=e.message,
                    )
                else:
                    self.stats.discarded += 1
                return
            except Exception as e:
                # a failed dispatch never escapes the scheduling loop
                if epoch == self._epoch:
                    self.stats.failed += 1
                    logger.error(
                        "Command dispatch failed",
                        entity_id=entity_id,
                        timestamp=command.timestamp_seconds,
                        error=str(e),
                    )
                else:
                    self.stats.discarded += 1
                return

            if epoch != self._epoch:
                self.stats.discarded += 1
                return
            self.stats.dispatched += 1
            self.stats.record_latency((self.clock() - started) * 1000.0)
        finally:
            if self._in_flight.get(entity_id) is asyncio.current_task():
                del self._in_flight[entity_id]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _invoke(self, entity_id: str, service: str, payload: Dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(
                self.hass.invoke_service("light", service, payload),
                timeout=self.config.command_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise DeviceUnresponsiveError(entity_id, self.config.command_timeout_s) from e

    def _require(self, action: str, *allowed: PlaybackStatus) -> PlaybackSession:
        if self.session is None or self.session.status not in allowed:
            raise InvalidTransitionError(action, self.status.value)
        return self.session

    def _position_cursors(self, position: float) -> None:
        """Point each cursor at the first command at or after position."""
        assert self.session is not None
        for track in self.session.timeline.tracks:
            timestamps: List[float] = [c.timestamp_seconds for c in track.commands]
            self._cursors[track.entity_id] = bisect.bisect_left(timestamps, position)

    def _exhausted(self) -> bool:
        assert self.session is not None
        return (
            not self._in_flight
            and all(not q for q in self._queues.values())
            and all(
                self._cursors.get(t.entity_id, 0) >= len(t.commands)
                for t in self.session.timeline.tracks
            )
        )

    def _halt(self, session: PlaybackSession) -> None:
        if session.status is PlaybackStatus.PLAYING:
            session.position = self.clock() - self._anchor
        session.status = PlaybackStatus.STOPPED
        self._epoch += 1
        for queue in self._queues.values():
            queue.clear()
        self._in_flight.clear()
        self._finished.set()
