"""
Session store and control surface.

Owns every timeline-playback and looping-animation session in the process.
It is created by the entry point and passed to whatever drives it; nothing
here is global. Every operation returns an OperationResult instead of
raising, and a light can only be driven by one active session at a time.
"""

from __future__ import annotations

import uuid
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

import structlog

from aurora_sync.core.config import PlaybackConfig
from aurora_sync.core.exceptions import (
    AuroraError,
    DeviceConflictError,
    SessionNotFoundError,
)
from aurora_sync.core.models import LightDevice, OperationResult, PlaybackStatus, Timeline
from aurora_sync.devices.scanner import DeviceScanner
from aurora_sync.hass.client import HomeAssistantAPI
from aurora_sync.playback.animation import (
    Animation,
    Strategy,
    custom_stages,
    resolve_targets,
    showcase_stages,
)
from aurora_sync.playback.scheduler import PlaybackScheduler

logger = structlog.get_logger()


def _short_id() -> str:
    return uuid.uuid4().hex[:8]


class SessionStore:
    """Registry of playback and animation sessions."""

    def __init__(
        self,
        hass: HomeAssistantAPI,
        config: Optional[PlaybackConfig] = None,
        devices: Optional[Mapping[str, LightDevice]] = None,
        auto_tick: bool = True,
    ):
        self.hass = hass
        self.config = config or PlaybackConfig()
        self.devices: Dict[str, LightDevice] = dict(devices or {})
        self.auto_tick = auto_tick
        self.playbacks: Dict[str, PlaybackScheduler] = {}
        self.timelines: Dict[str, Timeline] = {}
        self.animations: Dict[str, Animation] = {}

    # ------------------------------------------------------------------
    # Device ownership
    # ------------------------------------------------------------------

    def _owned_devices(self) -> Dict[str, str]:
        """entity_id -> owning session id, for sessions still active."""
        owners: Dict[str, str] = {}
        for session_id, scheduler in self.playbacks.items():
            if scheduler.status is PlaybackStatus.STOPPED:
                continue
            for entity_id in self.timelines[session_id].entity_ids:
                owners[entity_id] = session_id
        for animation_id, animation in self.animations.items():
            for light in animation.lights:
                owners[light.entity_id] = animation_id
        return owners

    def _check_conflicts(self, entity_ids: Iterable[str]) -> None:
        owners = self._owned_devices()
        clashes: Dict[str, List[str]] = {}
        for entity_id in entity_ids:
            if entity_id in owners:
                clashes.setdefault(owners[entity_id], []).append(entity_id)
        if clashes:
            owner, ids = next(iter(clashes.items()))
            raise DeviceConflictError(ids, owner)

    def _prune_finished(self) -> None:
        """Release playbacks that ran to the end without being stopped."""
        for session_id, scheduler in list(self.playbacks.items()):
            if scheduler.status is PlaybackStatus.STOPPED:
                del self.playbacks[session_id]
                del self.timelines[session_id]
                logger.debug("Finished playback released", session_id=session_id)

    def _get_playback(self, session_id: str) -> PlaybackScheduler:
        scheduler = self.playbacks.get(session_id)
        if scheduler is None:
            raise SessionNotFoundError(session_id)
        return scheduler

    # ------------------------------------------------------------------
    # Timeline playback
    # ------------------------------------------------------------------

    def create(self, timeline: Timeline, session_id: Optional[str] = None) -> OperationResult:
        """Register an idle playback session; its devices are reserved immediately."""
        self._prune_finished()
        session_id = session_id or _short_id()
        if session_id in self.playbacks or session_id in self.animations:
            return OperationResult.fail(f"Session {session_id} already exists")
        try:
            self._check_conflicts(timeline.entity_ids)
        except AuroraError as e:
            logger.warning("Playback session rejected", session_id=session_id, error=e.message)
            return OperationResult.fail(e.message)

        self.playbacks[session_id] = PlaybackScheduler(
            self.hass,
            self.config,
            devices=self.devices,
            auto_tick=self.auto_tick,
        )
        self.timelines[session_id] = timeline
        return OperationResult.ok(
            f"Session created for '{timeline.name}' ({len(timeline.tracks)} devices)",
            session_id=session_id,
            timeline_id=timeline.id,
        )

    def start(self, session_id: str, position: float = 0.0) -> OperationResult:
        try:
            scheduler = self._get_playback(session_id)
            scheduler.play(self.timelines[session_id], start_position=position, session_id=session_id)
        except AuroraError as e:
            return OperationResult.fail(e.message)
        return OperationResult.ok("Playback started", session_id=session_id, position=scheduler.position)

    def play(
        self,
        timeline: Timeline,
        position: float = 0.0,
        session_id: Optional[str] = None,
    ) -> OperationResult:
        """create() followed by start()."""
        created = self.create(timeline, session_id=session_id)
        if not created.success:
            return created
        started = self.start(created.data["session_id"], position)
        if not started.success:
            self.playbacks.pop(created.data["session_id"], None)
            self.timelines.pop(created.data["session_id"], None)
            return started
        return OperationResult.ok(
            f"Playing '{timeline.name}' on {len(timeline.tracks)} devices",
            **created.data,
        )

    def pause(self, session_id: str) -> OperationResult:
        try:
            scheduler = self._get_playback(session_id)
            scheduler.pause()
        except AuroraError as e:
            return OperationResult.fail(e.message)
        return OperationResult.ok("Playback paused", session_id=session_id, position=scheduler.position)

    def resume(self, session_id: str) -> OperationResult:
        try:
            scheduler = self._get_playback(session_id)
            scheduler.resume()
        except AuroraError as e:
            return OperationResult.fail(e.message)
        return OperationResult.ok("Playback resumed", session_id=session_id, position=scheduler.position)

    def seek(self, session_id: str, position: float) -> OperationResult:
        try:
            scheduler = self._get_playback(session_id)
            scheduler.seek(position)
        except AuroraError as e:
            return OperationResult.fail(e.message)
        return OperationResult.ok("Playback position changed", session_id=session_id, position=scheduler.position)

    async def stop(self, session_id: str) -> OperationResult:
        """Stop a playback or animation session and release it."""
        if session_id in self.animations:
            return await self.stop_animation(session_id)
        try:
            scheduler = self._get_playback(session_id)
        except AuroraError as e:
            return OperationResult.fail(e.message)

        if scheduler.status in (PlaybackStatus.PLAYING, PlaybackStatus.PAUSED):
            await scheduler.stop()
        del self.playbacks[session_id]
        del self.timelines[session_id]
        return OperationResult.ok("Playback stopped", session_id=session_id, stats=scheduler.stats.as_dict())

    # ------------------------------------------------------------------
    # Animations
    # ------------------------------------------------------------------

    async def start_animation(
        self,
        target: str,
        kind: str = "showcase",
        colors: Optional[Sequence[str]] = None,
        strategy: Strategy = "random",
        interval_s: float = 5.0,
    ) -> OperationResult:
        """Start a looping animation on the lights matching target."""
        try:
            lights = resolve_targets(await self._lights(), target)
            if not lights:
                return OperationResult.fail(f"No lights found for target '{target}'")
            self._check_conflicts(light.entity_id for light in lights)

            if kind == "showcase":
                stages = showcase_stages()
            elif kind == "custom":
                if not colors:
                    return OperationResult.fail("Colors required for custom animation")
                stages = custom_stages(colors, strategy)
            else:
                return OperationResult.fail(f"Unknown animation type '{kind}'")

            animation = Animation(
                _short_id(),
                self.hass,
                lights,
                stages,
                interval_s=interval_s,
                kind=kind,
                target=target,
                command_timeout_s=self.config.command_timeout_s,
            )
        except (AuroraError, ValueError) as e:
            message = e.message if isinstance(e, AuroraError) else str(e)
            return OperationResult.fail(message)

        self.animations[animation.id] = animation
        animation.start()
        return OperationResult.ok(
            f"Started {kind} animation on {len(lights)} lights",
            animation_id=animation.id,
            lights=[light.entity_id for light in lights],
        )

    async def stop_animation(self, animation_id: str) -> OperationResult:
        animation = self.animations.pop(animation_id, None)
        if animation is None:
            return OperationResult.fail(f"Session {animation_id} not found")
        await animation.stop()
        return OperationResult.ok("Animation stopped", animation_id=animation_id)

    async def _lights(self) -> List[LightDevice]:
        if self.devices:
            return list(self.devices.values())
        return await DeviceScanner(self.hass).scan()

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def list(self) -> OperationResult:
        self._prune_finished()
        playbacks = [scheduler.snapshot() for scheduler in self.playbacks.values()]
        animations = [animation.describe() for animation in self.animations.values()]
        return OperationResult.ok(
            f"{len(playbacks)} playback and {len(animations)} animation sessions",
            playbacks=playbacks,
            animations=animations,
        )

    async def stop_all(self) -> OperationResult:
        stopped: Set[str] = set()
        for session_id in list(self.playbacks):
            result = await self.stop(session_id)
            if result.success:
                stopped.add(session_id)
        for animation_id in list(self.animations):
            result = await self.stop_animation(animation_id)
            if result.success:
                stopped.add(animation_id)
        logger.info("All sessions stopped", count=len(stopped))
        return OperationResult.ok(f"Stopped {len(stopped)} sessions", stopped=sorted(stopped))
