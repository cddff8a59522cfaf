"""
Timeline Generator.

Combines analyzed audio, a device list and device profiles into a Timeline:
one Track per device whose commands carry audio-relative timestamps, with
the device's latency recorded as the track's compensation. Generation is a
pure function of its inputs (apart from the generated id and timestamps).
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog

from aurora_sync import __version__
from aurora_sync.core.config import RenderSettings
from aurora_sync.core.models import (
    AudioFeatures,
    AudioSummary,
    Command,
    DeviceProfile,
    FrequencySlice,
    LightDevice,
    Timeline,
    Track,
)
from aurora_sync.rendering.mapper import LightMapper, is_beat
from aurora_sync.rendering.synchronizer import compensation_for

logger = structlog.get_logger()

# optimize_timeline: consecutive commands closer than this are redundant
SIMILAR_RGB_DISTANCE = 15
SIMILAR_BRIGHTNESS = 5
SIMILAR_MIREDS = 5


@dataclass(frozen=True)
class _Event:
    """A candidate command time on the sampling grid or at a beat."""

    timestamp: float
    slice: FrequencySlice
    beat: bool  # on or near a beat, gets the beat boost
    anchor: bool = False  # exactly at a detected beat


class TimelineGenerator:
    """Renders AudioFeatures into per-device command tracks."""

    def __init__(self, settings: Optional[RenderSettings] = None):
        self.settings = settings or RenderSettings()

    def generate(
        self,
        features: AudioFeatures,
        devices: Sequence[LightDevice],
        profiles: Mapping[str, DeviceProfile],
        settings: Optional[RenderSettings] = None,
        name: Optional[str] = None,
        timeline_id: Optional[str] = None,
        audio_file: Optional[str] = None,
    ) -> Timeline:
        settings = settings or self.settings
        start_time = time.time()

        mapper = LightMapper(settings, features.mood)
        events = self._select_events(features, settings)

        tracks: List[Track] = []
        compensation: Dict[str, float] = {}
        for device in devices:
            profile = profiles.get(device.entity_id)
            track = self._render_track(device, profile, events, mapper, settings)
            tracks.append(track)
            compensation[device.entity_id] = track.compensation_ms

        command_count = sum(len(t.commands) for t in tracks)
        processing_time = time.time() - start_time
        metadata: Dict[str, Any] = {
            "version": __version__,
            "commandCount": command_count,
            "deviceCount": len(tracks),
            "settings": settings.model_dump(mode="json"),
            "compensationMs": compensation,
            "processingTime": round(processing_time, 4),
        }

        created_at = datetime.now(timezone.utc)
        timeline = Timeline(
            id=timeline_id or str(uuid.uuid4()),
            name=name or f"Timeline {created_at.isoformat(timespec='seconds')}",
            duration=features.duration,
            audio=AudioSummary(bpm=features.bpm, beats=tuple(features.beats), mood=features.mood.value),
            tracks=tuple(tracks),
            metadata=metadata,
            audio_file=audio_file,
            created_at=created_at,
        )

        logger.info(
            "Timeline generated",
            timeline_id=timeline.id,
            devices=len(tracks),
            commands=command_count,
            compensation_ms=compensation,
            elapsed_s=round(processing_time, 3),
        )
        return timeline

    # ------------------------------------------------------------------
    # Event selection
    # ------------------------------------------------------------------

    def _select_events(self, features: AudioFeatures, settings: RenderSettings) -> List[_Event]:
        """
        Grid slices plus (with beat sync) every beat, thinned to the minimum
        command interval.

        A beat arriving within the interval of a grid command replaces that
        command, so beat timestamps survive thinning.
        """
        slices = features.slices
        if not slices:
            return []

        candidates: List[_Event] = []
        for s in slices:
            beat = settings.beat_sync and is_beat(s.timestamp, features.beats, settings.beat_tolerance_s)
            candidates.append(_Event(s.timestamp, s, beat))
        if settings.beat_sync:
            for beat_time in features.beats:
                candidates.append(_Event(beat_time, self._nearest_slice(features, beat_time), True, anchor=True))
        # beat anchors first at equal timestamps
        candidates.sort(key=lambda e: (e.timestamp, not e.anchor))

        interval_s = settings.min_command_interval_ms / 1000.0
        emitted: List[_Event] = []
        for event in candidates:
            if emitted:
                gap = event.timestamp - emitted[-1].timestamp
                if gap <= 0 or gap < interval_s:
                    if event.anchor and not emitted[-1].anchor:
                        emitted[-1] = event
                    continue
            emitted.append(event)
        return emitted

    @staticmethod
    def _nearest_slice(features: AudioFeatures, timestamp: float) -> FrequencySlice:
        slices = features.slices
        if features.hop_seconds > 0:
            index = int(round(timestamp / features.hop_seconds))
        else:
            index = 0
        return slices[max(0, min(index, len(slices) - 1))]

    # ------------------------------------------------------------------
    # Per-device rendering
    # ------------------------------------------------------------------

    def _render_track(
        self,
        device: LightDevice,
        profile: Optional[DeviceProfile],
        events: List[_Event],
        mapper: LightMapper,
        settings: RenderSettings,
    ) -> Track:
        zone = settings.zones.get(device.area) if device.area else None
        delay_s = zone.delay_ms / 1000.0 if zone else 0.0
        fallback_gap_ms = settings.min_command_interval_ms

        commands: List[Command] = []
        for i, event in enumerate(events):
            command_type, payload = mapper.command_for(device, event.slice, event.beat, zone)

            transition_ms = 0.0
            if settings.smooth_transitions:
                if event.beat:
                    transition_ms = settings.beat_flash_transition_ms
                elif i + 1 < len(events):
                    transition_ms = (events[i + 1].timestamp - event.timestamp) * 1000.0
                else:
                    transition_ms = fallback_gap_ms
                transition_ms = clamp_transition(transition_ms, profile)

            commands.append(
                Command(
                    timestamp_seconds=event.timestamp + delay_s,
                    type=command_type,
                    payload=payload,
                    transition_ms=round(transition_ms, 3),
                )
            )

        return Track(
            entity_id=device.entity_id,
            commands=tuple(commands),
            compensation_ms=compensation_for(profile),
            device_name=device.name,
        )


def clamp_transition(transition_ms: float, profile: Optional[DeviceProfile]) -> float:
    """Clamp a fade to the device's own usable transition range."""
    if profile is None:
        return transition_ms
    if profile.min_transition_ms is not None:
        transition_ms = max(transition_ms, profile.min_transition_ms)
    if profile.max_transition_ms is not None:
        transition_ms = min(transition_ms, profile.max_transition_ms)
    return transition_ms


def _similar(a: Command, b: Command) -> bool:
    if a.type != b.type or set(a.payload) != set(b.payload):
        return False
    pa, pb = a.payload, b.payload
    if "rgb_color" in pa:
        distance = sum(abs(int(x) - int(y)) for x, y in zip(pa["rgb_color"], pb["rgb_color"]))
        if distance >= SIMILAR_RGB_DISTANCE:
            return False
    if "brightness" in pa and abs(float(pa["brightness"]) - float(pb["brightness"])) >= SIMILAR_BRIGHTNESS:
        return False
    if "color_temp" in pa and abs(float(pa["color_temp"]) - float(pb["color_temp"])) >= SIMILAR_MIREDS:
        return False
    if "effect" in pa and pa["effect"] != pb["effect"]:
        return False
    return True


def optimize_timeline(timeline: Timeline) -> Timeline:
    """Drop commands that barely differ from the previous kept command."""
    tracks = []
    for track in timeline.tracks:
        kept: List[Command] = []
        for command in track.commands:
            if kept and _similar(kept[-1], command):
                continue
            kept.append(command)
        tracks.append(replace(track, commands=tuple(kept)))

    metadata = dict(timeline.metadata)
    before = timeline.command_count
    metadata["commandCount"] = sum(len(t.commands) for t in tracks)
    optimized = replace(timeline, tracks=tuple(tracks), metadata=metadata)

    logger.debug(
        "Timeline optimized",
        timeline_id=timeline.id,
        before=before,
        after=metadata["commandCount"],
    )
    return optimized


def timeline_statistics(timeline: Timeline) -> Dict[str, Any]:
    duration = timeline.duration if timeline.duration > 0 else 0.0
    per_device: Dict[str, Dict[str, Any]] = {}
    for track in timeline.tracks:
        per_device[track.entity_id] = {
            "name": track.device_name,
            "commands": len(track.commands),
            "compensation_ms": track.compensation_ms,
            "commands_per_second": round(len(track.commands) / duration, 2) if duration else 0.0,
        }
    total = timeline.command_count
    return {
        "duration": timeline.duration,
        "device_count": len(timeline.tracks),
        "command_count": total,
        "commands_per_second": round(total / duration, 2) if duration else 0.0,
        "bpm": timeline.audio.bpm,
        "beats": len(timeline.audio.beats),
        "mood": timeline.audio.mood,
        "devices": per_device,
    }
