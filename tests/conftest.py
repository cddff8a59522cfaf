"""Shared fixtures: a controllable clock and small timeline builders."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Sequence

import pytest

from aurora_sync.core.models import (
    AudioFeatures,
    AudioSummary,
    Command,
    CommandType,
    DeviceCapability,
    FrequencySlice,
    LightDevice,
    Mood,
    Timeline,
    Track,
)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


RGB_LIGHT = LightDevice(
    "light.strip",
    "Strip",
    area="living_room",
    capabilities=DeviceCapability.COLOR | DeviceCapability.BRIGHTNESS | DeviceCapability.TRANSITION,
    state="on",
)
WHITE_LIGHT = LightDevice(
    "light.lamp",
    "Lamp",
    area="bedroom",
    capabilities=DeviceCapability.COLOR_TEMP | DeviceCapability.BRIGHTNESS,
    min_mireds=153,
    max_mireds=500,
    state="on",
)
SWITCH_LIGHT = LightDevice("light.switch", "Switch", area="kitchen", state="off")


def make_track(
    entity_id: str,
    timestamps: Iterable[float],
    compensation_ms: float = 0.0,
    command_type: CommandType = CommandType.SET_BRIGHTNESS,
) -> Track:
    commands = tuple(
        Command(t, command_type, {"brightness": 100 + i % 100}) for i, t in enumerate(timestamps)
    )
    return Track(entity_id, commands, compensation_ms=compensation_ms, device_name=entity_id)


def make_timeline(tracks: Sequence[Track], duration: float = 10.0, timeline_id: str = "tl-1") -> Timeline:
    return Timeline(
        id=timeline_id,
        name="Test timeline",
        duration=duration,
        audio=AudioSummary(bpm=120.0, beats=(0.5, 1.0), mood="energetic"),
        tracks=tuple(tracks),
        metadata={"version": "test"},
        created_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    )


def make_features(
    duration: float = 2.0,
    hop: float = 0.01,
    beats: Sequence[float] = (),
    level: float = 0.5,
    mood: Mood = Mood.ENERGETIC,
) -> AudioFeatures:
    """Synthetic features with a slowly varying spectrum on a fixed grid."""
    count = int(round(duration / hop))
    slices = []
    for i in range(count):
        t = round(i * hop, 6)
        wobble = (i % 10) / 20.0
        slices.append(
            FrequencySlice(
                timestamp=t,
                bass=min(1.0, level + wobble),
                mid=level / 2,
                treble=level / 4,
                amplitude=level,
                dominant_frequency=80.0,
            )
        )
    return AudioFeatures(
        duration=duration,
        sample_rate=44100,
        hop_seconds=hop,
        slices=tuple(slices),
        bpm=120.0 if len(beats) > 1 else 0.0,
        beats=tuple(beats),
        mood=mood,
        energy=level,
    )


DEVICES_FOR_IO = [
    LightDevice(
        "light.strip",
        "Strip",
        capabilities=DeviceCapability.COLOR | DeviceCapability.BRIGHTNESS,
    ),
    LightDevice(
        "light.lamp",
        "Lamp",
        capabilities=DeviceCapability.COLOR_TEMP | DeviceCapability.BRIGHTNESS,
        min_mireds=153,
        max_mireds=500,
    ),
]
