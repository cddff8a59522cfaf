"""
Data Model for Aurora Sync.

Defines the records that flow between the analyzer, scanner, profiler,
timeline generator and playback scheduler. Everything produced by analysis,
profiling or rendering is immutable; only the PlaybackSession is mutated,
and only by the scheduler that owns it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntFlag
from typing import Any, Mapping, Optional


class Mood(Enum):
    """Coarse mood label derived from tempo and energy."""

    CALM = "calm"
    ENERGETIC = "energetic"
    INTENSE = "intense"
    DRAMATIC = "dramatic"
    AMBIENT = "ambient"


# =============================================================================
# Audio
# =============================================================================


@dataclass(frozen=True)
class FrequencySlice:
    """Band energies for one analysis window, all normalized to 0-1."""

    timestamp: float
    bass: float  # 20-250 Hz
    mid: float  # 250-4000 Hz
    treble: float  # 4000-20000 Hz
    amplitude: float
    dominant_frequency: float = 0.0


@dataclass(frozen=True)
class AudioFeatures:
    """Result of analyzing one audio file."""

    duration: float
    sample_rate: int
    hop_seconds: float
    slices: tuple[FrequencySlice, ...]
    bpm: float
    beats: tuple[float, ...]
    mood: Mood
    energy: float  # mean slice amplitude


# =============================================================================
# Devices
# =============================================================================


class DeviceCapability(IntFlag):
    """Capability set of a light, validated once at scan time."""

    NONE = 0
    BRIGHTNESS = 1
    COLOR_TEMP = 2
    COLOR = 4
    EFFECTS = 8
    TRANSITION = 16


@dataclass(frozen=True)
class LightDevice:
    """A controllable light entity."""

    entity_id: str
    name: str
    area: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    capabilities: DeviceCapability = DeviceCapability.NONE
    effects: tuple[str, ...] = ()
    min_mireds: Optional[int] = None
    max_mireds: Optional[int] = None
    state: str = "off"  # "on", "off", "unavailable"

    @property
    def supports_color(self) -> bool:
        return bool(self.capabilities & DeviceCapability.COLOR)

    @property
    def supports_color_temp(self) -> bool:
        return bool(self.capabilities & DeviceCapability.COLOR_TEMP)

    @property
    def supports_brightness(self) -> bool:
        return bool(self.capabilities & DeviceCapability.BRIGHTNESS)

    @property
    def supports_effects(self) -> bool:
        return bool(self.capabilities & DeviceCapability.EFFECTS)

    @property
    def available(self) -> bool:
        return self.state != "unavailable"


@dataclass(frozen=True)
class EffectPerformance:
    """Measured behaviour of a single device effect."""

    supported: bool
    response_time_ms: Optional[float] = None
    smoothness: Optional[float] = None  # 0-1


@dataclass(frozen=True)
class BrightnessSample:
    """Commanded vs. reported brightness (both 0-255)."""

    input: int
    output: float


@dataclass(frozen=True)
class DeviceProfile:
    """
    Measured response characteristics of one device.

    Metrics a device cannot exercise are None rather than 0, so a missing
    capability is distinguishable from poor performance.
    """

    entity_id: str
    latency_ms: float
    last_calibrated: datetime
    min_transition_ms: Optional[float] = None
    max_transition_ms: Optional[float] = None
    color_accuracy: Optional[float] = None
    brightness_linearity: Optional[float] = None
    response_time_consistency: float = 0.0  # stddev of latency samples
    peak_response_time_ms: Optional[float] = None
    per_effect_performance: Mapping[str, EffectPerformance] = field(default_factory=dict)
    brightness_curve: tuple[BrightnessSample, ...] = ()
    calibration_method: str = "auto"  # "auto", "manual", "estimated"
    timed_out_samples: int = 0

    def __post_init__(self) -> None:
        if self.latency_ms < 0:
            raise ValueError(f"latency_ms must be >= 0, got {self.latency_ms}")
        for name in ("color_accuracy", "brightness_linearity"):
            value = getattr(self, name)
            if value is not None and not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")


# =============================================================================
# Timeline
# =============================================================================


class CommandType(str, Enum):
    """Light command kinds carried by a timeline."""

    TURN_ON = "turn_on"
    TURN_OFF = "turn_off"
    SET_BRIGHTNESS = "set_brightness"
    SET_COLOR = "set_color"
    SET_COLOR_TEMP = "set_color_temp"
    SET_EFFECT = "set_effect"


@dataclass(frozen=True)
class Command:
    """
    One scheduled light change.

    timestamp_seconds is the intended device-visible time relative to the
    start of the audio, not the time the command is sent.
    """

    timestamp_seconds: float
    type: CommandType
    payload: Mapping[str, Any]
    transition_ms: float = 0.0


@dataclass(frozen=True)
class Track:
    """Ordered command sequence for one device."""

    entity_id: str
    commands: tuple[Command, ...]
    compensation_ms: float = 0.0
    device_name: str = ""

    def dispatch_time(self, command: Command) -> float:
        """Time the command must be sent so its effect lands on schedule."""
        return max(0.0, command.timestamp_seconds - self.compensation_ms / 1000.0)

    def dispatch_times(self) -> list[float]:
        return [self.dispatch_time(c) for c in self.commands]

    def is_monotonic(self) -> bool:
        return all(
            a.timestamp_seconds <= b.timestamp_seconds
            for a, b in zip(self.commands, self.commands[1:])
        )


@dataclass(frozen=True)
class AudioSummary:
    """The part of the audio analysis carried inside a timeline."""

    bpm: float
    beats: tuple[float, ...]
    mood: str


@dataclass(frozen=True)
class Timeline:
    """Precomputed per-device command tracks for one audio file."""

    id: str
    name: str
    duration: float
    audio: AudioSummary
    tracks: tuple[Track, ...]
    metadata: Mapping[str, Any]
    audio_file: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def command_count(self) -> int:
        return sum(len(t.commands) for t in self.tracks)

    @property
    def entity_ids(self) -> list[str]:
        return [t.entity_id for t in self.tracks]

    def track_for(self, entity_id: str) -> Optional[Track]:
        for track in self.tracks:
            if track.entity_id == entity_id:
                return track
        return None


# =============================================================================
# Playback
# =============================================================================


class PlaybackStatus(Enum):
    """Playback state machine: idle -> playing <-> paused -> stopped."""

    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class PlaybackSession:
    """Mutable playback state, owned by exactly one scheduler."""

    session_id: str
    timeline: Timeline
    status: PlaybackStatus = PlaybackStatus.IDLE
    position: float = 0.0
    start_wall_clock: Optional[float] = None


@dataclass
class QueueStats:
    """Dispatch counters for one playback session."""

    queued: int = 0
    dispatched: int = 0
    failed: int = 0
    timed_out: int = 0
    dropped: int = 0
    capability_skipped: int = 0
    discarded: int = 0  # results returned after stop/seek
    avg_latency_ms: float = 0.0

    def record_latency(self, latency_ms: float) -> None:
        if self.dispatched <= 1:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms += (latency_ms - self.avg_latency_ms) / self.dispatched

    def as_dict(self) -> dict[str, float]:
        return {
            "queued": self.queued,
            "dispatched": self.dispatched,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "dropped": self.dropped,
            "capability_skipped": self.capability_skipped,
            "discarded": self.discarded,
            "avg_latency_ms": round(self.avg_latency_ms, 2),
        }


@dataclass
class OperationResult:
    """Envelope returned by every control-surface operation."""

    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data: Any) -> "OperationResult":
        return cls(True, message, dict(data))

    @classmethod
    def fail(cls, message: str, **data: Any) -> "OperationResult":
        return cls(False, message, dict(data))

    def as_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success, "message": self.message}
        result.update(self.data)
        return result
