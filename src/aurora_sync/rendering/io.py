"""
Timeline and profile JSON documents.

Import validates structure before building anything: a document without
tracks, with a malformed command, or with per-track timestamps going
backwards is rejected with TimelineFormatError.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from aurora_sync.core.exceptions import TimelineFormatError
from aurora_sync.core.models import (
    AudioSummary,
    BrightnessSample,
    Command,
    CommandType,
    DeviceProfile,
    EffectPerformance,
    Timeline,
    Track,
)

# =============================================================================
# Timeline
# =============================================================================


def command_to_dict(command: Command) -> Dict[str, Any]:
    return {
        "timestampSeconds": command.timestamp_seconds,
        "type": command.type.value,
        "payload": dict(command.payload),
        "transitionMs": command.transition_ms,
    }


def timeline_to_dict(timeline: Timeline) -> Dict[str, Any]:
    metadata = dict(timeline.metadata)
    metadata["commandCount"] = timeline.command_count
    return {
        "id": timeline.id,
        "name": timeline.name,
        "duration": timeline.duration,
        "audioFile": timeline.audio_file,
        "createdAt": timeline.created_at.isoformat(),
        "audioFeatures": {
            "bpm": timeline.audio.bpm,
            "beats": list(timeline.audio.beats),
            "mood": timeline.audio.mood,
        },
        "tracks": [
            {
                "entityId": track.entity_id,
                "deviceName": track.device_name,
                "compensationMs": track.compensation_ms,
                "commands": [command_to_dict(c) for c in track.commands],
            }
            for track in timeline.tracks
        ],
        "metadata": metadata,
    }


def _number(value: Any, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise TimelineFormatError(f"{field} must be a finite number, got {value!r}")
    return float(value)


def _command_from_dict(data: Any, where: str) -> Command:
    if not isinstance(data, dict):
        raise TimelineFormatError(f"{where} is not an object")
    try:
        command_type = CommandType(data["type"])
    except KeyError:
        raise TimelineFormatError(f"{where} has no type") from None
    except ValueError:
        raise TimelineFormatError(f"{where} has unknown type {data['type']!r}") from None

    if "timestampSeconds" not in data:
        raise TimelineFormatError(f"{where} has no timestampSeconds")
    timestamp = _number(data["timestampSeconds"], f"{where}.timestampSeconds")
    if timestamp < 0:
        raise TimelineFormatError(f"{where}.timestampSeconds is negative")

    payload = data.get("payload", {})
    if not isinstance(payload, dict):
        raise TimelineFormatError(f"{where}.payload is not an object")

    return Command(
        timestamp_seconds=timestamp,
        type=command_type,
        payload=payload,
        transition_ms=_number(data.get("transitionMs", 0.0), f"{where}.transitionMs"),
    )


def _track_from_dict(data: Any, index: int) -> Track:
    where = f"tracks[{index}]"
    if not isinstance(data, dict):
        raise TimelineFormatError(f"{where} is not an object")
    entity_id = data.get("entityId")
    if not isinstance(entity_id, str) or not entity_id:
        raise TimelineFormatError(f"{where} has no entityId")
    raw_commands = data.get("commands")
    if not isinstance(raw_commands, list):
        raise TimelineFormatError(f"{where}.commands must be a list")

    commands = [_command_from_dict(c, f"{where}.commands[{i}]") for i, c in enumerate(raw_commands)]
    for i in range(1, len(commands)):
        if commands[i].timestamp_seconds < commands[i - 1].timestamp_seconds:
            raise TimelineFormatError(
                f"{where} ({entity_id}) timestamps decrease at command {i}"
            )

    return Track(
        entity_id=entity_id,
        commands=tuple(commands),
        compensation_ms=_number(data.get("compensationMs", 0.0), f"{where}.compensationMs"),
        device_name=str(data.get("deviceName") or ""),
    )


def _parse_datetime(value: Any, field: str) -> datetime:
    if not isinstance(value, str):
        raise TimelineFormatError(f"{field} must be an ISO-8601 string")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise TimelineFormatError(f"{field} is not ISO-8601: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timeline_from_dict(data: Any) -> Timeline:
    if not isinstance(data, dict):
        raise TimelineFormatError("document is not an object")
    if "tracks" not in data:
        raise TimelineFormatError("missing tracks")
    if not isinstance(data["tracks"], list):
        raise TimelineFormatError("tracks must be a list")

    tracks = tuple(_track_from_dict(t, i) for i, t in enumerate(data["tracks"]))

    timeline_id = data.get("id")
    if not isinstance(timeline_id, str) or not timeline_id:
        raise TimelineFormatError("missing id")

    audio = data.get("audioFeatures") or {}
    if not isinstance(audio, dict):
        raise TimelineFormatError("audioFeatures is not an object")
    beats = audio.get("beats") or []
    if not isinstance(beats, list):
        raise TimelineFormatError("audioFeatures.beats must be a list")

    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise TimelineFormatError("metadata is not an object")

    created_at = (
        _parse_datetime(data["createdAt"], "createdAt")
        if data.get("createdAt")
        else datetime.now(timezone.utc)
    )

    return Timeline(
        id=timeline_id,
        name=str(data.get("name") or timeline_id),
        duration=_number(data.get("duration", 0.0), "duration"),
        audio=AudioSummary(
            bpm=_number(audio.get("bpm", 0.0), "audioFeatures.bpm"),
            beats=tuple(_number(b, "audioFeatures.beats") for b in beats),
            mood=str(audio.get("mood") or "calm"),
        ),
        tracks=tracks,
        metadata=metadata,
        audio_file=data.get("audioFile"),
        created_at=created_at,
    )


def export_timeline(timeline: Timeline, indent: int = 2) -> str:
    return json.dumps(timeline_to_dict(timeline), indent=indent)


def import_timeline(document: str) -> Timeline:
    try:
        data = json.loads(document)
    except json.JSONDecodeError as e:
        raise TimelineFormatError(f"not valid JSON: {e}") from e
    return timeline_from_dict(data)


# =============================================================================
# Device profile
# =============================================================================


def profile_to_dict(profile: DeviceProfile) -> Dict[str, Any]:
    return {
        "entityId": profile.entity_id,
        "latencyMs": profile.latency_ms,
        "minTransitionMs": profile.min_transition_ms,
        "maxTransitionMs": profile.max_transition_ms,
        "colorAccuracy": profile.color_accuracy,
        "brightnessLinearity": profile.brightness_linearity,
        "responseTimeConsistency": profile.response_time_consistency,
        "peakResponseTimeMs": profile.peak_response_time_ms,
        "perEffectPerformance": {
            name: {
                "supported": perf.supported,
                "responseTimeMs": perf.response_time_ms,
                "smoothness": perf.smoothness,
            }
            for name, perf in profile.per_effect_performance.items()
        },
        "brightnessCurve": [{"input": s.input, "output": s.output} for s in profile.brightness_curve],
        "lastCalibrated": profile.last_calibrated.isoformat(),
        "calibrationMethod": profile.calibration_method,
        "timedOutSamples": profile.timed_out_samples,
    }


def _optional_number(value: Any, field: str) -> Optional[float]:
    return None if value is None else _number(value, field)


def _effect_from_dict(data: Any, where: str) -> EffectPerformance:
    if not isinstance(data, dict):
        raise TimelineFormatError(f"{where} is not an object")
    return EffectPerformance(
        supported=bool(data.get("supported")),
        response_time_ms=_optional_number(data.get("responseTimeMs"), f"{where}.responseTimeMs"),
        smoothness=_optional_number(data.get("smoothness"), f"{where}.smoothness"),
    )


def _sample_from_dict(data: Any, where: str) -> BrightnessSample:
    if not isinstance(data, dict):
        raise TimelineFormatError(f"{where} is not an object")
    for key in ("input", "output"):
        if key not in data:
            raise TimelineFormatError(f"{where} has no {key}")
    return BrightnessSample(
        input=int(_number(data["input"], f"{where}.input")),
        output=_number(data["output"], f"{where}.output"),
    )


def profile_from_dict(data: Any) -> DeviceProfile:
    if not isinstance(data, dict):
        raise TimelineFormatError("profile document is not an object")
    for key in ("entityId", "latencyMs", "lastCalibrated"):
        if key not in data:
            raise TimelineFormatError(f"profile is missing {key}")

    raw_effects = data.get("perEffectPerformance") or {}
    if not isinstance(raw_effects, dict):
        raise TimelineFormatError("perEffectPerformance is not an object")
    effects = {
        str(name): _effect_from_dict(perf, f"perEffectPerformance.{name}")
        for name, perf in raw_effects.items()
    }

    raw_curve = data.get("brightnessCurve") or []
    if not isinstance(raw_curve, list):
        raise TimelineFormatError("brightnessCurve must be a list")
    curve = [_sample_from_dict(s, f"brightnessCurve[{i}]") for i, s in enumerate(raw_curve)]

    try:
        return DeviceProfile(
            entity_id=str(data["entityId"]),
            latency_ms=_number(data["latencyMs"], "latencyMs"),
            last_calibrated=_parse_datetime(data["lastCalibrated"], "lastCalibrated"),
            min_transition_ms=_optional_number(data.get("minTransitionMs"), "minTransitionMs"),
            max_transition_ms=_optional_number(data.get("maxTransitionMs"), "maxTransitionMs"),
            color_accuracy=_optional_number(data.get("colorAccuracy"), "colorAccuracy"),
            brightness_linearity=_optional_number(data.get("brightnessLinearity"), "brightnessLinearity"),
            response_time_consistency=_number(
                data.get("responseTimeConsistency") or 0.0, "responseTimeConsistency"
            ),
            peak_response_time_ms=_optional_number(data.get("peakResponseTimeMs"), "peakResponseTimeMs"),
            per_effect_performance=effects,
            brightness_curve=tuple(curve),
            calibration_method=str(data.get("calibrationMethod") or "auto"),
            timed_out_samples=int(_number(data.get("timedOutSamples") or 0, "timedOutSamples")),
        )
    except ValueError as e:
        raise TimelineFormatError(f"invalid profile: {e}") from e


def export_profile(profile: DeviceProfile, indent: int = 2) -> str:
    return json.dumps(profile_to_dict(profile), indent=indent)


def import_profile(document: str) -> DeviceProfile:
    try:
        data = json.loads(document)
    except json.JSONDecodeError as e:
        raise TimelineFormatError(f"not valid JSON: {e}") from e
    return profile_from_dict(data)
