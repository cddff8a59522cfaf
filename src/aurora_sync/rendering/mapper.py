"""
Audio-to-Light Mapper.

Turns one FrequencySlice into a light-state payload for one device.
Everything scales with the effective intensity, so intensity 0 yields a
fixed baseline (brightness 0, black, warmest white) regardless of the audio.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from aurora_sync.core.config import ColorMapping, RenderSettings, ZoneSettings
from aurora_sync.core.models import CommandType, FrequencySlice, LightDevice, Mood

RGB = Tuple[int, int, int]

BEAT_BOOST = 1.2
OFF_BEAT_LEVEL = 0.5  # "beats" brightness mode, between beats
ON_OFF_THRESHOLD = 0.05  # on/off-only lights switch on above this level
DEFAULT_MIREDS = 370  # ~2700K when the device reports no range

MOOD_PALETTES: Dict[Mood, List[RGB]] = {
    Mood.CALM: [(64, 128, 255), (96, 200, 220), (180, 160, 255)],
    Mood.ENERGETIC: [(255, 140, 0), (255, 220, 0), (0, 255, 120)],
    Mood.INTENSE: [(255, 0, 0), (255, 0, 160), (255, 255, 255)],
    Mood.DRAMATIC: [(140, 0, 255), (200, 0, 60), (20, 20, 120)],
    Mood.AMBIENT: [(0, 90, 160), (40, 160, 120), (120, 80, 200)],
}


def _clamp_byte(value: float) -> int:
    return int(min(255, max(0, round(value))))


def dominant_band(slice: FrequencySlice) -> int:
    """0 = bass, 1 = mid, 2 = treble; ties go to the lower band."""
    levels = (slice.bass, slice.mid, slice.treble)
    return levels.index(max(levels))


def is_beat(timestamp: float, beats: Sequence[float], tolerance: float = 0.05) -> bool:
    return any(abs(b - timestamp) < tolerance for b in beats)


class LightMapper:
    """Maps audio slices to colour, brightness and colour temperature."""

    def __init__(self, settings: RenderSettings, mood: Mood = Mood.CALM):
        self.settings = settings
        self.mood = mood

    def effective_intensity(self, zone: Optional[ZoneSettings] = None) -> float:
        multiplier = zone.intensity_multiplier if zone else 1.0
        return max(0.0, min(1.0, self.settings.intensity * multiplier))

    # ------------------------------------------------------------------
    # Colour
    # ------------------------------------------------------------------

    def color(self, slice: FrequencySlice, intensity: float, mapping: Optional[ColorMapping] = None) -> RGB:
        mapping = mapping or self.settings.color_mapping
        if mapping == "mood":
            return self._palette_color(MOOD_PALETTES[self.mood], slice, intensity)
        if mapping == "custom" and self.settings.palette:
            return self._palette_color(self.settings.palette, slice, intensity)
        return self._frequency_color(slice, intensity)

    @staticmethod
    def _frequency_color(slice: FrequencySlice, intensity: float) -> RGB:
        """Bass -> red, mid -> green, treble -> blue."""
        return (
            _clamp_byte(slice.bass * 255 * intensity),
            _clamp_byte(slice.mid * 255 * intensity),
            _clamp_byte(slice.treble * 255 * intensity),
        )

    @staticmethod
    def _palette_color(palette: Sequence[Sequence[int]], slice: FrequencySlice, intensity: float) -> RGB:
        base = palette[dominant_band(slice) % len(palette)]
        level = intensity * max(slice.amplitude, max(slice.bass, slice.mid, slice.treble))
        level = min(1.0, level)
        return (
            _clamp_byte(base[0] * level),
            _clamp_byte(base[1] * level),
            _clamp_byte(base[2] * level),
        )

    # ------------------------------------------------------------------
    # Brightness / white
    # ------------------------------------------------------------------

    def level(self, slice: FrequencySlice, beat: bool) -> float:
        """Unscaled 0-1 drive level for the configured brightness mapping."""
        mode = self.settings.brightness_mapping
        if mode == "energy":
            return (slice.bass + slice.mid + slice.treble) / 3.0
        if mode == "beats":
            return 1.0 if beat else slice.amplitude * OFF_BEAT_LEVEL
        return slice.amplitude

    def brightness(self, slice: FrequencySlice, intensity: float, beat: bool) -> int:
        value = self.level(slice, beat) * intensity * 255
        if beat and self.settings.beat_sync:
            value *= BEAT_BOOST
        return _clamp_byte(value)

    @staticmethod
    def color_temp(slice: FrequencySlice, device: LightDevice, intensity: float) -> int:
        """Treble-heavy audio -> cooler (fewer mireds); silence -> warmest."""
        if device.min_mireds is None or device.max_mireds is None:
            return DEFAULT_MIREDS
        ratio = slice.treble / max(0.01, slice.bass)
        normalized = min(1.0, ratio / 2.0) * intensity
        return int(round(device.max_mireds - (device.max_mireds - device.min_mireds) * normalized))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def command_for(
        self,
        device: LightDevice,
        slice: FrequencySlice,
        beat: bool,
        zone: Optional[ZoneSettings] = None,
    ) -> Tuple[CommandType, Dict[str, Any]]:
        """Pick the richest command the device supports and build its payload."""
        intensity = self.effective_intensity(zone)
        mapping = zone.color_mapping if zone and zone.color_mapping else None
        payload: Dict[str, Any] = {}

        if device.supports_color:
            payload["rgb_color"] = list(self.color(slice, intensity, mapping))
        elif device.supports_color_temp:
            payload["color_temp"] = self.color_temp(slice, device, intensity)
        if device.supports_brightness:
            payload["brightness"] = self.brightness(slice, intensity, beat)

        if "rgb_color" in payload:
            return CommandType.SET_COLOR, payload
        if "color_temp" in payload:
            return CommandType.SET_COLOR_TEMP, payload
        if "brightness" in payload:
            return CommandType.SET_BRIGHTNESS, payload

        if self.level(slice, beat) * intensity > ON_OFF_THRESHOLD:
            return CommandType.TURN_ON, payload
        return CommandType.TURN_OFF, payload
