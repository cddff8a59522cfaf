"""
Looping (non-timeline) light animations.

An animation is a list of stages applied one per tick to a set of lights:
colour stages spread a palette over the lights (round robin or random),
white stages set a colour temperature. Animations loop until stopped.
"""

from __future__ import annotations

import asyncio
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

import structlog

from aurora_sync.core.models import LightDevice
from aurora_sync.hass.client import HomeAssistantAPI
from aurora_sync.playback.ticker import Ticker

logger = structlog.get_logger()

RGB = Tuple[int, int, int]
Strategy = Literal["random", "round_robin"]

_HEX_COLOR = re.compile(r"^#?([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})$", re.IGNORECASE)


def parse_hex(color: str) -> RGB:
    match = _HEX_COLOR.match(color.strip())
    if not match:
        raise ValueError(f"Not a hex colour: {color!r}")
    return int(match.group(1), 16), int(match.group(2), 16), int(match.group(3), 16)


@dataclass(frozen=True)
class AnimationStage:
    name: str
    colors: Tuple[RGB, ...] = ()
    strategy: Strategy = "round_robin"
    kelvin: Optional[int] = None
    brightness_pct: int = 80


def _palette(*colors: str) -> Tuple[RGB, ...]:
    return tuple(parse_hex(c) for c in colors)


SHOWCASE_STAGES: Tuple[AnimationStage, ...] = (
    AnimationStage("Sunrise", _palette("#FF4500", "#FF8C00", "#FFD700"), "round_robin"),
    AnimationStage("Daylight", _palette("#FFFFFF", "#87CEEB"), "random"),
    AnimationStage("Forest", _palette("#228B22", "#32CD32", "#FFD700"), "round_robin"),
    AnimationStage("Ocean", _palette("#00008B", "#008B8B", "#00FFFF", "#40E0D0"), "round_robin"),
    AnimationStage("Romance", _palette("#8B0000", "#FF1493", "#800080"), "random"),
    AnimationStage("Cyberpunk", _palette("#FF00FF", "#00FFFF", "#800080"), "random"),
    AnimationStage("Relax", kelvin=2700, brightness_pct=40),
)


def resolve_targets(devices: Sequence[LightDevice], target: str) -> List[LightDevice]:
    """Lights whose entity id equals target, or whose area or name contains it."""
    needle = target.lower()
    matches = []
    for device in devices:
        if device.entity_id == target:
            matches.append(device)
        elif device.area and needle in device.area.lower():
            matches.append(device)
        elif needle in device.name.lower():
            matches.append(device)
    return matches


class Animation:
    """A stage sequence looping over a fixed set of lights."""

    def __init__(
        self,
        animation_id: str,
        hass: HomeAssistantAPI,
        lights: Sequence[LightDevice],
        stages: Sequence[AnimationStage],
        interval_s: float = 5.0,
        kind: str = "custom",
        target: str = "",
        command_timeout_s: float = 5.0,
        rng: Optional[random.Random] = None,
    ):
        if not lights:
            raise ValueError("Animation needs at least one light")
        if not stages:
            raise ValueError("Animation needs at least one stage")
        self.id = animation_id
        self.hass = hass
        self.lights = list(lights)
        self.stages = list(stages)
        self.interval_s = interval_s
        self.kind = kind
        self.target = target
        self.command_timeout_s = command_timeout_s
        self.rng = rng or random.Random()
        self.stage_index = 0
        self.started_at: Optional[float] = None
        self._ticker: Optional[Ticker] = None

    @property
    def running(self) -> bool:
        return self._ticker is not None and self._ticker.running

    @property
    def transition_s(self) -> float:
        # fade finishes slightly before the next stage
        return max(0.0, self.interval_s - 1.0)

    def payload_for(self, stage: AnimationStage, light: LightDevice, index: int) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "entity_id": light.entity_id,
            "brightness_pct": stage.brightness_pct,
            "transition": self.transition_s,
        }
        if stage.kelvin is not None:
            if light.supports_color_temp or light.supports_color:
                payload["color_temp_kelvin"] = stage.kelvin
        elif stage.colors and light.supports_color:
            if stage.strategy == "round_robin":
                color = stage.colors[index % len(stage.colors)]
            else:
                color = self.rng.choice(stage.colors)
            payload["rgb_color"] = list(color)
        if not light.supports_brightness:
            payload.pop("brightness_pct")
        return payload

    async def step(self) -> None:
        """Apply the current stage to every light, then advance."""
        stage = self.stages[self.stage_index]
        logger.debug("Animation stage", animation_id=self.id, stage=stage.name)

        calls = [
            asyncio.wait_for(
                self.hass.invoke_service("light", "turn_on", self.payload_for(stage, light, i)),
                timeout=self.command_timeout_s,
            )
            for i, light in enumerate(self.lights)
        ]
        results = await asyncio.gather(*calls, return_exceptions=True)
        for light, result in zip(self.lights, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Animation command failed",
                    animation_id=self.id,
                    entity_id=light.entity_id,
                    error=str(result) or type(result).__name__,
                )

        self.stage_index = (self.stage_index + 1) % len(self.stages)

    def start(self) -> None:
        if self.running:
            return
        self.started_at = time.time()
        self._ticker = Ticker(self.interval_s, self.step, name=f"animation-{self.id}")
        self._ticker.start()
        logger.info("Animation started", animation_id=self.id, kind=self.kind, lights=len(self.lights))

    async def stop(self) -> None:
        if self._ticker is not None:
            await self._ticker.stop()
            self._ticker = None
            logger.info("Animation stopped", animation_id=self.id)

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind,
            "target": self.target,
            "interval_s": self.interval_s,
            "lights": [light.entity_id for light in self.lights],
            "stage": self.stages[self.stage_index].name,
            "running": self.running,
            "started_at": self.started_at,
        }


def showcase_stages() -> List[AnimationStage]:
    return list(SHOWCASE_STAGES)


def custom_stages(colors: Sequence[str], strategy: Strategy = "random") -> List[AnimationStage]:
    """A single palette stage from hex colours; unparsable colours are ignored."""
    palette: List[RGB] = []
    for color in colors:
        try:
            palette.append(parse_hex(color))
        except ValueError:
            logger.warning("Ignoring invalid colour", color=color)
    if not palette:
        raise ValueError("No valid colours in custom palette")
    return [AnimationStage("Custom", tuple(palette), strategy)]
