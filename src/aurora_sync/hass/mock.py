"""
Mock Home Automation Platform.

Simulates a population of lights in-process so the scanner, profiler and
scheduler can run without a real installation (CLI --mock and tests).
Each simulated light applies commanded state after its configured latency;
unresponsive lights never apply anything.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from aurora_sync.core.exceptions import UpstreamError
from aurora_sync.hass.client import EntityState

logger = structlog.get_logger()


@dataclass
class MockLight:
    """A simulated light entity."""

    entity_id: str
    name: str = ""
    area: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    color_modes: List[str] = field(default_factory=lambda: ["rgb"])
    effects: List[str] = field(default_factory=list)
    latency_s: float = 0.05
    responsive: bool = True
    brightness_gamma: float = 1.0  # reported = 255 * (cmd/255) ** gamma
    color_skew: float = 0.0  # blend reported colour toward white
    min_mireds: int = 153
    max_mireds: int = 500
    state: str = "off"
    attributes: Dict[str, Any] = field(default_factory=dict)

    def snapshot(self) -> EntityState:
        attrs: Dict[str, Any] = {
            "friendly_name": self.name or self.entity_id,
            "supported_color_modes": list(self.color_modes),
        }
        if self.area:
            attrs["area_id"] = self.area
        if self.effects:
            attrs["effect_list"] = list(self.effects)
        if "color_temp" in self.color_modes:
            attrs["min_mireds"] = self.min_mireds
            attrs["max_mireds"] = self.max_mireds
        if self.manufacturer or self.model:
            attrs["device_info"] = {"manufacturer": self.manufacturer, "model": self.model}
        attrs.update(self.attributes)
        return {"entity_id": self.entity_id, "state": self.state, "attributes": attrs}

    def apply(self, service: str, payload: Dict[str, Any]) -> None:
        if service == "turn_off":
            self.state = "off"
            self.attributes.pop("brightness", None)
            return

        self.state = "on"
        if "brightness" in payload:
            level = max(0.0, min(255.0, float(payload["brightness"])))
            self.attributes["brightness"] = round(255.0 * (level / 255.0) ** self.brightness_gamma)
        if "rgb_color" in payload:
            self.attributes["rgb_color"] = [
                round(c * (1.0 - self.color_skew) + 255.0 * self.color_skew)
                for c in payload["rgb_color"]
            ]
            self.attributes["color_mode"] = "rgb"
        if "color_temp" in payload:
            self.attributes["color_temp"] = int(payload["color_temp"])
            self.attributes["color_mode"] = "color_temp"
        if "effect" in payload:
            self.attributes["effect"] = payload["effect"]


@dataclass
class ServiceCall:
    """Recorded service invocation."""

    domain: str
    service: str
    payload: Dict[str, Any]
    at: float


class MockHomeAssistant:
    """
    In-process implementation of the state-read / service-invoke interfaces.

    Non-light entities can be registered with add_entity() to exercise
    scanner filtering.
    """

    def __init__(
        self,
        lights: Optional[List[MockLight]] = None,
        invoke_delay_s: float = 0.0,
    ) -> None:
        self.lights: Dict[str, MockLight] = {}
        self.other_entities: Dict[str, EntityState] = {}
        self.invoke_delay_s = invoke_delay_s
        self.calls: List[ServiceCall] = []
        self.reachable = True
        self.failing_entities: set[str] = set()
        self.slow_entities: Dict[str, float] = {}
        for light in lights or []:
            self.add_light(light)

    def add_light(self, light: MockLight) -> None:
        self.lights[light.entity_id] = light

    def add_entity(self, entity_id: str, state: str = "on", **attributes: Any) -> None:
        self.other_entities[entity_id] = {
            "entity_id": entity_id,
            "state": state,
            "attributes": dict(attributes),
        }

    def _check_reachable(self, operation: str) -> None:
        if not self.reachable:
            raise UpstreamError(operation, "platform unreachable")

    async def read_state(self, entity_id: str) -> Optional[EntityState]:
        self._check_reachable("read_state")
        if entity_id in self.lights:
            return self.lights[entity_id].snapshot()
        return self.other_entities.get(entity_id)

    async def read_states(self) -> List[EntityState]:
        self._check_reachable("read_states")
        states = [light.snapshot() for light in self.lights.values()]
        states.extend(dict(s) for s in self.other_entities.values())
        return states

    async def invoke_service(self, domain: str, service: str, payload: Dict[str, Any]) -> None:
        self._check_reachable(f"{domain}.{service}")
        entity_id = payload.get("entity_id")
        self.calls.append(ServiceCall(domain, service, dict(payload), time.monotonic()))

        if entity_id in self.failing_entities:
            raise UpstreamError(f"{domain}.{service}", f"{entity_id} rejected command")

        delay = self.slow_entities.get(entity_id, self.invoke_delay_s)
        if delay > 0:
            await asyncio.sleep(delay)

        light = self.lights.get(entity_id) if entity_id else None
        if light is None or domain != "light" or not light.responsive:
            return

        if light.latency_s <= 0:
            light.apply(service, payload)
        else:
            asyncio.get_running_loop().call_later(light.latency_s, light.apply, service, dict(payload))

    def calls_for(self, entity_id: str) -> List[ServiceCall]:
        return [c for c in self.calls if c.payload.get("entity_id") == entity_id]


def demo_platform() -> MockHomeAssistant:
    """A small mixed-capability room used by the CLI --mock mode."""
    return MockHomeAssistant(
        lights=[
            MockLight(
                "light.living_room_strip",
                name="Living Room Strip",
                area="living_room",
                manufacturer="Philips",
                model="Hue Lightstrip",
                color_modes=["rgb", "color_temp"],
                effects=["colorloop"],
                latency_s=0.06,
            ),
            MockLight(
                "light.living_room_lamp",
                name="Living Room Lamp",
                area="living_room",
                manufacturer="IKEA",
                model="TRADFRI",
                color_modes=["color_temp"],
                latency_s=0.15,
                brightness_gamma=1.4,
            ),
            MockLight(
                "light.kitchen_bulb",
                name="Kitchen Bulb",
                area="kitchen",
                manufacturer="Tuya",
                color_modes=["hs"],
                latency_s=0.3,
                color_skew=0.1,
            ),
        ]
    )
