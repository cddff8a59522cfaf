"""
Device Scanner: discovers light entities and classifies their capabilities.

Capabilities are derived once here from the advertised color modes (or
the legacy feature bitmask when no color modes are advertised) and carried
as DeviceCapability flags everywhere else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import structlog

from aurora_sync.core.models import DeviceCapability, LightDevice
from aurora_sync.hass.client import EntityState, HomeAssistantAPI

logger = structlog.get_logger()

LIGHT_DOMAIN = "light."

COLOR_MODES = {"hs", "xy", "rgb", "rgbw", "rgbww"}
BRIGHTNESS_MODES = {"brightness", "white"} | COLOR_MODES | {"color_temp"}

# Legacy supported_features bits
SUPPORT_BRIGHTNESS = 1
SUPPORT_COLOR_TEMP = 2
SUPPORT_EFFECT = 4
SUPPORT_FLASH = 8
SUPPORT_COLOR = 16
SUPPORT_TRANSITION = 32


@dataclass(frozen=True)
class ScanFilter:
    """Optional scan restrictions; capability requires every flag given."""

    capability: Optional[DeviceCapability] = None
    area: Optional[str] = None
    available_only: bool = False


def classify_capabilities(attributes: Dict[str, Any]) -> DeviceCapability:
    """Map advertised modes/features onto DeviceCapability flags."""
    caps = DeviceCapability.NONE
    features = int(attributes.get("supported_features") or 0)
    modes = attributes.get("supported_color_modes")

    if modes:
        mode_set = {str(m) for m in modes}
        if mode_set & COLOR_MODES:
            caps |= DeviceCapability.COLOR
        if "color_temp" in mode_set:
            caps |= DeviceCapability.COLOR_TEMP
        if mode_set & BRIGHTNESS_MODES:
            caps |= DeviceCapability.BRIGHTNESS
    else:
        if features & SUPPORT_BRIGHTNESS:
            caps |= DeviceCapability.BRIGHTNESS
        if features & SUPPORT_COLOR_TEMP:
            caps |= DeviceCapability.COLOR_TEMP
        if features & SUPPORT_COLOR:
            caps |= DeviceCapability.COLOR

    if attributes.get("effect_list") or features & SUPPORT_EFFECT:
        caps |= DeviceCapability.EFFECTS
    if features & SUPPORT_TRANSITION:
        caps |= DeviceCapability.TRANSITION
    return caps


def device_from_state(state: EntityState) -> LightDevice:
    """Build a LightDevice from a raw entity state."""
    attrs = state.get("attributes") or {}
    info = attrs.get("device_info") or {}
    entity_id = state["entity_id"]

    min_mireds = attrs.get("min_mireds")
    max_mireds = attrs.get("max_mireds")

    return LightDevice(
        entity_id=entity_id,
        name=attrs.get("friendly_name") or entity_id,
        area=attrs.get("area_id") or attrs.get("area"),
        manufacturer=info.get("manufacturer"),
        model=info.get("model"),
        capabilities=classify_capabilities(attrs),
        effects=tuple(attrs.get("effect_list") or ()),
        min_mireds=int(min_mireds) if min_mireds is not None else None,
        max_mireds=int(max_mireds) if max_mireds is not None else None,
        state=str(state.get("state", "off")),
    )


class DeviceScanner:
    """Discovers and catalogs light entities. Side-effect free."""

    def __init__(self, hass: HomeAssistantAPI):
        self.hass = hass

    async def scan(self, scan_filter: Optional[ScanFilter] = None) -> List[LightDevice]:
        """
        Read all entity states and return the matching lights.

        Read errors from the platform propagate; no matches is an empty list.
        """
        states = await self.hass.read_states()
        lights = [
            device_from_state(s)
            for s in states
            if str(s.get("entity_id", "")).startswith(LIGHT_DOMAIN)
        ]
        devices = self._apply_filter(lights, scan_filter)

        logger.info("Device scan complete", total=len(lights), matched=len(devices))
        return devices

    async def get_device(self, entity_id: str) -> Optional[LightDevice]:
        """Look up one light; None if missing or not a light."""
        if not entity_id.startswith(LIGHT_DOMAIN):
            return None
        state = await self.hass.read_state(entity_id)
        if state is None:
            return None
        return device_from_state(state)

    @staticmethod
    def _apply_filter(
        devices: Iterable[LightDevice], scan_filter: Optional[ScanFilter]
    ) -> List[LightDevice]:
        result = list(devices)
        if scan_filter is None:
            return result
        if scan_filter.capability is not None:
            result = filter_by_capability(result, scan_filter.capability)
        if scan_filter.area is not None:
            area = scan_filter.area.lower()
            result = [d for d in result if d.area and d.area.lower() == area]
        if scan_filter.available_only:
            result = [d for d in result if d.available]
        return result


def filter_by_capability(
    devices: Iterable[LightDevice], capability: DeviceCapability
) -> List[LightDevice]:
    return [d for d in devices if (d.capabilities & capability) == capability]


def group_by_area(devices: Iterable[LightDevice]) -> Dict[str, List[LightDevice]]:
    grouped: Dict[str, List[LightDevice]] = {}
    for device in devices:
        grouped.setdefault(device.area or "unassigned", []).append(device)
    return grouped


def scan_statistics(devices: List[LightDevice]) -> Dict[str, int]:
    return {
        "total": len(devices),
        "available": sum(1 for d in devices if d.available),
        "supports_color": sum(1 for d in devices if d.supports_color),
        "supports_color_temp": sum(1 for d in devices if d.supports_color_temp),
        "supports_brightness": sum(1 for d in devices if d.supports_brightness),
        "supports_effects": sum(1 for d in devices if d.supports_effects),
        "areas": len({d.area for d in devices if d.area}),
    }
