"""Home automation platform access (REST client and in-process mock)."""

from aurora_sync.hass.client import EntityState, HassClient, HomeAssistantAPI
from aurora_sync.hass.mock import MockHomeAssistant, MockLight, demo_platform

__all__ = [
    "EntityState",
    "HassClient",
    "HomeAssistantAPI",
    "MockHomeAssistant",
    "MockLight",
    "demo_platform",
]
