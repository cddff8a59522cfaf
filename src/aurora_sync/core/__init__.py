"""Core system components for Aurora Sync."""

from aurora_sync.core.config import Settings
from aurora_sync.core.exceptions import (
    AuroraError,
    CapabilityMismatch,
    DeviceUnresponsiveError,
    InputError,
    UpstreamError,
)
from aurora_sync.core.models import Command, CommandType, DeviceCapability, Timeline, Track

__all__ = [
    "Settings",
    "AuroraError",
    "InputError",
    "CapabilityMismatch",
    "DeviceUnresponsiveError",
    "UpstreamError",
    "Command",
    "CommandType",
    "DeviceCapability",
    "Timeline",
    "Track",
]
