"""
Custom Exceptions for Aurora Sync.

Provides a hierarchy of exceptions for the analysis, profiling, rendering
and playback components, enabling targeted error handling and graceful
degradation (per-command and per-metric failures are absorbed, whole
operation failures are surfaced).
"""

from __future__ import annotations

from typing import Optional


class AuroraError(Exception):
    """Base exception for all Aurora Sync errors."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


# =============================================================================
# Input Errors
# =============================================================================


class InputError(AuroraError):
    """Malformed or oversized input (audio payloads, timeline documents)."""

    def __init__(self, message: str):
        super().__init__(message, recoverable=False)


class AudioDecodeError(InputError):
    """Audio payload could not be decoded."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"Cannot decode audio from {source}: {reason}")
        self.source = source
        self.reason = reason


class AudioTooLargeError(InputError):
    """Audio payload exceeds the configured byte ceiling."""

    def __init__(self, source: str, limit_bytes: int, observed_bytes: int):
        super().__init__(
            f"Audio from {source} exceeds {limit_bytes / 1024 / 1024:.1f}MB limit "
            f"(got at least {observed_bytes / 1024 / 1024:.1f}MB)"
        )
        self.source = source
        self.limit_bytes = limit_bytes
        self.observed_bytes = observed_bytes


class TimelineFormatError(InputError):
    """Timeline or profile document failed validation."""

    def __init__(self, reason: str):
        super().__init__(f"Invalid timeline document: {reason}")
        self.reason = reason


# =============================================================================
# Device Errors
# =============================================================================


class DeviceError(AuroraError):
    """Base exception for device-related errors."""
    pass


class CapabilityMismatch(DeviceError):
    """Command type is not supported by the target device."""

    def __init__(self, entity_id: str, command_type: str):
        super().__init__(
            f"Device {entity_id} does not support '{command_type}'", recoverable=True
        )
        self.entity_id = entity_id
        self.command_type = command_type


class DeviceUnresponsiveError(DeviceError):
    """Device did not respond within the timeout."""

    def __init__(self, entity_id: str, timeout_s: float):
        super().__init__(
            f"Device {entity_id} did not respond within {timeout_s:.2f}s", recoverable=True
        )
        self.entity_id = entity_id
        self.timeout_s = timeout_s


class DeviceNotFoundError(DeviceError):
    """Entity does not exist or is not a light."""

    def __init__(self, entity_id: str):
        super().__init__(f"Light entity not found: {entity_id}", recoverable=False)
        self.entity_id = entity_id


# =============================================================================
# Upstream Errors
# =============================================================================


class UpstreamError(AuroraError):
    """External state-read or service-invoke failure."""

    def __init__(self, operation: str, reason: str, status: Optional[int] = None):
        status_str = f" (HTTP {status})" if status is not None else ""
        super().__init__(f"Upstream {operation} failed{status_str}: {reason}")
        self.operation = operation
        self.reason = reason
        self.status = status


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(AuroraError):
    """Base exception for playback/animation session errors."""
    pass


class SessionNotFoundError(SessionError):
    """Session id is not registered."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class InvalidTransitionError(SessionError):
    """Requested playback transition is not valid in the current status."""

    def __init__(self, action: str, status: str):
        super().__init__(f"Cannot {action} while {status}")
        self.action = action
        self.status = status


class DeviceConflictError(SessionError):
    """Another session is already driving one of the requested devices."""

    def __init__(self, entity_ids: list[str], owner: str):
        super().__init__(
            f"Devices already controlled by session {owner}: {', '.join(sorted(entity_ids))}"
        )
        self.entity_ids = entity_ids
        self.owner = owner


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(AuroraError):
    """Invalid configuration."""
    pass
