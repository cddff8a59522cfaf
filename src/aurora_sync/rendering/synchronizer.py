"""
Latency compensation.

Each device's commands are sent earlier by that device's own measured
latency so the visible change lands on the audio timestamp. Devices with
no profile get no compensation.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

import numpy as np

from aurora_sync.core.models import DeviceProfile, LightDevice


def compensation_for(profile: Optional[DeviceProfile]) -> float:
    """Milliseconds to send commands early."""
    if profile is None:
        return 0.0
    return max(0.0, float(profile.latency_ms))


def compensated_time(timestamp_s: float, compensation_ms: float) -> float:
    return max(0.0, timestamp_s - compensation_ms / 1000.0)


def analyze_synchronization(
    devices: Iterable[LightDevice],
    profiles: Mapping[str, DeviceProfile],
) -> Dict[str, Any]:
    """Spread of compensation across a device set."""
    compensation = {
        d.entity_id: compensation_for(profiles.get(d.entity_id)) for d in devices
    }
    profiled = [e for e in compensation if e in profiles]
    values = np.array(list(compensation.values()), dtype=np.float64)

    if values.size == 0:
        return {
            "devices": 0,
            "profiled": 0,
            "unprofiled": [],
            "min_compensation_ms": 0.0,
            "max_compensation_ms": 0.0,
            "avg_compensation_ms": 0.0,
            "spread_ms": 0.0,
            "compensation_ms": {},
        }

    return {
        "devices": len(compensation),
        "profiled": len(profiled),
        "unprofiled": sorted(e for e in compensation if e not in profiles),
        "min_compensation_ms": float(values.min()),
        "max_compensation_ms": float(values.max()),
        "avg_compensation_ms": round(float(values.mean()), 2),
        "spread_ms": float(values.max() - values.min()),
        "compensation_ms": compensation,
    }
