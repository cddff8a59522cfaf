"""
Aurora Sync: music-synchronized lighting for home automation lights.

Analyzes a track, profiles how each light actually responds, renders a
latency-compensated command timeline and plays it back in real time.
"""

__version__ = "0.1.0"
__author__ = "Aurora Sync Team"

from aurora_sync.core.config import RenderSettings, Settings
from aurora_sync.core.models import AudioFeatures, DeviceProfile, LightDevice, Timeline

__all__ = [
    "AudioFeatures",
    "DeviceProfile",
    "LightDevice",
    "RenderSettings",
    "Settings",
    "Timeline",
    "__version__",
]
