"""Light discovery and response profiling."""

from aurora_sync.devices.profiler import DeviceProfiler, needs_reprofiling
from aurora_sync.devices.scanner import DeviceScanner, ScanFilter

__all__ = ["DeviceProfiler", "DeviceScanner", "ScanFilter", "needs_reprofiling"]
