from datetime import datetime, timedelta, timezone

import pytest

from aurora_sync.core.config import ProfilerConfig
from aurora_sync.core.exceptions import DeviceNotFoundError, UpstreamError
from aurora_sync.core.models import DeviceProfile, LightDevice
from aurora_sync.devices.profiler import DeviceProfiler, needs_reprofiling, reported_rgb
from aurora_sync.devices.scanner import DeviceScanner
from aurora_sync.hass.mock import MockHomeAssistant, MockLight

FAST = ProfilerConfig(
    iterations=2,
    poll_interval_s=0.005,
    state_timeout_s=0.1,
    settle_s=0.0,
    command_timeout_s=0.5,
    transition_durations_s=[0.05, 0.1],
    brightness_sweep=[1, 128, 255],
    reference_colors=[(255, 0, 0), (0, 0, 255)],
)


async def _device(hass: MockHomeAssistant, entity_id: str) -> LightDevice:
    device = await DeviceScanner(hass).get_device(entity_id)
    assert device is not None
    return device


@pytest.mark.asyncio
async def test_responsive_color_light_is_fully_profiled() -> None:
    hass = MockHomeAssistant([MockLight("light.strip", latency_s=0.01, effects=["colorloop"])])
    device = await _device(hass, "light.strip")

    profile = await DeviceProfiler(hass, FAST).profile(device)

    assert 0.0 < profile.latency_ms < 100.0
    assert profile.timed_out_samples == 0
    assert profile.color_accuracy is not None and profile.color_accuracy > 0.99
    assert profile.brightness_linearity is not None and profile.brightness_linearity > 0.99
    assert [s.input for s in profile.brightness_curve] == [1, 128, 255]
    assert profile.min_transition_ms is not None and profile.max_transition_ms is not None
    assert profile.min_transition_ms <= profile.max_transition_ms
    assert profile.max_transition_ms >= 100.0
    assert profile.per_effect_performance["colorloop"].supported
    assert profile.peak_response_time_ms is not None
    assert profile.calibration_method == "auto"


@pytest.mark.asyncio
async def test_skewed_color_and_gamma_lower_the_scores() -> None:
    hass = MockHomeAssistant(
        [MockLight("light.cheap", latency_s=0.01, color_skew=0.4, brightness_gamma=2.2)]
    )
    device = await _device(hass, "light.cheap")

    profile = await DeviceProfiler(hass, FAST).profile(device)

    assert profile.color_accuracy is not None and profile.color_accuracy < 0.95
    assert profile.brightness_linearity is not None and profile.brightness_linearity < 0.99


@pytest.mark.asyncio
async def test_unresponsive_light_records_worst_case_latency() -> None:
    hass = MockHomeAssistant([MockLight("light.dead", color_modes=["onoff"], responsive=False)])
    device = await _device(hass, "light.dead")

    profiler = DeviceProfiler(hass, FAST)
    profile = await profiler.profile(device)

    assert profiler.worst_case_latency_ms == 100.0
    assert profile.latency_ms == 100.0
    assert profile.timed_out_samples == 2
    assert profile.response_time_consistency == 0.0


@pytest.mark.asyncio
async def test_unresponsive_light_that_starts_on_is_not_measured_as_instant() -> None:
    stuck = MockLight(
        "light.stuck",
        color_modes=["brightness"],
        responsive=False,
        state="on",
        attributes={"brightness": 255},
    )
    hass = MockHomeAssistant([stuck])
    device = await _device(hass, "light.stuck")

    profile = await DeviceProfiler(hass, FAST).profile(device)

    assert profile.latency_ms == 100.0
    assert profile.timed_out_samples == 2
    assert profile.min_transition_ms is None
    assert profile.max_transition_ms is None
    assert stuck.state == "on"


@pytest.mark.asyncio
async def test_missing_capabilities_leave_metrics_unset() -> None:
    hass = MockHomeAssistant([MockLight("light.plain", color_modes=["onoff"], latency_s=0.01)])
    device = await _device(hass, "light.plain")

    profile = await DeviceProfiler(hass, FAST).profile(device)

    assert profile.color_accuracy is None
    assert profile.brightness_linearity is None
    assert profile.min_transition_ms is None
    assert profile.max_transition_ms is None
    assert profile.per_effect_performance == {}
    assert profile.timed_out_samples == 0


@pytest.mark.asyncio
async def test_failing_commands_degrade_instead_of_aborting() -> None:
    hass = MockHomeAssistant([MockLight("light.flaky", color_modes=["onoff"])])
    hass.failing_entities.add("light.flaky")
    device = await _device(hass, "light.flaky")

    profile = await DeviceProfiler(hass, FAST).profile(device)

    assert profile.latency_ms == 100.0
    assert profile.timed_out_samples == 2


@pytest.mark.asyncio
async def test_unreachable_platform_fails_the_profile() -> None:
    hass = MockHomeAssistant([MockLight("light.strip")])
    device = await _device(hass, "light.strip")
    hass.reachable = False

    with pytest.raises(UpstreamError):
        await DeviceProfiler(hass, FAST).profile(device)


@pytest.mark.asyncio
async def test_unknown_entity_is_not_found() -> None:
    hass = MockHomeAssistant()

    with pytest.raises(DeviceNotFoundError):
        await DeviceProfiler(hass, FAST).profile(LightDevice("light.ghost", "Ghost"))


@pytest.mark.asyncio
async def test_light_left_off_after_profiling_if_it_started_off() -> None:
    light = MockLight("light.strip", latency_s=0.0)
    hass = MockHomeAssistant([light])
    device = await _device(hass, "light.strip")

    await DeviceProfiler(hass, FAST).profile(device, iterations=1)

    assert light.state == "off"
    assert hass.calls[-1].service == "turn_off"


def test_reprofiling_boundary_is_strict() -> None:
    calibrated = datetime(2024, 1, 1, tzinfo=timezone.utc)
    profile = DeviceProfile("light.a", latency_ms=50.0, last_calibrated=calibrated)

    assert not needs_reprofiling(profile, 30, now=calibrated + timedelta(days=30))
    assert needs_reprofiling(profile, 30, now=calibrated + timedelta(days=30, seconds=1))


def test_reported_rgb_falls_back_to_hs_color() -> None:
    assert reported_rgb({"attributes": {"rgb_color": [1, 2, 3]}}) == (1, 2, 3)
    assert reported_rgb({"attributes": {"hs_color": [240.0, 100.0]}}) == (0, 0, 255)
    assert reported_rgb({"attributes": {}}) is None


def test_profile_rejects_out_of_range_metrics() -> None:
    with pytest.raises(ValueError):
        DeviceProfile("light.a", latency_ms=-1.0, last_calibrated=datetime.now(timezone.utc))
    with pytest.raises(ValueError):
        DeviceProfile(
            "light.a",
            latency_ms=1.0,
            last_calibrated=datetime.now(timezone.utc),
            color_accuracy=1.5,
        )
