import asyncio

import pytest

from aurora_sync.core.config import PlaybackConfig
from aurora_sync.core.exceptions import CapabilityMismatch, InvalidTransitionError
from aurora_sync.core.models import (
    Command,
    CommandType,
    DeviceCapability,
    LightDevice,
    PlaybackStatus,
)
from aurora_sync.hass.mock import MockHomeAssistant, MockLight
from aurora_sync.playback.scheduler import PlaybackScheduler, service_call

from conftest import RGB_LIGHT, SWITCH_LIGHT, FakeClock, make_timeline, make_track

TENTHS = [round(i * 0.1, 1) for i in range(10)]


def _hass(*entity_ids: str, **kwargs) -> MockHomeAssistant:
    return MockHomeAssistant([MockLight(e, latency_s=0.0) for e in entity_ids], **kwargs)


def _sent(hass: MockHomeAssistant, entity_id: str) -> list[int]:
    return [c.payload["brightness"] for c in hass.calls_for(entity_id)]


async def _advance(scheduler: PlaybackScheduler, clock: FakeClock, seconds: float, step: float = 0.01) -> None:
    for _ in range(int(round(seconds / step))):
        clock.advance(step)
        await scheduler.tick()
        await scheduler.drain()


@pytest.mark.asyncio
async def test_plays_every_command_once_and_finishes(clock: FakeClock) -> None:
    hass = _hass("light.a")
    scheduler = PlaybackScheduler(hass, clock=clock, auto_tick=False)

    scheduler.play(make_timeline([make_track("light.a", TENTHS)], duration=1.0))
    await scheduler.tick()
    await _advance(scheduler, clock, 1.1)

    assert _sent(hass, "light.a") == [100 + i for i in range(10)]
    assert scheduler.stats.dispatched == 10
    assert scheduler.status is PlaybackStatus.STOPPED
    assert scheduler.position == 1.0
    await asyncio.wait_for(scheduler.wait(), timeout=1.0)


@pytest.mark.asyncio
async def test_pause_and_resume_never_double_dispatch(clock: FakeClock) -> None:
    hass = _hass("light.a")
    scheduler = PlaybackScheduler(hass, clock=clock, auto_tick=False)
    scheduler.play(make_timeline([make_track("light.a", TENTHS)], duration=1.0))

    await _advance(scheduler, clock, 0.45)
    scheduler.pause()
    sent_before_pause = len(hass.calls)
    paused_at = scheduler.position

    clock.advance(5.0)
    await scheduler.tick()
    await scheduler.drain()

    assert len(hass.calls) == sent_before_pause
    assert scheduler.position == pytest.approx(paused_at)

    scheduler.resume()
    assert scheduler.position == pytest.approx(paused_at)
    await _advance(scheduler, clock, 0.7)

    sent = _sent(hass, "light.a")
    assert sorted(sent) == [100 + i for i in range(10)]
    assert len(set(sent)) == len(sent)


@pytest.mark.asyncio
async def test_full_device_queue_drops_commands(clock: FakeClock) -> None:
    hass = _hass("light.a")
    config = PlaybackConfig(max_queue_size=3)
    scheduler = PlaybackScheduler(hass, config, clock=clock, auto_tick=False)
    scheduler.play(make_timeline([make_track("light.a", [0.0] * 10)], duration=1.0))

    await scheduler.tick()
    assert scheduler.queue_depths()["light.a"] <= 3
    await _advance(scheduler, clock, 0.2)

    assert scheduler.stats.dropped == 7
    assert scheduler.stats.queued == 3
    assert scheduler.stats.dispatched == 3


@pytest.mark.asyncio
async def test_seek_forward_skips_intermediate_commands(clock: FakeClock) -> None:
    hass = _hass("light.a")
    scheduler = PlaybackScheduler(hass, clock=clock, auto_tick=False)
    scheduler.play(make_timeline([make_track("light.a", TENTHS)], duration=1.0))

    await scheduler.tick()
    await scheduler.drain()
    scheduler.seek(0.55)
    await _advance(scheduler, clock, 0.6)

    assert _sent(hass, "light.a") == [100, 106, 107, 108, 109]


@pytest.mark.asyncio
async def test_seek_backward_replays(clock: FakeClock) -> None:
    hass = _hass("light.a")
    scheduler = PlaybackScheduler(hass, clock=clock, auto_tick=False)
    scheduler.play(make_timeline([make_track("light.a", TENTHS)], duration=1.0))

    await _advance(scheduler, clock, 0.6)
    scheduler.seek(0.2)
    await _advance(scheduler, clock, 0.9)

    sent = _sent(hass, "light.a")
    assert sent.count(102) == 2
    assert sent.count(100) == 1
    assert sent[-1] == 109


@pytest.mark.asyncio
async def test_seek_while_paused_stays_paused(clock: FakeClock) -> None:
    scheduler = PlaybackScheduler(_hass("light.a"), clock=clock, auto_tick=False)
    scheduler.play(make_timeline([make_track("light.a", TENTHS)], duration=1.0))
    scheduler.pause()

    scheduler.seek(0.7)

    assert scheduler.status is PlaybackStatus.PAUSED
    assert scheduler.position == 0.7


@pytest.mark.asyncio
async def test_stop_discards_late_results_and_dispatches_nothing_more(clock: FakeClock) -> None:
    hass = _hass("light.a")
    hass.slow_entities["light.a"] = 0.1
    scheduler = PlaybackScheduler(hass, clock=clock, auto_tick=False)
    scheduler.play(make_timeline([make_track("light.a", TENTHS)], duration=1.0))

    await scheduler.tick()
    await asyncio.sleep(0)
    assert scheduler.in_flight == 1

    await scheduler.stop()
    await asyncio.sleep(0.2)
    clock.advance(0.5)
    await scheduler.tick()

    assert len(hass.calls) == 1
    assert scheduler.stats.dispatched == 0
    assert scheduler.stats.discarded == 1
    assert scheduler.status is PlaybackStatus.STOPPED


@pytest.mark.asyncio
async def test_timeouts_and_failures_do_not_block_other_devices(clock: FakeClock) -> None:
    hass = _hass("light.ok", "light.slow", "light.bad")
    hass.slow_entities["light.slow"] = 0.2
    hass.failing_entities.add("light.bad")
    config = PlaybackConfig(command_timeout_s=0.05)
    scheduler = PlaybackScheduler(hass, config, clock=clock, auto_tick=False)
    scheduler.play(
        make_timeline(
            [make_track("light.ok", [0.0]), make_track("light.slow", [0.0]), make_track("light.bad", [0.0])],
            duration=1.0,
        )
    )

    await scheduler.tick()
    await scheduler.drain()

    assert scheduler.stats.dispatched == 1
    assert scheduler.stats.timed_out == 1
    assert scheduler.stats.failed == 1
    assert scheduler.in_flight == 0


@pytest.mark.asyncio
async def test_concurrency_is_bounded(clock: FakeClock) -> None:
    ids = [f"light.l{i}" for i in range(4)]
    hass = _hass(*ids, invoke_delay_s=0.05)
    config = PlaybackConfig(max_concurrent_commands=2)
    scheduler = PlaybackScheduler(hass, config, clock=clock, auto_tick=False)
    scheduler.play(make_timeline([make_track(e, [0.0]) for e in ids], duration=1.0))

    await scheduler.tick()
    assert scheduler.in_flight == 2
    await scheduler.drain()
    await scheduler.tick()
    await scheduler.drain()

    assert scheduler.stats.dispatched == 4


@pytest.mark.asyncio
async def test_capability_mismatch_is_skipped(clock: FakeClock) -> None:
    hass = _hass("light.switch")
    scheduler = PlaybackScheduler(
        hass, devices={SWITCH_LIGHT.entity_id: SWITCH_LIGHT}, clock=clock, auto_tick=False
    )
    scheduler.play(make_timeline([make_track("light.switch", [0.0, 0.05])], duration=1.0))

    await _advance(scheduler, clock, 0.1)

    assert hass.calls == []
    assert scheduler.stats.capability_skipped == 2


@pytest.mark.asyncio
async def test_compensated_track_is_sent_earlier(clock: FakeClock) -> None:
    hass = _hass("light.fast", "light.laggy")
    scheduler = PlaybackScheduler(hass, clock=clock, auto_tick=False)
    scheduler.play(
        make_timeline(
            [make_track("light.fast", [0.5]), make_track("light.laggy", [0.5], compensation_ms=300.0)],
            duration=1.0,
        )
    )

    await _advance(scheduler, clock, 0.15)
    assert hass.calls_for("light.laggy") == []

    await _advance(scheduler, clock, 0.1)

    assert len(hass.calls_for("light.laggy")) == 1
    assert hass.calls_for("light.fast") == []


@pytest.mark.asyncio
async def test_staged_commands_wait_for_their_dispatch_time(clock: FakeClock) -> None:
    hass = _hass("light.a")
    scheduler = PlaybackScheduler(hass, clock=clock, auto_tick=False)
    scheduler.play(make_timeline([make_track("light.a", [0.5])], duration=1.0))

    clock.advance(0.41)
    await scheduler.tick()
    await scheduler.drain()

    assert scheduler.queue_depths()["light.a"] == 1
    assert hass.calls == []

    clock.advance(0.1)
    await scheduler.tick()
    await scheduler.drain()

    assert _sent(hass, "light.a") == [100]
    assert scheduler.queue_depths()["light.a"] == 0


@pytest.mark.asyncio
async def test_invalid_transitions_are_rejected(clock: FakeClock) -> None:
    scheduler = PlaybackScheduler(_hass("light.a"), clock=clock, auto_tick=False)
    timeline = make_timeline([make_track("light.a", TENTHS)], duration=1.0)

    with pytest.raises(InvalidTransitionError):
        scheduler.pause()
    with pytest.raises(InvalidTransitionError):
        scheduler.seek(0.5)

    scheduler.play(timeline)
    with pytest.raises(InvalidTransitionError):
        scheduler.play(timeline)
    with pytest.raises(InvalidTransitionError):
        scheduler.resume()

    await scheduler.stop()
    with pytest.raises(InvalidTransitionError):
        await scheduler.stop()
    with pytest.raises(InvalidTransitionError):
        scheduler.resume()


@pytest.mark.asyncio
async def test_start_position_is_clamped_and_positions_cursors(clock: FakeClock) -> None:
    hass = _hass("light.a")
    scheduler = PlaybackScheduler(hass, clock=clock, auto_tick=False)

    scheduler.play(make_timeline([make_track("light.a", TENTHS)], duration=1.0), start_position=0.75)
    await _advance(scheduler, clock, 0.4)

    assert _sent(hass, "light.a") == [108, 109]

    other = PlaybackScheduler(_hass("light.a"), clock=clock, auto_tick=False)
    other.play(make_timeline([make_track("light.a", TENTHS)], duration=1.0), start_position=50.0)
    assert other.position == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_auto_tick_plays_to_completion() -> None:
    hass = _hass("light.a")
    scheduler = PlaybackScheduler(hass, PlaybackConfig(tick_interval_s=0.01))

    scheduler.play(make_timeline([make_track("light.a", [0.0, 0.05, 0.1])], duration=0.15))
    await asyncio.wait_for(scheduler.wait(), timeout=2.0)

    assert _sent(hass, "light.a") == [100, 101, 102]
    assert scheduler.status is PlaybackStatus.STOPPED


def test_service_call_translation() -> None:
    command = Command(0.0, CommandType.SET_COLOR, {"rgb_color": (1, 2, 3), "brightness": 10}, transition_ms=250.0)

    service, payload = service_call("light.strip", command, RGB_LIGHT)

    assert service == "turn_on"
    assert payload == {"entity_id": "light.strip", "transition": 0.25, "rgb_color": [1, 2, 3], "brightness": 10}
    assert service_call("light.x", Command(0.0, CommandType.TURN_OFF, {})) == ("turn_off", {"entity_id": "light.x"})


def test_service_call_strips_unsupported_payload_keys() -> None:
    command = Command(0.0, CommandType.TURN_ON, {"brightness": 10})

    assert service_call("light.switch", command, SWITCH_LIGHT) == ("turn_on", {"entity_id": "light.switch"})


def test_service_call_rejects_unsupported_commands() -> None:
    effects_light = LightDevice(
        "light.fx", "FX", capabilities=DeviceCapability.EFFECTS, effects=("colorloop",)
    )

    with pytest.raises(CapabilityMismatch):
        service_call("light.switch", Command(0.0, CommandType.SET_COLOR, {"rgb_color": [1, 1, 1]}), SWITCH_LIGHT)
    with pytest.raises(CapabilityMismatch):
        service_call("light.fx", Command(0.0, CommandType.SET_EFFECT, {"effect": "strobe"}), effects_light)
    assert service_call("light.fx", Command(0.0, CommandType.SET_EFFECT, {"effect": "colorloop"}), effects_light)[1][
        "effect"
    ] == "colorloop"
