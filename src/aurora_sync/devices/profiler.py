"""
Device Profiler: measures real response characteristics of a light.

Each metric issues real commands and polls the reported state until it
matches the commanded target or a timeout elapses. A sample that times
out (or whose command fails) contributes the worst-case latency instead of
aborting the run; only an unreachable device fails the whole profile.
Metrics for capabilities the device lacks are left as None.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import structlog

from aurora_sync.core.config import ProfilerConfig
from aurora_sync.core.exceptions import DeviceNotFoundError, UpstreamError
from aurora_sync.core.models import (
    BrightnessSample,
    DeviceProfile,
    EffectPerformance,
    LightDevice,
)
from aurora_sync.devices import measurement
from aurora_sync.hass.client import EntityState, HomeAssistantAPI

logger = structlog.get_logger()

BRIGHTNESS_TOLERANCE = 3

StatePredicate = Callable[[EntityState], bool]


def needs_reprofiling(
    profile: DeviceProfile,
    interval_days: float,
    now: Optional[datetime] = None,
) -> bool:
    """True iff strictly more than interval_days have passed since calibration."""
    now = now or datetime.now(timezone.utc)
    return now - profile.last_calibrated > timedelta(days=interval_days)


def reported_rgb(state: EntityState) -> Optional[Tuple[int, int, int]]:
    attrs = state.get("attributes") or {}
    rgb = attrs.get("rgb_color")
    if rgb is not None and len(rgb) == 3:
        return int(rgb[0]), int(rgb[1]), int(rgb[2])
    hs = attrs.get("hs_color")
    if hs is not None and len(hs) == 2:
        return measurement.hs_to_rgb(float(hs[0]), float(hs[1]))
    return None


def reported_brightness(state: EntityState) -> Optional[float]:
    value = (state.get("attributes") or {}).get("brightness")
    return float(value) if value is not None else None


class DeviceProfiler:
    """Automated latency, transition, colour and brightness profiling."""

    def __init__(
        self,
        hass: HomeAssistantAPI,
        config: Optional[ProfilerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.hass = hass
        self.config = config or ProfilerConfig()
        self.clock = clock

    @property
    def worst_case_latency_ms(self) -> float:
        return self.config.state_timeout_s * 1000.0

    async def profile(self, device: LightDevice, iterations: Optional[int] = None) -> DeviceProfile:
        """Run every applicable measurement against device and build a profile."""
        iterations = max(1, iterations or self.config.iterations)
        entity_id = device.entity_id
        start_time = time.time()

        # Reachability: an unreachable platform/device fails the whole run.
        initial = await self.hass.read_state(entity_id)
        if initial is None:
            raise DeviceNotFoundError(entity_id)

        logger.info("Profiling device", entity_id=entity_id, iterations=iterations)

        latencies, timed_out = await self._measure_latency(device, iterations)

        min_transition = max_transition = None
        brightness_curve: Tuple[BrightnessSample, ...] = ()
        linearity = None
        if device.supports_brightness:
            min_transition, max_transition = await self._measure_transitions(device)
            brightness_curve = tuple(await self._measure_brightness_curve(device))
            linearity = measurement.brightness_linearity(brightness_curve)

        color_accuracy = None
        if device.supports_color:
            color_accuracy = await self._measure_color_accuracy(device)

        effects: Dict[str, EffectPerformance] = {}
        if device.supports_effects and device.effects:
            effects = await self._measure_effects(device, iterations)

        await self._restore(device, initial)

        profile = DeviceProfile(
            entity_id=entity_id,
            latency_ms=round(measurement.mean(latencies), 1),
            last_calibrated=datetime.now(timezone.utc),
            min_transition_ms=min_transition,
            max_transition_ms=max_transition,
            color_accuracy=color_accuracy,
            brightness_linearity=linearity,
            response_time_consistency=round(measurement.consistency(latencies), 2),
            peak_response_time_ms=measurement.percentile(latencies, 99),
            per_effect_performance=effects,
            brightness_curve=brightness_curve,
            calibration_method="auto",
            timed_out_samples=timed_out,
        )

        logger.info(
            "Device profiled",
            entity_id=entity_id,
            latency_ms=profile.latency_ms,
            consistency_ms=profile.response_time_consistency,
            timed_out=timed_out,
            elapsed_s=round(time.time() - start_time, 2),
        )
        return profile

    # ------------------------------------------------------------------
    # Measurements
    # ------------------------------------------------------------------

    async def _measure_latency(self, device: LightDevice, iterations: int) -> Tuple[List[float], int]:
        """Off -> on round trips; capped worst-case sample on timeout."""
        samples: List[float] = []
        timed_out = 0
        target: Dict[str, Any] = {"entity_id": device.entity_id}
        if device.supports_brightness:
            target["brightness"] = 255
            target["transition"] = 0

        def reached(state: EntityState) -> bool:
            if state.get("state") != "on":
                return False
            if "brightness" in target:
                level = reported_brightness(state)
                return level is None or abs(level - 255) <= BRIGHTNESS_TOLERANCE
            return True

        for _ in range(iterations):
            await self._invoke("turn_off", {"entity_id": device.entity_id})
            off_elapsed, _ = await self._wait_for(
                device.entity_id, lambda s: s.get("state") == "off", self.clock(), self.config.state_timeout_s
            )
            if off_elapsed is None:
                # still on, so the on transition below would be instant
                logger.warning(
                    "Device did not turn off",
                    entity_id=device.entity_id,
                    timeout_s=self.config.state_timeout_s,
                )
                samples.append(self.worst_case_latency_ms)
                timed_out += 1
                continue
            await self._settle()

            started = self.clock()
            if not await self._invoke("turn_on", dict(target)):
                samples.append(self.worst_case_latency_ms)
                timed_out += 1
                continue

            elapsed, _ = await self._wait_for(device.entity_id, reached, started, self.config.state_timeout_s)
            if elapsed is None:
                logger.warning(
                    "Device did not reach target state",
                    entity_id=device.entity_id,
                    timeout_s=self.config.state_timeout_s,
                )
                samples.append(self.worst_case_latency_ms)
                timed_out += 1
            else:
                samples.append(min(elapsed, self.worst_case_latency_ms))

        return samples, timed_out

    async def _measure_transitions(self, device: LightDevice) -> Tuple[Optional[float], Optional[float]]:
        """
        Fade from dim to full at each configured duration.

        The fastest completion bounds the shortest usable fade; the longest
        fade the device completed bounds the longest.
        """
        completions: List[float] = []
        honored: List[float] = []
        entity_id = device.entity_id

        for duration_s in self.config.transition_durations_s:
            await self._invoke("turn_on", {"entity_id": entity_id, "brightness": 1, "transition": 0})
            dimmed, _ = await self._wait_for(
                entity_id,
                lambda s: (reported_brightness(s) or 0) <= 1 + BRIGHTNESS_TOLERANCE,
                self.clock(),
                self.config.state_timeout_s,
            )
            if dimmed is None:
                logger.warning(
                    "Device did not dim, transition skipped",
                    entity_id=entity_id,
                    duration_s=duration_s,
                )
                continue
            await self._settle()

            started = self.clock()
            ok = await self._invoke(
                "turn_on", {"entity_id": entity_id, "brightness": 255, "transition": duration_s}
            )
            if not ok:
                continue
            elapsed, _ = await self._wait_for(
                entity_id,
                lambda s: (reported_brightness(s) or 0) >= 255 - BRIGHTNESS_TOLERANCE,
                started,
                duration_s + self.config.state_timeout_s,
            )
            if elapsed is None:
                logger.warning("Transition timed out", entity_id=entity_id, duration_s=duration_s)
                continue
            completions.append(elapsed)
            honored.append(duration_s * 1000.0)

        if not completions:
            return None, None
        return round(min(completions), 1), round(max(max(completions), max(honored)), 1)

    async def _measure_color_accuracy(self, device: LightDevice) -> Optional[float]:
        """Mean CIE76-based accuracy over the reference colours."""
        scores: List[float] = []
        entity_id = device.entity_id

        for color in self.config.reference_colors:
            commanded = tuple(int(c) for c in color)
            before = await self._read_quietly(entity_id)
            previous = reported_rgb(before) if before else None

            started = self.clock()
            if not await self._invoke(
                "turn_on", {"entity_id": entity_id, "rgb_color": list(commanded), "transition": 0}
            ):
                continue

            def settled(state: EntityState) -> bool:
                current = reported_rgb(state)
                return current is not None and (current == commanded or current != previous)

            _, state = await self._wait_for(entity_id, settled, started, self.config.state_timeout_s)
            current = reported_rgb(state) if state else None
            if current is None:
                continue
            scores.append(measurement.color_accuracy(commanded, current))

        if not scores:
            return None
        return round(measurement.mean(scores), 4)

    async def _measure_brightness_curve(self, device: LightDevice) -> List[BrightnessSample]:
        """Sweep commanded brightness and record what the device reports."""
        curve: List[BrightnessSample] = []
        entity_id = device.entity_id

        for level in self.config.brightness_sweep:
            before = await self._read_quietly(entity_id)
            previous = reported_brightness(before) if before else None

            started = self.clock()
            if not await self._invoke(
                "turn_on", {"entity_id": entity_id, "brightness": level, "transition": 0}
            ):
                continue

            def settled(state: EntityState, level: int = level) -> bool:
                current = reported_brightness(state)
                if current is None:
                    return False
                return abs(current - level) <= BRIGHTNESS_TOLERANCE or current != previous

            _, state = await self._wait_for(entity_id, settled, started, self.config.state_timeout_s)
            current = reported_brightness(state) if state else None
            if current is not None:
                curve.append(BrightnessSample(input=int(level), output=current))
        return curve

    async def _measure_effects(self, device: LightDevice, iterations: int) -> Dict[str, EffectPerformance]:
        results: Dict[str, EffectPerformance] = {}
        rounds = min(iterations, 2)

        for effect in device.effects[: self.config.max_effects]:
            samples: List[float] = []
            for _ in range(rounds):
                await self._invoke("turn_on", {"entity_id": device.entity_id, "effect": "none"})
                await self._wait_for(
                    device.entity_id,
                    lambda s: (s.get("attributes") or {}).get("effect") in (None, "none"),
                    self.clock(),
                    self.config.state_timeout_s,
                )
                started = self.clock()
                if not await self._invoke("turn_on", {"entity_id": device.entity_id, "effect": effect}):
                    continue
                elapsed, _ = await self._wait_for(
                    device.entity_id,
                    lambda s, e=effect: (s.get("attributes") or {}).get("effect") == e,
                    started,
                    self.config.state_timeout_s,
                )
                if elapsed is not None:
                    samples.append(elapsed)

            if samples:
                results[effect] = EffectPerformance(
                    supported=True,
                    response_time_ms=round(measurement.mean(samples), 1),
                    smoothness=round(measurement.smoothness(samples), 3),
                )
            else:
                results[effect] = EffectPerformance(supported=False)
        return results

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _invoke(self, service: str, payload: Dict[str, Any]) -> bool:
        """Invoke a light service; False when it failed or timed out."""
        try:
            await asyncio.wait_for(
                self.hass.invoke_service("light", service, payload),
                timeout=self.config.command_timeout_s,
            )
            return True
        except asyncio.TimeoutError:
            logger.warning(
                "Profiling command timed out",
                entity_id=payload.get("entity_id"),
                service=service,
            )
        except UpstreamError as e:
            logger.warning(
                "Profiling command failed",
                entity_id=payload.get("entity_id"),
                service=service,
                error=e.message,
            )
        return False

    async def _read_quietly(self, entity_id: str) -> Optional[EntityState]:
        try:
            return await self.hass.read_state(entity_id)
        except UpstreamError as e:
            logger.debug("State poll failed", entity_id=entity_id, error=e.message)
            return None

    async def _wait_for(
        self,
        entity_id: str,
        predicate: StatePredicate,
        started: float,
        timeout_s: float,
    ) -> Tuple[Optional[float], Optional[EntityState]]:
        """
        Poll until predicate holds.

        Returns (elapsed ms since started, state) or (None, last state seen).
        """
        last: Optional[EntityState] = None
        while True:
            state = await self._read_quietly(entity_id)
            if state is not None:
                last = state
                if predicate(state):
                    return (self.clock() - started) * 1000.0, state
            if self.clock() - started >= timeout_s:
                return None, last
            await asyncio.sleep(self.config.poll_interval_s)

    async def _settle(self) -> None:
        if self.config.settle_s > 0:
            await asyncio.sleep(self.config.settle_s)

    async def _restore(self, device: LightDevice, initial: EntityState) -> None:
        if initial.get("state") == "off":
            await self._invoke("turn_off", {"entity_id": device.entity_id})
