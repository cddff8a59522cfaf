"""
Command-Line Interface for Aurora Sync.

Provides commands for analyzing audio, discovering and profiling lights,
rendering timelines and playing them back.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, Tuple

import click
import structlog

from aurora_sync import __version__
from aurora_sync.core.config import Settings
from aurora_sync.core.exceptions import AuroraError, ConfigError
from aurora_sync.core.models import DeviceCapability
from aurora_sync.hass.client import HassClient, HomeAssistantAPI
from aurora_sync.hass.mock import demo_platform

logger = structlog.get_logger()

CAPABILITY_NAMES = {
    "color": DeviceCapability.COLOR,
    "color_temp": DeviceCapability.COLOR_TEMP,
    "brightness": DeviceCapability.BRIGHTNESS,
    "effects": DeviceCapability.EFFECTS,
}


@asynccontextmanager
async def connect(settings: Settings, mock: bool) -> AsyncIterator[HomeAssistantAPI]:
    """Yield the simulated platform (--mock) or a REST client."""
    if mock:
        yield demo_platform()
        return
    async with HassClient(settings.hass) as client:
        yield client


def _settings(ctx: click.Context) -> Settings:
    if ctx.obj["config_path"]:
        try:
            settings = Settings.from_yaml(ctx.obj["config_path"])
        except ConfigError as e:
            raise click.ClickException(e.message) from e
    else:
        settings = Settings()
    settings.debug = ctx.obj["debug"]
    return settings


def _run(ctx: click.Context, coro) -> None:
    """Run a coroutine, reporting AuroraError as a clean failure."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        click.echo("\nInterrupted.")
    except AuroraError as e:
        click.echo(f"Error: {e.message}", err=True)
        if ctx.obj["debug"]:
            raise
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool, config: Optional[str]) -> None:
    """
    Aurora Sync - music-synchronized lighting for home automation lights.

    Analyzes a track, measures how each light actually responds, renders a
    latency-compensated command timeline and plays it back in real time.
    """
    ctx.ensure_object(dict)

    # Configure logging
    log_level = logging.DEBUG if debug else logging.INFO
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
    )

    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config) if config else None


# =============================================================================
# Analysis
# =============================================================================


@cli.command()
@click.argument("source")
@click.option("--json", "as_json", is_flag=True, help="Print features as JSON")
@click.pass_context
def analyze(ctx: click.Context, source: str, as_json: bool) -> None:
    """Analyze an audio file or URL and display detected features."""
    from aurora_sync.audio.analyzer import AudioAnalyzer
    from aurora_sync.audio.loader import load_audio

    settings = _settings(ctx)

    async def _analyze() -> None:
        data = await load_audio(source, settings.audio)
        features = AudioAnalyzer(settings.audio).analyze(data, source=source)
        summary = {
            "duration": round(features.duration, 3),
            "sampleRate": features.sample_rate,
            "bpm": features.bpm,
            "beats": len(features.beats),
            "mood": features.mood.value,
            "energy": round(features.energy, 4),
            "slices": len(features.slices),
        }
        if as_json:
            click.echo(json.dumps(summary, indent=2))
            return
        click.echo(f"Duration: {summary['duration']:.2f}s @ {summary['sampleRate']} Hz")
        click.echo(f"Tempo:    {summary['bpm']:.1f} BPM ({summary['beats']} beats)")
        click.echo(f"Mood:     {summary['mood']} (energy {summary['energy']:.3f})")

    _run(ctx, _analyze())


# =============================================================================
# Devices
# =============================================================================


@cli.command()
@click.option("--mock", is_flag=True, help="Use the simulated light platform")
@click.option("--area", help="Only lights in this area")
@click.option(
    "--capability",
    type=click.Choice(sorted(CAPABILITY_NAMES)),
    help="Only lights with this capability",
)
@click.pass_context
def scan(ctx: click.Context, mock: bool, area: Optional[str], capability: Optional[str]) -> None:
    """Discover lights and show their capabilities."""
    from aurora_sync.devices.scanner import DeviceScanner, ScanFilter, scan_statistics

    settings = _settings(ctx)
    scan_filter = ScanFilter(
        capability=CAPABILITY_NAMES[capability] if capability else None,
        area=area,
    )

    async def _scan() -> None:
        async with connect(settings, mock) as hass:
            devices = await DeviceScanner(hass).scan(scan_filter)

        for device in devices:
            caps = [name for name, flag in CAPABILITY_NAMES.items() if device.capabilities & flag]
            click.echo(f"{device.entity_id:40s} {device.area or '-':15s} {', '.join(caps) or 'on/off'}")
        stats = scan_statistics(devices)
        click.echo(f"\n{stats['total']} lights ({stats['available']} available, {stats['areas']} areas)")

    _run(ctx, _scan())


@cli.command()
@click.argument("entity_ids", nargs=-1)
@click.option("--mock", is_flag=True, help="Use the simulated light platform")
@click.option("--iterations", "-n", type=int, help="Measurement rounds per metric")
@click.option("--stale-only", is_flag=True, help="Skip lights with a fresh profile")
@click.pass_context
def profile(
    ctx: click.Context,
    entity_ids: Tuple[str, ...],
    mock: bool,
    iterations: Optional[int],
    stale_only: bool,
) -> None:
    """Measure light response characteristics (all lights if none given)."""
    from aurora_sync.devices.profiler import DeviceProfiler, needs_reprofiling
    from aurora_sync.devices.scanner import DeviceScanner
    from aurora_sync.storage.store import ProfileStore

    settings = _settings(ctx)
    store = ProfileStore.from_config(settings.storage)

    async def _profile() -> None:
        async with connect(settings, mock) as hass:
            devices = await DeviceScanner(hass).scan()
            if entity_ids:
                devices = [d for d in devices if d.entity_id in entity_ids]
            profiler = DeviceProfiler(hass, settings.profiler)

            for device in devices:
                existing = store.load(device.entity_id)
                if stale_only and existing and not needs_reprofiling(
                    existing, settings.profiler.reprofile_interval_days
                ):
                    click.echo(f"{device.entity_id}: profile is fresh, skipping")
                    continue

                click.echo(f"Profiling {device.entity_id}...")
                try:
                    result = await profiler.profile(device, iterations)
                except AuroraError as e:
                    click.echo(f"  failed: {e.message}", err=True)
                    continue
                store.save(result)
                click.echo(
                    f"  latency {result.latency_ms:.0f} ms "
                    f"(±{result.response_time_consistency:.0f}), "
                    f"timeouts {result.timed_out_samples}"
                )

    _run(ctx, _profile())


# =============================================================================
# Timelines
# =============================================================================


@cli.command()
@click.argument("source")
@click.option("--mock", is_flag=True, help="Use the simulated light platform")
@click.option("--name", help="Timeline name")
@click.option("--intensity", type=click.FloatRange(0.0, 1.0), help="Effect intensity 0-1")
@click.option("--color-mapping", type=click.Choice(["frequency", "mood", "custom"]))
@click.option("--no-beat-sync", is_flag=True, help="Do not emphasize beats")
@click.option("--optimize", is_flag=True, help="Drop near-duplicate commands")
@click.option("--area", help="Only lights in this area")
@click.pass_context
def render(
    ctx: click.Context,
    source: str,
    mock: bool,
    name: Optional[str],
    intensity: Optional[float],
    color_mapping: Optional[str],
    no_beat_sync: bool,
    optimize: bool,
    area: Optional[str],
) -> None:
    """Render a light timeline for an audio file and store it."""
    from aurora_sync.audio.analyzer import AudioAnalyzer
    from aurora_sync.audio.loader import load_audio
    from aurora_sync.devices.scanner import DeviceScanner, ScanFilter
    from aurora_sync.rendering.timeline import TimelineGenerator, optimize_timeline, timeline_statistics
    from aurora_sync.storage.store import ProfileStore, TimelineStore

    settings = _settings(ctx)
    overrides = {}
    if intensity is not None:
        overrides["intensity"] = intensity
    if color_mapping:
        overrides["color_mapping"] = color_mapping
    if no_beat_sync:
        overrides["beat_sync"] = False
    render_settings = settings.render.model_copy(update=overrides)

    async def _render() -> None:
        data = await load_audio(source, settings.audio)
        features = AudioAnalyzer(settings.audio).analyze(data, source=source)

        async with connect(settings, mock) as hass:
            devices = await DeviceScanner(hass).scan(ScanFilter(area=area, available_only=True))
        if not devices:
            click.echo("No lights found.", err=True)
            sys.exit(1)

        profiles = ProfileStore.from_config(settings.storage).all()
        timeline = TimelineGenerator(render_settings).generate(
            features,
            devices,
            profiles,
            name=name or Path(source).stem,
            audio_file=source,
        )
        if optimize:
            timeline = optimize_timeline(timeline)
        TimelineStore.from_config(settings.storage).save(timeline)

        stats = timeline_statistics(timeline)
        click.echo(f"Timeline {timeline.id}: {stats['command_count']} commands on {stats['device_count']} lights")
        for entity_id, device_stats in stats["devices"].items():
            profiled = "" if entity_id in profiles else " (unprofiled)"
            click.echo(
                f"  {entity_id:40s} {device_stats['commands']:5d} commands, "
                f"compensation {device_stats['compensation_ms']:.0f} ms{profiled}"
            )

    _run(ctx, _render())


@cli.command()
@click.argument("timeline_id")
@click.option("--mock", is_flag=True, help="Use the simulated light platform")
@click.option("--start", "start_position", default=0.0, help="Start position in seconds")
@click.pass_context
def play(ctx: click.Context, timeline_id: str, mock: bool, start_position: float) -> None:
    """Play a stored timeline against the lights."""
    from aurora_sync.devices.scanner import DeviceScanner
    from aurora_sync.playback.sessions import SessionStore
    from aurora_sync.storage.store import TimelineStore

    settings = _settings(ctx)
    timeline = TimelineStore.from_config(settings.storage).load(timeline_id)
    if timeline is None:
        click.echo(f"Error: timeline {timeline_id} not found", err=True)
        sys.exit(1)

    async def _play() -> None:
        async with connect(settings, mock) as hass:
            devices = {d.entity_id: d for d in await DeviceScanner(hass).scan()}
            sessions = SessionStore(hass, settings.playback, devices=devices)
            result = sessions.play(timeline, position=start_position)
            if not result.success:
                click.echo(f"Error: {result.message}", err=True)
                sys.exit(1)

            scheduler = sessions.playbacks[result.data["session_id"]]
            click.echo(f"{result.message}. Press Ctrl+C to stop.")
            try:
                await scheduler.wait()
            finally:
                await sessions.stop_all()
                stats = scheduler.stats
                click.echo(
                    f"Dispatched {stats.dispatched}, failed {stats.failed}, "
                    f"timed out {stats.timed_out}, dropped {stats.dropped} "
                    f"(avg {stats.avg_latency_ms:.0f} ms)"
                )

    _run(ctx, _play())


@cli.group()
def timelines() -> None:
    """Manage stored timelines."""


@timelines.command("list")
@click.pass_context
def timelines_list(ctx: click.Context) -> None:
    """List stored timelines."""
    from aurora_sync.storage.store import TimelineStore

    settings = _settings(ctx)
    summaries = TimelineStore.from_config(settings.storage).list()
    if not summaries:
        click.echo("(no timelines)")
        return
    for s in summaries:
        click.echo(
            f"{s['id']}  {s['name'] or '':30s} {float(s['duration'] or 0):7.1f}s "
            f"{s['commandCount'] or 0:6d} commands  {s['devices']} lights"
        )


@timelines.command("export")
@click.argument("timeline_id")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write to file instead of stdout")
@click.pass_context
def timelines_export(ctx: click.Context, timeline_id: str, output: Optional[str]) -> None:
    """Export a stored timeline as JSON."""
    from aurora_sync.rendering.io import export_timeline
    from aurora_sync.storage.store import TimelineStore

    settings = _settings(ctx)
    timeline = TimelineStore.from_config(settings.storage).load(timeline_id)
    if timeline is None:
        click.echo(f"Error: timeline {timeline_id} not found", err=True)
        sys.exit(1)

    document = export_timeline(timeline)
    if output:
        Path(output).write_text(document + "\n", encoding="utf-8")
        click.echo(f"Exported {timeline_id} to {output}")
    else:
        click.echo(document)


@timelines.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def timelines_import(ctx: click.Context, path: str) -> None:
    """Validate and store a timeline JSON document."""
    from aurora_sync.rendering.io import import_timeline
    from aurora_sync.storage.store import TimelineStore

    settings = _settings(ctx)
    try:
        timeline = import_timeline(Path(path).read_text(encoding="utf-8"))
    except AuroraError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    TimelineStore.from_config(settings.storage).save(timeline)
    click.echo(f"Imported {timeline.id} ({timeline.command_count} commands)")


@timelines.command("delete")
@click.argument("timeline_id")
@click.pass_context
def timelines_delete(ctx: click.Context, timeline_id: str) -> None:
    """Delete a stored timeline."""
    from aurora_sync.storage.store import TimelineStore

    settings = _settings(ctx)
    if not TimelineStore.from_config(settings.storage).delete(timeline_id):
        click.echo(f"Error: timeline {timeline_id} not found", err=True)
        sys.exit(1)
    click.echo(f"Deleted {timeline_id}")


def main() -> None:
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
