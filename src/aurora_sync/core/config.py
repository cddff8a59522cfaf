"""
Configuration Management for Aurora Sync.

Uses Pydantic Settings for type-safe configuration with environment
variable support and YAML file loading.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings
import yaml

from aurora_sync.core.exceptions import ConfigError

ColorMapping = Literal["frequency", "mood", "custom"]
BrightnessMapping = Literal["amplitude", "energy", "beats"]


class HassConfig(BaseModel):
    """Home automation platform connection."""
    base_url: str = "http://homeassistant.local:8123"
    token: Optional[str] = None
    request_timeout_s: float = 10.0


class AudioConfig(BaseModel):
    """Audio loading and analysis configuration."""
    sample_rate: int = 44100
    fft_size: int = 2048
    hop_size: int = 512
    noise_floor: float = 0.01  # amplitude below this is silence
    max_bytes: int = 500 * 1024 * 1024
    download_chunk_bytes: int = 256 * 1024
    download_timeout_s: float = 60.0
    min_beat_interval_s: float = 0.3  # 200 BPM max
    beat_threshold_std: float = 1.5
    smoothing_window: int = 3


class ProfilerConfig(BaseModel):
    """Device profiling configuration."""
    iterations: int = 3
    poll_interval_s: float = 0.05
    state_timeout_s: float = 2.0  # also the worst-case latency sample
    settle_s: float = 0.5
    command_timeout_s: float = 5.0
    transition_durations_s: List[float] = Field(default=[0.5, 1.0, 2.0])
    brightness_sweep: List[int] = Field(default=[1, 64, 128, 192, 255])
    reference_colors: List[Tuple[int, int, int]] = Field(
        default=[
            (255, 0, 0),
            (0, 255, 0),
            (0, 0, 255),
            (255, 255, 0),
            (255, 0, 255),
            (0, 255, 255),
        ]
    )
    max_effects: int = 8
    reprofile_interval_days: float = 30.0


class ZoneSettings(BaseModel):
    """Per-area overrides applied while rendering."""
    intensity_multiplier: float = Field(default=1.0, ge=0.0)
    color_mapping: Optional[ColorMapping] = None
    delay_ms: float = Field(default=0.0, ge=0.0)


class RenderSettings(BaseModel):
    """Timeline rendering settings (also recorded in timeline metadata)."""
    intensity: float = Field(default=0.7, ge=0.0, le=1.0)
    color_mapping: ColorMapping = "frequency"
    brightness_mapping: BrightnessMapping = "energy"
    beat_sync: bool = True
    smooth_transitions: bool = True
    min_command_interval_ms: float = Field(default=50.0, ge=0.0)
    beat_flash_transition_ms: float = Field(default=50.0, ge=0.0)
    beat_tolerance_s: float = Field(default=0.05, ge=0.0)
    palette: List[Tuple[int, int, int]] = Field(default_factory=list)  # for "custom"
    zones: Dict[str, ZoneSettings] = Field(default_factory=dict)  # keyed by area


class PlaybackConfig(BaseModel):
    """Real-time playback scheduler configuration."""
    tick_interval_s: float = 0.01
    lookahead_s: float = 0.1
    max_queue_size: int = 1000  # per device
    max_concurrent_commands: int = 10
    command_timeout_s: float = 5.0


class StorageConfig(BaseModel):
    """On-disk timeline and profile storage."""
    data_dir: Path = Path.home() / ".aurora_sync"
    timelines_subdir: str = "timelines"
    profiles_subdir: str = "profiles"

    @property
    def timelines_dir(self) -> Path:
        return self.data_dir / self.timelines_subdir

    @property
    def profiles_dir(self) -> Path:
        return self.data_dir / self.profiles_subdir


class Settings(BaseSettings):
    """
    Main application settings.

    Can be configured via:
    - Environment variables (prefixed with AURORA_)
    - YAML config file
    - Direct instantiation
    """

    hass: HassConfig = Field(default_factory=HassConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    profiler: ProfilerConfig = Field(default_factory=ProfilerConfig)
    render: RenderSettings = Field(default_factory=RenderSettings)
    playback: PlaybackConfig = Field(default_factory=PlaybackConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    # Debug
    debug: bool = False
    log_level: str = "INFO"

    class Config:
        env_prefix = "AURORA_"
        env_nested_delimiter = "__"

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from a YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{path} is not valid YAML: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping of settings")
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid settings in {path}: {e}") from e

    def to_yaml(self, path: Path) -> None:
        """Save settings to a YAML file."""
        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)
