"""
JSON-file stores for timelines and device profiles.

One document per file, named after the timeline id or entity id. Writes go
through a temporary file and an atomic rename so a crash never leaves a
half-written document behind.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from aurora_sync.core.config import StorageConfig
from aurora_sync.core.exceptions import TimelineFormatError
from aurora_sync.core.models import DeviceProfile, Timeline
from aurora_sync.rendering.io import (
    profile_from_dict,
    profile_to_dict,
    timeline_from_dict,
    timeline_to_dict,
)

logger = structlog.get_logger()

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


def _file_name(key: str) -> str:
    safe = _UNSAFE.sub("_", key)
    if not safe or safe.startswith("."):
        raise ValueError(f"Unusable storage key: {key!r}")
    return f"{safe}.json"


def _write_json(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise TimelineFormatError(f"{path.name} is not valid JSON: {e}") from e


class TimelineStore:
    """Saved timelines under <data_dir>/timelines."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    @classmethod
    def from_config(cls, config: StorageConfig) -> "TimelineStore":
        return cls(config.timelines_dir)

    def path_for(self, timeline_id: str) -> Path:
        return self.directory / _file_name(timeline_id)

    def save(self, timeline: Timeline) -> Path:
        path = self.path_for(timeline.id)
        _write_json(path, timeline_to_dict(timeline))
        logger.info("Timeline saved", timeline_id=timeline.id, path=str(path))
        return path

    def load(self, timeline_id: str) -> Optional[Timeline]:
        path = self.path_for(timeline_id)
        if not path.exists():
            return None
        return timeline_from_dict(_read_json(path))

    def list(self) -> List[Dict[str, Any]]:
        """Summaries of stored timelines, newest first. Unreadable files are skipped."""
        summaries = []
        if not self.directory.exists():
            return summaries
        for path in self.directory.glob("*.json"):
            try:
                data = _read_json(path)
            except (OSError, TimelineFormatError) as e:
                logger.warning("Skipping unreadable timeline", path=str(path), error=str(e))
                continue
            if not isinstance(data, dict):
                continue
            summaries.append(
                {
                    "id": data.get("id"),
                    "name": data.get("name"),
                    "duration": data.get("duration"),
                    "createdAt": data.get("createdAt"),
                    "commandCount": (data.get("metadata") or {}).get("commandCount"),
                    "devices": len(data.get("tracks") or []),
                }
            )
        summaries.sort(key=lambda s: s.get("createdAt") or "", reverse=True)
        return summaries

    def delete(self, timeline_id: str) -> bool:
        path = self.path_for(timeline_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Timeline deleted", timeline_id=timeline_id)
        return True


class ProfileStore:
    """Device profiles under <data_dir>/profiles, one per entity."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    @classmethod
    def from_config(cls, config: StorageConfig) -> "ProfileStore":
        return cls(config.profiles_dir)

    def path_for(self, entity_id: str) -> Path:
        return self.directory / _file_name(entity_id)

    def save(self, profile: DeviceProfile) -> Path:
        """Store profile, replacing any earlier profile of the same device."""
        path = self.path_for(profile.entity_id)
        _write_json(path, profile_to_dict(profile))
        logger.info("Profile saved", entity_id=profile.entity_id, latency_ms=profile.latency_ms)
        return path

    def load(self, entity_id: str) -> Optional[DeviceProfile]:
        path = self.path_for(entity_id)
        if not path.exists():
            return None
        return profile_from_dict(_read_json(path))

    def all(self) -> Dict[str, DeviceProfile]:
        profiles: Dict[str, DeviceProfile] = {}
        if not self.directory.exists():
            return profiles
        for path in sorted(self.directory.glob("*.json")):
            try:
                profile = profile_from_dict(_read_json(path))
            except (OSError, TimelineFormatError) as e:
                logger.warning("Skipping unreadable profile", path=str(path), error=str(e))
                continue
            profiles[profile.entity_id] = profile
        return profiles
