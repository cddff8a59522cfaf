"""On-disk timeline and profile storage."""

from aurora_sync.storage.store import ProfileStore, TimelineStore

__all__ = ["ProfileStore", "TimelineStore"]
