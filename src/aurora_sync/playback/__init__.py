"""Real-time playback, looping animations and the session store."""

from aurora_sync.playback.input_source import InputSource
from aurora_sync.playback.scheduler import PlaybackScheduler
from aurora_sync.playback.sessions import SessionStore
from aurora_sync.playback.ticker import Ticker

__all__ = ["InputSource", "PlaybackScheduler", "SessionStore", "Ticker"]
