"""Audio loading and feature extraction."""

from aurora_sync.audio.analyzer import AudioAnalyzer
from aurora_sync.audio.loader import decode_audio, load_audio

__all__ = ["AudioAnalyzer", "decode_audio", "load_audio"]
