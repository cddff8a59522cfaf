"""
Audio Analyzer: band energies, beats, tempo and mood from an audio file.

The waveform is cut into overlapping Hann-windowed frames (hop < FFT
size). Each frame yields bass/mid/treble energy and overall amplitude.
Beats are peaks librosa picks from its spectral-flux onset envelope; tempo
is the modal spacing between beats, so a handful of irregular peaks (e.g. a
clipped intro) does not drag the estimate.
"""

from __future__ import annotations

import math
import time
from typing import Optional

import librosa
import numpy as np
import structlog
from numpy.typing import NDArray

from aurora_sync.audio.loader import decode_audio, resample_linear
from aurora_sync.core.config import AudioConfig
from aurora_sync.core.exceptions import AudioTooLargeError, InputError
from aurora_sync.core.models import AudioFeatures, FrequencySlice, Mood

logger = structlog.get_logger()

BASS_BAND = (20.0, 250.0)
MID_BAND = (250.0, 4000.0)
TREBLE_BAND = (4000.0, 20000.0)

MIN_BPM = 60.0
MAX_BPM = 200.0

# floor for the peak-picking threshold on the normalized onset envelope
MIN_ONSET_DELTA = 0.07

# frames per FFT batch, bounds peak memory on long tracks
FRAME_BATCH = 512


class AudioAnalyzer:
    """
    Extracts AudioFeatures from audio bytes.

    Features extracted per frame:
    - Bass/mid/treble energy (sine-amplitude scale, 0-1)
    - Overall amplitude (frame RMS on the same scale)
    - Dominant frequency
    and per track: beat timestamps, tempo, mood and mean energy.
    """

    def __init__(self, config: Optional[AudioConfig] = None):
        self.config = config or AudioConfig()

    def analyze(
        self,
        audio_bytes: bytes,
        sample_rate: Optional[int] = None,
        fft_size: Optional[int] = None,
        source: str = "<bytes>",
    ) -> AudioFeatures:
        """Decode audio_bytes and analyze it at sample_rate (resampling if needed)."""
        if len(audio_bytes) > self.config.max_bytes:
            raise AudioTooLargeError(source, self.config.max_bytes, len(audio_bytes))

        samples, native_rate = decode_audio(audio_bytes, source)
        target_rate = sample_rate or native_rate
        if target_rate != native_rate:
            samples = resample_linear(samples, native_rate, target_rate)
        return self.analyze_samples(samples, target_rate, fft_size)

    def analyze_samples(
        self,
        samples: NDArray[np.float32],
        sample_rate: int,
        fft_size: Optional[int] = None,
    ) -> AudioFeatures:
        """Analyze mono PCM samples in [-1, 1]."""
        fft_size = fft_size or self.config.fft_size
        hop_size = self.config.hop_size
        if fft_size <= 0 or sample_rate <= 0:
            raise InputError(f"Invalid analysis parameters: fft_size={fft_size}, sample_rate={sample_rate}")
        if hop_size >= fft_size:
            hop_size = max(1, fft_size // 4)

        y = np.asarray(samples, dtype=np.float32)
        if y.ndim != 1:
            raise InputError(f"Expected mono samples, got array of shape {y.shape}")

        start_time = time.time()
        duration = y.size / sample_rate
        logger.info("Starting audio analysis", duration_s=round(duration, 2), sample_rate=sample_rate)

        slices = self._analyze_frequencies(y, sample_rate, fft_size, hop_size)
        hop_seconds = hop_size / sample_rate
        beats = self._detect_beats(y, sample_rate, fft_size, hop_size)
        bpm = self._estimate_tempo(beats, hop_seconds)
        energy = float(np.mean([s.amplitude for s in slices])) if slices else 0.0
        mood = self._classify_mood(slices, energy, bpm)

        logger.info(
            "Audio analysis complete",
            bpm=round(bpm, 1),
            beats=len(beats),
            mood=mood.value,
            energy=round(energy, 3),
            elapsed_s=round(time.time() - start_time, 3),
        )

        return AudioFeatures(
            duration=duration,
            sample_rate=sample_rate,
            hop_seconds=hop_seconds,
            slices=tuple(slices),
            bpm=bpm,
            beats=tuple(beats),
            mood=mood,
            energy=energy,
        )

    def _analyze_frequencies(
        self, y: NDArray[np.float32], sr: int, fft_size: int, hop_size: int
    ) -> list[FrequencySlice]:
        """Windowed FFT over overlapping frames."""
        if y.size < fft_size:
            y = np.pad(y, (0, fft_size - y.size))

        frames = np.lib.stride_tricks.sliding_window_view(y, fft_size)[::hop_size]
        window = np.hanning(fft_size).astype(np.float32)
        # scales band power so a full-scale sine reads ~1.0
        power_norm = 2.0 / (fft_size * float(np.sum(window**2)))

        freqs = np.fft.rfftfreq(fft_size, d=1.0 / sr)
        bands = [
            (freqs >= lo) & (freqs < hi) for lo, hi in (BASS_BAND, MID_BAND, TREBLE_BAND)
        ]

        slices: list[FrequencySlice] = []
        for start in range(0, frames.shape[0], FRAME_BATCH):
            batch = frames[start : start + FRAME_BATCH]
            spectrum = np.abs(np.fft.rfft(batch * window, axis=1)) ** 2
            band_levels = [
                np.sqrt(2.0 * power_norm * spectrum[:, mask].sum(axis=1)) for mask in bands
            ]
            rms = np.sqrt(np.mean(batch.astype(np.float64) ** 2, axis=1))
            amplitudes = np.minimum(1.0, rms * math.sqrt(2.0))
            dominant = freqs[np.argmax(spectrum, axis=1)]

            for i in range(batch.shape[0]):
                frame_index = start + i
                timestamp = frame_index * hop_size / sr
                amplitude = float(amplitudes[i])
                if amplitude < self.config.noise_floor:
                    slices.append(FrequencySlice(timestamp, 0.0, 0.0, 0.0, 0.0, 0.0))
                    continue
                slices.append(
                    FrequencySlice(
                        timestamp=timestamp,
                        bass=min(1.0, float(band_levels[0][i])),
                        mid=min(1.0, float(band_levels[1][i])),
                        treble=min(1.0, float(band_levels[2][i])),
                        amplitude=amplitude,
                        dominant_frequency=float(dominant[i]),
                    )
                )
        return slices

    def onset_strength(
        self, y: NDArray[np.float32], sr: int, fft_size: int, hop_size: int
    ) -> NDArray[np.float64]:
        """
        Spectral-flux onset envelope, one value per hop, scaled to peak at 1.

        Frames whose RMS falls under the noise floor contribute nothing, so
        dither in a silent passage cannot produce beats.
        """
        if y.size < fft_size:
            y = np.pad(y, (0, fft_size - y.size))
        if not np.any(y):
            return np.zeros(1 + y.size // hop_size)

        onset = librosa.onset.onset_strength(y=y, sr=sr, n_fft=fft_size, hop_length=hop_size)
        rms = librosa.feature.rms(y=y, frame_length=fft_size, hop_length=hop_size)[0]
        frames = min(onset.size, rms.size)
        onset = onset[:frames].astype(np.float64)
        onset[rms[:frames] * math.sqrt(2.0) < self.config.noise_floor] = 0.0

        width = max(1, self.config.smoothing_window)
        if width > 1:
            onset = np.convolve(onset, np.ones(width) / width, mode="same")

        peak = float(np.max(onset)) if onset.size else 0.0
        if peak > 0:
            onset /= peak
        return onset

    def _detect_beats(
        self, y: NDArray[np.float32], sr: int, fft_size: int, hop_size: int
    ) -> list[float]:
        """Peak picking over the onset envelope with an adaptive threshold."""
        onset = self.onset_strength(y, sr, fft_size, hop_size)
        if onset.size < 3 or not np.any(onset > 0):
            return []

        frame_rate = sr / hop_size
        delta = max(MIN_ONSET_DELTA, self.config.beat_threshold_std * float(np.std(onset)))
        peaks = librosa.util.peak_pick(
            onset,
            pre_max=max(1, int(0.03 * frame_rate)),
            post_max=1,
            pre_avg=max(1, int(0.1 * frame_rate)),
            post_avg=int(0.1 * frame_rate) + 1,
            delta=delta,
            wait=max(1, int(round(self.config.min_beat_interval_s * frame_rate))),
        )
        duration = y.size / sr
        times = librosa.frames_to_time(peaks, sr=sr, hop_length=hop_size)
        return [float(t) for t in times if t < duration]

    def _estimate_tempo(self, beats: list[float], hop_seconds: float) -> float:
        """
        Tempo from the most common inter-beat interval.

        Intervals are histogrammed at roughly frame resolution; the modal
        bin's mean interval is folded into MIN_BPM..MAX_BPM. Returns 0.0
        when fewer than two beats exist.
        """
        if len(beats) < 2:
            return 0.0

        intervals = np.diff(np.asarray(beats))
        intervals = intervals[(intervals > 0) & (intervals <= 60.0 / (MIN_BPM / 2))]
        if intervals.size == 0:
            return 0.0

        bin_width = max(2.0 * hop_seconds, 0.01)
        bins = np.round(intervals / bin_width).astype(int)
        values, counts = np.unique(bins, return_counts=True)
        # ties resolve toward the shorter interval
        modal_bin = values[np.argmax(counts)]
        modal = intervals[np.abs(bins - modal_bin) <= 1]
        bpm = 60.0 / float(np.mean(modal))

        while bpm < MIN_BPM:
            bpm *= 2.0
        while bpm > MAX_BPM:
            bpm /= 2.0
        return round(bpm, 1)

    def _classify_mood(self, slices: list[FrequencySlice], energy: float, bpm: float) -> Mood:
        """Rule-based (tempo, energy) buckets."""
        if not slices:
            return Mood.CALM
        avg_bass = float(np.mean([s.bass for s in slices]))
        avg_mid = float(np.mean([s.mid for s in slices]))
        avg_treble = float(np.mean([s.treble for s in slices]))

        if energy < 0.3 and bpm < 100:
            return Mood.AMBIENT if avg_treble > avg_bass else Mood.CALM
        if energy > 0.6 and bpm > 130:
            return Mood.INTENSE
        if energy > 0.5 or bpm > 120:
            return Mood.ENERGETIC
        if avg_bass > avg_mid and avg_bass > avg_treble:
            return Mood.DRAMATIC
        return Mood.CALM
