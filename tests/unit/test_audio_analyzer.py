import io

import numpy as np
import pytest
import soundfile as sf

from aurora_sync.audio.analyzer import AudioAnalyzer
from aurora_sync.audio.loader import decode_audio, sniff_format
from aurora_sync.core.config import AudioConfig
from aurora_sync.core.exceptions import AudioDecodeError, AudioTooLargeError
from aurora_sync.core.models import Mood

SR = 44100


def _wav(samples: np.ndarray, sample_rate: int = SR) -> bytes:
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format="WAV", subtype="FLOAT")
    return buffer.getvalue()


def _click_track(bpm: float, seconds: float) -> np.ndarray:
    y = np.zeros(int(SR * seconds), dtype=np.float32)
    burst_len = int(0.05 * SR)
    t = np.arange(burst_len) / SR
    burst = (0.9 * np.sin(2 * np.pi * 100.0 * t) * np.exp(-t * 30.0)).astype(np.float32)
    period = 60.0 / bpm
    onset = 0.25
    while onset + 0.05 < seconds:
        start = int(onset * SR)
        y[start : start + burst_len] += burst
        onset += period
    return y


def test_silent_clip_has_no_beats_and_zero_amplitude() -> None:
    features = AudioAnalyzer().analyze(_wav(np.zeros(SR * 10, dtype=np.float32)))

    assert features.beats == ()
    assert features.bpm == 0.0
    assert features.slices
    assert all(s.amplitude == 0.0 for s in features.slices)
    assert features.mood is Mood.CALM
    assert features.duration == pytest.approx(10.0)


def test_click_track_tempo_is_recovered() -> None:
    features = AudioAnalyzer().analyze(_wav(_click_track(120.0, 8.0)))

    assert len(features.beats) >= 12
    assert features.bpm == pytest.approx(120.0, abs=5.0)
    assert list(features.beats) == sorted(features.beats)
    assert features.beats[0] == pytest.approx(0.25, abs=0.06)


def test_clicks_under_the_noise_floor_are_not_beats() -> None:
    quiet = _click_track(120.0, 4.0) * 0.005

    features = AudioAnalyzer().analyze(_wav(quiet))

    assert features.beats == ()
    assert features.bpm == 0.0


def test_full_scale_sine_reads_on_the_sine_amplitude_scale() -> None:
    t = np.arange(SR * 2) / SR
    tone = (0.5 * np.sin(2 * np.pi * 1000.0 * t)).astype(np.float32)

    features = AudioAnalyzer().analyze(_wav(tone))
    middle = features.slices[len(features.slices) // 2]

    assert middle.mid == pytest.approx(0.5, abs=0.05)
    assert middle.amplitude == pytest.approx(0.5, abs=0.05)
    assert middle.bass < 0.05
    assert middle.dominant_frequency == pytest.approx(1000.0, abs=30.0)


def test_slices_are_spaced_by_hop() -> None:
    config = AudioConfig(hop_size=441, fft_size=2048)
    features = AudioAnalyzer(config).analyze(_wav(np.zeros(SR, dtype=np.float32)))

    assert features.hop_seconds == pytest.approx(0.01)
    assert features.slices[1].timestamp - features.slices[0].timestamp == pytest.approx(0.01)


def test_resampling_keeps_duration() -> None:
    features = AudioAnalyzer().analyze(_wav(np.zeros(SR * 2, dtype=np.float32)), sample_rate=22050)

    assert features.sample_rate == 22050
    assert features.duration == pytest.approx(2.0, abs=0.01)


def test_oversized_payload_is_rejected_before_decoding() -> None:
    analyzer = AudioAnalyzer(AudioConfig(max_bytes=100))

    with pytest.raises(AudioTooLargeError):
        analyzer.analyze(b"\x00" * 200)


def test_undecodable_payload_raises_decode_error() -> None:
    with pytest.raises(AudioDecodeError):
        AudioAnalyzer().analyze(b"definitely not audio " * 20)

    with pytest.raises(AudioDecodeError):
        decode_audio(b"")


def test_stereo_is_averaged_to_mono() -> None:
    t = np.arange(SR) / SR
    left = np.sin(2 * np.pi * 440.0 * t).astype(np.float32)
    stereo = np.stack([left, -left], axis=1)

    mono, sample_rate = decode_audio(_wav(stereo))

    assert sample_rate == SR
    assert mono.ndim == 1
    assert np.max(np.abs(mono)) < 1e-6


def test_sniff_format_recognizes_common_containers() -> None:
    assert sniff_format(_wav(np.zeros(10, dtype=np.float32))) == "wav"
    assert sniff_format(b"fLaC\x00\x00") == "flac"
    assert sniff_format(b"OggS\x00\x02") == "ogg"
    assert sniff_format(b"ID3\x04\x00") == "mp3"
    assert sniff_format(b"hello world") is None
