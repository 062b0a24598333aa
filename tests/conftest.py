"""Shared fixtures for trackmeta tests."""

import io
import wave

import numpy as np
import pytest

from trackmeta.core.models import AggregatedFeatures, AudioFormat, PCMBuffer

SAMPLE_RATE = 22050


# ---------------------------------------------------------------------------
# Signal builders
# ---------------------------------------------------------------------------


def sine(freq: float, duration: float, sr: int = SAMPLE_RATE, amplitude: float = 0.5) -> np.ndarray:
    t = np.arange(int(duration * sr)) / sr
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def harmonic_tone(freq: float, duration: float, sr: int = SAMPLE_RATE, partials: int = 4) -> np.ndarray:
    """Fundamental plus decaying integer harmonics."""
    t = np.arange(int(duration * sr)) / sr
    y = sum((0.5 / k) * np.sin(2 * np.pi * freq * k * t) for k in range(1, partials + 1))
    return (0.8 * y / np.max(np.abs(y))).astype(np.float32)


def click_track(bpm: float, duration: float, sr: int = SAMPLE_RATE) -> np.ndarray:
    """Short decaying noise bursts at every beat."""
    y = np.zeros(int(duration * sr), dtype=np.float32)
    rng = np.random.default_rng(0)
    click_len = int(0.02 * sr)
    click = (rng.standard_normal(click_len) * np.exp(-np.linspace(0, 8, click_len))).astype(np.float32)
    period = 60.0 / bpm
    for onset in np.arange(0, duration, period):
        start = int(onset * sr)
        end = min(start + click_len, len(y))
        y[start:end] += click[:end - start]
    return 0.8 * y / np.max(np.abs(y))


def make_pcm(samples: np.ndarray, sr: int = SAMPLE_RATE) -> PCMBuffer:
    return PCMBuffer.from_samples(samples, sr, format=AudioFormat.WAV)


def wav_bytes(samples: np.ndarray, sr: int = SAMPLE_RATE, channels: int = 1) -> bytes:
    """Encode float samples as a 16-bit PCM WAV file in memory."""
    pcm16 = (np.clip(samples, -1, 1) * 32767).astype('<i2')
    if channels > 1:
        pcm16 = np.repeat(pcm16[:, None], channels, axis=1)
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as w:
        w.setnchannels(channels)
        w.setsampwidth(2)
        w.setframerate(sr)
        w.writeframes(pcm16.tobytes())
    return buffer.getvalue()


def make_features(**overrides) -> AggregatedFeatures:
    """Plausible mid-range feature record; any field can be overridden."""
    values = dict(
        mfcc=np.zeros(13),
        spectral_centroid=1800.0,
        spectral_rolloff=5000.0,
        zero_crossing_rate=0.05,
        rms=0.2,
        chroma=np.full(12, 0.3),
        mfcc_mean=np.linspace(-200, 10, 13),
        mfcc_variance=np.ones(13),
        spectral_centroid_mean=1800.0,
        spectral_centroid_variance=250000.0,
        spectral_rolloff_mean=5000.0,
        spectral_rolloff_variance=400000.0,
        zcr_mean=0.05,
        zcr_variance=0.001,
        rms_mean=0.2,
        rms_variance=0.01,
        chroma_mean=np.array([0.9, 0.1, 0.4, 0.1, 0.7, 0.3, 0.1, 0.8, 0.1, 0.4, 0.1, 0.2]),
        chroma_variance=np.full(12, 0.05),
        spectral_bandwidth=350.0,
        spectral_flatness=0.4,
        frame_count=500,
        sample_rate=SAMPLE_RATE,
        duration=20.0,
    )
    values.update(overrides)
    return AggregatedFeatures(**values)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def features():
    """A valid AggregatedFeatures record."""
    return make_features()


@pytest.fixture
def tone_pcm():
    """12 s harmonic tone at 220 Hz (A3)."""
    return make_pcm(harmonic_tone(220.0, 12.0))


@pytest.fixture
def silent_pcm():
    """15 s of digital silence."""
    return make_pcm(np.zeros(15 * SAMPLE_RATE, dtype=np.float32))


@pytest.fixture
def click_pcm():
    """20 s click track at 120 BPM."""
    return make_pcm(click_track(120.0, 20.0))
