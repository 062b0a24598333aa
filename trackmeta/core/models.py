"""
Core data models for the track analysis pipeline.

Immutable domain models representing decoded audio, extracted features
and the per-stage analysis results.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

import numpy as np

from trackmeta.utils.errors import AnalysisError

T = TypeVar('T')

NOTE_NAMES = ['C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B']

GENRE_LABELS = (
    "Afrobeat",
    "Afro House",
    "Pop",
    "Hip-Hop",
    "Rock",
    "Country",
    "Latin Urban",
    "Reggaeton",
    "Reggae",
    "Dancehall",
    "Electronic",
    "Jazz",
    "R&B",
    "Classical",
    "Trap",
)

MOOD_LABELS = (
    "Energetic",
    "Melancholic",
    "Uplifting",
    "Aggressive",
    "Chill",
    "Dark",
    "Bright",
    "Tense",
    "Relaxed",
    "Party",
)

UNKNOWN_LABEL = "Unknown"
N_MFCC = 13
N_CHROMA = 12


class AudioFormat(str, Enum):
    """Container/codec detected from magic bytes."""

    MP3 = "MP3"
    WAV = "WAV"
    FLAC = "FLAC"
    OGG = "OGG"
    UNKNOWN = "UNKNOWN"


class Scale(str, Enum):
    MAJOR = "major"
    MINOR = "minor"


@dataclass(frozen=True)
class PCMBuffer:
    """
    Immutable mono PCM audio produced by the decoder.

    Samples are float32 in roughly [-1, 1] at the source sample rate.
    The array is copied and marked read-only on construction so that a
    buffer can be handed to several worker threads at once.
    """

    samples: np.ndarray
    sample_rate: int
    duration: float  # seconds
    channels_original: int = 1
    format: AudioFormat = AudioFormat.UNKNOWN
    synthetic: bool = False  # True when samples are a placeholder waveform

    def __post_init__(self) -> None:
        samples = np.array(self.samples, dtype=np.float32, copy=True).reshape(-1)
        samples.setflags(write=False)
        object.__setattr__(self, 'samples', samples)

    @classmethod
    def from_samples(
        cls,
        samples: np.ndarray,
        sample_rate: int,
        channels_original: int = 1,
        format: AudioFormat = AudioFormat.UNKNOWN,
        synthetic: bool = False,
    ) -> "PCMBuffer":
        """Build a buffer whose duration is derived from the sample count."""
        samples = np.asarray(samples)
        duration = len(samples) / sample_rate if sample_rate > 0 else 0.0
        return cls(
            samples=samples,
            sample_rate=sample_rate,
            duration=duration,
            channels_original=channels_original,
            format=format,
            synthetic=synthetic,
        )

    @property
    def num_samples(self) -> int:
        return int(self.samples.shape[0])

    @property
    def peak(self) -> float:
        """Peak absolute amplitude (0.0 for an empty buffer)."""
        if self.num_samples == 0:
            return 0.0
        return float(np.max(np.abs(self.samples)))


@dataclass
class FrameFeatures:
    """Features of one analysis window."""

    mfcc: np.ndarray  # Shape: (13,)
    spectral_centroid: float  # Hz
    spectral_rolloff: float  # Hz
    zero_crossing_rate: float  # crossings per sample
    rms: float
    chroma: np.ndarray  # Shape: (12,)

    def is_finite(self) -> bool:
        """True when every scalar and vector value is finite."""
        scalars = (
            self.spectral_centroid,
            self.spectral_rolloff,
            self.zero_crossing_rate,
            self.rms,
        )
        return (
            all(np.isfinite(v) for v in scalars)
            and bool(np.all(np.isfinite(self.mfcc)))
            and bool(np.all(np.isfinite(self.chroma)))
        )


@dataclass(frozen=True)
class AggregatedFeatures:
    """
    Clip-level feature statistics.

    Means and variances of every per-frame field plus two dispersion
    proxies. The un-suffixed fields are the snapshot of the last frame.
    """

    # Last-frame snapshot
    mfcc: np.ndarray
    spectral_centroid: float
    spectral_rolloff: float
    zero_crossing_rate: float
    rms: float
    chroma: np.ndarray

    # Aggregated statistics
    mfcc_mean: np.ndarray  # Shape: (13,)
    mfcc_variance: np.ndarray  # Shape: (13,)
    spectral_centroid_mean: float
    spectral_centroid_variance: float
    spectral_rolloff_mean: float
    spectral_rolloff_variance: float
    zcr_mean: float
    zcr_variance: float
    rms_mean: float
    rms_variance: float
    chroma_mean: np.ndarray  # Shape: (12,)
    chroma_variance: np.ndarray  # Shape: (12,)

    # Derived dispersion measures
    spectral_bandwidth: float  # std of per-frame centroid
    spectral_flatness: float  # coefficient of variation of per-frame RMS

    frame_count: int
    sample_rate: int
    duration: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'mfcc': _to_list(self.mfcc),
            'spectral_centroid': self.spectral_centroid,
            'spectral_rolloff': self.spectral_rolloff,
            'zero_crossing_rate': self.zero_crossing_rate,
            'rms': self.rms,
            'chroma': _to_list(self.chroma),
            'mfcc_mean': _to_list(self.mfcc_mean),
            'mfcc_variance': _to_list(self.mfcc_variance),
            'spectral_centroid_mean': self.spectral_centroid_mean,
            'spectral_centroid_variance': self.spectral_centroid_variance,
            'spectral_rolloff_mean': self.spectral_rolloff_mean,
            'spectral_rolloff_variance': self.spectral_rolloff_variance,
            'zcr_mean': self.zcr_mean,
            'zcr_variance': self.zcr_variance,
            'rms_mean': self.rms_mean,
            'rms_variance': self.rms_variance,
            'chroma_mean': _to_list(self.chroma_mean),
            'chroma_variance': _to_list(self.chroma_variance),
            'spectral_bandwidth': self.spectral_bandwidth,
            'spectral_flatness': self.spectral_flatness,
            'frame_count': self.frame_count,
            'sample_rate': self.sample_rate,
            'duration': self.duration,
        }


@dataclass
class TempoResult:
    """Detected tempo after octave correction."""

    bpm: float
    confidence: float  # [0.0, 1.0]
    offset_seconds: float = 0.0  # time of the first beat

    def __post_init__(self) -> None:
        """Validate fields."""
        validate_confidence(self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'bpm': self.bpm,
            'confidence': self.confidence,
            'offset_seconds': self.offset_seconds,
        }


@dataclass
class KeyResult:
    """Detected musical key."""

    key: str  # e.g., "A minor"
    confidence: float  # [0.0, 1.0]
    scale: Scale
    root: int  # pitch class, 0 = C

    def __post_init__(self) -> None:
        """Validate fields."""
        validate_confidence(self.confidence)
        if not 0 <= self.root < N_CHROMA:
            raise ValueError(f"Root pitch class must be in [0, 11], got {self.root}")

    @property
    def root_name(self) -> str:
        return NOTE_NAMES[self.root]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'key': self.key,
            'confidence': self.confidence,
            'scale': self.scale.value,
            'root': self.root,
            'root_name': self.root_name,
        }


@dataclass
class GenreResult:
    """Genre scores over the fixed vocabulary."""

    primary: str
    confidence: float  # [0.0, 1.0]
    secondary: List[str] = field(default_factory=list)
    scores: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate fields."""
        validate_confidence(self.confidence)
        if len(self.secondary) > 3:
            raise ValueError(f"At most 3 secondary genres allowed, got {len(self.secondary)}")

    @classmethod
    def unknown(cls) -> "GenreResult":
        """Default result substituted when classification fails."""
        return cls(
            primary=UNKNOWN_LABEL,
            confidence=0.0,
            secondary=[],
            scores={label: 0.0 for label in GENRE_LABELS},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'primary': self.primary,
            'confidence': self.confidence,
            'secondary': list(self.secondary),
            'scores': dict(self.scores),
        }


@dataclass
class MoodResult:
    """Mood dimensions and label scores."""

    primary: str
    energy: str  # low | medium | high
    valence: str  # sad | neutral | happy
    intensity: Optional[str]  # calm | moderate | aggressive, None when unknown
    confidence: float  # [0.0, 1.0]
    tags: List[str] = field(default_factory=list)
    scores: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate fields."""
        validate_confidence(self.confidence)
        if len(self.tags) > 4:
            raise ValueError(f"At most 4 mood tags allowed, got {len(self.tags)}")

    @classmethod
    def unknown(cls) -> "MoodResult":
        """Default result substituted when mood detection fails."""
        return cls(
            primary=UNKNOWN_LABEL,
            energy="medium",
            valence="neutral",
            intensity=None,
            confidence=0.0,
            tags=[],
            scores={label: 0.0 for label in MOOD_LABELS},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'primary': self.primary,
            'energy': self.energy,
            'valence': self.valence,
            'intensity': self.intensity,
            'confidence': self.confidence,
            'tags': list(self.tags),
            'scores': dict(self.scores),
        }


@dataclass
class StemSet:
    """Opaque references to separated stems (any may be missing)."""

    drums: Optional[str] = None
    bass: Optional[str] = None
    vocals: Optional[str] = None
    other: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        """Convert to dictionary."""
        return {
            'drums': self.drums,
            'bass': self.bass,
            'vocals': self.vocals,
            'other': self.other,
        }


@dataclass
class AnalysisResult:
    """Complete analysis result for one track."""

    tempo: TempoResult
    key: KeyResult
    features: Optional[AggregatedFeatures]  # None for synthetic results
    genre: GenreResult
    mood: MoodResult
    duration: float  # seconds

    # Metadata
    metadata: Dict[str, Any] = field(default_factory=dict)
    stems: Optional[StemSet] = None
    synthetic: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'tempo': self.tempo.to_dict(),
            'key': self.key.to_dict(),
            'features': self.features.to_dict() if self.features else None,
            'genre': self.genre.to_dict(),
            'mood': self.mood.to_dict(),
            'duration': self.duration,
            'metadata': self.metadata,
            'stems': self.stems.to_dict() if self.stems else None,
            'synthetic': self.synthetic,
            'timestamp': self.timestamp.isoformat(),
        }

    def to_json(self, indent: int = 2) -> str:
        """Export as JSON string."""
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def get_summary(self) -> str:
        """Get human-readable summary."""
        parts = [
            f"Tempo: {self.tempo.bpm:.2f} BPM",
            f"Key: {self.key.key}",
            f"Genre: {self.genre.primary}",
            f"Mood: {self.mood.primary}",
            f"Duration: {self.duration:.1f}s",
        ]
        if self.synthetic:
            parts.append("(synthetic)")
        return " | ".join(parts)


# Per-stage outcome, combined by the engine

@dataclass(frozen=True)
class Ok(Generic[T]):
    """Stage succeeded."""

    value: T


@dataclass(frozen=True)
class Degraded(Generic[T]):
    """Non-critical stage failed and was replaced by a default value."""

    value: T
    error: AnalysisError


@dataclass(frozen=True)
class Fatal:
    """Critical stage failed; the analysis call must fail with ``error``."""

    error: AnalysisError


StageOutcome = Union[Ok[T], Degraded[T], Fatal]


# Validation helpers

def validate_confidence(confidence: float) -> None:
    """Validate confidence score is in valid range."""
    if not (0.0 <= confidence <= 1.0):
        raise ValueError(f"Confidence must be in [0.0, 1.0], got {confidence}")


def _to_list(values: np.ndarray) -> List[float]:
    return [float(v) for v in np.asarray(values).ravel()]
