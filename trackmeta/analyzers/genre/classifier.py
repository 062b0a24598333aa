"""
Heuristic genre classifier for the track analysis pipeline.

Scores a fixed genre vocabulary from four additive, overlapping signal
groups (tempo, spectral, rhythmic/energy, harmonic). All weights and
thresholds live in GenreRules so they can be tuned without touching the
scoring code.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from trackmeta.core.analyzer_base import BaseClassifier
from trackmeta.core.models import GENRE_LABELS, N_CHROMA, AggregatedFeatures, GenreResult
from trackmeta.utils.errors import GenreClassificationError

Bonus = Mapping[str, float]


@dataclass(frozen=True)
class TempoBand:
    """Characteristic BPM band of one genre."""

    genre: str
    min_bpm: float
    max_bpm: float
    weight: float


DEFAULT_TEMPO_BANDS: Tuple[TempoBand, ...] = (
    TempoBand("Hip-Hop", 80, 110, 0.8),
    TempoBand("Trap", 130, 170, 0.8),
    TempoBand("Electronic", 120, 130, 0.9),  # house
    TempoBand("Reggaeton", 90, 100, 0.8),
    TempoBand("Reggae", 60, 90, 0.7),
    TempoBand("Dancehall", 85, 115, 0.7),
    TempoBand("Electronic", 110, 140, 0.6),
    TempoBand("Afro House", 115, 125, 0.8),
    TempoBand("Jazz", 60, 200, 0.3),
    TempoBand("Classical", 60, 200, 0.3),
    TempoBand("Rock", 100, 160, 0.5),
    TempoBand("Pop", 100, 130, 0.4),
    TempoBand("Country", 80, 120, 0.5),
    TempoBand("R&B", 70, 110, 0.5),
    TempoBand("Latin Urban", 85, 105, 0.6),
    TempoBand("Afrobeat", 100, 130, 0.7),
)


@dataclass(frozen=True)
class GenreRules:
    """Weights and thresholds of the genre heuristics."""

    base_score: float = 0.1
    tempo_bands: Tuple[TempoBand, ...] = DEFAULT_TEMPO_BANDS
    near_miss_bpm: float = 10.0
    near_miss_factor: float = 0.3
    max_tempo: float = 300.0

    # Spectral (Hz)
    bright_centroid: float = 2000.0
    bright_rolloff: float = 8000.0
    mid_centroid_low: float = 1000.0
    mid_centroid_high: float = 2500.0
    dark_centroid: float = 1500.0
    wide_bandwidth: float = 500.0
    narrow_bandwidth: float = 200.0

    # Rhythmic / energy
    loud_rms: float = 0.3
    medium_rms_low: float = 0.1
    medium_rms_high: float = 0.4
    quiet_rms: float = 0.2
    percussive_zcr: float = 0.1
    dynamic_zcr_variance: float = 0.01

    # Harmonic
    complex_harmony: float = 0.8
    simple_harmony: float = 0.5
    dynamic_chroma_variance: float = 0.1
    dominant_pitches: int = 3
    min_scale_matches: int = 3

    # Output selection
    primary_threshold: float = 0.1
    secondary_threshold: float = 0.2
    max_secondary: int = 3

    bonuses: Mapping[str, Bonus] = field(default_factory=lambda: {
        'bright': {'Rock': 0.4, 'Electronic': 0.3, 'Pop': 0.2},
        'mid_range': {'Hip-Hop': 0.3, 'R&B': 0.3, 'Afrobeat': 0.2, 'Trap': 0.2},
        'dark': {'Jazz': 0.3, 'Classical': 0.3, 'Country': 0.2},
        'wide_bandwidth': {'Jazz': 0.3, 'Classical': 0.2},
        'narrow_bandwidth': {'Electronic': 0.2, 'Pop': 0.2, 'Afro House': 0.2},
        'loud': {'Rock': 0.3, 'Electronic': 0.3, 'Dancehall': 0.2, 'Trap': 0.2},
        'medium_energy': {
            'Hip-Hop': 0.2, 'Pop': 0.2, 'Afrobeat': 0.2, 'Reggaeton': 0.2, 'Afro House': 0.2,
        },
        'quiet': {'Jazz': 0.2, 'Classical': 0.2, 'Country': 0.1, 'R&B': 0.1},
        'percussive': {'Hip-Hop': 0.2, 'Trap': 0.3, 'Electronic': 0.2, 'Rock': 0.2},
        'dynamic': {'Jazz': 0.2, 'Classical': 0.2, 'Rock': 0.1},
        'complex_harmony': {'Jazz': 0.4, 'Classical': 0.3},
        'moderate_harmony': {'Rock': 0.2, 'Pop': 0.2, 'R&B': 0.2, 'Country': 0.1},
        'simple_harmony': {'Electronic': 0.2, 'Hip-Hop': 0.2, 'Trap': 0.2, 'Afro House': 0.1},
        'dynamic_harmony': {'Jazz': 0.3, 'Classical': 0.2, 'Rock': 0.2},
        'pentatonic': {'Afrobeat': 0.3, 'Reggae': 0.2, 'Dancehall': 0.2},
        'minor_pattern': {'Hip-Hop': 0.2, 'Trap': 0.2, 'R&B': 0.1},
        'major_pattern': {'Pop': 0.2, 'Country': 0.2, 'Afro House': 0.1},
        'latin_pattern': {'Latin Urban': 0.3, 'Reggaeton': 0.2},
    })


PENTATONIC_INTERVALS = (0, 2, 4, 7, 9)
MINOR_INTERVALS = (0, 2, 3, 5, 7, 8, 10)
MAJOR_INTERVALS = (0, 2, 4, 5, 7, 9, 11)
MINOR_THIRD = 3
MAJOR_THIRD = 4
TRITONE = 6
FLAT_SEVENTH = 10


def chroma_complexity(chroma_mean: Sequence[float]) -> float:
    """Shannon entropy of the chroma distribution divided by log2(12)."""
    values = np.asarray(chroma_mean, dtype=np.float64)
    total = float(np.sum(values))
    if total == 0:
        return 0.0
    probs = values / total
    probs = probs[probs > 0]
    entropy = float(-np.sum(probs * np.log2(probs)))
    return entropy / math.log2(N_CHROMA)


def dominant_pitch_classes(chroma_mean: Sequence[float], count: int = 3) -> List[int]:
    """Indices of the ``count`` strongest chroma bins, strongest first."""
    values = np.asarray(chroma_mean, dtype=np.float64)
    # Stable sort keeps the lower pitch class first on ties
    order = np.argsort(-values, kind='stable')
    return [int(i) for i in order[:count]]


def _scale_matches(pitches: Sequence[int], intervals: Sequence[int]) -> int:
    return sum(1 for interval in intervals if interval in pitches)


def _has_interval(pitches: Sequence[int], interval: int) -> bool:
    return any((p + interval) % N_CHROMA in pitches for p in pitches)


def has_pentatonic_pattern(pitches: Sequence[int], min_matches: int = 3) -> bool:
    return _scale_matches(pitches, PENTATONIC_INTERVALS) >= min_matches


def has_minor_pattern(pitches: Sequence[int], min_matches: int = 3) -> bool:
    return (
        _has_interval(pitches, MINOR_THIRD)
        and _scale_matches(pitches, MINOR_INTERVALS) >= min_matches
    )


def has_major_pattern(pitches: Sequence[int], min_matches: int = 3) -> bool:
    return (
        _has_interval(pitches, MAJOR_THIRD)
        and _scale_matches(pitches, MAJOR_INTERVALS) >= min_matches
    )


def has_latin_pattern(pitches: Sequence[int]) -> bool:
    return _has_interval(pitches, FLAT_SEVENTH) or _has_interval(pitches, TRITONE)


def _add(scores: Dict[str, float], bonus: Bonus) -> None:
    for genre, value in bonus.items():
        scores[genre] += value


def tempo_scores(scores: Dict[str, float], tempo: float, rules: GenreRules) -> None:
    """Bell-shaped bonus inside each band, reduced bonus for near misses."""
    for band in rules.tempo_bands:
        if band.min_bpm <= tempo <= band.max_bpm:
            center = (band.min_bpm + band.max_bpm) / 2
            max_deviation = (band.max_bpm - band.min_bpm) / 2
            deviation = abs(tempo - center)
            scores[band.genre] += (1 - deviation / max_deviation) * band.weight
        else:
            distance = min(abs(tempo - band.min_bpm), abs(tempo - band.max_bpm))
            if distance <= rules.near_miss_bpm:
                proximity = 1 - distance / rules.near_miss_bpm
                scores[band.genre] += proximity * band.weight * rules.near_miss_factor


def spectral_scores(scores: Dict[str, float], features: AggregatedFeatures, rules: GenreRules) -> None:
    centroid = features.spectral_centroid_mean
    rolloff = features.spectral_rolloff_mean
    bandwidth = features.spectral_bandwidth
    bonuses = rules.bonuses

    if centroid > rules.bright_centroid and rolloff > rules.bright_rolloff:
        _add(scores, bonuses['bright'])
    if rules.mid_centroid_low < centroid < rules.mid_centroid_high:
        _add(scores, bonuses['mid_range'])
    if centroid < rules.dark_centroid:
        _add(scores, bonuses['dark'])
    if bandwidth > rules.wide_bandwidth:
        _add(scores, bonuses['wide_bandwidth'])
    if bandwidth < rules.narrow_bandwidth:
        _add(scores, bonuses['narrow_bandwidth'])


def rhythmic_scores(scores: Dict[str, float], features: AggregatedFeatures, rules: GenreRules) -> None:
    rms = features.rms_mean
    bonuses = rules.bonuses

    if rms > rules.loud_rms:
        _add(scores, bonuses['loud'])
    if rules.medium_rms_low < rms < rules.medium_rms_high:
        _add(scores, bonuses['medium_energy'])
    if rms < rules.quiet_rms:
        _add(scores, bonuses['quiet'])
    if features.zcr_mean > rules.percussive_zcr:
        _add(scores, bonuses['percussive'])
    if features.zcr_variance > rules.dynamic_zcr_variance:
        _add(scores, bonuses['dynamic'])


def harmonic_scores(scores: Dict[str, float], features: AggregatedFeatures, rules: GenreRules) -> None:
    bonuses = rules.bonuses
    complexity = chroma_complexity(features.chroma_mean)

    if complexity > rules.complex_harmony:
        _add(scores, bonuses['complex_harmony'])
    if rules.simple_harmony < complexity < rules.complex_harmony:
        _add(scores, bonuses['moderate_harmony'])
    if complexity < rules.simple_harmony:
        _add(scores, bonuses['simple_harmony'])

    if float(np.mean(features.chroma_variance)) > rules.dynamic_chroma_variance:
        _add(scores, bonuses['dynamic_harmony'])

    pitches = dominant_pitch_classes(features.chroma_mean, rules.dominant_pitches)
    if has_pentatonic_pattern(pitches, rules.min_scale_matches):
        _add(scores, bonuses['pentatonic'])
    if has_minor_pattern(pitches, rules.min_scale_matches):
        _add(scores, bonuses['minor_pattern'])
    if has_major_pattern(pitches, rules.min_scale_matches):
        _add(scores, bonuses['major_pattern'])
    if has_latin_pattern(pitches):
        _add(scores, bonuses['latin_pattern'])


def score_genres(
    features: AggregatedFeatures,
    tempo: Optional[float] = None,
    rules: Optional[GenreRules] = None,
) -> Dict[str, float]:
    """Raw (un-normalized) score of every genre label."""
    rules = rules or GenreRules()
    scores = {genre: rules.base_score for genre in GENRE_LABELS}

    if tempo:
        tempo_scores(scores, tempo, rules)
    spectral_scores(scores, features, rules)
    rhythmic_scores(scores, features, rules)
    harmonic_scores(scores, features, rules)

    return scores


def normalize_scores(scores: Mapping[str, float]) -> Dict[str, float]:
    """Min-max normalize to [0, 1]; uniform 1/n when every score is equal."""
    values = list(scores.values())
    low, high = min(values), max(values)
    spread = high - low

    if spread == 0:
        uniform = 1 / len(scores)
        return {genre: uniform for genre in scores}

    return {genre: (score - low) / spread for genre, score in scores.items()}


class GenreClassifier(BaseClassifier[GenreResult]):
    """Classifies a clip into the fixed genre vocabulary."""

    error_cls = GenreClassificationError

    def __init__(self, rules: Optional[GenreRules] = None):
        super().__init__(name="genre", version="1.0.0")
        self.rules = rules or GenreRules()

    def _classify_impl(
        self, features: Optional[AggregatedFeatures], tempo: Optional[float]
    ) -> GenreResult:
        self._validate(features, tempo)

        scores = normalize_scores(score_genres(features, tempo, self.rules))

        # sorted() is stable so ties keep vocabulary order
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        ranked = [(genre, score) for genre, score in ranked if score > self.rules.primary_threshold]

        if not ranked:
            raise GenreClassificationError(
                "No genres detected with sufficient confidence",
                "NO_GENRES_DETECTED",
                {'scores': scores},
            )

        primary, primary_score = ranked[0]
        secondary = [
            genre for genre, score in ranked[1:1 + self.rules.max_secondary]
            if score > self.rules.secondary_threshold
        ]

        self.logger.info(f"Genre classified: {primary} ({primary_score * 100:.1f}%)")

        return GenreResult(
            primary=primary,
            confidence=float(primary_score),
            secondary=secondary,
            scores=scores,
        )

    def _validate(self, features: Optional[AggregatedFeatures], tempo: Optional[float]) -> None:
        if features is None:
            raise GenreClassificationError("Features object is required", "MISSING_FEATURES")

        if not _is_finite_number(features.spectral_centroid_mean):
            raise GenreClassificationError(
                "Invalid spectral centroid mean", "INVALID_SPECTRAL_CENTROID"
            )

        if not _is_finite_number(features.rms_mean) or features.rms_mean < 0:
            raise GenreClassificationError("Invalid RMS energy mean", "INVALID_RMS")

        if len(features.chroma_mean) != N_CHROMA:
            raise GenreClassificationError(
                "Invalid chroma mean array",
                "INVALID_CHROMA",
                {'length': len(features.chroma_mean)},
            )

        if tempo is not None and (
            not _is_finite_number(tempo) or tempo <= 0 or tempo > self.rules.max_tempo
        ):
            raise GenreClassificationError("Invalid tempo value", "INVALID_TEMPO", {'tempo': tempo})


def _is_finite_number(value: Any) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def create_genre_classifier(config: Optional[Dict[str, Any]] = None) -> GenreClassifier:
    """
    Factory function to create GenreClassifier with configuration.

    Scalar thresholds in the ``genre`` section override the defaults.
    """
    if config is None:
        config = {}

    overrides = {
        k: v for k, v in config.items()
        if k in GenreRules.__dataclass_fields__ and k not in ('tempo_bands', 'bonuses')
    }
    return GenreClassifier(rules=GenreRules(**overrides))
