"""
Heuristic mood detector for the track analysis pipeline.

Places a clip on three bucketed dimensions (energy, valence, intensity)
and scores a fixed mood vocabulary from those buckets plus tempo.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from trackmeta.core.analyzer_base import BaseClassifier
from trackmeta.core.models import MOOD_LABELS, N_CHROMA, AggregatedFeatures, MoodResult
from trackmeta.utils.errors import MoodDetectionError

REQUIRED_FIELDS = (
    'rms_mean',
    'rms_variance',
    'spectral_centroid_mean',
    'spectral_centroid_variance',
    'spectral_rolloff_mean',
    'zcr_mean',
    'chroma_mean',
)

MAJOR_TRIAD = (0, 4, 7)
MINOR_TRIAD = (0, 3, 7)

# Per-label weights over the bucketed signals. "low_*" is one minus the
# signal; "slow" and "fast" are 1.0 when the tempo is past the threshold.
DEFAULT_LABEL_WEIGHTS: Mapping[str, Mapping[str, float]] = {
    'Energetic': {'energy': 0.6, 'fast': 0.3, 'intensity': 0.1},
    'Melancholic': {'low_valence': 0.7, 'slow': 0.2, 'low_energy': 0.1},
    'Uplifting': {'valence': 0.6, 'energy': 0.3, 'fast': 0.1},
    'Aggressive': {'intensity': 0.7, 'energy': 0.2, 'fast': 0.1},
    'Chill': {'low_intensity': 0.5, 'low_energy': 0.3, 'slow': 0.2},
    'Dark': {'low_valence': 0.6, 'low_energy': 0.2, 'intensity': 0.2},
    'Bright': {'valence': 0.7, 'energy': 0.2, 'low_intensity': 0.1},
    'Tense': {'intensity': 0.6, 'energy': 0.2, 'low_valence': 0.2},
    'Relaxed': {'low_intensity': 0.6, 'low_energy': 0.2, 'valence': 0.2},
    'Party': {'energy': 0.4, 'valence': 0.3, 'fast': 0.2, 'intensity': 0.1},
}


@dataclass(frozen=True)
class MoodRules:
    """Weights and thresholds of the mood heuristics."""

    # Energy = rms, tempo, rolloff
    energy_weights: Tuple[float, float, float] = (0.5, 0.3, 0.2)
    rms_scale: float = 2.0
    tempo_floor: float = 60.0
    tempo_span: float = 120.0
    rolloff_floor: float = 2000.0
    rolloff_span: float = 6000.0
    energy_low: float = 0.35
    energy_high: float = 0.65

    # Valence = centroid, chroma brightness, major/minor
    valence_weights: Tuple[float, float, float] = (0.5, 0.2, 0.3)
    centroid_floor: float = 1000.0
    centroid_span: float = 3000.0
    brightness_scale: float = 2.0
    major_value: float = 0.8
    minor_value: float = 0.2
    valence_low: float = 0.35
    valence_high: float = 0.55

    # Intensity = zcr, rms variance, centroid variance
    intensity_weights: Tuple[float, float, float] = (0.4, 0.35, 0.25)
    zcr_scale: float = 2.0
    rms_variance_scale: float = 10.0
    centroid_variance_span: float = 1_000_000.0
    intensity_low: float = 0.35
    intensity_high: float = 0.65

    # Tempo boosts
    default_tempo: float = 120.0
    slow_tempo: float = 90.0
    fast_tempo: float = 140.0

    # Label scores
    label_weights: Mapping[str, Mapping[str, float]] = field(
        default_factory=lambda: dict(DEFAULT_LABEL_WEIGHTS)
    )

    # Output selection
    tag_threshold: float = 0.3
    max_tags: int = 4
    max_separation_bonus: float = 0.3


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _bucket(score: float, low: float, high: float, labels: Tuple[str, str, str]) -> str:
    if score < low:
        return labels[0]
    if score < high:
        return labels[1]
    return labels[2]


def energy_score(features: AggregatedFeatures, tempo: Optional[float], rules: MoodRules) -> float:
    rms_part = min(features.rms_mean * rules.rms_scale, 1.0)
    tempo_part = _clamp((tempo - rules.tempo_floor) / rules.tempo_span) if tempo else 0.5
    rolloff_part = _clamp((features.spectral_rolloff_mean - rules.rolloff_floor) / rules.rolloff_span)

    w_rms, w_tempo, w_rolloff = rules.energy_weights
    return rms_part * w_rms + tempo_part * w_tempo + rolloff_part * w_rolloff


def valence_score(features: AggregatedFeatures, rules: MoodRules) -> float:
    chroma = np.asarray(features.chroma_mean, dtype=np.float64)

    centroid_part = _clamp((features.spectral_centroid_mean - rules.centroid_floor) / rules.centroid_span)
    brightness = float(np.sum(chroma)) / N_CHROMA
    brightness_part = min(brightness * rules.brightness_scale, 1.0)

    major_strength = float(np.mean(chroma[list(MAJOR_TRIAD)]))
    minor_strength = float(np.mean(chroma[list(MINOR_TRIAD)]))
    mode_part = rules.major_value if major_strength > minor_strength else rules.minor_value

    w_centroid, w_brightness, w_mode = rules.valence_weights
    return centroid_part * w_centroid + brightness_part * w_brightness + mode_part * w_mode


def intensity_score(features: AggregatedFeatures, rules: MoodRules) -> float:
    zcr_part = min(features.zcr_mean * rules.zcr_scale, 1.0)
    dynamics_part = min(features.rms_variance * rules.rms_variance_scale, 1.0)
    variation_part = min(features.spectral_centroid_variance / rules.centroid_variance_span, 1.0)

    w_zcr, w_dynamics, w_variation = rules.intensity_weights
    return zcr_part * w_zcr + dynamics_part * w_dynamics + variation_part * w_variation


def mood_dimensions(
    features: AggregatedFeatures, tempo: Optional[float] = None, rules: Optional[MoodRules] = None
) -> Tuple[str, str, str]:
    """Bucketed (energy, valence, intensity) labels."""
    rules = rules or MoodRules()
    energy = _bucket(
        energy_score(features, tempo, rules), rules.energy_low, rules.energy_high,
        ('low', 'medium', 'high'),
    )
    valence = _bucket(
        valence_score(features, rules), rules.valence_low, rules.valence_high,
        ('sad', 'neutral', 'happy'),
    )
    intensity = _bucket(
        intensity_score(features, rules), rules.intensity_low, rules.intensity_high,
        ('calm', 'moderate', 'aggressive'),
    )
    return energy, valence, intensity


_LEVELS = {
    'low': 0.0, 'medium': 0.5, 'high': 1.0,
    'sad': 0.0, 'neutral': 0.5, 'happy': 1.0,
    'calm': 0.0, 'moderate': 0.5, 'aggressive': 1.0,
}


def score_moods(
    energy: str,
    valence: str,
    intensity: str,
    tempo: Optional[float] = None,
    rules: Optional[MoodRules] = None,
) -> Dict[str, float]:
    """Score every mood label and divide by the best score."""
    rules = rules or MoodRules()
    e = _LEVELS[energy]
    v = _LEVELS[valence]
    i = _LEVELS[intensity]

    bpm = tempo or rules.default_tempo
    slow = 1.0 if bpm < rules.slow_tempo else 0.0
    fast = 1.0 if bpm > rules.fast_tempo else 0.0

    signals = {
        'energy': e,
        'low_energy': 1 - e,
        'valence': v,
        'low_valence': 1 - v,
        'intensity': i,
        'low_intensity': 1 - i,
        'slow': slow,
        'fast': fast,
    }
    scores = {
        mood: sum(signals[signal] * weight for signal, weight in weights.items())
        for mood, weights in rules.label_weights.items()
    }

    best = max(scores.values())
    if best > 0:
        scores = {mood: score / best for mood, score in scores.items()}

    return {mood: scores[mood] for mood in MOOD_LABELS}


class MoodDetector(BaseClassifier[MoodResult]):
    """Detects mood dimensions and labels from aggregated features."""

    error_cls = MoodDetectionError

    def __init__(self, rules: Optional[MoodRules] = None):
        super().__init__(name="mood", version="1.0.0")
        self.rules = rules or MoodRules()

    def detect_mood(
        self, features: Optional[AggregatedFeatures], tempo: Optional[float] = None
    ) -> MoodResult:
        """Alias of classify()."""
        return self.classify(features, tempo)

    def _classify_impl(
        self, features: Optional[AggregatedFeatures], tempo: Optional[float]
    ) -> MoodResult:
        self._validate(features)

        energy, valence, intensity = mood_dimensions(features, tempo, self.rules)
        self.logger.debug(
            f"Mood dimensions - energy: {energy}, valence: {valence}, intensity: {intensity}"
        )

        scores = score_moods(energy, valence, intensity, tempo, self.rules)
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)

        primary, primary_score = ranked[0]
        confidence = self._confidence(ranked)
        tags = [
            mood for mood, score in scores.items() if score > self.rules.tag_threshold
        ][:self.rules.max_tags]

        self.logger.info(f"Primary mood: {primary} (confidence: {confidence:.2f})")

        return MoodResult(
            primary=primary,
            energy=energy,
            valence=valence,
            intensity=intensity,
            confidence=confidence,
            tags=tags,
            scores=scores,
        )

    def _confidence(self, ranked: List[Tuple[str, float]]) -> float:
        primary_score = ranked[0][1]
        if len(ranked) < 2:
            return _clamp(primary_score)
        separation = primary_score - ranked[1][1]
        bonus = min(separation * 2, self.rules.max_separation_bonus)
        return _clamp(primary_score + bonus)

    def _validate(self, features: Optional[AggregatedFeatures]) -> None:
        if features is None:
            raise MoodDetectionError("Audio features are required", "MISSING_FEATURES")

        for name in REQUIRED_FIELDS:
            if getattr(features, name, None) is None:
                raise MoodDetectionError(
                    f"Missing required feature: {name}",
                    "MISSING_FEATURE_FIELD",
                    {'field': name},
                )

        if len(features.chroma_mean) != N_CHROMA:
            raise MoodDetectionError(
                "Invalid chroma features: expected array of 12 values",
                "INVALID_CHROMA",
                {'chroma_length': len(features.chroma_mean)},
            )

        values = [getattr(features, name) for name in REQUIRED_FIELDS if name != 'chroma_mean']
        values.extend(features.chroma_mean)
        invalid = sum(1 for value in values if not _is_finite(value))
        if invalid:
            raise MoodDetectionError(
                "Features contain invalid numeric values",
                "INVALID_NUMERIC_VALUES",
                {'invalid_count': invalid},
            )


def _is_finite(value: Any) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def create_mood_detector(config: Optional[Dict[str, Any]] = None) -> MoodDetector:
    """
    Factory function to create MoodDetector with configuration.

    Scalar thresholds in the ``mood`` section override the defaults.
    """
    if config is None:
        config = {}

    overrides = {
        k: v for k, v in config.items()
        if k in MoodRules.__dataclass_fields__ and not k.endswith('_weights')
    }
    return MoodDetector(rules=MoodRules(**overrides))
