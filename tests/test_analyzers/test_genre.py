"""Tests for the heuristic genre classifier."""

import numpy as np
import pytest

from conftest import make_features
from trackmeta.analyzers.genre.classifier import (
    GenreClassifier,
    GenreRules,
    chroma_complexity,
    create_genre_classifier,
    dominant_pitch_classes,
    has_latin_pattern,
    has_major_pattern,
    has_minor_pattern,
    has_pentatonic_pattern,
    normalize_scores,
    score_genres,
)
from trackmeta.core.models import GENRE_LABELS
from trackmeta.utils.errors import AnalysisErrorCode, GenreClassificationError


@pytest.fixture
def classifier():
    return GenreClassifier()


class TestScoring:
    def test_every_label_is_scored(self, features):
        scores = normalize_scores(score_genres(features, 124.0))
        assert set(scores) == set(GENRE_LABELS)
        assert all(0.0 <= value <= 1.0 for value in scores.values())
        assert max(scores.values()) == pytest.approx(1.0)

    def test_tempo_band_center_gets_full_weight(self, features):
        without = score_genres(features, None)
        with_tempo = score_genres(features, 125.0)
        # Electronic: 120-130 center (0.9) plus 110-140 partial
        assert with_tempo['Electronic'] - without['Electronic'] > 0.9

    def test_uniform_scores(self):
        assert normalize_scores({'a': 0.5, 'b': 0.5}) == {'a': 0.5, 'b': 0.5}

    def test_complexity(self):
        assert chroma_complexity(np.ones(12)) == pytest.approx(1.0)
        assert chroma_complexity(np.eye(12)[0]) == pytest.approx(0.0)
        assert chroma_complexity(np.zeros(12)) == 0.0

    def test_dominant_pitches_break_ties_low_first(self):
        assert dominant_pitch_classes(np.ones(12)) == [0, 1, 2]
        assert dominant_pitch_classes([0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 0, 2]) == [11, 9, 0]

    def test_patterns(self):
        assert has_pentatonic_pattern([0, 4, 7])
        assert has_major_pattern([0, 4, 7])
        assert has_minor_pattern([0, 3, 7])
        assert not has_minor_pattern([0, 4, 7])
        assert has_latin_pattern([0, 6])
        assert has_latin_pattern([2, 0])


class TestGenreClassifier:
    def test_primary_is_top_score(self, classifier, features):
        result = classifier.classify(features, 124.0)
        assert result.primary == max(result.scores, key=result.scores.get)
        assert 0.0 <= result.confidence <= 1.0
        assert result.primary not in result.secondary
        assert len(result.secondary) <= 3
        assert all(result.scores[genre] > 0.2 for genre in result.secondary)

    def test_dark_quiet_complex_audio_is_jazz(self, classifier):
        features = make_features(
            spectral_centroid_mean=1000.0,
            spectral_bandwidth=600.0,
            rms_mean=0.05,
            zcr_mean=0.02,
            zcr_variance=0.02,
            chroma_mean=np.full(12, 0.5),
            chroma_variance=np.full(12, 0.2),
        )
        result = classifier.classify(features)
        assert result.primary == "Jazz"
        assert "Classical" in result.secondary

    def test_no_genres_when_scores_are_flat(self, features):
        rules = GenreRules(
            tempo_bands=(),
            bonuses={name: {} for name in GenreRules().bonuses},
        )
        with pytest.raises(GenreClassificationError) as exc_info:
            GenreClassifier(rules=rules).classify(features, 120.0)
        assert exc_info.value.reason == "NO_GENRES_DETECTED"

    def test_missing_features(self, classifier):
        with pytest.raises(GenreClassificationError) as exc_info:
            classifier.classify(None)
        assert exc_info.value.reason == "MISSING_FEATURES"
        assert exc_info.value.code == AnalysisErrorCode.GENRE_CLASSIFICATION_FAILED
        assert exc_info.value.warning

    @pytest.mark.parametrize("overrides, tempo, reason", [
        ({'spectral_centroid_mean': float('nan')}, None, "INVALID_SPECTRAL_CENTROID"),
        ({'rms_mean': -0.1}, None, "INVALID_RMS"),
        ({'chroma_mean': np.ones(11)}, None, "INVALID_CHROMA"),
        ({}, 0.0, "INVALID_TEMPO"),
        ({}, 450.0, "INVALID_TEMPO"),
    ])
    def test_validation(self, classifier, overrides, tempo, reason):
        with pytest.raises(GenreClassificationError) as exc_info:
            classifier.classify(make_features(**overrides), tempo)
        assert exc_info.value.reason == reason


def test_factory_overrides_scalar_rules():
    classifier = create_genre_classifier({'secondary_threshold': 0.5, 'bonuses': {}})
    assert classifier.rules.secondary_threshold == 0.5
    assert 'bright' in classifier.rules.bonuses
