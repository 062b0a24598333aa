"""Tests for core data models."""

import json

import numpy as np
import pytest

from trackmeta.core.models import (
    GENRE_LABELS,
    MOOD_LABELS,
    AnalysisResult,
    GenreResult,
    KeyResult,
    MoodResult,
    PCMBuffer,
    Scale,
    StemSet,
    TempoResult,
)


class TestPCMBuffer:
    def test_from_samples_derives_duration(self):
        pcm = PCMBuffer.from_samples(np.zeros(22050), 22050)
        assert pcm.duration == pytest.approx(1.0)
        assert pcm.num_samples == 22050

    def test_samples_are_read_only_copy(self):
        source = np.ones(100, dtype=np.float64)
        pcm = PCMBuffer.from_samples(source, 100)
        source[0] = 5.0
        assert pcm.samples[0] == 1.0
        assert pcm.samples.dtype == np.float32
        with pytest.raises(ValueError):
            pcm.samples[0] = 2.0

    def test_peak(self):
        pcm = PCMBuffer.from_samples(np.array([0.1, -0.7, 0.3]), 3)
        assert pcm.peak == pytest.approx(0.7)
        assert PCMBuffer.from_samples(np.array([]), 3).peak == 0.0


class TestResults:
    def test_confidence_is_validated(self):
        with pytest.raises(ValueError):
            TempoResult(bpm=120.0, confidence=1.5)

    def test_key_root_range(self):
        with pytest.raises(ValueError):
            KeyResult(key="C major", confidence=0.5, scale=Scale.MAJOR, root=12)

    def test_key_root_name(self):
        key = KeyResult(key="A minor", confidence=0.8, scale=Scale.MINOR, root=9)
        assert key.root_name == "A"
        assert key.to_dict()["scale"] == "minor"

    def test_genre_secondary_cap(self):
        with pytest.raises(ValueError):
            GenreResult(primary="Pop", confidence=0.5, secondary=["a", "b", "c", "d"])

    def test_mood_tag_cap(self):
        with pytest.raises(ValueError):
            MoodResult(
                primary="Chill", energy="low", valence="neutral", intensity="calm",
                confidence=0.5, tags=["a", "b", "c", "d", "e"],
            )

    def test_unknown_defaults(self):
        genre = GenreResult.unknown()
        assert genre.primary == "Unknown"
        assert genre.confidence == 0.0
        assert set(genre.scores) == set(GENRE_LABELS)

        mood = MoodResult.unknown()
        assert mood.primary == "Unknown"
        assert mood.energy == "medium"
        assert mood.valence == "neutral"
        assert mood.intensity is None
        assert mood.tags == []
        assert set(mood.scores) == set(MOOD_LABELS)


class TestAnalysisResult:
    def _result(self, features=None):
        return AnalysisResult(
            tempo=TempoResult(bpm=120.0, confidence=0.9),
            key=KeyResult(key="C major", confidence=0.7, scale=Scale.MAJOR, root=0),
            features=features,
            genre=GenreResult.unknown(),
            mood=MoodResult.unknown(),
            duration=30.0,
            metadata={"analysis_method": "real"},
            stems=StemSet(drums="drums.wav"),
        )

    def test_to_json_round_trips_through_json(self, features):
        data = json.loads(self._result(features).to_json())
        assert data["tempo"]["bpm"] == 120.0
        assert len(data["features"]["mfcc_mean"]) == 13
        assert len(data["features"]["chroma_mean"]) == 12
        assert data["stems"]["drums"] == "drums.wav"
        assert data["synthetic"] is False

    def test_summary(self):
        summary = self._result().get_summary()
        assert "120.00 BPM" in summary
        assert "C major" in summary
        assert "Unknown" in summary
