"""Tests for KeyDetector and the Krumhansl-Schmuckler matcher."""

import time

import numpy as np
import pytest

from conftest import SAMPLE_RATE, harmonic_tone, make_pcm, wav_bytes
from trackmeta.analyzers.musical.key import (
    MAJOR_PROFILE,
    MINOR_PROFILE,
    KeyDetector,
    create_key_detector,
    krumhansl_schmuckler,
    pearson_correlation,
    rotate_profile,
)
from trackmeta.core.decoder import AudioDecoder
from trackmeta.core.dsp import LibrosaFrameBackend
from trackmeta.core.features import FeatureExtractor
from trackmeta.core.models import Scale
from trackmeta.utils.errors import AnalysisErrorCode, KeyDetectionError


class SlowChromaBackend(LibrosaFrameBackend):
    def frame_chroma(self, frame, sample_rate):
        time.sleep(0.05)
        return super().frame_chroma(frame, sample_rate)


class TestKrumhanslSchmuckler:
    @pytest.mark.parametrize("root", [0, 4, 9, 11])
    def test_major_profile_matches_itself(self, root):
        result = krumhansl_schmuckler(rotate_profile(MAJOR_PROFILE, root))
        assert result.root == root
        assert result.scale == Scale.MAJOR
        assert result.confidence == pytest.approx(1.0)

    def test_minor_profile(self):
        result = krumhansl_schmuckler(rotate_profile(MINOR_PROFILE, 9))
        assert result.key == "A minor"
        assert result.root_name == "A"

    def test_flat_chromagram_defaults_to_c_major(self):
        result = krumhansl_schmuckler(np.full(12, 1 / 12))
        assert result.key == "C major"
        assert result.confidence == 0.0

    def test_wrong_length(self):
        with pytest.raises(KeyDetectionError) as exc_info:
            krumhansl_schmuckler(np.ones(10))
        assert exc_info.value.reason == "INVALID_CHROMAGRAM"

    def test_pearson_without_variance(self):
        assert pearson_correlation(np.ones(12), MAJOR_PROFILE) == 0.0

    def test_pearson_matches_reference_values(self):
        assert pearson_correlation(MAJOR_PROFILE, MAJOR_PROFILE) == pytest.approx(1.0)
        assert pearson_correlation(MAJOR_PROFILE, -MAJOR_PROFILE) == pytest.approx(-1.0)


class TestKeyDetector:
    def test_a_tone_has_root_a(self, tone_pcm):
        result = KeyDetector().detect_key(tone_pcm)
        assert result.root == 9
        assert 0 <= result.confidence <= 1

    def test_chromagram_sums_to_one(self, tone_pcm):
        chromagram = KeyDetector().extract_chromagram(tone_pcm)
        assert chromagram.shape == (12,)
        assert float(np.sum(chromagram)) == pytest.approx(1.0)

    def test_silent_audio(self, silent_pcm):
        with pytest.raises(KeyDetectionError) as exc_info:
            KeyDetector().detect_key(silent_pcm)
        assert exc_info.value.reason == "SILENT_AUDIO"
        assert exc_info.value.code == AnalysisErrorCode.KEY_DETECTION_FAILED

    def test_quiet_frames_are_gated(self):
        quiet = make_pcm(np.full(12 * SAMPLE_RATE, 0.005, dtype=np.float32))
        with pytest.raises(KeyDetectionError) as exc_info:
            KeyDetector().detect_key(quiet)
        assert exc_info.value.reason == "NO_VALID_FRAMES"

    def test_too_short(self, tone_pcm):
        with pytest.raises(KeyDetectionError) as exc_info:
            KeyDetector(min_duration=20.0).detect_key(tone_pcm)
        assert exc_info.value.reason == "AUDIO_TOO_SHORT"

    def test_deadline_bounds_a_slow_backend(self, tone_pcm):
        detector = KeyDetector(backend=SlowChromaBackend(), timeout=0.2)

        start = time.monotonic()
        with pytest.raises(KeyDetectionError) as exc_info:
            detector.detect_key(tone_pcm)
        elapsed = time.monotonic() - start

        assert exc_info.value.reason == "TIMEOUT"
        assert elapsed < 1.0

    def test_consistency(self, tone_pcm):
        report = KeyDetector().check_consistency(tone_pcm, iterations=2)
        assert report.is_consistent
        assert len(report.results) == 2
        assert report.to_dict()['average_confidence'] == pytest.approx(report.results[0].confidence)


def test_factory_reads_key_section():
    detector = create_key_detector({'confidence_threshold': 0.4, 'min_duration': 5.0})
    assert detector.confidence_threshold == 0.4
    assert detector.get_capabilities()['min_duration'] == 5.0


def test_decoded_harmonic_series_at_44100_is_a():
    samples = harmonic_tone(220.0, 12.0, sr=44100)
    pcm = AudioDecoder().decode(wav_bytes(samples, sr=44100))

    features = FeatureExtractor().extract(pcm)
    assert features.frame_count > 0
    assert np.all(np.isfinite(features.chroma_mean))

    result = KeyDetector().detect_key(pcm)
    assert result.root == 9
    assert result.scale in (Scale.MAJOR, Scale.MINOR)
    assert 0 < result.confidence <= 1
