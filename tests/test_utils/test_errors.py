"""Tests for the error hierarchy and error codes."""

import pytest

from trackmeta.utils.errors import (
    AnalysisCancelledError,
    AnalysisError,
    AnalysisErrorCode,
    ConfigurationError,
    DecodeError,
    FeatureExtractionError,
    GenreClassificationError,
    KeyDetectionError,
    MoodDetectionError,
    TempoDetectionError,
)


class TestAnalysisError:
    def test_defaults_user_message_per_code(self):
        err = AnalysisError(AnalysisErrorCode.INSUFFICIENT_AUDIO, "too short")
        assert "at least 10 seconds" in err.user_message
        assert err.message == "too short"

    def test_custom_user_message_wins(self):
        err = AnalysisError(AnalysisErrorCode.DECODE_FAILED, "bad", user_message="Nope")
        assert err.user_message == "Nope"

    def test_unknown_code_falls_back_to_generic_message(self):
        err = AnalysisError(AnalysisErrorCode.UNKNOWN_ERROR, "boom")
        assert "unexpected error" in err.user_message

    @pytest.mark.parametrize("code", [
        AnalysisErrorCode.DOWNLOAD_FAILED,
        AnalysisErrorCode.DOWNLOAD_TIMEOUT,
        AnalysisErrorCode.ANALYSIS_TIMEOUT,
    ])
    def test_retryable_codes(self, code):
        assert AnalysisError(code, "x").retryable is True

    @pytest.mark.parametrize("code", [
        AnalysisErrorCode.DOWNLOAD_TOO_LARGE,
        AnalysisErrorCode.DECODE_FAILED,
        AnalysisErrorCode.TEMPO_DETECTION_FAILED,
        AnalysisErrorCode.MEMORY_LIMIT_EXCEEDED,
        AnalysisErrorCode.UNKNOWN_ERROR,
    ])
    def test_non_retryable_codes(self, code):
        assert AnalysisError(code, "x").retryable is False

    def test_warning_only_for_classifiers(self):
        assert AnalysisError(AnalysisErrorCode.GENRE_CLASSIFICATION_FAILED, "x").warning
        assert AnalysisError(AnalysisErrorCode.MOOD_DETECTION_FAILED, "x").warning
        assert not AnalysisError(AnalysisErrorCode.KEY_DETECTION_FAILED, "x").warning

    def test_to_dict_is_serializable(self):
        err = AnalysisError(AnalysisErrorCode.ANALYSIS_TIMEOUT, "slow", {"timeout": 30})
        data = err.to_dict()
        assert data["code"] == "ANALYSIS_TIMEOUT"
        assert data["details"] == {"timeout": 30}
        assert data["retryable"] is True
        assert "timestamp" in data

    def test_from_error_records_original(self):
        err = AnalysisError.from_error(ValueError("bad value"), AnalysisErrorCode.UNKNOWN_ERROR)
        assert err.details["original_error"] == "bad value"
        assert err.details["error_type"] == "ValueError"

    def test_with_context_does_not_overwrite(self):
        err = AnalysisError(AnalysisErrorCode.UNKNOWN_ERROR, "x", {"step": "tempo"})
        err.with_context(step="engine", processing_time=1.5, analysis_id=None)
        assert err.details["step"] == "tempo"
        assert err.details["processing_time"] == 1.5
        assert "analysis_id" not in err.details


class TestStageErrors:
    @pytest.mark.parametrize("cls, code", [
        (FeatureExtractionError, AnalysisErrorCode.FEATURE_EXTRACTION_FAILED),
        (TempoDetectionError, AnalysisErrorCode.TEMPO_DETECTION_FAILED),
        (KeyDetectionError, AnalysisErrorCode.KEY_DETECTION_FAILED),
        (GenreClassificationError, AnalysisErrorCode.GENRE_CLASSIFICATION_FAILED),
        (MoodDetectionError, AnalysisErrorCode.MOOD_DETECTION_FAILED),
    ])
    def test_stage_family_code(self, cls, code):
        err = cls("failed", "SOME_REASON")
        assert err.code == code
        assert err.reason == "SOME_REASON"
        assert err.details["reason"] == "SOME_REASON"
        assert isinstance(err, AnalysisError)

    @pytest.mark.parametrize("reason, code", [
        ("UNKNOWN_FORMAT", AnalysisErrorCode.UNSUPPORTED_FORMAT),
        ("EMPTY_BUFFER", AnalysisErrorCode.CORRUPTED_FILE),
        ("BUFFER_TOO_SMALL", AnalysisErrorCode.CORRUPTED_FILE),
        ("FILE_TOO_LARGE", AnalysisErrorCode.DOWNLOAD_TOO_LARGE),
        ("DECODE_FAILED", AnalysisErrorCode.DECODE_FAILED),
    ])
    def test_decode_error_code_by_reason(self, reason, code):
        assert DecodeError("x", reason).code == code


class TestOtherErrors:
    def test_cancelled_error_keeps_reason(self):
        err = AnalysisCancelledError("timeout")
        assert err.reason == "timeout"
        assert "timeout" in str(err)

    def test_configuration_error(self):
        err = ConfigurationError("bad key", config_key="memory.max_mb")
        assert err.config_key == "memory.max_mb"
        assert err.code == AnalysisErrorCode.UNKNOWN_ERROR
        assert not err.retryable
