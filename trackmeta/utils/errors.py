"""
Custom exceptions for the track analysis pipeline.

This module defines a hierarchy of exceptions for handling the failure
modes of decoding, feature extraction, detection and classification,
plus the closed set of error codes exposed to callers.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class AnalysisErrorCode(str, Enum):
    """Closed enumeration of caller-visible failure codes."""

    # Download errors
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    DOWNLOAD_TIMEOUT = "DOWNLOAD_TIMEOUT"
    DOWNLOAD_TOO_LARGE = "DOWNLOAD_TOO_LARGE"

    # Format and decoding errors
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    DECODE_FAILED = "DECODE_FAILED"
    CORRUPTED_FILE = "CORRUPTED_FILE"

    # Analysis errors
    ANALYSIS_TIMEOUT = "ANALYSIS_TIMEOUT"
    INSUFFICIENT_AUDIO = "INSUFFICIENT_AUDIO"
    TEMPO_DETECTION_FAILED = "TEMPO_DETECTION_FAILED"
    KEY_DETECTION_FAILED = "KEY_DETECTION_FAILED"
    FEATURE_EXTRACTION_FAILED = "FEATURE_EXTRACTION_FAILED"
    GENRE_CLASSIFICATION_FAILED = "GENRE_CLASSIFICATION_FAILED"
    MOOD_DETECTION_FAILED = "MOOD_DETECTION_FAILED"

    # Resource errors
    MEMORY_LIMIT_EXCEEDED = "MEMORY_LIMIT_EXCEEDED"
    PROCESSING_LIMIT_EXCEEDED = "PROCESSING_LIMIT_EXCEEDED"

    # System errors
    TEMP_DIR_FAILED = "TEMP_DIR_FAILED"
    CLEANUP_FAILED = "CLEANUP_FAILED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_CODES = frozenset({
    AnalysisErrorCode.DOWNLOAD_FAILED,
    AnalysisErrorCode.DOWNLOAD_TIMEOUT,
    AnalysisErrorCode.ANALYSIS_TIMEOUT,
})

WARNING_CODES = frozenset({
    AnalysisErrorCode.GENRE_CLASSIFICATION_FAILED,
    AnalysisErrorCode.MOOD_DETECTION_FAILED,
})

USER_MESSAGES: Dict[AnalysisErrorCode, str] = {
    AnalysisErrorCode.DOWNLOAD_FAILED:
        "Unable to download the audio file. Please check the file URL and try again.",
    AnalysisErrorCode.DOWNLOAD_TIMEOUT:
        "The audio file download took too long. Please try again with a smaller file.",
    AnalysisErrorCode.DOWNLOAD_TOO_LARGE:
        "The audio file is too large. Please upload a file smaller than 50MB.",
    AnalysisErrorCode.UNSUPPORTED_FORMAT:
        "This audio format is not supported. Please upload an MP3, WAV, FLAC, or OGG file.",
    AnalysisErrorCode.DECODE_FAILED:
        "The audio file appears to be corrupted or invalid. Please try uploading a different file.",
    AnalysisErrorCode.CORRUPTED_FILE:
        "The audio file appears to be corrupted or invalid. Please try uploading a different file.",
    AnalysisErrorCode.ANALYSIS_TIMEOUT:
        "Audio analysis took too long to complete. Please try again with a shorter audio file.",
    AnalysisErrorCode.INSUFFICIENT_AUDIO:
        "The audio file is too short for analysis. Please upload a file that is at least 10 seconds long.",
    AnalysisErrorCode.MEMORY_LIMIT_EXCEEDED:
        "The audio file is too complex to process. Please try with a smaller or simpler audio file.",
    AnalysisErrorCode.PROCESSING_LIMIT_EXCEEDED:
        "The system is currently busy. Please try again in a few minutes.",
    AnalysisErrorCode.TEMPO_DETECTION_FAILED:
        "Unable to detect the tempo of this audio file. The file may not contain clear rhythmic patterns.",
    AnalysisErrorCode.KEY_DETECTION_FAILED:
        "Unable to detect the musical key of this audio file. The file may not contain clear tonal content.",
    AnalysisErrorCode.FEATURE_EXTRACTION_FAILED:
        "Unable to analyze the audio characteristics. Please try with a different audio file.",
    AnalysisErrorCode.GENRE_CLASSIFICATION_FAILED:
        "Unable to classify the genre of this audio file. The analysis will continue without genre information.",
    AnalysisErrorCode.MOOD_DETECTION_FAILED:
        "Unable to detect the mood of this audio file. The analysis will continue without mood information.",
}

DEFAULT_USER_MESSAGE = "An unexpected error occurred during audio analysis. Please try again."


class AudioAnalysisError(Exception):
    """Base exception for all audio analysis errors."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class AnalysisError(AudioAnalysisError):
    """
    Typed, serializable analysis failure.

    Carries a code from the closed enumeration, an internal message, a
    pre-rendered user message and a structured details bag.
    """

    def __init__(
        self,
        code: AnalysisErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message, details=dict(details or {}))
        self.code = AnalysisErrorCode(code)
        self.user_message = user_message or USER_MESSAGES.get(self.code, DEFAULT_USER_MESSAGE)
        self.timestamp = datetime.now(timezone.utc)

    @property
    def retryable(self) -> bool:
        """Whether the caller may retry the operation that raised this error."""
        return self.code in RETRYABLE_CODES

    @property
    def warning(self) -> bool:
        """Whether the error should be logged as a warning rather than an error."""
        return self.code in WARNING_CODES

    def with_context(self, **context: Any) -> "AnalysisError":
        """Add context entries to details without overwriting existing ones."""
        for key, value in context.items():
            if value is not None:
                self.details.setdefault(key, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "retryable": self.retryable,
            "warning": self.warning,
        }

    @classmethod
    def from_error(
        cls,
        error: BaseException,
        code: AnalysisErrorCode,
        details: Optional[Dict[str, Any]] = None,
    ) -> "AnalysisError":
        """Wrap an arbitrary exception, keeping its text in details."""
        merged = dict(details or {})
        merged["original_error"] = str(error)
        merged["error_type"] = type(error).__name__
        return cls(code, str(error) or type(error).__name__, merged)


class StageError(AnalysisError):
    """
    Failure raised by a single pipeline stage.

    ``reason`` is the fine-grained cause (e.g. ``SILENT_AUDIO``) while
    ``code`` is the stage family from AnalysisErrorCode.
    """

    stage_code = AnalysisErrorCode.UNKNOWN_ERROR
    stage_name = "unknown"

    def __init__(
        self,
        message: str,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[AnalysisErrorCode] = None,
    ):
        super().__init__(code or self.stage_code, message, details)
        self.reason = reason
        self.details.setdefault("reason", reason)
        self.details.setdefault("step", self.stage_name)


class DecodeError(StageError):
    """Raised when audio bytes cannot be validated or decoded."""

    stage_code = AnalysisErrorCode.DECODE_FAILED
    stage_name = "decode"

    _REASON_CODES = {
        "UNSUPPORTED_FORMAT": AnalysisErrorCode.UNSUPPORTED_FORMAT,
        "UNKNOWN_FORMAT": AnalysisErrorCode.UNSUPPORTED_FORMAT,
        "EMPTY_BUFFER": AnalysisErrorCode.CORRUPTED_FILE,
        "BUFFER_TOO_SMALL": AnalysisErrorCode.CORRUPTED_FILE,
        "FILE_TOO_LARGE": AnalysisErrorCode.DOWNLOAD_TOO_LARGE,
    }

    def __init__(self, message: str, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, reason, details, code=self._REASON_CODES.get(reason))


class FeatureExtractionError(StageError):
    """Raised when feature extraction fails."""

    stage_code = AnalysisErrorCode.FEATURE_EXTRACTION_FAILED
    stage_name = "feature_extraction"


class TempoDetectionError(StageError):
    """Raised when tempo detection fails."""

    stage_code = AnalysisErrorCode.TEMPO_DETECTION_FAILED
    stage_name = "tempo_detection"


class KeyDetectionError(StageError):
    """Raised when key detection fails."""

    stage_code = AnalysisErrorCode.KEY_DETECTION_FAILED
    stage_name = "key_detection"


class GenreClassificationError(StageError):
    """Raised when genre classification fails."""

    stage_code = AnalysisErrorCode.GENRE_CLASSIFICATION_FAILED
    stage_name = "genre_classification"


class MoodDetectionError(StageError):
    """Raised when mood detection fails."""

    stage_code = AnalysisErrorCode.MOOD_DETECTION_FAILED
    stage_name = "mood_detection"


class AnalysisCancelledError(AudioAnalysisError):
    """Raised inside a stage when its cancellation token fires."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(f"Analysis cancelled: {reason}", details={"reason": reason})
        self.reason = reason


class ConfigurationError(AnalysisError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(
            AnalysisErrorCode.UNKNOWN_ERROR, message, details={"config_key": config_key}
        )
        self.config_key = config_key
