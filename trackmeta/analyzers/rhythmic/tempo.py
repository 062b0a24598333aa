"""
Tempo detector for the track analysis pipeline.

Wraps a beat-tracking routine, normalizes whatever shape it returns,
corrects half/double-time octave errors and assigns a confidence.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from numbers import Number
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, Union

import librosa
import numpy as np

from trackmeta.core.analyzer_base import BaseAnalyzer
from trackmeta.core.models import PCMBuffer, TempoResult
from trackmeta.utils.cancellation import CancellationToken
from trackmeta.utils.errors import AnalysisCancelledError, TempoDetectionError

MIN_BPM = 60.0
MAX_BPM = 200.0
COMMON_MIN_BPM = 80.0
COMMON_MAX_BPM = 160.0

MIN_DURATION = 5.0  # seconds
MAX_DURATION = 600.0  # seconds
SILENCE_THRESHOLD = 0.001  # peak amplitude
TIMEOUT = 30.0  # seconds
POLL_INTERVAL = 0.05  # seconds

CORRECTION_PENALTY = 0.8
CORRECTION_FLOOR = 0.1
UNCORRECTED_CAP = 0.3

RawTempo = Union[float, Mapping[str, Any]]


class BeatEstimator(Protocol):
    """Capability interface for beat-periodicity estimation."""

    def estimate(self, pcm: PCMBuffer) -> RawTempo:
        """
        Return a bare BPM or a mapping with ``tempo``/``bpm``/``value``
        and optional ``confidence`` and ``offset``/``phase``.
        """
        ...


class LibrosaBeatEstimator:
    """BeatEstimator backed by librosa's dynamic-programming beat tracker."""

    def estimate(self, pcm: PCMBuffer) -> Dict[str, float]:
        # librosa may hand out views of its input; keep the buffer untouched
        y = np.array(pcm.samples, dtype=np.float32)
        tempo, beats = librosa.beat.beat_track(y=y, sr=pcm.sample_rate, units='time')

        # Convert tempo to float if it's an array
        if isinstance(tempo, np.ndarray):
            tempo = float(tempo.ravel()[0]) if tempo.size > 0 else 0.0
        else:
            tempo = float(tempo)

        offset = float(beats[0]) if len(beats) > 0 else 0.0
        return {'tempo': tempo, 'offset': offset}


def confidence_from_bpm(bpm: float) -> float:
    """Heuristic confidence when the estimator supplies none."""
    if bpm <= 0:
        return 0.0
    if COMMON_MIN_BPM <= bpm <= COMMON_MAX_BPM:
        return 0.9
    if MIN_BPM <= bpm <= MAX_BPM:
        return 0.7
    return 0.3


def parse_detection_result(result: Any) -> Tuple[float, float, float]:
    """
    Normalize a raw estimator result into (bpm, confidence, offset).

    Raises:
        TempoDetectionError: INVALID_RESULT for unrecognized shapes
    """
    if isinstance(result, np.ndarray) and result.size == 1:
        result = float(result.ravel()[0])

    if isinstance(result, Number) and not isinstance(result, bool):
        bpm = float(result)
        return bpm, confidence_from_bpm(bpm), 0.0

    if isinstance(result, Mapping):
        bpm = _first_present(result, ('tempo', 'bpm', 'value'), 0.0)
        confidence = result.get('confidence')
        confidence = confidence_from_bpm(bpm) if confidence is None else float(confidence)
        offset = _first_present(result, ('offset', 'phase'), 0.0)
        return bpm, confidence, offset

    raise TempoDetectionError(
        "Unexpected result format from beat detector",
        "INVALID_RESULT",
        {'result': repr(result)},
    )


def _first_present(mapping: Mapping[str, Any], keys, default: float) -> float:
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return float(value)
    return default


def correct_octave_errors(
    bpm: float, confidence: float, offset: float = 0.0
) -> Tuple[float, float, float, bool]:
    """
    Nudge half/double-time detections into [MIN_BPM, MAX_BPM].

    Returns:
        (bpm, confidence, offset, corrected) with bpm rounded to 2 decimals
        and confidence/offset to 3
    """
    adjusted_bpm = bpm
    adjusted_confidence = confidence
    corrected = False

    if 0 < bpm < MIN_BPM:
        doubled = bpm * 2
        if MIN_BPM <= doubled <= MAX_BPM:
            adjusted_bpm = doubled
            adjusted_confidence = max(CORRECTION_FLOOR, confidence * CORRECTION_PENALTY)
            corrected = True
        else:
            adjusted_confidence = min(confidence, UNCORRECTED_CAP)

    elif bpm > MAX_BPM:
        halved = bpm / 2
        if MIN_BPM <= halved <= MAX_BPM:
            adjusted_bpm = halved
            adjusted_confidence = max(CORRECTION_FLOOR, confidence * CORRECTION_PENALTY)
            corrected = True
        else:
            adjusted_confidence = min(confidence, UNCORRECTED_CAP)

    adjusted_confidence = max(0.0, min(1.0, adjusted_confidence))

    return (
        round(adjusted_bpm, 2),
        round(adjusted_confidence, 3),
        round(offset, 3),
        corrected,
    )


class TempoDetector(BaseAnalyzer[TempoResult]):
    """
    Tempo estimation with octave-error correction.

    Validates duration and loudness, delegates periodicity estimation
    to a BeatEstimator and post-processes its output.
    """

    error_cls = TempoDetectionError
    failure_reason = "DETECTION_FAILED"

    def __init__(
        self,
        estimator: Optional[BeatEstimator] = None,
        min_duration: float = MIN_DURATION,
        max_duration: float = MAX_DURATION,
        timeout: float = TIMEOUT,
    ):
        """
        Initialize tempo detector.

        Args:
            estimator: Beat-periodicity estimator (librosa by default)
            min_duration: Shortest accepted clip in seconds
            max_duration: Longest accepted clip in seconds
            timeout: Deadline for standalone detect_tempo() calls
        """
        super().__init__(name="tempo", version="1.0.0")
        self.estimator = estimator or LibrosaBeatEstimator()
        self.min_duration = min_duration
        self.max_duration = max_duration
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="beat-estimator")

    def detect_tempo(
        self, pcm: PCMBuffer, token: Optional[CancellationToken] = None
    ) -> TempoResult:
        """
        Detect tempo, bounded by ``timeout`` when no token is supplied.

        Raises:
            TempoDetectionError: On invalid input, estimator failure or TIMEOUT
        """
        if pcm is None:
            raise TempoDetectionError("PCM data is missing", "INVALID_INPUT")

        try:
            return self.analyze(pcm, token)
        except AnalysisCancelledError as e:
            if token is not None:
                raise
            raise TempoDetectionError(
                "Tempo detection timed out", "TIMEOUT", {'timeout': self.timeout}
            ) from e

    def _default_token(self) -> CancellationToken:
        return CancellationToken(timeout=self.timeout)

    def _analyze_impl(self, pcm: PCMBuffer, token: CancellationToken) -> TempoResult:
        self._validate(pcm)

        try:
            raw = self._estimate(pcm, token)
        except (TempoDetectionError, AnalysisCancelledError):
            raise
        except Exception as e:
            raise TempoDetectionError(
                f"Beat detection library failed: {e}",
                "LIBRARY_ERROR",
                {'original_error': str(e)},
            ) from e

        token.raise_if_cancelled()

        raw_bpm, confidence, offset = parse_detection_result(raw)
        bpm, confidence, offset, corrected = correct_octave_errors(raw_bpm, confidence, offset)

        if corrected:
            self.logger.info(f"Adjusted tempo octave: {raw_bpm} -> {bpm} BPM")
        elif not MIN_BPM <= bpm <= MAX_BPM:
            self.logger.warning(f"Tempo outside {MIN_BPM:.0f}-{MAX_BPM:.0f} BPM: {bpm} (low confidence)")

        self.logger.info(f"Tempo detected: {bpm} BPM (confidence: {confidence:.3f})")
        return TempoResult(bpm=bpm, confidence=confidence, offset_seconds=offset)

    def _estimate(self, pcm: PCMBuffer, token: CancellationToken) -> RawTempo:
        # One opaque call: wait on it in slices so the token bounds the wait.
        future = self._executor.submit(self.estimator.estimate, pcm)
        while True:
            remaining = token.remaining()
            wait = POLL_INTERVAL if remaining is None else min(POLL_INTERVAL, remaining)
            try:
                return future.result(timeout=wait)
            except FutureTimeoutError:
                if future.done():
                    raise
                if token.cancelled:
                    future.cancel()
                    self.logger.warning("Beat estimator abandoned after deadline")
                    token.raise_if_cancelled()

    def _validate(self, pcm: PCMBuffer) -> None:
        if pcm.num_samples == 0:
            raise TempoDetectionError("PCM samples are empty", "EMPTY_SAMPLES")

        if pcm.sample_rate <= 0:
            raise TempoDetectionError(
                "Invalid sample rate", "INVALID_SAMPLE_RATE", {'sample_rate': pcm.sample_rate}
            )

        if pcm.duration <= 0:
            raise TempoDetectionError(
                "Invalid duration", "INVALID_DURATION", {'duration': pcm.duration}
            )

        if pcm.duration < self.min_duration:
            raise TempoDetectionError(
                f"Audio too short for reliable tempo detection (minimum {self.min_duration}s)",
                "AUDIO_TOO_SHORT",
                {'duration': pcm.duration, 'min_duration': self.min_duration},
            )

        if pcm.duration > self.max_duration:
            raise TempoDetectionError(
                f"Audio too long for tempo detection (maximum {self.max_duration}s)",
                "AUDIO_TOO_LONG",
                {'duration': pcm.duration, 'max_duration': self.max_duration},
            )

        peak = pcm.peak
        if peak < SILENCE_THRESHOLD:
            raise TempoDetectionError(
                "Audio appears to be silent or too quiet",
                "SILENT_AUDIO",
                {'max_amplitude': peak},
            )

    def get_capabilities(self) -> Dict[str, float]:
        """Return the detector's limits."""
        return {
            'min_bpm': MIN_BPM,
            'max_bpm': MAX_BPM,
            'min_duration': self.min_duration,
            'max_duration': self.max_duration,
            'timeout': self.timeout,
        }


def create_tempo_detector(config: Optional[Dict[str, Any]] = None) -> TempoDetector:
    """
    Factory function to create TempoDetector with configuration.

    Args:
        config: Optional ``tempo`` configuration section

    Returns:
        TempoDetector: Configured detector
    """
    if config is None:
        config = {}

    return TempoDetector(
        min_duration=config.get('min_duration', MIN_DURATION),
        max_duration=config.get('max_duration', MAX_DURATION),
        timeout=config.get('timeout', TIMEOUT),
    )
