"""
Key detector for the track analysis pipeline.

Builds an energy-gated chromagram and applies the Krumhansl-Schmuckler
key-finding algorithm over all 24 root/scale hypotheses.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from trackmeta.core.analyzer_base import BaseAnalyzer
from trackmeta.core.dsp import FrameBackend, LibrosaFrameBackend
from trackmeta.core.models import N_CHROMA, NOTE_NAMES, KeyResult, PCMBuffer, Scale
from trackmeta.utils.cancellation import CancellationToken
from trackmeta.utils.errors import AnalysisCancelledError, KeyDetectionError

# Krumhansl-Kessler tonal hierarchy profiles, index 0 = tonic
MAJOR_PROFILE = np.array([6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88])
MINOR_PROFILE = np.array([6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17])

FRAME_SIZE = 4096
HOP_SIZE = 2048
MIN_FRAME_RMS = 0.01

MIN_DURATION = 10.0  # seconds
MAX_DURATION = 600.0  # seconds
SILENCE_THRESHOLD = 0.001  # peak amplitude
CONFIDENCE_THRESHOLD = 0.6
TIMEOUT = 30.0  # seconds


def pearson_correlation(x: np.ndarray, y: np.ndarray) -> float:
    """Pearson correlation, 0.0 when either input has no variance."""
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0
    return float(np.corrcoef(x, y)[0, 1])


def rotate_profile(profile: np.ndarray, root: int) -> np.ndarray:
    """Shift a tonic-indexed profile so its tonic lands on ``root``."""
    return np.roll(profile, root)


def krumhansl_schmuckler(chromagram: np.ndarray) -> KeyResult:
    """
    Pick the best of the 24 major/minor key hypotheses.

    Ties keep the earlier hypothesis (roots ascending from C, major
    before minor). Non-positive correlations leave the default C major.
    """
    chromagram = np.asarray(chromagram, dtype=np.float64)
    if chromagram.shape != (N_CHROMA,):
        raise KeyDetectionError(
            "Invalid chromagram length",
            "INVALID_CHROMAGRAM",
            {'length': int(chromagram.size)},
        )

    best_root = 0
    best_scale = Scale.MAJOR
    best_correlation = 0.0

    for root in range(N_CHROMA):
        for scale, profile in ((Scale.MAJOR, MAJOR_PROFILE), (Scale.MINOR, MINOR_PROFILE)):
            correlation = pearson_correlation(chromagram, rotate_profile(profile, root))
            if correlation > best_correlation:
                best_correlation = correlation
                best_root = root
                best_scale = scale

    return KeyResult(
        key=f"{NOTE_NAMES[best_root]} {best_scale.value}",
        confidence=max(0.0, min(1.0, best_correlation)),
        scale=best_scale,
        root=best_root,
    )


@dataclass
class ConsistencyReport:
    """Outcome of repeated key detection on the same audio."""

    results: List[KeyResult] = field(default_factory=list)
    is_consistent: bool = True
    average_confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'results': [r.to_dict() for r in self.results],
            'is_consistent': self.is_consistent,
            'average_confidence': self.average_confidence,
        }


class KeyDetector(BaseAnalyzer[KeyResult]):
    """
    Key estimation from an energy-gated, L1-normalized chromagram.

    Low-confidence results are logged as uncertain but still returned.
    """

    error_cls = KeyDetectionError
    failure_reason = "DETECTION_FAILED"

    def __init__(
        self,
        backend: Optional[FrameBackend] = None,
        frame_size: int = FRAME_SIZE,
        hop_size: int = HOP_SIZE,
        min_duration: float = MIN_DURATION,
        max_duration: float = MAX_DURATION,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        timeout: float = TIMEOUT,
    ):
        """
        Initialize key detector.

        Args:
            backend: Per-frame DSP implementation used for chroma
            frame_size: Window length in samples
            hop_size: Hop between windows in samples
            min_duration: Shortest accepted clip in seconds
            max_duration: Longest accepted clip in seconds
            confidence_threshold: Below this the key is logged as uncertain
            timeout: Deadline for standalone detect_key() calls
        """
        super().__init__(name="key", version="1.0.0")
        self.backend = backend or LibrosaFrameBackend()
        self.frame_size = frame_size
        self.hop_size = hop_size
        self.min_duration = min_duration
        self.max_duration = max_duration
        self.confidence_threshold = confidence_threshold
        self.timeout = timeout

    def detect_key(
        self, pcm: PCMBuffer, token: Optional[CancellationToken] = None
    ) -> KeyResult:
        """
        Detect key, bounded by ``timeout`` when no token is supplied.

        Raises:
            KeyDetectionError: On invalid input, extraction failure or TIMEOUT
        """
        if pcm is None:
            raise KeyDetectionError("PCM data is missing", "INVALID_INPUT")

        try:
            return self.analyze(pcm, token)
        except AnalysisCancelledError as e:
            if token is not None:
                raise
            raise KeyDetectionError(
                "Key detection timed out", "TIMEOUT", {'timeout': self.timeout}
            ) from e

    def _default_token(self) -> CancellationToken:
        return CancellationToken(timeout=self.timeout)

    def _analyze_impl(self, pcm: PCMBuffer, token: CancellationToken) -> KeyResult:
        self._validate(pcm)

        chromagram = self.extract_chromagram(pcm, token)
        result = krumhansl_schmuckler(chromagram)

        if result.confidence < self.confidence_threshold:
            self.logger.warning(
                f"Low confidence key detection: {result.key} "
                f"(confidence: {result.confidence:.3f})"
            )
        else:
            self.logger.info(f"Key detected: {result.key} (confidence: {result.confidence:.3f})")

        return result

    def extract_chromagram(
        self, pcm: PCMBuffer, token: Optional[CancellationToken] = None
    ) -> np.ndarray:
        """
        Average chroma over frames above the RMS gate, normalized to sum to 1.

        Raises:
            KeyDetectionError: NO_VALID_FRAMES if every frame is gated out
        """
        samples = pcm.samples
        num_frames = (pcm.num_samples - self.frame_size) // self.hop_size + 1
        accumulator = np.zeros(N_CHROMA, dtype=np.float64)
        frame_count = 0

        for index in range(max(num_frames, 0)):
            if token is not None:
                token.raise_if_cancelled()

            start = index * self.hop_size
            frame = samples[start:start + self.frame_size]

            rms = float(np.sqrt(np.mean(np.square(frame, dtype=np.float64))))
            if rms < MIN_FRAME_RMS:
                continue

            chroma = self.backend.frame_chroma(frame, pcm.sample_rate)
            if len(chroma) != N_CHROMA or not np.all(np.isfinite(chroma)):
                self.logger.debug(f"Skipping frame {index}: invalid chroma")
                continue

            accumulator += chroma
            frame_count += 1

        if frame_count == 0:
            raise KeyDetectionError(
                "No valid frames found for chromagram extraction",
                "NO_VALID_FRAMES",
                {'total_frames': max(num_frames, 0)},
            )

        average = accumulator / frame_count
        total = float(np.sum(average))
        chromagram = average / total if total > 0 else average

        self.logger.debug(
            f"Extracted chromagram from {frame_count} frames: "
            f"[{', '.join(f'{v:.3f}' for v in chromagram)}]"
        )
        return chromagram

    def _validate(self, pcm: PCMBuffer) -> None:
        if pcm.num_samples == 0:
            raise KeyDetectionError("PCM samples are empty", "EMPTY_SAMPLES")

        if pcm.sample_rate <= 0:
            raise KeyDetectionError(
                "Invalid sample rate", "INVALID_SAMPLE_RATE", {'sample_rate': pcm.sample_rate}
            )

        if pcm.duration <= 0:
            raise KeyDetectionError(
                "Invalid duration", "INVALID_DURATION", {'duration': pcm.duration}
            )

        if pcm.duration < self.min_duration:
            raise KeyDetectionError(
                f"Audio too short for reliable key detection (minimum {self.min_duration}s)",
                "AUDIO_TOO_SHORT",
                {'duration': pcm.duration, 'min_duration': self.min_duration},
            )

        if pcm.duration > self.max_duration:
            raise KeyDetectionError(
                f"Audio too long for key detection (maximum {self.max_duration}s)",
                "AUDIO_TOO_LONG",
                {'duration': pcm.duration, 'max_duration': self.max_duration},
            )

        peak = pcm.peak
        if peak < SILENCE_THRESHOLD:
            raise KeyDetectionError(
                "Audio appears to be silent or too quiet",
                "SILENT_AUDIO",
                {'max_amplitude': peak},
            )

        if pcm.num_samples < self.frame_size:
            raise KeyDetectionError(
                "Audio too short for frame analysis",
                "INSUFFICIENT_SAMPLES",
                {'sample_count': pcm.num_samples, 'required_samples': self.frame_size},
            )

    def get_capabilities(self) -> Dict[str, float]:
        """Return the detector's limits."""
        return {
            'min_duration': self.min_duration,
            'max_duration': self.max_duration,
            'timeout': self.timeout,
            'confidence_threshold': self.confidence_threshold,
            'frame_size': self.frame_size,
            'hop_size': self.hop_size,
        }

    def check_consistency(self, pcm: PCMBuffer, iterations: int = 3) -> ConsistencyReport:
        """
        Run detection repeatedly on the same audio.

        Useful for debugging: the detector has no hidden randomness, so
        an inconsistent report points at a non-deterministic backend.
        """
        results = [self.detect_key(pcm) for _ in range(iterations)]

        first_key = results[0].key if results else None
        is_consistent = all(r.key == first_key for r in results)
        average_confidence = (
            sum(r.confidence for r in results) / len(results) if results else 0.0
        )

        self.logger.info(
            f"Consistency check: {'CONSISTENT' if is_consistent else 'INCONSISTENT'} "
            f"({iterations} iterations, avg confidence: {average_confidence:.3f})"
        )

        return ConsistencyReport(
            results=results,
            is_consistent=is_consistent,
            average_confidence=average_confidence,
        )


def create_key_detector(config: Optional[Dict[str, Any]] = None) -> KeyDetector:
    """
    Factory function to create KeyDetector with configuration.

    Args:
        config: Optional ``key`` configuration section

    Returns:
        KeyDetector: Configured detector
    """
    if config is None:
        config = {}

    return KeyDetector(
        min_duration=config.get('min_duration', MIN_DURATION),
        max_duration=config.get('max_duration', MAX_DURATION),
        confidence_threshold=config.get('confidence_threshold', CONFIDENCE_THRESHOLD),
        timeout=config.get('timeout', TIMEOUT),
    )
