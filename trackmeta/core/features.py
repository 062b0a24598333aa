"""
Frame-based feature extractor for the track analysis pipeline.

Slides a half-overlapping window over the PCM, computes per-frame
spectral/cepstral/energy/chroma features through a FrameBackend and
aggregates them into clip-level mean/variance statistics in one pass.
"""

from typing import Any, Dict, Optional

import numpy as np

from trackmeta.core.analyzer_base import BaseAnalyzer
from trackmeta.core.dsp import FrameBackend, LibrosaFrameBackend
from trackmeta.core.models import (
    N_CHROMA,
    N_MFCC,
    AggregatedFeatures,
    FrameFeatures,
    PCMBuffer,
)
from trackmeta.utils.cancellation import CancellationToken
from trackmeta.utils.errors import AnalysisCancelledError, FeatureExtractionError

FRAME_SIZE = 2048
HOP_SIZE = 1024
MIN_FRAMES = 10

# Input sanity check on the head of the buffer
SANITY_WINDOW = 1000
SANITY_MAX_INVALID = 100
SANITY_MAX_AMPLITUDE = 2.0


class _Accumulator:
    """Running sum and sum of squares for one field."""

    def __init__(self, size: int = 1):
        self.total = np.zeros(size, dtype=np.float64)
        self.total_sq = np.zeros(size, dtype=np.float64)

    def add(self, value: Any) -> None:
        value = np.asarray(value, dtype=np.float64)
        self.total += value
        self.total_sq += value * value

    def stats(self, count: int):
        mean = self.total / count
        # E[x^2] - E[x]^2 can dip below zero by rounding
        variance = np.maximum(self.total_sq / count - mean * mean, 0.0)
        return mean, variance


class FeatureExtractor(BaseAnalyzer[AggregatedFeatures]):
    """
    Extracts aggregated features from decoded audio.

    Frames whose features are not finite are skipped with a warning
    rather than failing the whole extraction.
    """

    error_cls = FeatureExtractionError
    failure_reason = "EXTRACTION_FAILED"

    def __init__(
        self,
        backend: Optional[FrameBackend] = None,
        frame_size: int = FRAME_SIZE,
        hop_size: int = HOP_SIZE,
        min_frames: int = MIN_FRAMES,
    ):
        """
        Initialize extractor.

        Args:
            backend: Per-frame DSP implementation (librosa by default)
            frame_size: Analysis window length in samples
            hop_size: Hop between windows in samples
            min_frames: Minimum number of frames required
        """
        super().__init__(name="feature_extractor", version="1.0.0")
        self.backend = backend or LibrosaFrameBackend()
        self.frame_size = frame_size
        self.hop_size = hop_size
        self.min_frames = min_frames

    def extract(
        self, pcm: PCMBuffer, token: Optional[CancellationToken] = None
    ) -> AggregatedFeatures:
        """Alias of analyze()."""
        return self.analyze(pcm, token)

    def frame_count(self, num_samples: int) -> int:
        """
        Number of windows over ``num_samples`` samples.

        Includes one trailing zero-padded window when samples remain
        after the last full window.
        """
        if num_samples < self.frame_size:
            return 0
        full = (num_samples - self.frame_size) // self.hop_size + 1
        covered = (full - 1) * self.hop_size + self.frame_size
        return full + (1 if covered < num_samples else 0)

    def _analyze_impl(self, pcm: PCMBuffer, token: CancellationToken) -> AggregatedFeatures:
        self._validate(pcm)

        samples = pcm.samples
        total_frames = self.frame_count(pcm.num_samples)

        if total_frames < self.min_frames:
            raise FeatureExtractionError(
                f"Audio too short for analysis: need at least {self.min_frames} frames, "
                f"got {total_frames}",
                "AUDIO_TOO_SHORT",
                {'total_frames': total_frames, 'min_frames': self.min_frames},
            )

        self.logger.debug(f"Processing {total_frames} frames of {self.frame_size} samples")

        mfcc_acc = _Accumulator(N_MFCC)
        chroma_acc = _Accumulator(N_CHROMA)
        centroid_acc = _Accumulator()
        rolloff_acc = _Accumulator()
        zcr_acc = _Accumulator()
        rms_acc = _Accumulator()

        centroids = []
        rms_values = []
        last: Optional[FrameFeatures] = None
        skipped = 0

        for index in range(total_frames):
            token.raise_if_cancelled()

            start = index * self.hop_size
            frame = samples[start:start + self.frame_size]
            if len(frame) < self.frame_size:
                frame = np.pad(frame, (0, self.frame_size - len(frame)))

            try:
                features = self.backend.compute_frame_features(frame, pcm.sample_rate)
            except AnalysisCancelledError:
                raise
            except Exception as e:
                self.logger.warning(f"Feature computation failed in frame {index}, skipping: {e}")
                skipped += 1
                continue

            if not self._is_valid(features):
                self.logger.warning(f"Invalid features in frame {index}, skipping")
                skipped += 1
                continue

            mfcc_acc.add(features.mfcc)
            chroma_acc.add(features.chroma)
            centroid_acc.add(features.spectral_centroid)
            rolloff_acc.add(features.spectral_rolloff)
            zcr_acc.add(features.zero_crossing_rate)
            rms_acc.add(features.rms)
            centroids.append(features.spectral_centroid)
            rms_values.append(features.rms)
            last = features

        frame_count = len(centroids)
        if last is None:
            raise FeatureExtractionError(
                "No valid frames could be extracted",
                "NO_VALID_FRAMES",
                {'total_frames': total_frames},
            )
        if frame_count < self.min_frames:
            raise FeatureExtractionError(
                f"Only {frame_count} valid frames, need {self.min_frames}",
                "INSUFFICIENT_VALID_FRAMES",
                {'valid_frames': frame_count, 'skipped_frames': skipped},
            )

        mfcc_mean, mfcc_var = mfcc_acc.stats(frame_count)
        chroma_mean, chroma_var = chroma_acc.stats(frame_count)
        centroid_mean, centroid_var = centroid_acc.stats(frame_count)
        rolloff_mean, rolloff_var = rolloff_acc.stats(frame_count)
        zcr_mean, zcr_var = zcr_acc.stats(frame_count)
        rms_mean, rms_var = rms_acc.stats(frame_count)

        return AggregatedFeatures(
            mfcc=np.asarray(last.mfcc, dtype=np.float64),
            spectral_centroid=float(last.spectral_centroid),
            spectral_rolloff=float(last.spectral_rolloff),
            zero_crossing_rate=float(last.zero_crossing_rate),
            rms=float(last.rms),
            chroma=np.asarray(last.chroma, dtype=np.float64),
            mfcc_mean=mfcc_mean,
            mfcc_variance=mfcc_var,
            spectral_centroid_mean=float(centroid_mean[0]),
            spectral_centroid_variance=float(centroid_var[0]),
            spectral_rolloff_mean=float(rolloff_mean[0]),
            spectral_rolloff_variance=float(rolloff_var[0]),
            zcr_mean=float(zcr_mean[0]),
            zcr_variance=float(zcr_var[0]),
            rms_mean=float(rms_mean[0]),
            rms_variance=float(rms_var[0]),
            chroma_mean=chroma_mean,
            chroma_variance=chroma_var,
            spectral_bandwidth=spectral_bandwidth(centroids),
            spectral_flatness=spectral_flatness(rms_values),
            frame_count=frame_count,
            sample_rate=pcm.sample_rate,
            duration=pcm.duration,
        )

    def _validate(self, pcm: PCMBuffer) -> None:
        """Reject malformed buffers before framing."""
        if pcm.num_samples == 0:
            raise FeatureExtractionError("PCM data contains no samples", "NO_SAMPLES")

        if pcm.sample_rate <= 0:
            raise FeatureExtractionError(
                "Invalid sample rate",
                "INVALID_SAMPLE_RATE",
                {'sample_rate': pcm.sample_rate},
            )

        if pcm.num_samples < self.frame_size:
            raise FeatureExtractionError(
                f"Audio too short: need at least {self.frame_size} samples, "
                f"got {pcm.num_samples}",
                "AUDIO_TOO_SHORT",
                {'sample_count': pcm.num_samples, 'min_samples': self.frame_size},
            )

        head = pcm.samples[:SANITY_WINDOW]
        invalid = int(np.count_nonzero(np.isnan(head) | (np.abs(head) > SANITY_MAX_AMPLITUDE)))
        if invalid > SANITY_MAX_INVALID:
            raise FeatureExtractionError(
                "PCM data contains too many invalid samples",
                "INVALID_SAMPLES",
                {'invalid_samples': invalid, 'checked_samples': len(head)},
            )

    @staticmethod
    def _is_valid(features: FrameFeatures) -> bool:
        return (
            len(features.mfcc) == N_MFCC
            and len(features.chroma) == N_CHROMA
            and features.is_finite()
        )


def spectral_bandwidth(centroids) -> float:
    """Standard deviation of per-frame spectral centroid."""
    if len(centroids) == 0:
        return 0.0
    return float(np.std(np.asarray(centroids, dtype=np.float64)))


def spectral_flatness(rms_values) -> float:
    """Coefficient of variation of the positive per-frame RMS values."""
    values = np.asarray(rms_values, dtype=np.float64)
    values = values[values > 0]
    if values.size == 0:
        return 0.0
    mean = float(np.mean(values))
    return float(np.std(values) / mean) if mean > 0 else 0.0


def create_feature_extractor(config: Optional[Dict[str, Any]] = None) -> FeatureExtractor:
    """
    Factory function to create FeatureExtractor with configuration.

    Args:
        config: Optional ``features`` configuration section

    Returns:
        FeatureExtractor: Configured extractor
    """
    if config is None:
        config = {}

    return FeatureExtractor(
        frame_size=config.get('frame_size', FRAME_SIZE),
        hop_size=config.get('hop_size', HOP_SIZE),
        min_frames=config.get('min_frames', MIN_FRAMES),
    )
