"""
Per-frame DSP primitives.

The feature extractor and key detector only talk to a FrameBackend, so
the windowing/aggregation logic can be tested with a fake backend while
the default implementation builds its filter banks with librosa.
"""

import threading
from typing import Dict, Protocol, Tuple

import librosa
import numpy as np

from trackmeta.core.models import N_CHROMA, N_MFCC, FrameFeatures


class FrameBackend(Protocol):
    """Capability interface for single-window feature computation."""

    def compute_frame_features(self, frame: np.ndarray, sample_rate: int) -> FrameFeatures:
        """Compute every per-frame feature of one window."""
        ...

    def frame_chroma(self, frame: np.ndarray, sample_rate: int) -> np.ndarray:
        """Compute a 12-bin pitch-class vector (max-normalized) of one window."""
        ...


class _FilterBank:
    """Window, bin frequencies and filter matrices for one (sr, n_fft) pair."""

    def __init__(self, sample_rate: int, n_fft: int, n_mels: int):
        self.window = librosa.filters.get_window('hann', n_fft, fftbins=True)
        self.freqs = librosa.fft_frequencies(sr=sample_rate, n_fft=n_fft)
        self.mel = librosa.filters.mel(sr=sample_rate, n_fft=n_fft, n_mels=n_mels)
        self.chroma = librosa.filters.chroma(sr=sample_rate, n_fft=n_fft, n_chroma=N_CHROMA)


class LibrosaFrameBackend:
    """
    FrameBackend built on librosa filter banks and a numpy FFT.

    Filter banks are cached per (sample_rate, n_fft) and shared between
    threads; computing a frame is otherwise stateless.
    """

    def __init__(self, n_mfcc: int = N_MFCC, n_mels: int = 40, rolloff_percent: float = 0.85):
        self.n_mfcc = n_mfcc
        self.n_mels = n_mels
        self.rolloff_percent = rolloff_percent
        self._banks: Dict[Tuple[int, int], _FilterBank] = {}
        self._lock = threading.Lock()

    def _bank(self, sample_rate: int, n_fft: int) -> _FilterBank:
        key = (sample_rate, n_fft)
        bank = self._banks.get(key)
        if bank is None:
            with self._lock:
                bank = self._banks.get(key)
                if bank is None:
                    bank = _FilterBank(sample_rate, n_fft, self.n_mels)
                    self._banks[key] = bank
        return bank

    def _magnitude(self, frame: np.ndarray, bank: _FilterBank) -> np.ndarray:
        return np.abs(np.fft.rfft(frame * bank.window))

    def compute_frame_features(self, frame: np.ndarray, sample_rate: int) -> FrameFeatures:
        frame = np.asarray(frame, dtype=np.float64)
        bank = self._bank(sample_rate, len(frame))
        magnitude = self._magnitude(frame, bank)
        power = magnitude ** 2

        total = float(np.sum(magnitude))
        if total > 0:
            centroid = float(np.sum(bank.freqs * magnitude) / total)
            cumulative = np.cumsum(magnitude)
            rolloff_bin = int(np.searchsorted(cumulative, self.rolloff_percent * cumulative[-1]))
            rolloff = float(bank.freqs[min(rolloff_bin, len(bank.freqs) - 1)])
        else:
            centroid = 0.0
            rolloff = 0.0

        signs = np.signbit(frame)
        zcr = float(np.count_nonzero(signs[1:] != signs[:-1])) / len(frame)
        rms = float(np.sqrt(np.mean(frame ** 2)))

        log_mel = librosa.power_to_db(bank.mel @ power)
        mfcc = librosa.feature.mfcc(S=log_mel[:, np.newaxis], n_mfcc=self.n_mfcc)[:, 0]

        return FrameFeatures(
            mfcc=mfcc,
            spectral_centroid=centroid,
            spectral_rolloff=rolloff,
            zero_crossing_rate=zcr,
            rms=rms,
            chroma=self._chroma_from_power(power, bank),
        )

    def frame_chroma(self, frame: np.ndarray, sample_rate: int) -> np.ndarray:
        frame = np.asarray(frame, dtype=np.float64)
        bank = self._bank(sample_rate, len(frame))
        power = self._magnitude(frame, bank) ** 2
        return self._chroma_from_power(power, bank)

    def _chroma_from_power(self, power: np.ndarray, bank: _FilterBank) -> np.ndarray:
        chroma = bank.chroma @ power
        return librosa.util.normalize(chroma, norm=np.inf)
