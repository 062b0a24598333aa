"""
Analyzer base interface for the track analysis pipeline.

Defines the contract for all stage analyzers using Protocol (structural subtyping).
"""

import logging
import time
from abc import abstractmethod
from typing import Generic, Optional, Protocol, Type, TypeVar

from trackmeta.core.models import AggregatedFeatures, PCMBuffer
from trackmeta.utils.cancellation import CancellationToken
from trackmeta.utils.errors import (
    AnalysisCancelledError,
    AnalysisError,
    StageError,
)

# Type variable for result types
T = TypeVar('T')


class Analyzer(Protocol[T]):
    """
    Base protocol for PCM-consuming analyzers.

    All analyzers must implement:
    - analyze(pcm, token) -> T
    - name property
    - version property

    A class doesn't need to explicitly inherit from Analyzer to be
    compatible - it just needs to have the required methods.
    """

    @property
    def name(self) -> str:
        """Analyzer name (e.g., 'tempo', 'key')."""
        ...

    @property
    def version(self) -> str:
        """Analyzer version for result tracking."""
        ...

    def analyze(self, pcm: PCMBuffer, token: Optional[CancellationToken] = None) -> T:
        """
        Analyze decoded audio and return typed result.

        Args:
            pcm: Decoded mono audio
            token: Optional cancellation token polled during long loops

        Returns:
            T: Analysis result (type depends on analyzer)

        Raises:
            AnalysisError: If analysis fails
            AnalysisCancelledError: If the token fires mid-analysis
        """
        ...


class BaseAnalyzer(Generic[T]):
    """
    Optional base class providing common functionality.

    Subclasses can inherit this for shared logic like logging,
    error handling, and timing.

    Uses Template Method pattern - analyze() provides the template,
    subclasses implement _analyze_impl(). Unexpected exceptions are
    wrapped in ``error_cls`` with ``failure_reason``.
    """

    error_cls: Type[StageError] = StageError
    failure_reason = "DETECTION_FAILED"

    def __init__(self, name: str, version: str):
        """
        Initialize analyzer with name and version.

        Args:
            name: Unique analyzer name
            version: Version string for tracking
        """
        self._name = name
        self._version = version
        self.logger = logging.getLogger(f"analyzer.{name}")

    @property
    def name(self) -> str:
        """Return analyzer name."""
        return self._name

    @property
    def version(self) -> str:
        """Return analyzer version."""
        return self._version

    def analyze(self, pcm: PCMBuffer, token: Optional[CancellationToken] = None) -> T:
        """
        Template method with timing and error handling.

        Args:
            pcm: Decoded mono audio
            token: Optional cancellation token

        Returns:
            T: Analysis result

        Raises:
            AnalysisError: If analysis fails
            AnalysisCancelledError: If cancelled
        """
        token = token or self._default_token()
        start_time = time.time()

        try:
            self.logger.debug(
                f"Starting analysis: {pcm.duration:.2f}s @ {pcm.sample_rate}Hz"
            )
            token.raise_if_cancelled()

            result = self._analyze_impl(pcm, token)

            elapsed = time.time() - start_time
            self.logger.info(f"Analysis complete in {elapsed:.3f}s")

            return result

        except (AnalysisError, AnalysisCancelledError):
            raise

        except Exception as e:
            self.logger.error(f"Analysis failed: {e}")
            raise self.error_cls(
                f"{self.name} analysis failed: {e}",
                self.failure_reason,
                details={'original_error': str(e), 'error_type': type(e).__name__},
            ) from e

    def _default_token(self) -> CancellationToken:
        """Token used when the caller supplies none."""
        return CancellationToken()

    @abstractmethod
    def _analyze_impl(self, pcm: PCMBuffer, token: CancellationToken) -> T:
        """
        Subclasses implement actual analysis logic.

        Args:
            pcm: Decoded mono audio
            token: Cancellation token to poll inside loops

        Returns:
            T: Analysis result
        """
        raise NotImplementedError


class BaseClassifier(Generic[T]):
    """
    Template for classifiers that consume aggregated features and tempo.

    Mirrors BaseAnalyzer: classify() times the call and wraps unexpected
    exceptions in ``error_cls`` with reason ``CLASSIFICATION_FAILED``;
    subclasses implement _classify_impl().
    """

    error_cls: Type[StageError] = StageError

    def __init__(self, name: str, version: str):
        self._name = name
        self._version = version
        self.logger = logging.getLogger(f"analyzer.{name}")

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    def classify(self, features: Optional[AggregatedFeatures], tempo: Optional[float] = None) -> T:
        """
        Classify a clip from its features and optional tempo in BPM.

        Raises:
            AnalysisError: If features are invalid or classification fails
        """
        start_time = time.time()

        try:
            result = self._classify_impl(features, tempo)

            elapsed = time.time() - start_time
            self.logger.info(f"Classification complete in {elapsed:.3f}s")

            return result

        except AnalysisError:
            raise

        except Exception as e:
            self.logger.warning(f"Classification failed: {e}")
            raise self.error_cls(
                f"{self.name} classification failed: {e}",
                "CLASSIFICATION_FAILED",
                details={'original_error': str(e), 'error_type': type(e).__name__},
            ) from e

    @abstractmethod
    def _classify_impl(self, features: Optional[AggregatedFeatures], tempo: Optional[float]) -> T:
        raise NotImplementedError
