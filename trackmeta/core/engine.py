"""
Analysis engine for the track analysis pipeline.

Main orchestration engine that coordinates decoding, the three critical
core stages (tempo, key, features) and the two non-critical classifiers
(genre, mood).
"""

import asyncio
import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from trackmeta import __version__
from trackmeta.analyzers.genre.classifier import GenreClassifier, create_genre_classifier
from trackmeta.analyzers.mood.detector import MoodDetector, create_mood_detector
from trackmeta.analyzers.musical.key import KeyDetector, create_key_detector
from trackmeta.analyzers.rhythmic.tempo import TempoDetector, create_tempo_detector
from trackmeta.core.decoder import AudioDecoder, create_audio_decoder
from trackmeta.core.fallback import synthesize_analysis
from trackmeta.core.features import FeatureExtractor, create_feature_extractor
from trackmeta.core.fetcher import Fetcher, HttpFetcher, StemSeparator, create_http_fetcher
from trackmeta.core.models import (
    AggregatedFeatures,
    AnalysisResult,
    Degraded,
    Fatal,
    GenreResult,
    KeyResult,
    MoodResult,
    Ok,
    PCMBuffer,
    StageOutcome,
    StemSet,
    TempoResult,
)
from trackmeta.core.monitor import MemoryMonitor, create_memory_monitor, process_memory_mb
from trackmeta.utils.cancellation import CancellationToken
from trackmeta.utils.errors import AnalysisCancelledError, AnalysisError, AnalysisErrorCode
from trackmeta.utils.logging import create_logger_with_context
from trackmeta.utils.resilience import with_retry, with_timeout

MonitorFactory = Callable[[], MemoryMonitor]

DEFAULT_TIMEOUT = 30.0
DEFAULT_MIN_DURATION = 10.0
DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024


class AudioAnalysisEngine:
    """
    Main analysis engine - orchestrates all components.

    Design:
    - Dependency Injection: All stages injected (testable)
    - Parallel Execution: CPU-bound stages run on a thread pool and are
      fanned in with asyncio
    - Cancellation: Each call owns a token; a timeout cancels it so
      running stages stop at their next checkpoint
    - Error Handling: Core stages are fatal, classifiers degrade to
      default results
    """

    def __init__(
        self,
        decoder: AudioDecoder,
        feature_extractor: FeatureExtractor,
        tempo_detector: TempoDetector,
        key_detector: KeyDetector,
        genre_classifier: GenreClassifier,
        mood_detector: MoodDetector,
        fetcher: Optional[Fetcher] = None,
        stem_separator: Optional[StemSeparator] = None,
        monitor_factory: Optional[MonitorFactory] = None,
        timeout: float = DEFAULT_TIMEOUT,
        classification_timeout: float = DEFAULT_TIMEOUT,
        min_duration: float = DEFAULT_MIN_DURATION,
        max_workers: int = 4,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        download_attempts: int = 3,
        download_base_delay: float = 1.0,
        decode_timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize analysis engine.

        Args:
            decoder: Bytes to PCM decoder
            feature_extractor: Frame feature extractor (critical)
            tempo_detector: Tempo detector (critical)
            key_detector: Key detector (critical)
            genre_classifier: Genre classifier (non-critical)
            mood_detector: Mood detector (non-critical)
            fetcher: Source downloader for analyze_from_source
            stem_separator: Optional stem separation capability
            monitor_factory: Builds one MemoryMonitor per call; None disables
                             memory checkpoints
            timeout: Envelope around the core stages in seconds
            classification_timeout: Envelope around the classifiers in seconds
            min_duration: Shortest clip accepted by analyze() in seconds
            max_workers: Thread pool size
            max_file_size: Post-download size cap in bytes
            download_attempts: Download attempt budget
            download_base_delay: First retry delay in seconds
            decode_timeout: Envelope around decoding a downloaded source
        """
        self.decoder = decoder
        self.feature_extractor = feature_extractor
        self.tempo_detector = tempo_detector
        self.key_detector = key_detector
        self.genre_classifier = genre_classifier
        self.mood_detector = mood_detector
        self.fetcher = fetcher or HttpFetcher(max_bytes=max_file_size)
        self.stem_separator = stem_separator
        self.monitor_factory = monitor_factory

        self.timeout = timeout
        self.classification_timeout = classification_timeout
        self.min_duration = min_duration
        self.max_file_size = max_file_size
        self.download_attempts = download_attempts
        self.download_base_delay = download_base_delay
        self.decode_timeout = decode_timeout

        self.executor = ThreadPoolExecutor(max_workers=max_workers)
        self.logger = logging.getLogger('engine')

    async def analyze(self, pcm: PCMBuffer, analysis_id: Optional[str] = None) -> AnalysisResult:
        """
        Analyze decoded audio completely.

        Args:
            pcm: Decoded mono audio
            analysis_id: Optional correlation id used for logging only

        Returns:
            AnalysisResult: Complete analysis result

        Raises:
            AnalysisError: If validation or a core stage fails, a timeout
                           elapses or the memory ceiling is crossed
        """
        log = create_logger_with_context('engine', {'analysis_id': analysis_id})
        start_time = time.time()
        token = CancellationToken()
        monitor = self.monitor_factory() if self.monitor_factory else None
        step = 'validation'

        try:
            self._validate(pcm)

            step = 'core_analysis'
            if monitor is not None:
                monitor.start()
                self._check_memory(monitor)

            log.info(f"Running core analysis on {pcm.duration:.1f}s of audio")
            tempo, key, features = await self._run_core(pcm, token, monitor)

            if monitor is not None:
                self._check_memory(monitor)

            step = 'classification'
            genre, mood = await self._run_classification(features, tempo.bpm, log)

            step = 'assembly'
            processing_time = time.time() - start_time
            result = AnalysisResult(
                tempo=tempo,
                key=key,
                features=features,
                genre=genre,
                mood=mood,
                duration=pcm.duration,
                metadata={
                    'analyzed_at': datetime.now(timezone.utc).isoformat(),
                    'version': __version__,
                    'analysis_method': 'real',
                    'stem_separation_enabled': self.stem_separator is not None,
                    'processing_time': processing_time,
                    'analysis_id': analysis_id,
                    'synthetic_waveform': pcm.synthetic,
                },
            )

            log.info(f"Analysis complete in {processing_time:.3f}s: {result.get_summary()}")
            return result

        except AnalysisError as e:
            raise self._annotate(e, step, start_time, monitor, analysis_id, log)

        except Exception as e:
            error = AnalysisError.from_error(e, AnalysisErrorCode.UNKNOWN_ERROR)
            raise self._annotate(error, step, start_time, monitor, analysis_id, log) from e

        finally:
            token.cancel("analysis finished")
            if monitor is not None:
                monitor.stop()

    async def analyze_bytes(self, data: bytes, analysis_id: Optional[str] = None) -> AnalysisResult:
        """Validate, decode and analyze an in-memory audio file."""
        pcm = await self._decode(data)
        return await self.analyze(pcm, analysis_id)

    async def analyze_from_source(
        self, url: str, analysis_id: Optional[str] = None
    ) -> AnalysisResult:
        """
        Download, decode and analyze a remote source.

        Downloads are retried with exponential backoff while the error is
        retryable. Stem separation, when configured, never fails the call.

        Raises:
            AnalysisError: On download, decode or analysis failure
        """
        log = create_logger_with_context('engine', {'analysis_id': analysis_id, 'source': url})
        start_time = time.time()
        step = 'download'

        try:
            data = await with_retry(
                lambda: self.fetcher.fetch(url),
                max_attempts=self.download_attempts,
                base_delay=self.download_base_delay,
            )

            if len(data) > self.max_file_size:
                raise AnalysisError(
                    AnalysisErrorCode.DOWNLOAD_TOO_LARGE,
                    f"Audio file too large: {len(data)} bytes (max: {self.max_file_size})",
                    {'size': len(data), 'max_size': self.max_file_size},
                )

            step = 'decode'
            pcm = await with_timeout(
                self._decode(data),
                self.decode_timeout,
                lambda: AnalysisError(
                    AnalysisErrorCode.ANALYSIS_TIMEOUT,
                    f"Audio decoding timed out after {self.decode_timeout}s",
                    {'timeout': self.decode_timeout},
                ),
            )

        except AnalysisError as e:
            raise self._annotate(e, step, start_time, None, analysis_id, log)

        except Exception as e:
            code = (
                AnalysisErrorCode.DOWNLOAD_FAILED if step == 'download'
                else AnalysisErrorCode.DECODE_FAILED
            )
            error = AnalysisError.from_error(e, code)
            raise self._annotate(error, step, start_time, None, analysis_id, log) from e

        result = await self.analyze(pcm, analysis_id)
        result.stems = await self._separate_stems(url, log)
        result.metadata['source'] = url
        return result

    async def analyze_from_source_with_fallback(
        self, url: str, analysis_id: Optional[str] = None
    ) -> AnalysisResult:
        """
        Like analyze_from_source(), but substitutes a synthetic result for
        non-critical, retryable or unknown failures.

        The synthetic result is derived from ``url`` only and is flagged
        with ``synthetic=True``.
        """
        try:
            return await self.analyze_from_source(url, analysis_id)

        except AnalysisError as e:
            if not (e.warning or e.retryable or e.code == AnalysisErrorCode.UNKNOWN_ERROR):
                raise
            self.logger.warning(f"Analysis of {url} failed ({e.code.value}), using synthetic result")

        except Exception as e:
            self.logger.warning(f"Analysis of {url} failed ({e}), using synthetic result")

        result = synthesize_analysis(url)
        result.metadata['analysis_id'] = analysis_id
        return result

    # Stages

    def _validate(self, pcm: PCMBuffer) -> None:
        if pcm is None or pcm.duration < self.min_duration:
            duration = 0.0 if pcm is None else pcm.duration
            raise AnalysisError(
                AnalysisErrorCode.INSUFFICIENT_AUDIO,
                f"Audio too short for analysis: {duration:.1f}s (minimum {self.min_duration}s)",
                {'duration': duration, 'min_duration': self.min_duration},
            )

    async def _run_core(
        self,
        pcm: PCMBuffer,
        token: CancellationToken,
        monitor: Optional[MemoryMonitor],
    ) -> Tuple[TempoResult, KeyResult, AggregatedFeatures]:
        """Run tempo, key and features concurrently under one envelope."""
        core = asyncio.ensure_future(asyncio.gather(
            self._run_stage('tempo', AnalysisErrorCode.TEMPO_DETECTION_FAILED,
                            self.tempo_detector.analyze, pcm, token),
            self._run_stage('key', AnalysisErrorCode.KEY_DETECTION_FAILED,
                            self.key_detector.analyze, pcm, token),
            self._run_stage('features', AnalysisErrorCode.FEATURE_EXTRACTION_FAILED,
                            self.feature_extractor.analyze, pcm, token),
        ))
        waiters = {core}
        memory = None
        if monitor is not None:
            memory = asyncio.ensure_future(monitor.wait_exceeded())
            waiters.add(memory)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if memory is not None:
                memory.cancel()

        if core not in done:
            # Stages poll the token and stop at their next frame
            core.cancel()
            if memory is not None and memory in done:
                token.cancel("memory limit exceeded")
                raise self._memory_error(monitor)
            token.cancel("timeout")
            raise AnalysisError(
                AnalysisErrorCode.ANALYSIS_TIMEOUT,
                f"Core analysis timed out after {self.timeout}s",
                {'timeout': self.timeout},
            )

        outcomes: List[StageOutcome] = core.result()
        for outcome in outcomes:
            if isinstance(outcome, Fatal):
                token.cancel("stage failed")
                raise outcome.error

        tempo, key, features = (outcome.value for outcome in outcomes)
        return tempo, key, features

    async def _run_stage(
        self,
        name: str,
        code: AnalysisErrorCode,
        func: Callable[..., Any],
        *args: Any,
    ) -> StageOutcome:
        """Run one critical stage on the pool; failures become Fatal."""
        loop = asyncio.get_running_loop()
        try:
            value = await loop.run_in_executor(self.executor, functools.partial(func, *args))
            return Ok(value)
        except AnalysisError as e:
            return Fatal(e)
        except AnalysisCancelledError as e:
            return Fatal(AnalysisError(
                AnalysisErrorCode.ANALYSIS_TIMEOUT,
                f"{name} stage cancelled: {e.reason}",
                {'step': name},
            ))
        except Exception as e:
            return Fatal(AnalysisError.from_error(e, code, {'step': name}))

    async def _run_classification(
        self,
        features: AggregatedFeatures,
        tempo: Optional[float],
        log: logging.LoggerAdapter,
    ) -> Tuple[GenreResult, MoodResult]:
        """Run genre and mood concurrently; failures degrade to defaults."""
        stages = {
            'genre': (
                self.genre_classifier, GenreResult.unknown,
                AnalysisErrorCode.GENRE_CLASSIFICATION_FAILED,
            ),
            'mood': (
                self.mood_detector, MoodResult.unknown,
                AnalysisErrorCode.MOOD_DETECTION_FAILED,
            ),
        }
        tasks = {
            name: asyncio.ensure_future(
                self._run_classifier(name, classifier, default, code, features, tempo)
            )
            for name, (classifier, default, code) in stages.items()
        }

        await asyncio.wait(tasks.values(), timeout=self.classification_timeout)

        outcomes: Dict[str, StageOutcome] = {}
        for name, task in tasks.items():
            if task.done():
                outcomes[name] = task.result()
                continue
            task.cancel()
            _, default, code = stages[name]
            outcomes[name] = Degraded(default(), AnalysisError(
                code,
                f"{name} classification timed out after {self.classification_timeout}s",
                {'step': name, 'reason': 'TIMEOUT'},
            ))

        genre = self._resolve(outcomes['genre'], log)
        mood = self._resolve(outcomes['mood'], log)
        return genre, mood

    async def _run_classifier(
        self,
        name: str,
        classifier: Any,
        default: Callable[[], Any],
        code: AnalysisErrorCode,
        features: AggregatedFeatures,
        tempo: Optional[float],
    ) -> StageOutcome:
        loop = asyncio.get_running_loop()
        try:
            value = await loop.run_in_executor(self.executor, classifier.classify, features, tempo)
            return Ok(value)
        except AnalysisError as e:
            return Degraded(default(), e)
        except Exception as e:
            return Degraded(default(), AnalysisError.from_error(e, code, {'step': name}))

    @staticmethod
    def _resolve(outcome: StageOutcome, log: logging.LoggerAdapter) -> Any:
        if isinstance(outcome, Degraded):
            log.warning(
                f"Non-critical stage failed, using default: {outcome.error.message}",
                extra={'context': {'error': outcome.error.to_dict()}},
            )
        return outcome.value

    async def _decode(self, data: bytes) -> PCMBuffer:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self.decoder.decode_validated, data)

    async def _separate_stems(self, url: str, log: logging.LoggerAdapter) -> Optional[StemSet]:
        if self.stem_separator is None:
            return None
        try:
            return await self.stem_separator.separate(url)
        except Exception as e:
            log.warning(f"Stem separation failed, continuing without stems: {e}")
            return None

    # Resource checks and error context

    def _check_memory(self, monitor: MemoryMonitor) -> None:
        if monitor.check():
            raise self._memory_error(monitor)

    @staticmethod
    def _memory_error(monitor: MemoryMonitor) -> AnalysisError:
        return AnalysisError(
            AnalysisErrorCode.MEMORY_LIMIT_EXCEEDED,
            f"Memory usage {monitor.last_usage_mb:.1f}MB exceeds limit of {monitor.max_memory_mb}MB",
            {'memory_usage_mb': monitor.last_usage_mb, 'max_memory_mb': monitor.max_memory_mb},
        )

    def _annotate(
        self,
        error: AnalysisError,
        step: str,
        start_time: float,
        monitor: Optional[MemoryMonitor],
        analysis_id: Optional[str],
        log: logging.LoggerAdapter,
    ) -> AnalysisError:
        """Stamp an error with stage, timing and memory, and log it."""
        if monitor is not None:
            memory_mb = monitor.current_usage_mb()
        else:
            memory_mb = self._process_memory_mb()

        error.with_context(
            step=step,
            processing_time=time.time() - start_time,
            memory_usage_mb=memory_mb,
            analysis_id=analysis_id,
        )
        log.error(
            f"Analysis failed at {error.details.get('step', step)}: {error.message}",
            extra={'context': {'error': error.to_dict()}},
        )
        return error

    def _process_memory_mb(self) -> float:
        try:
            return process_memory_mb()
        except Exception as e:
            self.logger.debug(f"Memory snapshot failed: {e}")
            return 0.0

    def shutdown(self) -> None:
        """Shutdown thread pool gracefully."""
        self.logger.info("Shutting down analysis engine")
        self.executor.shutdown(wait=True)

    def __enter__(self) -> "AudioAnalysisEngine":
        """Context manager support."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Cleanup on context exit."""
        self.shutdown()


def create_analysis_engine(
    config: Dict[str, Any],
    stem_separator: Optional[StemSeparator] = None,
) -> AudioAnalysisEngine:
    """
    Factory function to create fully configured analysis engine.

    Args:
        config: Configuration dict (see get_default_config())
        stem_separator: Optional stem separation capability

    Returns:
        AudioAnalysisEngine: Configured engine
    """
    analysis_config = config.get('analysis', {})
    download_config = config.get('download', {})
    memory_config = config.get('memory', {})

    monitor_factory = None
    if memory_config.get('enabled', True):
        monitor_factory = functools.partial(create_memory_monitor, memory_config)

    return AudioAnalysisEngine(
        decoder=create_audio_decoder(config.get('audio', {})),
        feature_extractor=create_feature_extractor(config.get('features', {})),
        tempo_detector=create_tempo_detector(config.get('tempo', {})),
        key_detector=create_key_detector(config.get('key', {})),
        genre_classifier=create_genre_classifier(config.get('genre', {})),
        mood_detector=create_mood_detector(config.get('mood', {})),
        fetcher=create_http_fetcher(config),
        stem_separator=stem_separator,
        monitor_factory=monitor_factory,
        timeout=analysis_config.get('timeout', DEFAULT_TIMEOUT),
        classification_timeout=analysis_config.get('classification_timeout', DEFAULT_TIMEOUT),
        min_duration=analysis_config.get('min_duration', DEFAULT_MIN_DURATION),
        max_workers=analysis_config.get('max_workers', 4),
        max_file_size=config.get('audio', {}).get('max_file_size', DEFAULT_MAX_FILE_SIZE),
        download_attempts=download_config.get('max_attempts', 3),
        download_base_delay=download_config.get('base_delay', 1.0),
        decode_timeout=download_config.get('decode_timeout', DEFAULT_TIMEOUT),
    )
