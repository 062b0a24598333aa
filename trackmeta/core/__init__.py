"""
Core module containing data models, decoding, feature extraction and the
analysis engine.

Uses lazy imports for modules with heavy dependencies (librosa, soundfile).
"""

# Models are lightweight - import directly
from trackmeta.core.models import (
    GENRE_LABELS,
    MOOD_LABELS,
    AggregatedFeatures,
    AnalysisResult,
    AudioFormat,
    Degraded,
    Fatal,
    GenreResult,
    KeyResult,
    MoodResult,
    Ok,
    PCMBuffer,
    Scale,
    StemSet,
    TempoResult,
    validate_confidence,
)

__all__ = [
    # Models (always available)
    "GENRE_LABELS",
    "MOOD_LABELS",
    "AggregatedFeatures",
    "AnalysisResult",
    "AudioFormat",
    "Degraded",
    "Fatal",
    "GenreResult",
    "KeyResult",
    "MoodResult",
    "Ok",
    "PCMBuffer",
    "Scale",
    "StemSet",
    "TempoResult",
    "validate_confidence",
    # Heavy modules (lazy loaded)
    "AudioDecoder",
    "create_audio_decoder",
    "FeatureExtractor",
    "create_feature_extractor",
    "Analyzer",
    "BaseAnalyzer",
    "AudioAnalysisEngine",
    "create_analysis_engine",
    "MemoryMonitor",
    "HttpFetcher",
    "synthesize_analysis",
    "ResultWriter",
    "TextResultWriter",
    "JSONResultWriter",
    "create_result_writer",
]


def __getattr__(name: str):
    """Lazy load modules with heavy dependencies."""
    if name in ("AudioDecoder", "create_audio_decoder"):
        from trackmeta.core.decoder import AudioDecoder, create_audio_decoder
        return AudioDecoder if name == "AudioDecoder" else create_audio_decoder
    elif name in ("FeatureExtractor", "create_feature_extractor"):
        from trackmeta.core.features import FeatureExtractor, create_feature_extractor
        return FeatureExtractor if name == "FeatureExtractor" else create_feature_extractor
    elif name in ("Analyzer", "BaseAnalyzer"):
        from trackmeta.core.analyzer_base import Analyzer, BaseAnalyzer
        return Analyzer if name == "Analyzer" else BaseAnalyzer
    elif name in ("AudioAnalysisEngine", "create_analysis_engine"):
        from trackmeta.core.engine import AudioAnalysisEngine, create_analysis_engine
        return AudioAnalysisEngine if name == "AudioAnalysisEngine" else create_analysis_engine
    elif name == "MemoryMonitor":
        from trackmeta.core.monitor import MemoryMonitor
        return MemoryMonitor
    elif name == "HttpFetcher":
        from trackmeta.core.fetcher import HttpFetcher
        return HttpFetcher
    elif name == "synthesize_analysis":
        from trackmeta.core.fallback import synthesize_analysis
        return synthesize_analysis
    elif name in ("ResultWriter", "TextResultWriter", "JSONResultWriter", "create_result_writer"):
        from trackmeta.core.result_writer import ResultWriter, TextResultWriter, JSONResultWriter, create_result_writer
        if name == "ResultWriter":
            return ResultWriter
        elif name == "TextResultWriter":
            return TextResultWriter
        elif name == "JSONResultWriter":
            return JSONResultWriter
        else:
            return create_result_writer
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
