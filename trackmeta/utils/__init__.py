"""
Utility modules for configuration, logging, cancellation and error handling.
"""

from trackmeta.utils.errors import (
    AudioAnalysisError,
    AnalysisError,
    AnalysisErrorCode,
    AnalysisCancelledError,
    StageError,
    DecodeError,
    ConfigurationError,
)
from trackmeta.utils.logging import get_logger, setup_logging, JSONFormatter
from trackmeta.utils.config import ConfigManager, load_config
from trackmeta.utils.cancellation import CancellationToken

__all__ = [
    "AudioAnalysisError",
    "AnalysisError",
    "AnalysisErrorCode",
    "AnalysisCancelledError",
    "StageError",
    "DecodeError",
    "ConfigurationError",
    "get_logger",
    "setup_logging",
    "JSONFormatter",
    "ConfigManager",
    "load_config",
    "CancellationToken",
]
