"""
Rhythm analyzers.
"""

from trackmeta.analyzers.rhythmic.tempo import (
    TempoDetector,
    create_tempo_detector
)

__all__ = [
    "TempoDetector",
    "create_tempo_detector"
]
