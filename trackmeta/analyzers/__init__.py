"""
Analyzer implementations for the tempo, key, genre and mood stages.
"""

from trackmeta.analyzers.rhythmic.tempo import TempoDetector
from trackmeta.analyzers.musical.key import KeyDetector
from trackmeta.analyzers.genre.classifier import GenreClassifier
from trackmeta.analyzers.mood.detector import MoodDetector

__all__ = [
    "TempoDetector",
    "KeyDetector",
    "GenreClassifier",
    "MoodDetector",
]
