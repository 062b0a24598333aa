"""
Mood detectors.
"""

from trackmeta.analyzers.mood.detector import (
    MoodDetector,
    MoodRules,
    create_mood_detector
)

__all__ = [
    "MoodDetector",
    "MoodRules",
    "create_mood_detector"
]
