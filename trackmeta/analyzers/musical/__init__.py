"""
Tonal analyzers.
"""

from trackmeta.analyzers.musical.key import (
    KeyDetector,
    create_key_detector
)

__all__ = [
    "KeyDetector",
    "create_key_detector"
]
