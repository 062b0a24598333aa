"""
Genre classifiers.
"""

from trackmeta.analyzers.genre.classifier import (
    GenreClassifier,
    GenreRules,
    create_genre_classifier
)

__all__ = [
    "GenreClassifier",
    "GenreRules",
    "create_genre_classifier"
]
