"""
trackmeta - music track analysis

Decodes audio and estimates tempo, key, genre and mood with librosa-based
DSP and heuristic classifiers, orchestrated by an asyncio engine.
"""

__version__ = "1.0.0"
__author__ = "Audio Analysis Team"
