"""
Result writers for saving track analysis results to files.

Each writer takes a mapping of source (path or URL) to AnalysisResult
so one report can cover several tracks.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, TextIO

from trackmeta.core.models import AnalysisResult


class ResultWriter(ABC):
    """Abstract base class for result writers (Strategy Pattern)."""

    @abstractmethod
    def write(self, results: Dict[str, AnalysisResult], output_path: Path) -> None:
        """Write results to the specified path."""
        pass


class TextResultWriter(ResultWriter):
    """Writes analysis results to a human-readable text file."""

    def __init__(self, include_timestamp: bool = True, include_scores: bool = False):
        """
        Initialize text writer.

        Args:
            include_timestamp: Whether to include timestamp in output
            include_scores: Whether to list every genre and mood score
        """
        self.include_timestamp = include_timestamp
        self.include_scores = include_scores
        self.logger = logging.getLogger("result_writer.text")

    def write(self, results: Dict[str, AnalysisResult], output_path: Path) -> None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', encoding='utf-8') as f:
            f.write("=" * 70 + "\n")
            f.write("TRACKMETA ANALYSIS RESULTS\n")
            f.write("=" * 70 + "\n")

            if self.include_timestamp:
                f.write(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")

            f.write(f"Total Tracks Analyzed: {len(results)}\n")
            f.write("=" * 70 + "\n\n")

            for source, result in results.items():
                self._write_single_result(f, source, result)

            f.write("=" * 70 + "\n")
            f.write("END OF REPORT\n")
            f.write("=" * 70 + "\n")

        self.logger.info(f"Results written to: {output_path}")

    def _write_single_result(self, f: TextIO, source: str, result: AnalysisResult) -> None:
        f.write("-" * 70 + "\n")
        f.write(f"SOURCE: {source}\n")
        f.write("-" * 70 + "\n")

        if result.synthetic:
            f.write("WARNING: synthetic result, not derived from the audio content\n")
        elif result.metadata.get('synthetic_waveform'):
            f.write("WARNING: audio could not be decoded, analyzed a placeholder waveform\n")

        processing_time = result.metadata.get('processing_time')
        if processing_time is not None:
            f.write(f"Processing Time: {processing_time:.3f}s\n")
        f.write(f"Duration: {result.duration:.1f}s\n")

        f.write(f"\nSummary: {result.get_summary()}\n")

        f.write("\nTempo:\n")
        f.write(f"  BPM: {result.tempo.bpm:.2f}\n")
        f.write(f"  Confidence: {result.tempo.confidence:.2%}\n")

        f.write("\nKey:\n")
        f.write(f"  Key: {result.key.key}\n")
        f.write(f"  Confidence: {result.key.confidence:.2%}\n")

        genre = result.genre
        f.write("\nGenre:\n")
        f.write(f"  Primary: {genre.primary}\n")
        f.write(f"  Confidence: {genre.confidence:.2%}\n")
        if genre.secondary:
            f.write(f"  Secondary: {', '.join(genre.secondary)}\n")
        if self.include_scores:
            self._write_scores(f, genre.scores)

        mood = result.mood
        f.write("\nMood:\n")
        f.write(f"  Primary: {mood.primary}\n")
        f.write(f"  Energy: {mood.energy}\n")
        f.write(f"  Valence: {mood.valence}\n")
        if mood.intensity:
            f.write(f"  Intensity: {mood.intensity}\n")
        f.write(f"  Confidence: {mood.confidence:.2%}\n")
        if mood.tags:
            f.write(f"  Tags: {', '.join(mood.tags)}\n")
        if self.include_scores:
            self._write_scores(f, mood.scores)

        if result.stems:
            available = {k: v for k, v in result.stems.to_dict().items() if v}
            if available:
                f.write("\nStems:\n")
                for name, ref in available.items():
                    f.write(f"  {name}: {ref}\n")

        f.write("\n")

    @staticmethod
    def _write_scores(f: TextIO, scores: Dict[str, float]) -> None:
        for label, score in sorted(scores.items(), key=lambda item: item[1], reverse=True):
            f.write(f"    {label:<12} {score:.3f}\n")


class JSONResultWriter(ResultWriter):
    """Writes analysis results to a JSON file."""

    def __init__(self, indent: int = 2, include_features: bool = True):
        """
        Initialize JSON writer.

        Args:
            indent: JSON indentation level
            include_features: Whether to keep the aggregated feature block
        """
        self.indent = indent
        self.include_features = include_features
        self.logger = logging.getLogger("result_writer.json")

    def write(self, results: Dict[str, AnalysisResult], output_path: Path) -> None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        output_data = {
            "generated": datetime.now().isoformat(),
            "total_tracks": len(results),
            "results": {
                source: self._serialize(result)
                for source, result in results.items()
            }
        }

        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(output_data, f, indent=self.indent, default=str)

        self.logger.info(f"Results written to: {output_path}")

    def _serialize(self, result: AnalysisResult) -> dict:
        data = result.to_dict()
        if not self.include_features:
            data.pop('features', None)
        return data


def create_result_writer(format: str = "text", **kwargs) -> ResultWriter:
    """
    Factory function to create appropriate result writer.

    Args:
        format: Output format ("text" or "json")
        **kwargs: Additional arguments for the writer

    Returns:
        Appropriate ResultWriter instance
    """
    writers = {
        "text": TextResultWriter,
        "txt": TextResultWriter,
        "json": JSONResultWriter,
    }

    writer_class = writers.get(format.lower())
    if writer_class is None:
        raise ValueError(f"Unknown format: {format}. Supported: {list(writers.keys())}")

    return writer_class(**kwargs)
