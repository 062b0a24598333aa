"""
trackmeta - Main Entry Point

Example usage:
    python main.py path/to/track.wav
    python main.py --config config/config.yaml path/to/track.mp3
    python main.py --fallback https://example.com/track.mp3
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from trackmeta.core.engine import AudioAnalysisEngine, create_analysis_engine
from trackmeta.core.models import AnalysisResult
from trackmeta.core.result_writer import create_result_writer
from trackmeta.utils.config import load_config
from trackmeta.utils.errors import AnalysisError
from trackmeta.utils.logging import setup_logging


def main(argv: Optional[list] = None) -> int:
    """Main entry point for track analysis."""
    parser = argparse.ArgumentParser(
        description="Estimate tempo, key, genre and mood of a music track"
    )
    parser.add_argument(
        "source",
        help="Path to an audio file or an http(s) URL"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Path to save the report"
    )
    parser.add_argument(
        "--format",
        choices=["json", "text"],
        default="json",
        help="Report format for --output"
    )
    parser.add_argument(
        "--fallback",
        action="store_true",
        help="Return a synthetic result instead of failing on recoverable errors"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output"
    )

    args = parser.parse_args(argv)

    # Load configuration
    config_path = str(args.config) if args.config else None
    config = load_config(config_path)

    # Setup logging
    logging_config = config.get("logging", {})
    log_level = "DEBUG" if args.verbose else logging_config.get("level", "INFO")
    setup_logging(
        level=log_level,
        log_format=logging_config.get("format", "json"),
        log_file=logging_config.get("file"),
        colored=logging_config.get("colored", True),
        console_enabled=True
    )

    is_url = args.source.startswith(("http://", "https://"))
    if not is_url and not Path(args.source).exists():
        print(f"Error: Audio file not found: {args.source}")
        return 1

    use_fallback = args.fallback or config.get("fallback", {}).get("enabled", False)

    with create_analysis_engine(config) as engine:
        try:
            result = asyncio.run(_analyze(engine, args.source, is_url, use_fallback))
        except AnalysisError as e:
            print(f"Error: {e.user_message}")
            if args.verbose:
                print(f"  [{e.code.value}] {e.message}")
            return 1

    _print_results(result, args.source)

    if args.output:
        writer = create_result_writer(args.format)
        writer.write({args.source: result}, args.output)
        print(f"Results saved to: {args.output}")

    return 0


async def _analyze(
    engine: AudioAnalysisEngine, source: str, is_url: bool, use_fallback: bool
) -> AnalysisResult:
    """Route a source to the matching engine entry point."""
    if is_url:
        if use_fallback:
            return await engine.analyze_from_source_with_fallback(source)
        return await engine.analyze_from_source(source)

    data = Path(source).read_bytes()
    return await engine.analyze_bytes(data, analysis_id=Path(source).name)


def _print_results(result: AnalysisResult, source: str) -> None:
    """
    Print analysis results.

    Args:
        result: AnalysisResult
        source: Analyzed file path or URL
    """
    print("\n" + "=" * 60)
    print("ANALYSIS RESULTS")
    print("=" * 60)
    print(f"Source: {source}")
    processing_time = result.metadata.get("processing_time")
    if processing_time is not None:
        print(f"Processing Time: {processing_time:.3f}s")
    if result.synthetic:
        print("WARNING: synthetic result, not derived from the audio content")
    print("-" * 60)
    print(result.get_summary())
    print("-" * 60)

    print(f"\nTempo: {result.tempo.bpm:.2f} BPM (confidence {result.tempo.confidence:.2%})")
    print(f"Key: {result.key.key} (confidence {result.key.confidence:.2%})")

    print(f"\nGenre: {result.genre.primary} ({result.genre.confidence:.2%})")
    if result.genre.secondary:
        print(f"  Secondary: {', '.join(result.genre.secondary)}")

    mood = result.mood
    print(f"\nMood: {mood.primary} ({mood.confidence:.2%})")
    print(f"  Energy: {mood.energy}  Valence: {mood.valence}  Intensity: {mood.intensity or 'n/a'}")
    if mood.tags:
        print(f"  Tags: {', '.join(mood.tags)}")


if __name__ == "__main__":
    sys.exit(main())
