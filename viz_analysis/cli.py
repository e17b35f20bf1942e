"""
AudioViz Analysis CLI - run the analysis pipeline over an audio file.

Entry point:
    audioviz-analyze  - Feed a WAV file through the pipeline frame by frame
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from viz_analysis.config import AnalysisConfig, get_preset, list_presets, load_config
from viz_analysis.frames import ByteAnalyser, iter_sample_frames, load_wav
from viz_analysis.logging_config import configure_logging
from viz_analysis.pipeline import AnalysisPipeline

logger = logging.getLogger(__name__)


def validate_positive_int(value: str) -> int:
    """Validate positive integer."""
    try:
        num = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid integer: {value}")

    if num <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got: {num}")
    return num


def validate_fft_size(value: str) -> int:
    """Validate an FFT size (power of two, at least 32)."""
    num = validate_positive_int(value)
    if num < 32 or num & (num - 1):
        raise argparse.ArgumentTypeError(f"FFT size must be a power of two >= 32, got: {num}")
    return num


def validate_unit_float(value: str) -> float:
    """Validate a float in [0, 1]."""
    try:
        num = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number: {value}")

    if not 0.0 <= num <= 1.0:
        raise argparse.ArgumentTypeError(f"Value must be between 0 and 1, got: {num}")
    return num


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="audioviz-analyze",
        description="AudioViz Analysis - beat, tempo and complexity analysis of an audio file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  audioviz-analyze song.wav                   # Status line per second
  audioviz-analyze song.wav --json            # JSON metadata per second
  audioviz-analyze song.wav --preset sensitive --threshold 0.4
        """,
    )

    parser.add_argument("file", type=Path, help="WAV file to analyse")

    analysis_group = parser.add_argument_group("Analysis")
    analysis_group.add_argument(
        "--preset",
        type=str,
        default="default",
        choices=list_presets(),
        help="Configuration preset (default: default)",
    )
    analysis_group.add_argument(
        "--config", type=Path, default=None, help="JSON configuration file (overrides preset)"
    )
    analysis_group.add_argument(
        "--threshold", type=validate_unit_float, default=None, help="Beat volume threshold (0-1)"
    )
    analysis_group.add_argument(
        "--fft-size",
        type=validate_fft_size,
        default=2048,
        help="FFT size; the pipeline sees fft-size/2 bins (default: 2048)",
    )

    timing_group = parser.add_argument_group("Timing")
    timing_group.add_argument(
        "--fps", type=validate_positive_int, default=60, help="Simulated frame rate (default: 60)"
    )

    output_group = parser.add_argument_group("Output")
    output_group.add_argument(
        "--json", action="store_true", help="Emit one JSON metadata object per second"
    )
    output_group.add_argument(
        "--log-level", type=str, default=None, help="Log level (default: $AUDIOVIZ_LOG_LEVEL or INFO)"
    )

    return parser


def resolve_config(args: argparse.Namespace) -> AnalysisConfig:
    """Combine preset, config file and command-line overrides."""
    config = load_config(args.config) if args.config else get_preset(args.preset)
    overrides = {"bin_count": args.fft_size // 2, "target_fps": float(args.fps)}
    if args.threshold is not None:
        overrides["beat_threshold"] = args.threshold
    return config.replace(**overrides)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = resolve_config(args)
    except (ValueError, OSError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    try:
        audio, sample_rate = load_wav(args.file)
    except (OSError, ValueError) as e:
        print(f"Cannot read {args.file}: {e}", file=sys.stderr)
        return 1

    # Tempo conversions use the rate of the file actually analysed
    config = config.replace(sample_rate=float(sample_rate))

    pipeline = AnalysisPipeline(config)
    beats: List[float] = []
    pipeline.subscribe(lambda event: beats.append(event.timestamp))

    fft_size = config.bin_count * 2
    analyser = ByteAnalyser(fft_size=fft_size)
    frames_per_report = args.fps

    result = None
    for frame in iter_sample_frames(audio, sample_rate, fps=args.fps, analyser=analyser):
        result = pipeline.process(frame)
        if pipeline.frame_count % frames_per_report == 0:
            _report(pipeline, result, args.json)

    pipeline.close()

    if result is None:
        print(f"{args.file}: too short to analyse", file=sys.stderr)
        return 1

    summary = {
        "file": str(args.file),
        "frames": pipeline.frame_count,
        "beats": len(beats),
        "bpm": round(pipeline.current_bpm, 1),
        "complexity": round(pipeline.current_complexity, 3),
    }
    if args.json:
        print(json.dumps({"summary": summary}))
    else:
        print(
            f"\n{summary['file']}: {summary['frames']} frames, {summary['beats']} beats, "
            f"{summary['bpm']:.1f} BPM, complexity {summary['complexity']:.2f}"
        )
    return 0


def _report(pipeline: AnalysisPipeline, result, as_json: bool):
    frame = result.feature_frame
    if as_json:
        metadata = pipeline.get_metadata()
        metadata["timestamp"] = frame.timestamp
        print(json.dumps(metadata))
        return

    level = int(frame.average_volume * 20)
    bar = "#" * level + "." * (20 - level)
    beat = "*" if frame.is_beat else " "
    print(
        f"{frame.timestamp:7.1f}s [{bar}] {beat} {frame.current_bpm:5.1f}BPM "
        f"complexity:{result.complexity:.2f}"
    )


if __name__ == "__main__":
    sys.exit(main())
