"""
Command-Line Interface (CLI) setup for mediashrink.

This module uses Python's `argparse` to define and parse the command-line
arguments that control the application's behavior. Every option defaults to
None so that only flags actually given override the profile and the user
configuration file.
"""
import argparse
from pathlib import Path
from typing import Optional, Sequence

from .config.common import MARKER_SCOPES
from .config.video import DEDUP_KINDS, ENCODER_BACKENDS, PROFILES


def _language_list(value: str):
    return tuple(part.strip().lower() for part in value.split(",") if part.strip())


def get_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """
    Parses command-line arguments for mediashrink.

    Args:
        argv: Arguments to parse. Defaults to `sys.argv[1:]`.

    Returns:
        argparse.Namespace: An object containing the parsed command-line
                            arguments as attributes.
    """
    parser = argparse.ArgumentParser(
        description="Batch-transcode a video library to HEVC, or remove duplicate episodes and movies."
    )
    parser.add_argument(
        "target_dir", nargs="?", type=Path, default=None, metavar="TARGET_DIR",
        help="Library to process. Defaults to the current working directory."
    )
    parser.add_argument(
        "--profile", choices=tuple(PROFILES), default=None,
        help="Preset of size floor, tag, track policy and marker scope."
    )
    parser.add_argument(
        "--processes", type=int, default=None, help="Maximum number of concurrent jobs."
    )
    parser.add_argument(
        "--min-size-gb", type=float, default=None, help="Ignore files smaller than this many GiB."
    )
    parser.add_argument(
        "--encoder-backend", choices=ENCODER_BACKENDS, default=None, help="External encoder to run."
    )
    parser.add_argument(
        "--output-container", choices=("mkv", "mp4"), default=None, help="Container of the encoded files."
    )
    parser.add_argument(
        "--temp-dir", type=Path, default=None,
        help="Directory for temporary outputs, e.g. a scratch disk. Defaults to the source directory."
    )
    parser.add_argument(
        "--min-free-gb", type=float, default=None,
        help="Fail a file when its temp volume has less free space than this many GiB."
    )
    parser.add_argument(
        "--languages", type=_language_list, default=None,
        help="Comma-separated language tags of the audio/subtitle tracks to keep, e.g. eng,en."
    )
    parser.add_argument(
        "--track-aware", action="store_true", help="Drop audio and subtitle tracks in other languages."
    )
    parser.add_argument(
        "--marker-scope", choices=MARKER_SCOPES, default=None,
        help="Granularity of the skip marker written when an encode does not shrink a file."
    )
    parser.add_argument(
        "--config", type=Path, default=None, help="YAML configuration file. Defaults to config.user.yaml."
    )
    parser.add_argument(
        "--report-dir", type=Path, default=None,
        help="Where the YAML run report and error.txt are written. Defaults to TARGET_DIR."
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Classify and report without encoding anything."
    )
    parser.add_argument(
        "--dedup", action="store_true", help="Remove duplicate episodes/movies instead of transcoding."
    )
    parser.add_argument(
        "--dedup-kind", choices=DEDUP_KINDS, default=None,
        help="Group duplicates by episode code (tv) or by folder (movies)."
    )
    parser.add_argument(
        "--audit", action="store_true", help="With --dedup, log what would be deleted without deleting."
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO", choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set the logging level."
    )

    args = parser.parse_args(argv)

    if args.processes is not None and args.processes < 1:
        parser.error(f"--processes must be at least 1, got {args.processes}")
    if args.audit and not args.dedup:
        parser.error("--audit only applies together with --dedup")

    # Validate temp_dir if provided. If it doesn't exist, try to create it.
    if args.temp_dir:
        temp_dir_path = args.temp_dir.expanduser()
        if not temp_dir_path.is_dir():
            try:
                temp_dir_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                parser.error(f"The temporary directory '{args.temp_dir}' does not exist and could not be created: {e}")
        args.temp_dir = temp_dir_path.resolve()

    return args
