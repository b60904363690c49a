"""
Main entry point for mediashrink.

Parses the command line, configures the logger, resolves the run settings,
verifies the external tools and launches either the transcode or the dedup
pipeline. The return value is the process exit code.
"""
import sys
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

from .cli import get_args
from .config.common import EXIT_INTERRUPTED, EXIT_OK, EXIT_TOOL_UNAVAILABLE, LOGGER_FORMAT
from .config.settings import TranscodeSettings, load_settings
from .config.video import ENCODER_BACKEND_HANDBRAKE
from .domain.exceptions import ToolUnavailable
from .pipeline.dedup_pipeline import DedupPipeline
from .pipeline.transcode_pipeline import TranscodePipeline
from .services.file_walker import find_scan_root
from .utils.external_tools import FFMPEG, FFPROBE, HANDBRAKE, ExternalTools

EXIT_USAGE = 2


def configure_logger(level: str):
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOGGER_FORMAT)


def required_tools(settings: TranscodeSettings):
    tools = [FFPROBE, FFMPEG]
    if settings.encoder_backend == ENCODER_BACKEND_HANDBRAKE:
        tools.append(HANDBRAKE)
    return tools


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Runs mediashrink.

    Args:
        argv: Command-line arguments, `sys.argv[1:]` when None.

    Returns:
        0 on completion, 1 when a required tool is missing, 2 on invalid
        configuration, 130 when the run was interrupted.
    """
    args = get_args(argv)
    configure_logger(args.log_level)
    logger.debug(f"Parsed arguments: {args}")

    project_path = find_scan_root(args.target_dir or Path.cwd())
    if project_path is None:
        return EXIT_USAGE

    try:
        settings = load_settings(args, config_path=args.config)
    except (TypeError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_USAGE

    if args.dedup:
        logger.info(f"Running deduplication for path: {project_path}")
        DedupPipeline(project_path, settings).run()
        logger.success("mediashrink deduplication finished.")
        return EXIT_OK

    tools = ExternalTools(settings.tool_dir)
    try:
        tools.verify(required_tools(settings))
    except ToolUnavailable as e:
        logger.critical(f"{e}. Aborting before any file is touched.")
        return EXIT_TOOL_UNAVAILABLE

    logger.info(f"Running transcode pipeline for path: {project_path}")
    pipeline = TranscodePipeline(project_path, settings, tools=tools)
    pipeline.run()
    if pipeline.interrupted:
        return EXIT_INTERRUPTED

    logger.success("mediashrink process finished.")
    return EXIT_OK
