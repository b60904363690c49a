"""
Utilities Package for mediashrink.

Helpers that are not specific to a single part of the transcode domain.

Modules:
    - external_tools.py: Locates ffmpeg, ffprobe and HandBrakeCLI and verifies
      they start.
    - ffmpeg_utils.py: The cancellable process runner, its `WorkerResult`, and the
      interlace/telecine deep scan.
    - format_utils.py: Human-readable sizes and durations.
"""
