"""
Common configuration settings used throughout the application.

This module contains globally shared configuration settings and constants that are
used across the whole of mediashrink. It centralizes parameters for logging,
processed-file tags, skip markers, job status tracking and run reports. It also
locates the optional user configuration file (`config.user.yaml`), whose contents
are merged into the run settings by `mediashrink.config.settings`.
"""
from pathlib import Path

# --- User-Defined Configuration ---
# An optional YAML file at the project root. Its `paths:` section may point at a
# directory holding the ffmpeg/ffprobe/HandBrakeCLI executables, and its
# `transcode:` section may override any field of `TranscodeSettings`.

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
USER_CONFIG_PATH = PROJECT_ROOT / "config.user.yaml"


# --- Logging Configuration ---

# The format string for the Loguru logger. It defines the structure and appearance
# of log messages, including timestamp, level, module name, and the message itself.
LOGGER_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{thread.name} - <level>{message}</level>"
)

# The length of the random string appended to run report file names, so that two
# runs started on the same day never overwrite each other's report.
REPORT_RANDOM_LENGTH = 10

# Prefix of the YAML run report written at the end of every run.
REPORT_FILE_PREFIX = "mediashrink_report"

# Name of the plain-text error log written next to a file whose encode failed.
ERROR_LOG_FILENAME = "error.txt"


# --- Processed-file Tags ---
# Temporary outputs carry one of these tags in their name. A candidate whose name
# contains a tag is the leftover of a crashed run and is deleted on sight.

TRANS_TAG = "[Trans]"
CLEANED_TAG = "[Cleaned]"
PROCESSED_TAGS = (TRANS_TAG, CLEANED_TAG)

# Sidecar artefacts that media servers generate for a temporary output; the final
# cleanup sweep removes them together with the stray temp files.
TAGGED_SIDECAR_SUFFIXES = (".nfo", ".jpg")
TAGGED_TRICKPLAY_SUFFIX = ".trickplay"


# --- Skip Markers ---
# Sentinel files whose mere presence excludes files from processing.

SKIP_MARKER_NAME = ".skip"  # directory scope: <dir>/.skip
SKIP_MARKER_PREFIX = ".skip_"  # show/episode scope: <dir>/.skip_<key>

MARKER_SCOPE_DIRECTORY = "directory"
MARKER_SCOPE_SHOW = "show"
MARKER_SCOPE_EPISODE = "episode"
MARKER_SCOPES = (MARKER_SCOPE_DIRECTORY, MARKER_SCOPE_SHOW, MARKER_SCOPE_EPISODE)


# --- Disk Space ---

GIB = 1024 ** 3

# Abort a file when the volume holding its temp output has less free space than this.
DEFAULT_MIN_FREE_BYTES = 50 * GIB


# --- Job Status Constants ---
# These constants represent the states of a TranscodeJob. They are used by
# `JobRecord` to track a single file through probing, classification, encoding
# and verification.

JOB_STATUS_PENDING = "pending"  # Created, nothing done yet.
JOB_STATUS_PROBING = "probing"  # ffprobe metadata read in progress.
JOB_STATUS_CLASSIFYING = "classifying"  # Conversion decision in progress (may deep-scan).
JOB_STATUS_SKIPPED = "skipped"  # No conversion needed. Terminal, no side effects.
JOB_STATUS_ENCODING = "encoding"  # External encoder running.
JOB_STATUS_VERIFYING = "verifying"  # Encoder exited cleanly, output being checked.
JOB_STATUS_REPLACED = "replaced"  # Smaller output moved into place. Terminal.
JOB_STATUS_SKIP_MARKED = "skip_marked"  # Output not smaller, marker written. Terminal.
JOB_STATUS_FAILED = "failed"  # Probe/encode/verify failure. Terminal, original untouched.

JOB_TERMINAL_STATUSES = (
    JOB_STATUS_SKIPPED,
    JOB_STATUS_REPLACED,
    JOB_STATUS_SKIP_MARKED,
    JOB_STATUS_FAILED,
)

# Outcome recorded for candidates that never reached a job because a skip marker
# excluded them in the coordinator.
OUTCOME_SUPPRESSED = "suppressed"


# --- Exit Codes ---

EXIT_OK = 0
EXIT_TOOL_UNAVAILABLE = 1
EXIT_INTERRUPTED = 130
