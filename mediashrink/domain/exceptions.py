"""
Defines custom exception types for mediashrink.

These exceptions allow for more specific and expressive error handling throughout
the transcode pipeline. Instead of catching a generic `Exception`, the application
can catch specific exceptions like `ProbeFailed` or `InsufficientDiskSpace` and
react accordingly.

Only `ToolUnavailable` is fatal for a run. Every other exception is raised for a
single file and caught at the TranscodeJob boundary, where it becomes a logged
outcome before the scheduler moves on to the next file. A result that is not
smaller than its source is not an error at all: it is the `skip_marked` outcome.

All custom exceptions inherit from the base `MediaShrinkException`.
"""
from typing import Optional


class MediaShrinkException(Exception):
    """Base class for all custom exceptions in mediashrink."""

    pass


# --- Environment Exceptions ---
class ToolUnavailable(MediaShrinkException):
    """
    Raised when a required external binary (ffmpeg, ffprobe, HandBrakeCLI) is missing.

    This aborts the whole run before any file is touched.
    """

    def __init__(self, tool: str, detail: str = ""):
        self.tool = tool
        message = f"Required tool '{tool}' is not available"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


# --- Per-file Exceptions ---
class FileJobException(MediaShrinkException):
    """Base class for errors confined to a single file. The run continues."""

    pass


class ProbeFailed(FileJobException):
    """
    Raised when ffprobe cannot describe a file.

    Covers a missing ffprobe binary at probe time, a non-zero exit status, and output
    that cannot be parsed. The file is skipped.
    """

    pass


class InsufficientDiskSpace(FileJobException):
    """
    Raised before an encode when the temp volume has less free space than configured.

    Starting the encode anyway could fill the disk halfway through a multi-gigabyte
    output, so the file is skipped instead.
    """

    def __init__(self, path, free_bytes: int, required_bytes: int):
        self.path = path
        self.free_bytes = free_bytes
        self.required_bytes = required_bytes
        super().__init__(
            f"Only {free_bytes} bytes free on the volume of {path}, {required_bytes} required"
        )


class EncodeFailed(FileJobException):
    """
    Raised when the encoder exits non-zero or leaves a missing or empty output.

    The temp output is always deleted and the original stays untouched.
    """

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class Interrupted(MediaShrinkException):
    """
    Raised inside a job when the operator cancelled the run.

    The in-flight encoder has already been terminated when this is raised; the job
    removes its temp output and reports a failed outcome.
    """

    pass


class InvalidTransition(MediaShrinkException):
    """Raised when a job is asked to move between two states that are not connected."""

    pass
