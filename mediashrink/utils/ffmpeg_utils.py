"""
This module provides utility functions related to FFmpeg and other external tools.

It includes the wrappers used to run command-line processes (a simple blocking
`run_cmd` and a cancellable `run_cancellable` that the encoder jobs use), the
`CancellationToken` shared by every in-flight job, and the `InterlaceScanner`
that performs the bounded deep scan for interlaced and telecined video.
"""

import json
import os
import re
import shlex
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from loguru import logger

from ..config.video import (
    DEEP_SCAN_SKIP_SECONDS,
    IDET_FRAME_WINDOW,
    INTERLACED_FRAME_THRESHOLD,
    TELECINE_FRAME_WINDOW,
)
from ..domain.classification import InterlaceStatus
from ..domain.exceptions import Interrupted


def display_cmd(cmd_list: List[str]) -> str:
    """Returns a copy-pasteable rendering of a command list for logs."""
    if os.name == "nt":
        return subprocess.list2cmdline(cmd_list)
    return shlex.join(cmd_list)


def run_cmd(cmd_list: List[str], show_cmd: bool = False) -> Optional[subprocess.CompletedProcess]:
    """
    Executes a short-lived external command and captures its output.

    This is a wrapper around `subprocess.run` used for quick tool invocations such
    as `ffmpeg -version`. Long-running encodes go through `run_cancellable`.

    Args:
        cmd_list: The command as a list of arguments.
        show_cmd: If True, the command is logged at DEBUG level before execution.

    Returns:
        A `subprocess.CompletedProcess` on completion (whatever its return code),
        or `None` if the command could not be started.
    """
    if not cmd_list:
        logger.error("run_cmd received an empty command list.")
        return None

    if show_cmd:
        logger.debug(f"Executing: {display_cmd(cmd_list)}")

    try:
        result = subprocess.run(
            cmd_list,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            stdin=subprocess.DEVNULL,
            shell=False,
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.error(f"Command '{cmd_list[0]}' could not be started: {e}")
        return None

    if result.stdout:
        logger.trace(f"Command stdout (truncated): {result.stdout[:500]}")
    if result.stderr and result.returncode != 0:
        logger.debug(f"Command stderr (error, rc={result.returncode}): {result.stderr[-2000:]}")
    return result


class CancellationToken:
    """
    A run-wide stop flag.

    One token is created per run and handed to the scheduler, every job and every
    process runner. Setting it stops admissions and terminates running workers.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


@dataclass(frozen=True)
class WorkerResult:
    """
    Outcome of one external process invocation.

    Attributes:
        returncode: Exit status, or None if the process could not be started.
        stdout / stderr: Captured output, decoded as UTF-8 with replacement.
        cancelled: True when the process was terminated through the cancellation token.
    """

    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.cancelled

    def stderr_tail(self, lines: int = 20) -> str:
        return "\n".join(self.stderr.strip().splitlines()[-lines:])


def _stop_process(proc: subprocess.Popen, grace_seconds: float):
    proc.terminate()
    try:
        proc.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {proc.pid} ignored terminate, killing it.")
        proc.kill()


def run_cancellable(
    cmd_list: List[str],
    cancel_token: Optional[CancellationToken] = None,
    poll_interval: float = 0.5,
    grace_seconds: float = 10.0,
) -> WorkerResult:
    """
    Runs an external process to completion unless the run is cancelled.

    The child is polled every `poll_interval` seconds. When the token is set the
    child is terminated (then killed after `grace_seconds`), and the result is
    flagged as cancelled.

    Args:
        cmd_list: The command as a list of arguments.
        cancel_token: The run's cancellation token, or None for an uncancellable call.
        poll_interval: Seconds between token checks.
        grace_seconds: Seconds to wait after SIGTERM before SIGKILL.

    Returns:
        A `WorkerResult`. This function never raises for a failing child.
    """
    if cancel_token is not None and cancel_token.is_set():
        return WorkerResult(returncode=None, cancelled=True)

    logger.debug(f"Starting worker: {display_cmd(cmd_list)}")
    try:
        proc = subprocess.Popen(
            cmd_list,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.error(f"Command '{cmd_list[0]}' could not be started: {e}")
        return WorkerResult(returncode=None, stderr=str(e))

    with proc:
        while True:
            try:
                # Retrying communicate() after a timeout does not lose output.
                stdout, stderr = proc.communicate(timeout=poll_interval)
                return WorkerResult(returncode=proc.returncode, stdout=stdout or "", stderr=stderr or "")
            except subprocess.TimeoutExpired:
                if cancel_token is not None and cancel_token.is_set():
                    logger.info(f"Cancelling worker process {proc.pid} ({Path(cmd_list[0]).name}).")
                    _stop_process(proc, grace_seconds)
                    stdout, stderr = proc.communicate()
                    return WorkerResult(
                        returncode=proc.returncode,
                        stdout=stdout or "",
                        stderr=stderr or "",
                        cancelled=True,
                    )


# "Multi frame detection: TFF:   12 BFF:    0 Progressive:  180 Undetermined:    8"
_IDET_MULTI_PATTERN = re.compile(
    r"Multi frame detection:\s*TFF:\s*(\d+)\s*BFF:\s*(\d+)\s*Progressive:\s*(\d+)", re.IGNORECASE
)


def parse_idet_interlaced_count(stderr: str) -> Optional[int]:
    """
    Extracts the number of interlaced frames from idet's summary.

    The multi-frame detection line is used because it is the more stable of the
    two idet statistics. Interlaced frames are TFF + BFF.

    Returns:
        The count, or None when the output holds no idet summary.
    """
    matches = _IDET_MULTI_PATTERN.findall(stderr or "")
    if not matches:
        return None
    tff, bff, _progressive = matches[-1]
    return int(tff) + int(bff)


def parse_repeat_pict(stdout: str) -> bool:
    """True when any frame in an `ffprobe -show_frames -of json` document has repeat_pict set."""
    try:
        frames = json.loads(stdout or "{}").get("frames") or []
    except ValueError:
        return False
    for frame in frames:
        try:
            if int(frame.get("repeat_pict", 0)) > 0:
                return True
        except (TypeError, ValueError):
            continue
    return False


class InterlaceScanner:
    """
    The bounded deep scan used when the field order tag is inconclusive.

    Two external invocations are made per file: ffmpeg decodes a fixed window of
    frames through the `idet` filter, and if no interlaced frames are found, ffprobe
    reads the `repeat_pict` flag of a sampled frame range to detect telecine. Both
    start `skip_seconds` into the file so intros and credits are not sampled; a file
    shorter than that is scanned from the start.
    """

    def __init__(
        self,
        ffmpeg_cmd: str = "ffmpeg",
        ffprobe_cmd: str = "ffprobe",
        skip_seconds: int = DEEP_SCAN_SKIP_SECONDS,
        idet_frames: int = IDET_FRAME_WINDOW,
        telecine_frames: int = TELECINE_FRAME_WINDOW,
        interlaced_threshold: int = INTERLACED_FRAME_THRESHOLD,
        cancel_token: Optional[CancellationToken] = None,
        runner=run_cancellable,
    ):
        self.ffmpeg_cmd = ffmpeg_cmd
        self.ffprobe_cmd = ffprobe_cmd
        self.skip_seconds = skip_seconds
        self.idet_frames = idet_frames
        self.telecine_frames = telecine_frames
        self.interlaced_threshold = interlaced_threshold
        self.cancel_token = cancel_token
        self.runner = runner

    @classmethod
    def from_settings(cls, settings, ffmpeg_cmd: str, ffprobe_cmd: str, cancel_token=None) -> "InterlaceScanner":
        return cls(
            ffmpeg_cmd=ffmpeg_cmd,
            ffprobe_cmd=ffprobe_cmd,
            skip_seconds=settings.deep_scan_skip_seconds,
            idet_frames=settings.idet_frame_window,
            telecine_frames=settings.telecine_frame_window,
            interlaced_threshold=settings.interlaced_frame_threshold,
            cancel_token=cancel_token,
        )

    def _run(self, cmd: List[str]) -> WorkerResult:
        result = self.runner(cmd, self.cancel_token)
        if result.cancelled:
            raise Interrupted("Deep scan cancelled")
        return result

    def idet_command(self, path: Path, skip_seconds: int) -> List[str]:
        cmd = [self.ffmpeg_cmd, "-nostdin", "-hide_banner"]
        if skip_seconds > 0:
            cmd += ["-ss", str(skip_seconds)]
        cmd += ["-i", str(path), "-map", "0:v:0", "-filter:v", "idet", "-frames:v", str(self.idet_frames), "-an", "-f", "null", "-"]
        return cmd

    def repeat_pict_command(self, path: Path, skip_seconds: int) -> List[str]:
        start = str(skip_seconds) if skip_seconds > 0 else ""
        return [
            self.ffprobe_cmd,
            "-v", "error",
            "-select_streams", "v:0",
            "-read_intervals", f"{start}%+#{self.telecine_frames}",
            "-show_frames",
            "-show_entries", "frame=repeat_pict",
            "-of", "json",
            str(path),
        ]

    def count_interlaced_frames(self, path: Path) -> int:
        """Number of interlaced frames idet saw in the sampled window (0 if it saw none)."""
        for skip in dict.fromkeys((self.skip_seconds, 0)):
            result = self._run(self.idet_command(path, skip))
            count = parse_idet_interlaced_count(result.stderr)
            if count is not None:
                return count
            logger.debug(f"No idet summary for {path.name} with {skip}s offset (rc={result.returncode}).")
        logger.warning(f"idet produced no statistics for {path.name}; treating it as 0 interlaced frames.")
        return 0

    def has_repeated_pictures(self, path: Path) -> bool:
        result = self._run(self.repeat_pict_command(path, self.skip_seconds))
        if result.ok and parse_repeat_pict(result.stdout):
            return True
        if self.skip_seconds > 0 and not (result.ok and '"repeat_pict"' in result.stdout):
            # Nothing was read at the offset: the file is shorter than the skip.
            result = self._run(self.repeat_pict_command(path, 0))
            return result.ok and parse_repeat_pict(result.stdout)
        return False

    def scan(self, path: Path) -> InterlaceStatus:
        """
        Determines the interlace status of a file by decoding a sample of it.

        Returns:
            INTERLACED when idet counts more interlaced frames than the threshold,
            else TELECINE when a repeated-picture flag is found, else PROGRESSIVE.

        Raises:
            Interrupted: If the run is cancelled during the scan.
        """
        logger.info(f"Running deep scan for interlace/telecine on {path.name}...")
        interlaced_count = self.count_interlaced_frames(path)
        if interlaced_count > self.interlaced_threshold:
            status = InterlaceStatus.INTERLACED
        elif self.has_repeated_pictures(path):
            status = InterlaceStatus.TELECINE
        else:
            status = InterlaceStatus.PROGRESSIVE
        logger.debug(f"Deep scan of {path.name}: {interlaced_count} interlaced frames -> {status.value}")
        return status

    __call__ = scan
