"""
Locates and verifies the external executables a run depends on.

Tools are looked up in the configured tool directory (`paths.ffmpeg_dir` in the
user config) first and on the system PATH otherwise. `verify` is called once at
start-up; a missing tool aborts the run before any file is touched.
"""
import shutil
import sys
from pathlib import Path
from typing import Dict, Iterable, Optional

from loguru import logger

from ..domain.exceptions import ToolUnavailable
from .ffmpeg_utils import run_cmd

FFMPEG = "ffmpeg"
FFPROBE = "ffprobe"
HANDBRAKE = "HandBrakeCLI"


class ExternalTools:
    """
    Resolves tool names to runnable commands.

    Attributes:
        tool_dir (Optional[Path]): Directory searched before the PATH.
    """

    def __init__(self, tool_dir: Optional[Path] = None):
        self.tool_dir = tool_dir
        self._resolved: Dict[str, str] = {}

    @staticmethod
    def _exe_name(name: str) -> str:
        return f"{name}.exe" if sys.platform == "win32" else name

    def resolve(self, name: str) -> Optional[str]:
        """
        Returns the absolute path of a tool, or None if it cannot be found.
        """
        if name in self._resolved:
            return self._resolved[name]

        found = None
        if self.tool_dir and self.tool_dir.is_dir():
            found = shutil.which(self._exe_name(name), path=str(self.tool_dir))
            if not found:
                logger.warning(f"'{name}' was not found in the configured tool directory '{self.tool_dir}'. Falling back to system PATH.")
        if not found:
            found = shutil.which(name)
        if found:
            self._resolved[name] = found
        return found

    def command(self, name: str) -> str:
        """The resolved path if known, else the bare name (left to the OS to find)."""
        return self.resolve(name) or name

    @property
    def ffmpeg(self) -> str:
        return self.command(FFMPEG)

    @property
    def ffprobe(self) -> str:
        return self.command(FFPROBE)

    @property
    def handbrake(self) -> str:
        return self.command(HANDBRAKE)

    def verify(self, required: Iterable[str]):
        """
        Checks that every required tool can be found and started.

        For ffmpeg and ffprobe the first line of `-version` is logged; HandBrakeCLI is
        only located, since its version banner is slow and noisy.

        Raises:
            ToolUnavailable: For the first tool that is missing or fails to start.
        """
        for name in required:
            path = self.resolve(name)
            if not path:
                raise ToolUnavailable(
                    name,
                    "add it to your system's PATH or set 'paths.ffmpeg_dir' in config.user.yaml",
                )
            if name == HANDBRAKE:
                logger.info(f"Found {name}: {path}")
                continue
            result = run_cmd([path, "-version"], show_cmd=True)
            if result is None:
                raise ToolUnavailable(name, f"{path} could not be started")
            if result.returncode != 0:
                raise ToolUnavailable(name, f"'-version' exited with {result.returncode}: {result.stderr.strip()}")
            first_line = (result.stdout.splitlines() or [""])[0]
            logger.info(f"{name} version check successful: {first_line}")
