"""
This module provides classes for writing the on-disk logs of a run.

Console progress goes through loguru. Two kinds of files are written in addition:
`ErrorLog` appends human-readable failure details (command, return code, stderr)
to a plain-text `error.txt`, and `RunReport` dumps one machine-readable YAML
document per run, holding a record for every file the run looked at together
with the per-outcome totals.
"""

import random
import string
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import yaml
from loguru import logger

from ..config.common import ERROR_LOG_FILENAME, REPORT_FILE_PREFIX, REPORT_RANDOM_LENGTH


class Log:
    """
    Base class for the file logs.

    Resolves the log directory from the given path and makes sure it exists.
    """

    # A decorative separator line used in text-based logs for better readability.
    linesep_marker: str = "=" * 50

    def __init__(self, log_base_path: Path):
        """
        Args:
            log_base_path: The log directory, created if missing. An existing file
                           stands for its parent directory.
        """
        self.log_file_path: Path
        if not log_base_path.is_file():
            self.log_dir: Path = log_base_path.resolve()
        else:
            self.log_dir: Path = log_base_path.parent.resolve()
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def write(self, log_content: Union[dict, list, str]):
        raise NotImplementedError("Subclasses must implement the write() method.")

    @staticmethod
    def generate_random_string(length: int = REPORT_RANDOM_LENGTH) -> str:
        """Random uppercase/digit string used to keep report file names unique."""
        return "".join(random.choices(string.ascii_uppercase + string.digits, k=length))


class ErrorLog(Log):
    """
    Appends failure details to a plain-text file.

    Each call to `write` is one error event, closed by a separator line, so the
    file reads as a chronological record of what went wrong during the run.
    """

    def __init__(self, error_log_dir: Path, filename: str = ERROR_LOG_FILENAME):
        super().__init__(error_log_dir)
        self.log_file_path = self.log_dir / filename

    def write(self, *error_messages: str):
        """
        Appends one error event.

        Args:
            *error_messages: The lines making up the event.
        """
        if not error_messages:
            return

        content_to_write = "\n".join(error_messages) + "\n" + self.linesep_marker + "\n"
        try:
            with self.log_file_path.open("a", encoding="utf-8") as f:
                f.write(content_to_write)
        except OSError as e:
            # Keep the details in the console log when the file cannot be written.
            logger.error(f"Failed to write to error log {self.log_file_path}: {e}")
            for msg in error_messages:
                logger.error(f"  - {msg}")


class RunReport(Log):
    """
    The machine-readable YAML record of one run.

    Entries are collected in memory while the run progresses and written once, at
    the end, to `mediashrink_report_<YYYYMMDD>_<random>.yaml`. The random suffix
    keeps two runs started on the same day from overwriting each other.
    """

    def __init__(self, report_dir: Path, mode: str = "transcode"):
        super().__init__(report_dir)
        date_str = datetime.now().strftime("%Y%m%d")
        self.log_file_path = self.log_dir / f"{REPORT_FILE_PREFIX}_{date_str}_{self.generate_random_string()}.yaml"
        self.mode = mode
        self.started = datetime.now()
        self.entries: List[Dict] = []

    def add(self, entry: dict):
        """Records one file's outcome. The entry must carry an `outcome` key."""
        entry = dict(entry)
        entry["index"] = len(self.entries) + 1
        self.entries.append(entry)

    def extend(self, entries: Iterable[dict]):
        for entry in entries:
            self.add(entry)

    def summary(self) -> Dict[str, int]:
        """Number of entries per outcome, in first-seen order."""
        return dict(Counter(entry.get("outcome", "unknown") for entry in self.entries))

    def write(self, extra: Optional[dict] = None) -> Optional[Path]:
        """
        Dumps the report.

        Args:
            extra: Additional top-level keys (e.g. the root directory of the run).

        Returns:
            The path of the written file, or None if it could not be written.
        """
        document = {
            "mode": self.mode,
            "started_datetime": self.started.isoformat(timespec="seconds"),
            "ended_datetime": datetime.now().isoformat(timespec="seconds"),
        }
        if extra:
            document.update(extra)
        document["summary"] = self.summary()
        document["entries"] = self.entries

        try:
            with self.log_file_path.open("w", encoding="utf-8") as f:
                yaml.dump(
                    document,
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    allow_unicode=True,
                    indent=4,
                    width=220,
                )
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to write run report {self.log_file_path}: {e}")
            return None
        logger.info(f"Run report written to {self.log_file_path} ({len(self.entries)} entries).")
        return self.log_file_path
