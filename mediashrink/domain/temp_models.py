"""
Defines data models for transient job state.

Nothing here is persisted between runs: the filesystem (originals, temp outputs
and skip markers) is the only system of record. A `JobRecord` lives from the
moment a file is admitted to the scheduler until its job reaches a terminal
state, and ends up as one row of the run report.
"""
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config.common import (
    JOB_STATUS_CLASSIFYING,
    JOB_STATUS_ENCODING,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROBING,
    JOB_STATUS_REPLACED,
    JOB_STATUS_SKIP_MARKED,
    JOB_STATUS_SKIPPED,
    JOB_STATUS_VERIFYING,
    JOB_TERMINAL_STATUSES,
)
from .exceptions import InvalidTransition

ALLOWED_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    JOB_STATUS_PENDING: (JOB_STATUS_PROBING, JOB_STATUS_FAILED),
    JOB_STATUS_PROBING: (JOB_STATUS_CLASSIFYING, JOB_STATUS_FAILED),
    JOB_STATUS_CLASSIFYING: (JOB_STATUS_SKIPPED, JOB_STATUS_ENCODING, JOB_STATUS_FAILED),
    JOB_STATUS_ENCODING: (JOB_STATUS_VERIFYING, JOB_STATUS_FAILED),
    JOB_STATUS_VERIFYING: (JOB_STATUS_REPLACED, JOB_STATUS_SKIP_MARKED, JOB_STATUS_FAILED),
    JOB_STATUS_SKIPPED: (),
    JOB_STATUS_REPLACED: (),
    JOB_STATUS_SKIP_MARKED: (),
    JOB_STATUS_FAILED: (),
}


@dataclass
class JobRecord:
    """
    Work order and bookkeeping for one file.

    Attributes:
        source (Path): The original file.
        temp_path (Optional[Path]): Where the encoder writes its output.
        final_path (Optional[Path]): Where the output ends up on success.
        slot (Optional[int]): Worker slot assigned by the scheduler.
        status (str): Current state, one of the `JOB_STATUS_*` constants.
        history (List[str]): Every state the job went through, in order.
        exit_status (Optional[int]): Encoder return code.
        original_size (int): Source size in bytes before encoding.
        new_size (Optional[int]): Output size in bytes after encoding.
        reason (str): Why the job ended the way it did.
        interlace_status / filter_chain / video_action: Classification summary.
    """

    source: Path
    temp_path: Optional[Path] = None
    final_path: Optional[Path] = None
    slot: Optional[int] = None
    status: str = JOB_STATUS_PENDING
    history: List[str] = field(default_factory=lambda: [JOB_STATUS_PENDING])
    exit_status: Optional[int] = None
    original_size: int = 0
    new_size: Optional[int] = None
    reason: str = ""
    interlace_status: Optional[str] = None
    filter_chain: Tuple[str, ...] = ()
    video_action: Optional[str] = None
    started: datetime = field(default_factory=datetime.now)
    ended: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in JOB_TERMINAL_STATUSES

    def advance(self, new_status: str, reason: str = "") -> None:
        """
        Moves the job to `new_status`.

        Raises:
            InvalidTransition: If the state machine has no edge between the two states.
        """
        if new_status not in ALLOWED_TRANSITIONS.get(self.status, ()):
            raise InvalidTransition(f"{self.source.name}: cannot go from '{self.status}' to '{new_status}'")
        self.status = new_status
        self.history.append(new_status)
        if reason:
            self.reason = reason
        if self.is_terminal:
            self.ended = datetime.now()

    def to_report_dict(self) -> dict:
        """Flattens the record into plain types for the YAML run report."""
        return {
            "path": str(self.source),
            "outcome": self.status,
            "reason": self.reason,
            "interlace_status": self.interlace_status,
            "filter_chain": list(self.filter_chain),
            "video_action": self.video_action,
            "original_size": self.original_size,
            "new_size": self.new_size,
            "exit_status": self.exit_status,
            "slot": self.slot,
            "started_datetime": self.started.isoformat(timespec="seconds"),
            "ended_datetime": self.ended.isoformat(timespec="seconds") if self.ended else None,
        }
