"""
Runs the duplicate clean-up over a library and records its decision log.
"""
from pathlib import Path
from typing import List

from loguru import logger

from ..config.settings import TranscodeSettings
from ..config.video import DEDUP_VIDEO_EXTENSIONS
from ..services.dedup_service import DedupDecision, DeduplicationEngine
from ..services.logging_service import RunReport


class DedupPipeline:
    def __init__(self, root: Path, settings: TranscodeSettings):
        self.root = root
        self.settings = settings
        self.engine = DeduplicationEngine(
            root, kind=settings.dedup_kind, audit=settings.audit, extensions=DEDUP_VIDEO_EXTENSIONS
        )
        self.decisions: List[DedupDecision] = []

    def run(self) -> RunReport:
        mode = "audit" if self.settings.audit else "delete"
        logger.info(f"Starting {self.settings.dedup_kind} deduplication ({mode}) in {self.root}")
        self.decisions = self.engine.run()

        report = RunReport(self.settings.report_dir or self.root, mode="dedup")
        report.extend(decision.to_report_dict() for decision in self.decisions)
        report.write(extra={"root": str(self.root), "kind": self.settings.dedup_kind, "audit": self.settings.audit})
        return report
