"""
Wires the transcode components together for one run.

FileWalker -> SkipMarkerStore -> MediaProbe -> ClassificationEngine ->
TranscodeJob (via JobScheduler) -> replace or skip-mark, followed by the per
outcome summary and the YAML run report.
"""
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from loguru import logger

from ..config.common import OUTCOME_SUPPRESSED, PROCESSED_TAGS
from ..config.settings import TranscodeSettings
from ..domain.media import MediaProbe
from ..domain.temp_models import JobRecord
from ..services.classification_service import ClassificationEngine
from ..services.encoder_commands import make_command_builder
from ..services.file_walker import FileWalker
from ..services.logging_service import RunReport
from ..services.skip_marker_service import SkipMarkerStore
from ..services.transcode_job import TranscodeJob
from ..utils.external_tools import ExternalTools
from ..utils.ffmpeg_utils import CancellationToken, InterlaceScanner, run_cancellable
from ..utils.format_utils import format_timedelta
from .scheduler import JobScheduler


class TranscodePipeline:
    """
    One transcode run over a library.

    Collaborators are created from the settings unless passed in, which is how the
    tests substitute the external tools.

    Attributes:
        root (Path): The library root.
        settings (TranscodeSettings): The run configuration.
        records (List[JobRecord]): Finished jobs, filled by `run`.
        report (Optional[RunReport]): The run report, filled by `run`.
    """

    def __init__(
        self,
        root: Path,
        settings: TranscodeSettings,
        tools: Optional[ExternalTools] = None,
        cancel_token: Optional[CancellationToken] = None,
        probe: Optional[MediaProbe] = None,
        deep_scan=None,
        builder=None,
        runner=run_cancellable,
    ):
        self.root = root
        self.settings = settings
        self.tools = tools or ExternalTools(settings.tool_dir)
        self.cancel_token = cancel_token or CancellationToken()
        self.probe = probe or MediaProbe(self.tools.ffprobe)
        if deep_scan is None:
            deep_scan = InterlaceScanner.from_settings(
                settings, self.tools.ffmpeg, self.tools.ffprobe, cancel_token=self.cancel_token
            )
        self.engine = ClassificationEngine(settings, deep_scan=deep_scan)
        self.builder = builder or make_command_builder(settings, self.tools)
        self.runner = runner
        self.marker_store = SkipMarkerStore(root)
        self.walker = FileWalker(
            root,
            settings.extensions,
            min_size_bytes=settings.min_size_bytes,
            processed_tags=PROCESSED_TAGS,
            exclude_dirs=[settings.temp_dir] if settings.temp_dir else [],
        )
        self.scheduler = JobScheduler(
            settings,
            self.make_job,
            cancel_token=self.cancel_token,
            marker_store=self.marker_store,
            sweep_root=root,
        )
        self.records: List[JobRecord] = []
        self.report: Optional[RunReport] = None

    @property
    def interrupted(self) -> bool:
        return self.cancel_token.is_set()

    def make_job(self, path: Path) -> TranscodeJob:
        return TranscodeJob(
            path,
            self.settings,
            probe=self.probe,
            engine=self.engine,
            builder=self.builder,
            marker_store=self.marker_store,
            cancel_token=self.cancel_token,
            runner=self.runner,
            error_log_dir=self.settings.report_dir or self.root,
        )

    def run(self) -> RunReport:
        """
        Processes the library and writes the run report.

        Returns:
            The `RunReport`, already written to disk.
        """
        started = datetime.now()
        logger.info(
            f"Starting {self.settings.profile} run in {self.root} "
            f"(min size {self.settings.min_size_bytes} bytes, backend {self.builder.name}"
            f"{', dry run' if self.settings.dry_run else ''})"
        )
        self.records = self.scheduler.run(self.walker.iter_candidates())

        self.report = RunReport(self.settings.report_dir or self.root, mode="transcode")
        for path, marker in self.scheduler.suppressed:
            self.report.add({"path": str(path), "outcome": OUTCOME_SUPPRESSED, "reason": str(marker)})
        self.report.extend(record.to_report_dict() for record in self.records)
        self.report.write(
            extra={
                "root": str(self.root),
                "profile": self.settings.profile,
                "dry_run": self.settings.dry_run,
                "interrupted": self.interrupted,
                "cleaned_up": [str(p) for p in self.scheduler.swept],
            }
        )
        self.log_summary(datetime.now() - started)
        return self.report

    def log_summary(self, elapsed):
        counts = Counter(record.status for record in self.records)
        if self.scheduler.suppressed:
            counts[OUTCOME_SUPPRESSED] = len(self.scheduler.suppressed)
        summary = ", ".join(f"{outcome}: {count}" for outcome, count in sorted(counts.items())) or "no files"
        logger.info(f"Summary -- {summary} (elapsed {format_timedelta(elapsed)})")
        if self.interrupted:
            logger.warning("Run was interrupted; re-run to process the remaining files.")
