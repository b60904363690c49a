"""
The bounded-concurrency executor for transcode jobs.

The coordinator (the calling thread) pulls candidates from the lazy walker and
submits them to a thread pool with at most `max_jobs` jobs in flight. When the
pool is full, admission blocks until the first running job completes. Once a
slot is free, candidates a skip marker excludes are dropped, and a candidate
whose temp output or destination is held by a running job (`Show.ts` next to
`Show.mp4`) waits until that job finishes. Each worker thread runs one job, and
a job owns at most one external process at a time, so the number of concurrently
running ffprobe/ffmpeg/HandBrake processes never exceeds `max_jobs`.

On end of input or on Ctrl-C, admission stops, in-flight jobs drain to a
terminal state (on Ctrl-C their encoders are terminated through the cancellation
token), and a cleanup sweep removes stray tagged artefacts.
"""
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from loguru import logger

from ..config.common import JOB_STATUS_FAILED
from ..config.settings import TranscodeSettings
from ..domain.temp_models import JobRecord
from ..services.file_walker import sweep_tagged_artefacts
from ..services.skip_marker_service import SkipMarker, SkipMarkerStore
from ..services.transcode_job import TranscodeJob
from ..utils.ffmpeg_utils import CancellationToken


def output_paths(job: TranscodeJob) -> FrozenSet[Path]:
    """The paths a job writes to: its temp output and its final destination."""
    return frozenset((job.record.temp_path, job.record.final_path))


class JobScheduler:
    """
    Runs TranscodeJobs with bounded concurrency.

    Attributes:
        settings (TranscodeSettings): Provides `max_jobs`, the tag and the temp dir.
        job_factory (Callable[[Path], TranscodeJob]): Creates the job for a candidate.
        cancel_token (CancellationToken): Shared with every job.
        marker_store (Optional[SkipMarkerStore]): Checked before submission.
        sweep_root (Optional[Path]): Where the cleanup sweep runs. None disables it.
        suppressed (List[Tuple[Path, SkipMarker]]): Candidates excluded by a marker.
        peak_in_flight (int): Highest number of jobs that ran at the same time.
    """

    def __init__(
        self,
        settings: TranscodeSettings,
        job_factory: Callable[[Path], TranscodeJob],
        cancel_token: Optional[CancellationToken] = None,
        marker_store: Optional[SkipMarkerStore] = None,
        sweep_root: Optional[Path] = None,
    ):
        self.settings = settings
        self.job_factory = job_factory
        self.cancel_token = cancel_token or CancellationToken()
        self.marker_store = marker_store
        self.sweep_root = sweep_root
        self.suppressed: List[Tuple[Path, SkipMarker]] = []
        self.swept: List[Path] = []
        self.peak_in_flight = 0
        self._running = 0
        self._lock = threading.Lock()

    @property
    def interrupted(self) -> bool:
        return self.cancel_token.is_set()

    def _run_job(self, job: TranscodeJob, slot: int) -> JobRecord:
        """Worker entry point. Nothing a job raises may escape the pool."""
        with self._lock:
            self._running += 1
            self.peak_in_flight = max(self.peak_in_flight, self._running)
        try:
            return job.run(slot)
        except Exception as e:
            logger.opt(exception=e).error(f"Unexpected error in job for {job.record.source.name}: {e}")
            if not job.record.is_terminal:
                job.record.advance(JOB_STATUS_FAILED, reason=f"unexpected {type(e).__name__}: {e}")
            return job.record
        finally:
            with self._lock:
                self._running -= 1

    def _is_suppressed(self, path: Path) -> bool:
        if self.marker_store is None:
            return False
        marker = self.marker_store.is_skipped(path)
        if marker is None:
            return False
        logger.info(f"Skipping {path} -- {marker}")
        self.suppressed.append((path, marker))
        return True

    def run(self, candidates: Iterable[Path]) -> List[JobRecord]:
        """
        Processes every candidate and returns the finished job records.

        Records are returned in completion order. Candidates suppressed by a skip
        marker produce no record; they are listed in `suppressed`.
        """
        max_jobs = self.settings.max_jobs
        free_slots: Set[int] = set(range(max_jobs))
        in_flight: Dict[Future, Tuple[TranscodeJob, int, FrozenSet[Path]]] = {}
        records: List[JobRecord] = []

        def collect(done):
            for future in done:
                job, slot, _paths = in_flight.pop(future)
                free_slots.add(slot)
                record = future.result()
                records.append(record)
                logger.info(f"[slot {slot}] {record.source.name}: {record.status} ({record.reason})")

        logger.info(f"Processing with up to {max_jobs} concurrent job(s).")
        with ThreadPoolExecutor(max_workers=max_jobs, thread_name_prefix="job") as executor:
            try:
                for path in candidates:
                    while len(in_flight) >= max_jobs:
                        done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                        collect(done)
                    if self.cancel_token.is_set():
                        break
                    # Markers written by the jobs collected above are visible here.
                    if self._is_suppressed(path):
                        continue
                    logger.info(f"Checking {path}")
                    job = self.job_factory(path)
                    paths = output_paths(job)
                    if any(paths & held for _job, _slot, held in in_flight.values()):
                        logger.info(f"Waiting for the running job that writes to the same paths as {path.name}")
                        while any(paths & held for _job, _slot, held in in_flight.values()):
                            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                            collect(done)
                        if self.cancel_token.is_set():
                            break
                        if self._is_suppressed(path):
                            continue
                    slot = min(free_slots)
                    free_slots.discard(slot)
                    in_flight[executor.submit(self._run_job, job, slot)] = (job, slot, paths)
            except KeyboardInterrupt:
                logger.warning("Interrupted by user. Stopping running encoders and cleaning up...")
                self.cancel_token.cancel()
            finally:
                while in_flight:
                    try:
                        done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                        collect(done)
                    except KeyboardInterrupt:
                        logger.warning("Interrupted again; still waiting for running jobs to stop.")
                        self.cancel_token.cancel()

        if self.sweep_root is not None:
            extra_dirs = [self.settings.temp_dir] if self.settings.temp_dir else []
            self.swept = sweep_tagged_artefacts(self.sweep_root, self.settings.processed_tag, extra_dirs)
        return records
