"""
This module contains `TranscodeJob`, the work order for one file.

A job walks a file through the state machine

    pending -> probing -> classifying -> (skipped | encoding) -> verifying
            -> (replaced | skip_marked | failed)

and is the boundary at which per-file errors stop: whatever goes wrong with one
file ends as a `failed` record, never as an exception reaching the scheduler.

The original file is only touched in the very last step, and only when the new
output is strictly smaller. Until the final rename succeeds the temporary output
is kept, so a crash at any point leaves either the original or the new file in
place.
"""
import hashlib
import os
import shutil
from pathlib import Path
from typing import Optional

from loguru import logger

from ..config.common import (
    JOB_STATUS_CLASSIFYING,
    JOB_STATUS_ENCODING,
    JOB_STATUS_FAILED,
    JOB_STATUS_PROBING,
    JOB_STATUS_REPLACED,
    JOB_STATUS_SKIP_MARKED,
    JOB_STATUS_SKIPPED,
    JOB_STATUS_VERIFYING,
)
from ..config.settings import TranscodeSettings
from ..domain.classification import ClassificationResult
from ..domain.exceptions import (
    EncodeFailed,
    FileJobException,
    InsufficientDiskSpace,
    Interrupted,
)
from ..domain.media import MediaDescriptor, MediaProbe
from ..domain.temp_models import JobRecord
from ..utils.ffmpeg_utils import CancellationToken, display_cmd, run_cancellable
from ..utils.format_utils import formatted_size, size_change_percent
from .classification_service import ClassificationEngine
from .encoder_commands import CommandBuilder
from .logging_service import ErrorLog
from .skip_marker_service import SkipMarkerStore


def temp_output_path(source: Path, settings: TranscodeSettings, temp_suffix: str = ".tmp") -> Path:
    """
    `<dir>/<stem><tag><suffix>`, or `<temp_dir>/<stem>.<digest><tag><suffix>`.

    The tag keeps the file from ever being picked up as a candidate, and the
    suffix is not a video extension. Files from different folders share the temp
    dir, so there the name also carries a digest of the full source path.
    """
    if settings.temp_dir is None:
        return source.parent / f"{source.stem}{settings.processed_tag}{temp_suffix}"
    digest = hashlib.sha256(str(source.resolve()).encode("utf-8")).hexdigest()[:12]
    return settings.temp_dir / f"{source.stem}.{digest}{settings.processed_tag}{temp_suffix}"


def final_output_path(source: Path, settings: TranscodeSettings) -> Path:
    """The source path itself, or its sibling with the output container's extension."""
    extension = f".{settings.output_container}"
    if source.suffix.lower() == extension:
        return source
    return source.with_suffix(extension)


class TranscodeJob:
    """
    Processes a single file from probe to replace.

    Attributes:
        source (Path): The file to process.
        record (JobRecord): State and bookkeeping, returned by `run`.
    """

    def __init__(
        self,
        source: Path,
        settings: TranscodeSettings,
        probe: MediaProbe,
        engine: ClassificationEngine,
        builder: CommandBuilder,
        marker_store: SkipMarkerStore,
        cancel_token: Optional[CancellationToken] = None,
        runner=run_cancellable,
        error_log_dir: Optional[Path] = None,
    ):
        self.source = source
        self.settings = settings
        self.probe = probe
        self.engine = engine
        self.builder = builder
        self.marker_store = marker_store
        self.cancel_token = cancel_token
        self.runner = runner
        self.error_log_dir = error_log_dir or source.parent
        self.record = JobRecord(
            source=source,
            temp_path=temp_output_path(source, settings, builder.temp_suffix),
            final_path=final_output_path(source, settings),
        )

    # --- State machine ---

    def run(self, slot: Optional[int] = None) -> JobRecord:
        """
        Runs the job to a terminal state.

        Args:
            slot: The worker slot assigned by the scheduler, kept for reporting.

        Returns:
            The finished `JobRecord`.
        """
        record = self.record
        record.slot = slot
        try:
            self._check_cancelled()
            record.advance(JOB_STATUS_PROBING)
            descriptor = self.probe.probe(self.source)
            record.original_size = descriptor.size

            record.advance(JOB_STATUS_CLASSIFYING)
            result = self.engine.classify(descriptor)
            self._note_classification(result)
            if not result.needs_conversion:
                logger.info(f"Skipping {self.source} -- {result.reason}")
                record.advance(JOB_STATUS_SKIPPED, reason=result.reason)
                return record
            if self.settings.dry_run:
                logger.info(f"[dry-run] Would encode {self.source} -- {result.reason}")
                record.advance(JOB_STATUS_SKIPPED, reason=f"dry run: {result.reason}")
                return record

            self._check_destination()
            self._prepare_temp_dir()
            self._check_disk_space()
            record.advance(JOB_STATUS_ENCODING, reason=result.reason)
            self._encode(descriptor, result)

            record.advance(JOB_STATUS_VERIFYING)
            record.new_size = self._verify()
            if record.new_size < record.original_size:
                self._replace()
                record.advance(JOB_STATUS_REPLACED, reason=self._size_summary())
                logger.success(f"Replaced {record.final_path}: {self._size_summary()}")
            else:
                self._discard_temp()
                marker = self.marker_store.mark_skipped(self.settings.marker_scope, self.source)
                record.advance(JOB_STATUS_SKIP_MARKED, reason=f"not smaller ({self._size_summary()}), marked {marker.name}")
                logger.warning(f"Not smaller, keeping original {self.source}: {self._size_summary()}")
        except Interrupted:
            self._fail("interrupted")
        except FileJobException as e:
            logger.error(f"{self.source.name}: {e}")
            self._fail(str(e))
        except OSError as e:
            logger.opt(exception=e).error(f"Filesystem error while processing {self.source}: {e}")
            self._fail(f"{type(e).__name__}: {e}")
        return record

    def _fail(self, reason: str):
        self._discard_temp()
        if not self.record.is_terminal:
            self.record.advance(JOB_STATUS_FAILED, reason=reason)
        logger.info(f"Failed {self.source}: {reason}")

    def _check_cancelled(self):
        if self.cancel_token is not None and self.cancel_token.is_set():
            raise Interrupted(f"Run cancelled before {self.source.name} finished")

    def _note_classification(self, result: ClassificationResult):
        record = self.record
        record.interlace_status = result.interlace_status.value
        record.filter_chain = result.filter_chain
        record.video_action = result.video_action.value
        logger.info(
            f"{self.source.name}: detected {result.interlace_status.value}, "
            f"video {result.video_action.value}, audio {result.audio_action.value}, "
            f"filter chain {list(result.filter_chain) or 'none'}"
        )

    # --- Pre-flight ---

    def _check_destination(self):
        final_path = self.record.final_path
        if final_path != self.source and final_path.exists():
            raise FileJobException(f"{final_path.name} already exists next to {self.source.name}")

    def _prepare_temp_dir(self):
        """Creates the temp dir, which may come from the config file and not exist yet."""
        self.record.temp_path.parent.mkdir(parents=True, exist_ok=True)

    def _check_disk_space(self):
        """
        Raises:
            InsufficientDiskSpace: If the temp volume has less than `min_free_bytes` free.
        """
        required = self.settings.min_free_bytes
        if required <= 0:
            return
        volume = self.record.temp_path.parent
        free = shutil.disk_usage(volume).free
        if free < required:
            raise InsufficientDiskSpace(volume, free, required)
        logger.debug(f"{formatted_size(free)} free on {volume}")

    # --- Encoding ---

    def _encode(self, descriptor: MediaDescriptor, result: ClassificationResult):
        """
        Runs the encoder into the temp path.

        Raises:
            Interrupted: If the run was cancelled while the encoder ran.
            EncodeFailed: If the encoder could not be started or exited non-zero.
        """
        temp_path = self.record.temp_path
        if temp_path.exists():
            logger.debug(f"Removing stale temp output {temp_path}")
            temp_path.unlink()

        cmd = self.builder.build(descriptor, result, temp_path)
        logger.info(f"Encoding {self.source.name} -> {temp_path.name} ({self.builder.name})")
        worker = self.runner(cmd, self.cancel_token)
        self.record.exit_status = worker.returncode
        if worker.cancelled:
            raise Interrupted(f"Encoder for {self.source.name} was terminated")
        if not worker.ok:
            ErrorLog(self.error_log_dir).write(
                f"Encode failed for: {self.source}",
                f"Command: {display_cmd(cmd)}",
                f"Return code: {worker.returncode}",
                f"Stderr (tail):\n{worker.stderr_tail()}",
            )
            raise EncodeFailed(
                f"Encoder exited with {worker.returncode}",
                returncode=worker.returncode,
                stderr=worker.stderr,
            )

    def _verify(self) -> int:
        """
        Returns:
            The size of the temp output.

        Raises:
            EncodeFailed: If the output is missing or empty.
        """
        temp_path = self.record.temp_path
        if not temp_path.is_file():
            raise EncodeFailed(f"Encoder reported success but {temp_path.name} is missing", returncode=0)
        size = temp_path.stat().st_size
        if size == 0:
            raise EncodeFailed(f"Encoder reported success but {temp_path.name} is empty", returncode=0)
        return size

    def _discard_temp(self):
        temp_path = self.record.temp_path
        if temp_path is not None and temp_path.exists():
            try:
                temp_path.unlink()
                logger.debug(f"Removed temp output {temp_path}")
            except OSError as e:
                logger.error(f"Could not remove temp output {temp_path}: {e}")

    # --- Replace ---

    def _stage_on_destination_volume(self) -> Path:
        """
        Returns a path on the destination volume holding the new output.

        When the temp dir is on another filesystem the output is copied next to the
        destination first, so that the final step is a same-volume rename.
        """
        temp_path = self.record.temp_path
        destination_dir = self.record.final_path.parent
        if os.stat(temp_path.parent).st_dev == os.stat(destination_dir).st_dev:
            return temp_path
        staged = destination_dir / f"{self.source.stem}{self.settings.processed_tag}.tmp.staging"
        logger.debug(f"Copying {temp_path} to {staged} across filesystems")
        shutil.copy2(temp_path, staged)
        temp_path.unlink()
        self.record.temp_path = staged
        return staged

    def _replace(self):
        """
        Moves the new output into place.

        The original's timestamps are copied onto the new file first. For the same
        path the rename replaces the original in one step. When the container
        changes, the new file is renamed to its final name before the original is
        deleted, so there is no moment without a copy of the content on disk.
        """
        source = self.source
        final_path = self.record.final_path
        source_stat = source.stat()
        staged = self._stage_on_destination_volume()
        os.utime(staged, ns=(source_stat.st_atime_ns, source_stat.st_mtime_ns))

        os.replace(staged, final_path)
        if final_path != source:
            source.unlink()
        self._apply_file_policy(final_path)

    def _apply_file_policy(self, path: Path):
        settings = self.settings
        if settings.file_mode is not None:
            try:
                path.chmod(settings.file_mode)
            except OSError as e:
                logger.warning(f"Could not set mode {oct(settings.file_mode)} on {path}: {e}")
        if settings.file_owner or settings.file_group:
            try:
                shutil.chown(path, user=settings.file_owner, group=settings.file_group)
            except (OSError, LookupError) as e:
                logger.warning(f"Could not set owner {settings.file_owner}:{settings.file_group} on {path}: {e}")

    def _size_summary(self) -> str:
        record = self.record
        new_size = record.new_size or 0
        change = size_change_percent(record.original_size, new_size)
        return f"{formatted_size(record.original_size)} -> {formatted_size(new_size)} ({change:+.1f}%)"
