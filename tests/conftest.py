"""Shared fixtures and fakes for the mediashrink test suite.

External tools are never started: ffprobe is replaced by `FakeProbe`, the
encoder process by `FakeEncoder`, and the deep scan by `FakeScanner`.
"""

from __future__ import annotations

import hashlib
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Union

import pytest

from mediashrink.config.settings import TranscodeSettings
from mediashrink.domain.classification import InterlaceStatus
from mediashrink.domain.exceptions import ProbeFailed
from mediashrink.domain.media import descriptor_from_probe
from mediashrink.services.classification_service import ClassificationEngine
from mediashrink.services.encoder_commands import FfmpegCommandBuilder
from mediashrink.services.skip_marker_service import SkipMarkerStore
from mediashrink.services.transcode_job import TranscodeJob
from mediashrink.utils.ffmpeg_utils import WorkerResult

# =============================================================================
# ffprobe documents
# =============================================================================


def make_probe_doc(
    video_codec: Optional[str] = "h264",
    bitrate: Optional[int] = 4_000_000,
    field_order: Optional[str] = "tt",
    audio: Sequence[Union[str, tuple]] = ("ac3",),
    subtitles: Sequence[Union[str, tuple]] = (),
    width: int = 1920,
    height: int = 1080,
) -> dict:
    """Build an `ffprobe -show_streams -of json` document.

    Audio and subtitle entries are either a codec name or a
    `(codec, language)` tuple.
    """
    streams = []
    if video_codec is not None:
        video = {
            "index": 0,
            "codec_type": "video",
            "codec_name": video_codec,
            "width": width,
            "height": height,
        }
        if bitrate is not None:
            video["bit_rate"] = str(bitrate)
        if field_order is not None:
            video["field_order"] = field_order
        streams.append(video)

    for kind, entries in (("audio", audio), ("subtitle", subtitles)):
        for entry in entries:
            codec, language = entry if isinstance(entry, tuple) else (entry, None)
            stream = {"index": len(streams), "codec_type": kind, "codec_name": codec}
            if language is not None:
                stream["tags"] = {"language": language}
            streams.append(stream)
    return {"streams": streams, "format": {"format_name": "matroska,webm"}}


def make_descriptor(path: Path = Path("/library/Show S01E01.mkv"), size: int = 2000, **kwargs):
    """A MediaDescriptor parsed from `make_probe_doc(**kwargs)`."""
    return descriptor_from_probe(path, make_probe_doc(**kwargs), size=size)


# =============================================================================
# Fakes
# =============================================================================


class FakeProbe:
    """Stands in for MediaProbe. Documents are looked up by file name."""

    def __init__(self, documents: Optional[Dict[str, dict]] = None, default: Optional[dict] = None):
        self.documents = documents or {}
        self.default = default
        self.calls = 0
        self._lock = threading.Lock()

    def probe(self, path: Path):
        with self._lock:
            self.calls += 1
        document = self.documents.get(path.name, self.default)
        if document is None:
            raise ProbeFailed(f"ffprobe failed for {path}")
        return descriptor_from_probe(path, document, size=path.stat().st_size)


class FakeScanner:
    """Stands in for InterlaceScanner; always answers `status`."""

    def __init__(self, status: InterlaceStatus = InterlaceStatus.PROGRESSIVE):
        self.status = status
        self.calls = 0

    def __call__(self, path: Path) -> InterlaceStatus:
        self.calls += 1
        return self.status


class FakeEncoder:
    """Stands in for `run_cancellable` when the command is an encode.

    Writes a zero-filled (sparse) output of `output_size` bytes to the last
    argument of the command. `output_size` may be a callable taking the source
    path. Tracks how many invocations overlap in time.
    """

    def __init__(
        self,
        output_size: Union[int, Callable[[Path], int], None] = 1500,
        returncode: int = 0,
        cancelled: bool = False,
        delay: float = 0.0,
    ):
        self.output_size = output_size
        self.returncode = returncode
        self.cancelled = cancelled
        self.delay = delay
        self.commands = []
        self.running = 0
        self.peak = 0
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        return len(self.commands)

    def __call__(self, cmd, cancel_token=None) -> WorkerResult:
        with self._lock:
            self.commands.append(list(cmd))
            self.running += 1
            self.peak = max(self.peak, self.running)
        try:
            if self.delay:
                time.sleep(self.delay)
            output = Path(cmd[-1])
            source = Path(cmd[cmd.index("-i") + 1])
            size = self.output_size(source) if callable(self.output_size) else self.output_size
            if size is not None:
                with output.open("wb") as f:
                    f.truncate(size)
            if self.returncode != 0:
                return WorkerResult(returncode=self.returncode, stderr="Conversion failed!\n")
            return WorkerResult(returncode=self.returncode, cancelled=self.cancelled)
        finally:
            with self._lock:
                self.running -= 1


def write_file(path: Path, size: int, sparse: bool = False) -> Path:
    """Create `path` with `size` bytes, random content unless `sparse`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        if sparse:
            f.truncate(size)
        else:
            f.write(bytes((i * 31 + 7) % 256 for i in range(size)))
    return path


def sha256(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def library(tmp_path: Path) -> Path:
    """An empty library root."""
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def settings(tmp_path: Path) -> TranscodeSettings:
    """Settings without size or free-space floors, so tiny test files qualify."""
    return TranscodeSettings(
        min_size_bytes=0,
        min_free_bytes=0,
        report_dir=tmp_path / "reports",
        vaapi_device=str(tmp_path / "no-render-node"),
    )


@pytest.fixture
def make_job(settings: TranscodeSettings, library: Path):
    """Factory for a TranscodeJob wired to fakes.

    Usage:
        job = make_job(source, probe=FakeProbe(default=make_probe_doc()), runner=FakeEncoder(1500))
    """

    def _make(
        source: Path,
        probe: FakeProbe,
        runner: FakeEncoder,
        job_settings: Optional[TranscodeSettings] = None,
        scanner: Optional[FakeScanner] = None,
        cancel_token=None,
    ) -> TranscodeJob:
        s = job_settings or settings
        return TranscodeJob(
            source,
            s,
            probe=probe,
            engine=ClassificationEngine(s, deep_scan=scanner or FakeScanner()),
            builder=FfmpegCommandBuilder(s, use_vaapi=False),
            marker_store=SkipMarkerStore(library),
            cancel_token=cancel_token,
            runner=runner,
            error_log_dir=s.report_dir,
        )

    return _make
