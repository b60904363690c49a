"""Tests for the bounded-concurrency job scheduler."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from conftest import FakeEncoder, FakeProbe, make_probe_doc, write_file
from mediashrink.config.common import JOB_STATUS_FAILED, JOB_STATUS_REPLACED
from mediashrink.pipeline.scheduler import JobScheduler
from mediashrink.services.skip_marker_service import SkipMarkerStore
from mediashrink.utils.ffmpeg_utils import CancellationToken, WorkerResult


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe(default=make_probe_doc())


@pytest.fixture
def episodes(library: Path):
    return [write_file(library / "Show" / f"Show S01E{n:02d}.mkv", 2000) for n in range(1, 7)]


def _scheduler(settings, make_job, probe, runner, library, **kwargs):
    return JobScheduler(
        settings,
        lambda path: make_job(path, probe, runner, job_settings=settings),
        marker_store=SkipMarkerStore(library),
        **kwargs,
    )


class TestConcurrency:
    @pytest.mark.parametrize("max_jobs", [1, 2, 3])
    def test_in_flight_never_exceeds_limit(self, settings, make_job, probe, library, episodes, max_jobs):
        s = settings.replace(max_jobs=max_jobs)
        runner = FakeEncoder(output_size=1000, delay=0.05)
        scheduler = _scheduler(s, make_job, probe, runner, library)

        records = scheduler.run(iter(episodes))

        assert len(records) == len(episodes)
        assert all(r.status == JOB_STATUS_REPLACED for r in records)
        assert 1 <= runner.peak <= max_jobs
        assert 1 <= scheduler.peak_in_flight <= max_jobs
        assert {r.slot for r in records} <= set(range(max_jobs))

    def test_every_candidate_is_processed_once(self, settings, make_job, probe, library, episodes):
        scheduler = _scheduler(settings.replace(max_jobs=2), make_job, probe, FakeEncoder(1000), library)
        records = scheduler.run(episodes)
        assert sorted(r.source for r in records) == sorted(episodes)
        assert probe.calls == len(episodes)


class TestSuppression:
    def test_marked_show_is_never_probed(self, settings, make_job, probe, library, episodes):
        (library / "Show" / ".skip_Show").touch()
        runner = FakeEncoder()
        scheduler = _scheduler(settings, make_job, probe, runner, library)

        records = scheduler.run(episodes)

        assert records == []
        assert probe.calls == 0
        assert runner.calls == 0
        assert [path for path, _marker in scheduler.suppressed] == episodes

    def test_marker_written_mid_run_suppresses_later_files(self, settings, make_job, probe, library, episodes):
        s = settings.replace(max_jobs=1)
        scheduler = _scheduler(s, make_job, probe, FakeEncoder(output_size=5000), library)

        records = scheduler.run(episodes)

        assert len(records) == 1
        assert probe.calls == 1
        assert len(scheduler.suppressed) == len(episodes) - 1


class TestCancellation:
    def test_cancelled_token_admits_nothing(self, settings, make_job, probe, library, episodes):
        token = CancellationToken()
        token.cancel()
        scheduler = _scheduler(settings, make_job, probe, FakeEncoder(), library, cancel_token=token)
        assert scheduler.run(episodes) == []
        assert scheduler.interrupted
        assert probe.calls == 0

    def test_keyboard_interrupt_stops_admission(self, settings, make_job, probe, library, episodes):
        def candidates():
            yield episodes[0]
            raise KeyboardInterrupt

        scheduler = _scheduler(settings, make_job, probe, FakeEncoder(1000), library)
        records = scheduler.run(candidates())

        assert scheduler.interrupted
        assert len(records) <= 1
        assert all(r.is_terminal for r in records)
        for episode in episodes[1:]:
            assert episode.stat().st_size == 2000

    def test_unexpected_error_fails_only_that_job(self, settings, make_job, library, episodes):
        class ExplodingProbe(FakeProbe):
            def probe(self, path):
                if path == episodes[0]:
                    raise RuntimeError("boom")
                return super().probe(path)

        probe = ExplodingProbe(default=make_probe_doc())
        scheduler = _scheduler(settings, make_job, probe, FakeEncoder(1000), library)
        records = {r.source: r for r in scheduler.run(episodes)}

        assert records[episodes[0]].status == JOB_STATUS_FAILED
        assert "RuntimeError" in records[episodes[0]].reason
        assert records[episodes[1]].status == JOB_STATUS_REPLACED


class TestCleanupSweep:
    def test_stray_artefacts_are_removed(self, settings, make_job, probe, library):
        show = library / "Show"
        stray_temp = write_file(show / "Show S01E01[Trans].tmp", 10)
        stray_staging = write_file(show / "Show S01E02[Trans].tmp.staging", 10)
        stray_nfo = write_file(show / "Show S01E01[Trans].nfo", 10)
        stray_thumb = write_file(show / "Show S01E01[Trans].jpg", 10)
        trickplay = show / "Show S01E01[Trans].trickplay"
        trickplay.mkdir()
        (trickplay / "0.jpg").touch()
        keep_nfo = write_file(show / "Show S01E01.nfo", 10)

        scheduler = _scheduler(settings, make_job, probe, FakeEncoder(), library, sweep_root=library)
        scheduler.run([])

        for path in (stray_temp, stray_staging, stray_nfo, stray_thumb, trickplay):
            assert not path.exists()
        assert keep_nfo.exists()
        assert set(scheduler.swept) == {stray_temp, stray_staging, stray_nfo, stray_thumb, trickplay}

    def test_no_sweep_without_root(self, settings, make_job, probe, library):
        stray = write_file(library / "a[Trans].tmp", 10)
        _scheduler(settings, make_job, probe, FakeEncoder(), library).run([])
        assert stray.exists()


class ContentEncoder:
    """Fills each output with the source folder's name, repeated per `sizes`, then lingers."""

    def __init__(self, sizes, delay=0.1):
        self.sizes = sizes
        self.delay = delay
        self.outputs = []
        self._lock = threading.Lock()

    def __call__(self, cmd, cancel_token=None):
        source = Path(cmd[cmd.index("-i") + 1])
        output = Path(cmd[-1])
        with self._lock:
            self.outputs.append(output)
        folder = source.parent.name
        output.write_bytes(folder.encode() * self.sizes[folder])
        time.sleep(self.delay)
        return WorkerResult(returncode=0)


class TestOutputPaths:
    def test_same_name_in_two_folders_with_shared_temp_dir(self, settings, make_job, probe, library, tmp_path):
        a = write_file(library / "A" / "Episode.mkv", 5000)
        b = write_file(library / "B" / "Episode.mkv", 5000)
        s = settings.replace(max_jobs=2, temp_dir=tmp_path / "scratch")
        runner = ContentEncoder({"A": 1000, "B": 2000})

        records = {r.source: r for r in _scheduler(s, make_job, probe, runner, library).run([a, b])}

        assert records[a].temp_path != records[b].temp_path
        assert len(set(runner.outputs)) == 2
        assert {r.status for r in records.values()} == {JOB_STATUS_REPLACED}
        assert a.read_bytes() == b"A" * 1000
        assert b.read_bytes() == b"B" * 2000

    def test_sources_sharing_a_destination_run_one_after_the_other(self, settings, make_job, probe, library):
        mp4 = write_file(library / "Show" / "Show S01E01.mp4", 2000)
        ts = write_file(library / "Show" / "Show S01E01.ts", 2000)
        runner = FakeEncoder(output_size=1000, delay=0.1)
        scheduler = _scheduler(settings.replace(max_jobs=2), make_job, probe, runner, library)

        records = {r.source: r for r in scheduler.run([mp4, ts])}

        assert runner.peak == 1
        assert records[mp4].status == JOB_STATUS_REPLACED
        assert records[ts].status == JOB_STATUS_FAILED
        assert "already exists" in records[ts].reason
        assert (library / "Show" / "Show S01E01.mkv").stat().st_size == 1000
        assert ts.stat().st_size == 2000
