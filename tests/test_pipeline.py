"""End-to-end runs of the transcode pipeline with the external tools faked out.

Sizes are real (sparse files), so the size floor and the replace decision see
the same numbers they would see on a library.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from conftest import FakeEncoder, FakeProbe, FakeScanner, make_probe_doc, write_file
from mediashrink.config.common import GIB, JOB_STATUS_REPLACED, JOB_STATUS_SKIP_MARKED, OUTCOME_SUPPRESSED
from mediashrink.config.settings import TranscodeSettings
from mediashrink.pipeline.transcode_pipeline import TranscodePipeline
from mediashrink.services.encoder_commands import FfmpegCommandBuilder


@pytest.fixture
def library_settings(tmp_path: Path) -> TranscodeSettings:
    """Default thresholds (1 GiB floor) without the free-space check."""
    return TranscodeSettings(min_free_bytes=0, report_dir=tmp_path / "reports")


@pytest.fixture
def episode(library: Path) -> Path:
    return write_file(library / "Taggart" / "Taggart S01E01.mkv", 2 * GIB, sparse=True)


@pytest.fixture
def interlaced_h264_probe() -> FakeProbe:
    return FakeProbe(default=make_probe_doc(video_codec="h264", bitrate=4_000_000, field_order="tt", audio=("ac3",)))


def _pipeline(library, settings, probe, runner):
    return TranscodePipeline(
        library,
        settings,
        probe=probe,
        deep_scan=FakeScanner(),
        builder=FfmpegCommandBuilder(settings, use_vaapi=False),
        runner=runner,
    )


def _report(pipeline) -> dict:
    return yaml.safe_load(pipeline.report.log_file_path.read_text(encoding="utf-8"))


class TestTranscodeScenarios:
    def test_interlaced_episode_is_replaced(self, library, library_settings, episode, interlaced_h264_probe):
        runner = FakeEncoder(output_size=int(1.5 * GIB))
        pipeline = _pipeline(library, library_settings, interlaced_h264_probe, runner)

        pipeline.run()

        [record] = pipeline.records
        assert record.status == JOB_STATUS_REPLACED
        assert record.interlace_status == "interlaced"
        assert record.filter_chain == ("deinterlace",)
        assert episode.stat().st_size == int(1.5 * GIB)
        assert not record.temp_path.exists()
        assert not pipeline.interrupted

        cmd = runner.commands[0]
        assert cmd[cmd.index("-vf") + 1] == "bwdif=mode=send_frame"
        assert cmd[cmd.index("-c:a:0") + 1] == "aac"

        document = _report(pipeline)
        assert document["summary"] == {JOB_STATUS_REPLACED: 1}
        assert document["entries"][0]["path"] == str(episode)

    def test_larger_output_marks_the_show(self, library, library_settings, episode, interlaced_h264_probe):
        runner = FakeEncoder(output_size=int(2.1 * GIB))
        pipeline = _pipeline(library, library_settings, interlaced_h264_probe, runner)

        pipeline.run()

        [record] = pipeline.records
        assert record.status == JOB_STATUS_SKIP_MARKED
        assert episode.stat().st_size == 2 * GIB
        assert (episode.parent / ".skip_Taggart").is_file()
        assert not record.temp_path.exists()

        second_probe = FakeProbe(default=make_probe_doc())
        second_runner = FakeEncoder()
        rerun = _pipeline(library, library_settings, second_probe, second_runner)
        rerun.run()

        assert rerun.records == []
        assert second_probe.calls == 0
        assert second_runner.calls == 0
        assert _report(rerun)["summary"] == {OUTCOME_SUPPRESSED: 1}


class TestPipelineDiscovery:
    def test_small_files_are_not_considered(self, library, library_settings, interlaced_h264_probe):
        write_file(library / "Short S01E01.mkv", GIB - 1, sparse=True)
        pipeline = _pipeline(library, library_settings, interlaced_h264_probe, FakeEncoder())
        pipeline.run()
        assert pipeline.records == []
        assert interlaced_h264_probe.calls == 0

    def test_dry_run_changes_nothing(self, library, library_settings, episode, interlaced_h264_probe):
        runner = FakeEncoder()
        pipeline = _pipeline(library, library_settings.replace(dry_run=True), interlaced_h264_probe, runner)
        pipeline.run()
        assert [r.reason.startswith("dry run:") for r in pipeline.records] == [True]
        assert runner.calls == 0
        assert episode.stat().st_size == 2 * GIB

    def test_leftovers_of_a_crashed_run_are_removed(self, library, library_settings, episode, interlaced_h264_probe):
        stale = write_file(episode.parent / "Taggart S01E01[Trans].tmp", 10)
        stale_nfo = write_file(episode.parent / "Taggart S01E01[Trans].nfo", 10)
        pipeline = _pipeline(library, library_settings, interlaced_h264_probe, FakeEncoder(int(1.5 * GIB)))
        pipeline.run()
        assert not stale.exists()
        assert not stale_nfo.exists()
        assert _report(pipeline)["cleaned_up"] == [str(stale_nfo)]

    def test_mixed_library(self, library, library_settings):
        probe = FakeProbe(
            documents={
                "Old S01E01.mkv": make_probe_doc(),
                "Done S01E01.mkv": make_probe_doc(video_codec="hevc", bitrate=1_500_000, field_order="progressive", audio=("aac",)),
                "Anime S01E01.mkv": make_probe_doc(video_codec="av1", audio=("opus",)),
            }
        )
        for name in ("Old S01E01.mkv", "Done S01E01.mkv", "Anime S01E01.mkv", "Broken S01E01.mkv"):
            write_file(library / name, 2 * GIB, sparse=True)

        pipeline = _pipeline(library, library_settings.replace(max_jobs=2), probe, FakeEncoder(GIB))
        pipeline.run()

        outcomes = {r.source.name: r.status for r in pipeline.records}
        assert outcomes == {
            "Old S01E01.mkv": "replaced",
            "Done S01E01.mkv": "skipped",
            "Anime S01E01.mkv": "skipped",
            "Broken S01E01.mkv": "failed",
        }
        assert _report(pipeline)["summary"] == {"replaced": 1, "skipped": 2, "failed": 1}
