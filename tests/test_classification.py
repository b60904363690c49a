"""Tests for the conversion decision logic."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeScanner, make_descriptor
from mediashrink.config.settings import TranscodeSettings
from mediashrink.config.video import UHD_BITRATE_CEILINGS
from mediashrink.domain.classification import (
    FILTER_DECIMATE,
    FILTER_DEINTERLACE,
    FILTER_FIELDMATCH,
    InterlaceStatus,
    StreamAction,
)
from mediashrink.domain.media import TrackInfo
from mediashrink.services.classification_service import ClassificationEngine, select_tracks


@pytest.fixture
def engine(settings) -> ClassificationEngine:
    return ClassificationEngine(settings, deep_scan=FakeScanner())


def _target(**kwargs):
    """A file already in the target format."""
    values = dict(video_codec="hevc", bitrate=1_800_000, field_order="progressive", audio=("aac",))
    values.update(kwargs)
    return make_descriptor(**values)


class TestClassify:
    def test_target_format_needs_nothing(self, engine):
        result = engine.classify(_target())
        assert not result.needs_conversion
        assert result.reason == "already in desired format"
        assert result.filter_chain == ()

    def test_output_of_a_conversion_is_stable(self, engine):
        """A file carrying exactly the target parameters is classified the same way every time."""
        first = engine.classify(_target())
        second = engine.classify(_target())
        assert first == second
        assert not second.needs_conversion

    def test_audio_mismatch_alone_triggers_conversion(self, engine):
        result = engine.classify(_target(audio=("ac3",)))
        assert result.needs_conversion
        assert result.reason.startswith("audio codec ac3")
        assert result.video_action is StreamAction.COPY
        assert result.audio_action is StreamAction.ENCODE
        assert result.filter_chain == ()

    def test_missing_audio_is_not_a_trigger(self, engine):
        result = engine.classify(_target(audio=()))
        assert not result.needs_conversion

    def test_video_codec_mismatch(self, engine):
        result = engine.classify(_target(video_codec="h264"))
        assert result.needs_conversion
        assert result.reason.startswith("video codec h264")
        assert result.video_action is StreamAction.ENCODE
        assert result.audio_action is StreamAction.COPY

    def test_bitrate_over_ceiling(self, engine):
        result = engine.classify(_target(bitrate=3_000_000))
        assert result.needs_conversion
        assert "bitrate" in result.reason
        assert result.video_action is StreamAction.ENCODE

    def test_unknown_bitrate_never_triggers(self, engine):
        assert not engine.classify(_target(bitrate=None)).needs_conversion

    def test_uhd_ceiling_depends_on_width(self, settings):
        uhd = ClassificationEngine(settings.replace(bitrate_ceilings=UHD_BITRATE_CEILINGS), deep_scan=FakeScanner())
        assert not uhd.classify(_target(bitrate=15_000_000, width=3840, height=2160)).needs_conversion
        assert uhd.classify(_target(bitrate=15_000_000, width=1920, height=1080)).needs_conversion

    def test_av1_is_excluded(self, settings):
        scanner = FakeScanner(InterlaceStatus.INTERLACED)
        engine = ClassificationEngine(settings, deep_scan=scanner)
        result = engine.classify(_target(video_codec="av1", bitrate=9_000_000, field_order=None, audio=("opus",)))
        assert not result.needs_conversion
        assert result.excluded
        assert scanner.calls == 0

    def test_file_without_video_is_excluded(self, engine):
        result = engine.classify(make_descriptor(video_codec=None, audio=("mp3",)))
        assert not result.needs_conversion
        assert result.excluded

    def test_interlaced_tag_needs_deinterlace(self, settings):
        scanner = FakeScanner()
        engine = ClassificationEngine(settings, deep_scan=scanner)
        result = engine.classify(_target(field_order="tt"))
        assert result.needs_conversion
        assert result.interlace_status is InterlaceStatus.INTERLACED
        assert result.filter_chain == (FILTER_DEINTERLACE,)
        assert result.video_action is StreamAction.ENCODE
        assert scanner.calls == 0

    def test_progressive_tag_is_trusted(self, settings):
        scanner = FakeScanner(InterlaceStatus.INTERLACED)
        engine = ClassificationEngine(settings, deep_scan=scanner)
        result = engine.classify(_target(field_order="progressive"))
        assert result.interlace_status is InterlaceStatus.PROGRESSIVE
        assert scanner.calls == 0

    def test_inconclusive_tag_runs_deep_scan(self, settings):
        scanner = FakeScanner(InterlaceStatus.PROGRESSIVE)
        engine = ClassificationEngine(settings, deep_scan=scanner)
        result = engine.classify(_target(field_order=None))
        assert scanner.calls == 1
        assert not result.needs_conversion

    def test_telecine_filter_order(self, settings):
        engine = ClassificationEngine(settings, deep_scan=FakeScanner(InterlaceStatus.TELECINE))
        result = engine.classify(_target(field_order="unknown"))
        assert result.needs_conversion
        assert result.interlace_status is InterlaceStatus.TELECINE
        chain = result.filter_chain
        assert chain == (FILTER_FIELDMATCH, FILTER_DECIMATE, FILTER_DEINTERLACE)
        assert chain.index(FILTER_FIELDMATCH) < chain.index(FILTER_DECIMATE)

    def test_status_is_computed_even_when_codec_triggers(self, settings):
        engine = ClassificationEngine(settings, deep_scan=FakeScanner(InterlaceStatus.TELECINE))
        result = engine.classify(make_descriptor(video_codec="mpeg2video", field_order=None, audio=("ac3",)))
        assert result.reason.startswith("audio codec")
        assert result.filter_chain == (FILTER_FIELDMATCH, FILTER_DECIMATE, FILTER_DEINTERLACE)

    def test_without_deep_scan_status_is_unknown(self, settings):
        engine = ClassificationEngine(settings)
        result = engine.classify(_target(field_order=None))
        assert result.interlace_status is InterlaceStatus.UNKNOWN
        assert result.needs_conversion
        assert result.filter_chain == (FILTER_DEINTERLACE,)

    def test_track_selection_only_when_track_aware(self, engine):
        result = engine.classify(_target(audio=[("aac", "eng"), ("aac", "fre")]))
        assert result.audio_selection is None
        assert not result.needs_conversion

    def test_dropping_tracks_triggers_conversion(self, settings):
        engine = ClassificationEngine(settings.replace(track_aware=True), deep_scan=FakeScanner())
        result = engine.classify(
            _target(audio=[("aac", "fre"), ("aac", "eng")], subtitles=[("subrip", "eng"), ("subrip", "ger")])
        )
        assert result.needs_conversion
        assert result.audio_selection.indices == (2,)
        assert result.audio_selection.default_index == 2
        assert result.subtitle_selection.indices == (3,)
        assert result.track_selection_changed
        assert result.video_action is StreamAction.COPY
        assert result.audio_action is StreamAction.COPY

    def test_dropping_the_only_mismatched_audio_copies_the_rest(self, settings):
        engine = ClassificationEngine(settings.replace(track_aware=True), deep_scan=FakeScanner())
        result = engine.classify(_target(audio=[("aac", "eng"), ("dts", "fre")]))
        assert result.needs_conversion
        assert result.audio_selection.indices == (1,)
        assert result.audio_action is StreamAction.COPY


def _track(index, language=None, title="", codec="aac"):
    return TrackInfo(index=index, codec=codec, language=language, title=title)


class TestSelectTracks:
    def test_no_tracks(self):
        selection = select_tracks([], ["eng"])
        assert selection.indices == ()
        assert selection.default_index is None

    def test_single_track_always_kept(self):
        selection = select_tracks([_track(1, "jpn")], ["eng"])
        assert selection.indices == (1,)
        assert not selection.changed

    def test_preferred_and_untagged_are_kept(self):
        tracks = [_track(1, "jpn"), _track(2, "eng"), _track(3, "und"), _track(4)]
        selection = select_tracks(tracks, ["eng", "en"])
        assert selection.indices == (2, 3, 4)
        assert selection.default_index == 2
        assert selection.changed

    def test_untagged_dropped_when_configured(self):
        tracks = [_track(1, "eng"), _track(2, "und")]
        selection = select_tracks(tracks, ["eng"], keep_untagged=False)
        assert selection.indices == (1,)

    def test_title_word_marks_preferred(self):
        tracks = [_track(1, "jpn"), _track(2, "ger", title="English Commentary")]
        selection = select_tracks(tracks, ["eng"], title_words=["english"])
        assert selection.indices == (2,)

    def test_nothing_preferred_keeps_first(self):
        tracks = [_track(1, "jpn"), _track(2, "ger")]
        selection = select_tracks(tracks, ["eng"])
        assert selection.indices == (1,)
        assert selection.default_index == 1
        assert selection.changed

    def test_all_preferred_is_unchanged(self):
        tracks = [_track(1, "eng"), _track(2, "en")]
        selection = select_tracks(tracks, ["eng", "en"])
        assert selection.indices == (1, 2)
        assert not selection.changed
