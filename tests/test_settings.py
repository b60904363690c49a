"""Tests for the layered run configuration and the command line."""

from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from mediashrink.cli import get_args
from mediashrink.config.common import CLEANED_TAG, GIB, MARKER_SCOPE_DIRECTORY, TRANS_TAG
from mediashrink.config.settings import TranscodeSettings, load_settings, load_user_config
from mediashrink.config.video import UHD_BITRATE_CEILINGS


@pytest.fixture
def no_config(tmp_path: Path) -> Path:
    return tmp_path / "missing.yaml"


def _write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.user.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestTranscodeSettings:
    def test_defaults(self):
        s = TranscodeSettings()
        assert s.profile == "compress"
        assert s.target_video_codec == "hevc"
        assert s.target_audio_codec == "aac"
        assert s.processed_tag == TRANS_TAG
        assert s.min_size_bytes == 1 * GIB
        assert s.extensions == (".mkv", ".mp4", ".ts")

    def test_is_frozen(self):
        s = TranscodeSettings()
        with pytest.raises(dataclasses.FrozenInstanceError):
            s.max_jobs = 8

    def test_replace_returns_new_instance(self):
        s = TranscodeSettings()
        changed = s.replace(max_jobs=6)
        assert changed.max_jobs == 6
        assert s.max_jobs == TranscodeSettings().max_jobs

    @pytest.mark.parametrize(
        "field, value",
        [
            ("max_jobs", 0),
            ("marker_scope", "season"),
            ("encoder_backend", "qsv"),
            ("dedup_kind", "music"),
            ("profile", "fast"),
        ],
    )
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValueError):
            TranscodeSettings(**{field: value})

    def test_default_bitrate_ceiling_is_flat(self):
        s = TranscodeSettings()
        assert s.bitrate_ceiling_for(720) == 2_500_000
        assert s.bitrate_ceiling_for(3840) == 2_500_000

    def test_width_dependent_ceilings(self):
        s = TranscodeSettings(bitrate_ceilings=UHD_BITRATE_CEILINGS)
        assert s.bitrate_ceiling_for(1280) == 2_500_000
        assert s.bitrate_ceiling_for(1920) == 8_000_000
        assert s.bitrate_ceiling_for(3840) == 20_000_000


class TestLoadSettings:
    def test_missing_config_file_uses_defaults(self, no_config):
        s = load_settings(None, config_path=no_config)
        assert s == TranscodeSettings()

    def test_profile_preset_applies(self, no_config):
        args = get_args(["--profile", "clean"])
        s = load_settings(args, config_path=no_config)
        assert s.min_size_bytes == 5 * GIB
        assert s.processed_tag == CLEANED_TAG
        assert s.track_aware is True
        assert s.marker_scope == MARKER_SCOPE_DIRECTORY

    def test_yaml_overrides_profile(self, tmp_path):
        config = _write_config(
            tmp_path,
            "paths:\n"
            "    ffmpeg_dir: /opt/ffmpeg/bin\n"
            "transcode:\n"
            "    max_jobs: 3\n"
            "    preferred_languages: eng, jpn\n"
            "    file_mode: '644'\n"
            "    bitrate_ceilings: [[0, 3000000], [3840, 15000000]]\n",
        )
        s = load_settings(None, config_path=config)
        assert s.max_jobs == 3
        assert s.preferred_languages == ("eng", "jpn")
        assert s.file_mode == 0o644
        assert s.tool_dir == Path("/opt/ffmpeg/bin")
        assert s.bitrate_ceiling_for(3840) == 15_000_000

    def test_cli_flags_override_yaml(self, tmp_path):
        config = _write_config(tmp_path, "transcode:\n    max_jobs: 3\n    marker_scope: episode\n")
        args = get_args(["--processes", "5", "--min-size-gb", "0.5", "--dry-run"])
        s = load_settings(args, config_path=config)
        assert s.max_jobs == 5
        assert s.marker_scope == "episode"
        assert s.min_size_bytes == GIB // 2
        assert s.dry_run is True

    def test_unknown_yaml_key_is_ignored(self, tmp_path):
        config = _write_config(tmp_path, "transcode:\n    turbo: true\n")
        assert load_user_config(config) == {}

    def test_broken_yaml_is_ignored(self, tmp_path):
        config = _write_config(tmp_path, "transcode: [unclosed\n")
        assert load_user_config(config) == {}

    def test_invalid_yaml_value_raises(self, tmp_path):
        config = _write_config(tmp_path, "transcode:\n    marker_scope: season\n")
        with pytest.raises(ValueError):
            load_settings(None, config_path=config)


class TestGetArgs:
    def test_defaults_leave_settings_alone(self):
        args = get_args([])
        assert args.target_dir is None
        assert args.processes is None
        assert args.profile is None
        assert args.dedup is False

    def test_languages_are_split(self):
        args = get_args(["--languages", "ENG, en,,jpn"])
        assert args.languages == ("eng", "en", "jpn")

    def test_temp_dir_is_created(self, tmp_path):
        scratch = tmp_path / "scratch" / "nested"
        args = get_args(["--temp-dir", str(scratch)])
        assert scratch.is_dir()
        assert args.temp_dir == scratch.resolve()

    def test_audit_requires_dedup(self):
        with pytest.raises(SystemExit):
            get_args(["--audit"])

    def test_processes_must_be_positive(self):
        with pytest.raises(SystemExit):
            get_args(["--processes", "0"])
