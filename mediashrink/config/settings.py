"""
Builds the immutable run configuration.

All tunables end up in one frozen `TranscodeSettings` instance that is created
once at start-up and handed to the scheduler, the jobs and the services. The
value of each field is resolved in layers, later layers winning:

1. Built-in defaults from `config.common`, `config.video` and `config.audio`.
2. The selected profile preset from `config.video.PROFILES`.
3. The `transcode:` and `paths:` sections of the user YAML file.
4. Command-line flags that were actually given.
"""
import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from loguru import logger

from .audio import (
    AUDIO_BITRATE_KBPS,
    DEFAULT_PREFERRED_LANGUAGES,
    PREFERRED_TITLE_WORDS,
    TARGET_AUDIO_CODEC,
)
from .common import (
    DEFAULT_MIN_FREE_BYTES,
    GIB,
    MARKER_SCOPE_SHOW,
    MARKER_SCOPES,
    TRANS_TAG,
    USER_CONFIG_PATH,
)
from .video import (
    DEDUP_KIND_TV,
    DEDUP_KINDS,
    DEEP_SCAN_SKIP_SECONDS,
    DEFAULT_BITRATE_CEILINGS,
    DEFAULT_MAX_WORKERS,
    DEFAULT_MIN_SIZE_BYTES,
    DEFAULT_OUTPUT_CONTAINER,
    DEFAULT_PROFILE,
    ENCODER_BACKEND_FFMPEG,
    ENCODER_BACKENDS,
    IDET_FRAME_WINDOW,
    INTERLACED_FRAME_THRESHOLD,
    PROFILES,
    TARGET_VIDEO_CODEC,
    TELECINE_FRAME_WINDOW,
    VAAPI_DEVICE,
    VAAPI_QUALITY,
    VIDEO_BITRATE_KBPS,
    VIDEO_BUFSIZE_KBPS,
    VIDEO_EXTENSIONS,
    VIDEO_MAXRATE_KBPS,
    VIDEO_QP,
)


@dataclass(frozen=True)
class TranscodeSettings:
    """
    The complete, read-only configuration of one run.

    Attributes mirror the recognised configuration surface: concurrency, discovery
    filters, target format and thresholds, encoder parameters, deep scan window,
    track retention policy, skip marker scope, file permission policy, tool
    locations and reporting.
    """

    profile: str = DEFAULT_PROFILE
    max_jobs: int = DEFAULT_MAX_WORKERS

    # Discovery
    extensions: Tuple[str, ...] = VIDEO_EXTENSIONS
    min_size_bytes: int = DEFAULT_MIN_SIZE_BYTES
    processed_tag: str = TRANS_TAG

    # Target format and thresholds
    target_video_codec: str = TARGET_VIDEO_CODEC
    target_audio_codec: str = TARGET_AUDIO_CODEC
    output_container: str = DEFAULT_OUTPUT_CONTAINER
    bitrate_ceilings: Tuple[Tuple[int, int], ...] = DEFAULT_BITRATE_CEILINGS

    # Encoder
    encoder_backend: str = ENCODER_BACKEND_FFMPEG
    vaapi_device: str = VAAPI_DEVICE
    video_qp: int = VIDEO_QP
    video_bitrate_kbps: int = VIDEO_BITRATE_KBPS
    video_maxrate_kbps: int = VIDEO_MAXRATE_KBPS
    video_bufsize_kbps: int = VIDEO_BUFSIZE_KBPS
    vaapi_quality: int = VAAPI_QUALITY
    audio_bitrate_kbps: int = AUDIO_BITRATE_KBPS

    # Disk
    min_free_bytes: int = DEFAULT_MIN_FREE_BYTES
    temp_dir: Optional[Path] = None

    # Deep scan
    deep_scan_skip_seconds: int = DEEP_SCAN_SKIP_SECONDS
    idet_frame_window: int = IDET_FRAME_WINDOW
    telecine_frame_window: int = TELECINE_FRAME_WINDOW
    interlaced_frame_threshold: int = INTERLACED_FRAME_THRESHOLD

    # Tracks
    track_aware: bool = False
    preferred_languages: Tuple[str, ...] = DEFAULT_PREFERRED_LANGUAGES
    preferred_title_words: Tuple[str, ...] = PREFERRED_TITLE_WORDS
    keep_untagged: bool = True

    # Skip markers and file policy
    marker_scope: str = MARKER_SCOPE_SHOW
    file_mode: Optional[int] = 0o666
    file_owner: Optional[str] = None
    file_group: Optional[str] = None

    # Tools and reporting
    tool_dir: Optional[Path] = None
    report_dir: Optional[Path] = None
    dry_run: bool = False

    # Deduplication
    dedup_kind: str = DEDUP_KIND_TV
    audit: bool = False

    def __post_init__(self):
        if self.max_jobs < 1:
            raise ValueError(f"max_jobs must be at least 1, got {self.max_jobs}")
        if self.marker_scope not in MARKER_SCOPES:
            raise ValueError(f"Unknown marker scope '{self.marker_scope}'. Expected one of {MARKER_SCOPES}.")
        if self.encoder_backend not in ENCODER_BACKENDS:
            raise ValueError(f"Unknown encoder backend '{self.encoder_backend}'. Expected one of {ENCODER_BACKENDS}.")
        if self.dedup_kind not in DEDUP_KINDS:
            raise ValueError(f"Unknown dedup kind '{self.dedup_kind}'. Expected one of {DEDUP_KINDS}.")
        if self.profile not in PROFILES:
            raise ValueError(f"Unknown profile '{self.profile}'. Expected one of {tuple(PROFILES)}.")

    def bitrate_ceiling_for(self, width: int) -> int:
        """Returns the bitrate ceiling (bps) that applies to a video of the given width."""
        ceiling = self.bitrate_ceilings[0][1]
        for min_width, value in sorted(self.bitrate_ceilings):
            if width >= min_width:
                ceiling = value
        return ceiling

    def replace(self, **changes) -> "TranscodeSettings":
        return dataclasses.replace(self, **changes)


_FIELD_NAMES = {f.name for f in dataclasses.fields(TranscodeSettings)}
_TUPLE_FIELDS = ("extensions", "preferred_languages", "preferred_title_words")
_PATH_FIELDS = ("temp_dir", "tool_dir", "report_dir")


def load_user_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Reads the user YAML configuration file.

    Args:
        config_path: Explicit file to read. Defaults to `config.user.yaml` at the
                     project root; a missing default file is not an error.

    Returns:
        A flat dictionary of TranscodeSettings overrides. `paths.ffmpeg_dir` maps to
        `tool_dir`.
    """
    path = config_path or USER_CONFIG_PATH
    if not path.is_file():
        if config_path:
            logger.warning(f"Config file '{path}' not found. Using defaults.")
        else:
            logger.debug(f"User config '{path}' not found. Relying on defaults and system PATH.")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load or parse '{path}': {e}")
        return {}

    overrides: Dict[str, Any] = {}
    paths_config = user_config.get("paths") or {}
    if paths_config.get("ffmpeg_dir"):
        overrides["tool_dir"] = paths_config["ffmpeg_dir"]

    for key, value in (user_config.get("transcode") or {}).items():
        if key in _FIELD_NAMES:
            overrides[key] = value
        else:
            logger.warning(f"Ignoring unknown setting '{key}' in '{path}'.")
    return overrides


def _coerce(overrides: Dict[str, Any]) -> Dict[str, Any]:
    coerced = dict(overrides)
    for key in _TUPLE_FIELDS:
        if key in coerced and coerced[key] is not None:
            value = coerced[key]
            if isinstance(value, str):
                value = [part.strip() for part in value.split(",") if part.strip()]
            coerced[key] = tuple(value)
    for key in _PATH_FIELDS:
        if coerced.get(key) is not None:
            coerced[key] = Path(coerced[key]).expanduser()
    if "bitrate_ceilings" in coerced:
        coerced["bitrate_ceilings"] = tuple(
            (int(width), int(ceiling)) for width, ceiling in coerced["bitrate_ceilings"]
        )
    if isinstance(coerced.get("file_mode"), str):
        coerced["file_mode"] = int(coerced["file_mode"], 8)
    return coerced


def _overrides_from_args(args: Any) -> Dict[str, Any]:
    """Maps the CLI namespace onto settings fields, ignoring flags left at None."""
    if args is None:
        return {}
    mapping = {
        "processes": "max_jobs",
        "encoder_backend": "encoder_backend",
        "temp_dir": "temp_dir",
        "languages": "preferred_languages",
        "marker_scope": "marker_scope",
        "report_dir": "report_dir",
        "dedup_kind": "dedup_kind",
        "output_container": "output_container",
    }
    overrides: Dict[str, Any] = {}
    for arg_name, field_name in mapping.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            overrides[field_name] = value

    if getattr(args, "min_size_gb", None) is not None:
        overrides["min_size_bytes"] = int(args.min_size_gb * GIB)
    if getattr(args, "min_free_gb", None) is not None:
        overrides["min_free_bytes"] = int(args.min_free_gb * GIB)
    if getattr(args, "dry_run", False):
        overrides["dry_run"] = True
    if getattr(args, "audit", False):
        overrides["audit"] = True
    if getattr(args, "track_aware", False):
        overrides["track_aware"] = True
    return overrides


def load_settings(args: Any = None, config_path: Optional[Path] = None) -> TranscodeSettings:
    """
    Resolves the effective settings for this run.

    Args:
        args: The parsed command-line namespace, or None.
        config_path: Optional explicit YAML file; defaults to `config.user.yaml`.

    Returns:
        A frozen `TranscodeSettings`.

    Raises:
        ValueError: If a value is out of range or names an unknown option.
    """
    profile = getattr(args, "profile", None) or DEFAULT_PROFILE
    if profile not in PROFILES:
        raise ValueError(f"Unknown profile '{profile}'. Expected one of {tuple(PROFILES)}.")

    merged: Dict[str, Any] = {"profile": profile}
    merged.update(PROFILES[profile])
    user_overrides = load_user_config(config_path)
    merged.update(user_overrides)
    merged.update(_overrides_from_args(args))

    settings = TranscodeSettings(**_coerce(merged))
    logger.debug(f"Effective settings: {settings}")
    return settings
