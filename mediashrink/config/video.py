"""
Configuration settings related to video processing.

This module defines constants for video file extensions, the target codec and
bitrate limits, encoder parameters for the ffmpeg and HandBrake backends, deep
scan windows, and the named profiles that reproduce the library-specific
variants (TV deinterlace, foreign compress, movie clean-up, UHD).
"""
from .common import CLEANED_TAG, GIB, MARKER_SCOPE_DIRECTORY, MARKER_SCOPE_SHOW, TRANS_TAG

# --- General Video Settings ---
DEFAULT_MAX_WORKERS = 2
VIDEO_EXTENSIONS = (".mkv", ".mp4", ".ts")
DEDUP_VIDEO_EXTENSIONS = (".mkv", ".mp4", ".ts", ".avi")
DEFAULT_MIN_SIZE_BYTES = 1 * GIB

# Codecs that are never touched, whatever their bitrate or field order.
EXCEPT_FORMAT = frozenset({"av1"})

# --- Target Format ---
TARGET_VIDEO_CODEC = "hevc"
DEFAULT_OUTPUT_CONTAINER = "mkv"

# Ordered (min_width, ceiling_bps) pairs; the last pair whose min_width does not
# exceed the source width applies.
DEFAULT_BITRATE_CEILINGS = ((0, 2_500_000),)
UHD_BITRATE_CEILINGS = ((0, 2_500_000), (1920, 8_000_000), (3840, 20_000_000))

# --- Encoder Settings ---
ENCODER_BACKEND_FFMPEG = "ffmpeg"
ENCODER_BACKEND_HANDBRAKE = "handbrake"
ENCODER_BACKENDS = (ENCODER_BACKEND_FFMPEG, ENCODER_BACKEND_HANDBRAKE)

VAAPI_DEVICE = "/dev/dri/renderD128"
HEVC_VAAPI_ENCODER = "hevc_vaapi"
HEVC_SOFTWARE_ENCODER = "libx265"
HANDBRAKE_VAAPI_ENCODER = "vaapi_h265"
HANDBRAKE_SOFTWARE_ENCODER = "x265"

VIDEO_QP = 22
VIDEO_BITRATE_KBPS = 1800
VIDEO_MAXRATE_KBPS = 2000
VIDEO_BUFSIZE_KBPS = 4000
VAAPI_QUALITY = 2

# --- Deep Scan (interlace / telecine detection) ---
# Seconds skipped before sampling, so intros and credits do not skew the result.
DEEP_SCAN_SKIP_SECONDS = 300
# Frames decoded through the idet filter.
IDET_FRAME_WINDOW = 200
# Frames inspected for the repeat_pict flag.
TELECINE_FRAME_WINDOW = 300
# A file is interlaced when idet counts more interlaced frames than this.
INTERLACED_FRAME_THRESHOLD = 0

# --- Subtitle handling ---
# MP4 only carries mov_text; everything else is converted when the output is MP4.
MP4_SUBTITLE_CODEC = "mov_text"
# Text formats that can be converted to mov_text. Bitmap subtitles (PGS, VobSub) cannot.
TEXT_SUBTITLE_CODECS = frozenset({"mov_text", "tx3g", "subrip", "srt", "ass", "ssa", "webvtt", "text"})

# --- HandBrake ---
HANDBRAKE_ENCODER_PRESET = "medium"
HANDBRAKE_MAX_HEIGHT = 2160

# --- Profiles ---
# Each profile overrides a subset of TranscodeSettings fields.
PROFILE_DEINTERLACE = "deinterlace"
PROFILE_COMPRESS = "compress"
PROFILE_CLEAN = "clean"
PROFILE_UHD = "uhd"
DEFAULT_PROFILE = PROFILE_COMPRESS

PROFILES = {
    PROFILE_DEINTERLACE: {
        "min_size_bytes": 1 * GIB,
        "processed_tag": TRANS_TAG,
        "track_aware": False,
        "marker_scope": MARKER_SCOPE_SHOW,
    },
    PROFILE_COMPRESS: {
        "min_size_bytes": 1 * GIB,
        "processed_tag": TRANS_TAG,
        "track_aware": False,
        "marker_scope": MARKER_SCOPE_SHOW,
    },
    PROFILE_CLEAN: {
        "min_size_bytes": 5 * GIB,
        "processed_tag": CLEANED_TAG,
        "track_aware": True,
        "marker_scope": MARKER_SCOPE_DIRECTORY,
    },
    PROFILE_UHD: {
        "min_size_bytes": 8 * GIB,
        "processed_tag": TRANS_TAG,
        "track_aware": False,
        "marker_scope": MARKER_SCOPE_DIRECTORY,
        "bitrate_ceilings": UHD_BITRATE_CEILINGS,
    },
}

# --- Deduplication ---
DEDUP_KIND_TV = "tv"
DEDUP_KIND_MOVIES = "movies"
DEDUP_KINDS = (DEDUP_KIND_TV, DEDUP_KIND_MOVIES)

# Lower number wins.
CONTAINER_PRIORITY = {".mkv": 0, ".mp4": 1, ".ts": 2, ".avi": 3}
