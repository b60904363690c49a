"""
Configuration settings related to audio and subtitle track handling.

This module defines the target audio codec and bitrate, and the language tags
used by the track-retention policy of the track-aware profiles.
"""

# ======================================================================================
# Audio Encoding Parameters
# ======================================================================================

# The codec every output audio track must use. Sources whose first audio stream
# uses anything else are converted.
TARGET_AUDIO_CODEC = "aac"

# ffmpeg encoder name for the target codec, and its bitrate in kbps.
AUDIO_ENCODER = "aac"
AUDIO_BITRATE_KBPS = 160

# HandBrake names the same encoder differently.
HANDBRAKE_AUDIO_ENCODER = "av_aac"
HANDBRAKE_MIXDOWN = "stereo"


# ======================================================================================
# Track Retention
# ======================================================================================

# Language tags (ISO 639-1 and 639-2) of the tracks to keep when a file carries
# several audio or subtitle tracks.
DEFAULT_PREFERRED_LANGUAGES = ("eng", "en")

# A track whose title contains one of these words counts as preferred even when
# its language tag is missing or wrong.
PREFERRED_TITLE_WORDS = ("english",)

# Tags that mean "language unknown". Such tracks are kept to be safe.
UNTAGGED_LANGUAGES = ("und", "")
