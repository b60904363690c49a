"""
Media metadata as seen by the decision engine.

`MediaProbe` runs ffprobe once per file (through the ffmpeg-python library) and
parses the subset of the JSON output that the pipeline consumes into a strict,
immutable `MediaDescriptor`. Missing fields are handled explicitly here, so the
rest of the code never has to guess what an absent tag means.
"""
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from pprint import pformat
from typing import Any, Dict, List, Optional, Tuple

import ffmpeg
from loguru import logger

from .exceptions import ProbeFailed


class FieldOrder(str, Enum):
    """Container-level field order tag of the video stream."""

    PROGRESSIVE = "progressive"
    TT = "tt"
    BB = "bb"
    TB = "tb"
    BT = "bt"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "FieldOrder":
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_interlaced(self) -> bool:
        return self in (FieldOrder.TT, FieldOrder.BB, FieldOrder.TB, FieldOrder.BT)


@dataclass(frozen=True)
class TrackInfo:
    """One audio or subtitle stream."""

    index: int
    codec: str
    language: Optional[str] = None
    is_default: bool = False
    title: str = ""


@dataclass(frozen=True)
class MediaDescriptor:
    """
    Snapshot of the probe results for one file.

    Attributes:
        path (Path): The probed file.
        size (int): Size in bytes at probe time.
        video_codec (str): Codec of the first real video stream, lowercased ("" if none).
        video_index (Optional[int]): Stream index of that video stream.
        video_bitrate_bps (int): Bitrate of that stream in bits per second, 0 if unknown.
        audio_codec (str): Codec of the first audio stream, lowercased ("" if none).
        field_order (FieldOrder): Field order tag of the video stream.
        width (int): Width in pixels, 0 if unknown.
        height (int): Height in pixels, 0 if unknown.
        audio_tracks (tuple[TrackInfo, ...]): All audio streams in stream order.
        subtitle_tracks (tuple[TrackInfo, ...]): All subtitle streams in stream order.
    """

    path: Path
    size: int = 0
    video_codec: str = ""
    video_index: Optional[int] = None
    video_bitrate_bps: int = 0
    audio_codec: str = ""
    field_order: FieldOrder = FieldOrder.UNKNOWN
    width: int = 0
    height: int = 0
    audio_tracks: Tuple[TrackInfo, ...] = ()
    subtitle_tracks: Tuple[TrackInfo, ...] = ()

    @property
    def has_video(self) -> bool:
        return bool(self.video_codec)


def _parse_int(value: Any) -> int:
    """Parses an ffprobe numeric field, returning 0 for absent or non-numeric values."""
    if value is None:
        return 0
    try:
        return int(str(value).strip())
    except ValueError:
        try:
            return int(float(str(value).strip()))
        except ValueError:
            return 0


def _stream_bitrate(stream: Dict[str, Any]) -> int:
    """
    Reads the bitrate of a stream.

    ffprobe reports `bit_rate` for most containers. Matroska usually leaves it out
    and stores the statistics tag `BPS` (or `BPS-eng` from older muxers) instead.
    When neither is present the bitrate is 0, which never triggers the ceiling.
    """
    bitrate = _parse_int(stream.get("bit_rate"))
    if bitrate:
        return bitrate
    tags = stream.get("tags") or {}
    for key in ("BPS", "BPS-eng"):
        bitrate = _parse_int(tags.get(key))
        if bitrate:
            return bitrate
    return 0


def _track_from_stream(stream: Dict[str, Any]) -> TrackInfo:
    tags = stream.get("tags") or {}
    language = tags.get("language")
    language = language.strip().lower() if isinstance(language, str) and language.strip() else None
    disposition = stream.get("disposition") or {}
    return TrackInfo(
        index=_parse_int(stream.get("index")),
        codec=str(stream.get("codec_name", "")).lower(),
        language=language,
        is_default=bool(disposition.get("default")),
        title=str(tags.get("title", "")),
    )


def _is_cover_art(stream: Dict[str, Any]) -> bool:
    return bool((stream.get("disposition") or {}).get("attached_pic"))


def descriptor_from_probe(path: Path, probe: Dict[str, Any], size: int = 0) -> MediaDescriptor:
    """
    Converts raw ffprobe JSON into a `MediaDescriptor`.

    Only the first video stream that is not embedded cover art is considered.

    Args:
        path: The probed file.
        probe: The decoded JSON document (`{"streams": [...], "format": {...}}`).
        size: File size in bytes.

    Raises:
        ProbeFailed: If the document does not contain a stream list.
    """
    streams = probe.get("streams") if isinstance(probe, dict) else None
    if not isinstance(streams, list):
        raise ProbeFailed(f"ffprobe output for {path} has no stream list")

    video: Optional[Dict[str, Any]] = None
    audio_tracks: List[TrackInfo] = []
    subtitle_tracks: List[TrackInfo] = []
    for stream in streams:
        codec_type = stream.get("codec_type")
        if codec_type == "video":
            if video is None and not _is_cover_art(stream):
                video = stream
        elif codec_type == "audio":
            audio_tracks.append(_track_from_stream(stream))
        elif codec_type == "subtitle":
            subtitle_tracks.append(_track_from_stream(stream))

    video = video or {}
    return MediaDescriptor(
        path=path,
        size=size,
        video_codec=str(video.get("codec_name", "")).lower(),
        video_index=_parse_int(video.get("index")) if video else None,
        video_bitrate_bps=_stream_bitrate(video),
        audio_codec=audio_tracks[0].codec if audio_tracks else "",
        field_order=FieldOrder.parse(video.get("field_order")),
        width=_parse_int(video.get("width")),
        height=_parse_int(video.get("height")),
        audio_tracks=tuple(audio_tracks),
        subtitle_tracks=tuple(subtitle_tracks),
    )


class MediaProbe:
    """
    Wraps the external metadata oracle.

    A single `ffprobe -show_streams -show_format -of json` call is made per file;
    everything the decision engine needs is parsed out of that one document.
    """

    def __init__(self, ffprobe_cmd: str = "ffprobe"):
        self.ffprobe_cmd = ffprobe_cmd
        self.calls = 0

    def probe(self, path: Path) -> MediaDescriptor:
        """
        Probes a file.

        Raises:
            ProbeFailed: When ffprobe is missing, exits non-zero, or prints output that
                         cannot be parsed.
        """
        self.calls += 1
        try:
            size = path.stat().st_size
            raw = ffmpeg.probe(str(path), cmd=self.ffprobe_cmd)
        except ffmpeg.Error as e:
            stderr = e.stderr.decode("utf-8", errors="replace") if isinstance(e.stderr, bytes) else e.stderr
            raise ProbeFailed(f"ffprobe failed for {path}: {(stderr or '').strip()}") from e
        except FileNotFoundError as e:
            raise ProbeFailed(f"Cannot probe {path}: {e}") from e
        except ValueError as e:  # json.JSONDecodeError
            raise ProbeFailed(f"Unparseable ffprobe output for {path}: {e}") from e

        logger.trace(f"Probe data for {path.name}:\n{pformat(raw)}")
        descriptor = descriptor_from_probe(path, raw, size=size)
        logger.debug(
            f"Probed {path.name}: video={descriptor.video_codec or '-'} "
            f"{descriptor.video_bitrate_bps}bps {descriptor.width}x{descriptor.height} "
            f"field_order={descriptor.field_order.value} audio={descriptor.audio_codec or '-'} "
            f"({len(descriptor.audio_tracks)} audio, {len(descriptor.subtitle_tracks)} subtitle)"
        )
        return descriptor
