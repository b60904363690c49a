"""
Builds encoder command lines from a classification decision.

The builders translate the named filter stages, the stream actions and the track
selection of a `ClassificationResult` into the argument list of one external
encoder invocation. They never run anything themselves.

Two backends exist:

- `FfmpegCommandBuilder` encodes with `hevc_vaapi` when the VAAPI render node is
  present, and falls back to `libx265` with CPU filters otherwise. Video that needs
  no re-encode is stream-copied.
- `HandBrakeCommandBuilder` encodes with HandBrakeCLI (`vaapi_h265` or `x265`).
  HandBrake cannot pass video through, so copy-only jobs are remuxed with ffmpeg.
"""
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from ..config.audio import AUDIO_ENCODER, HANDBRAKE_AUDIO_ENCODER, HANDBRAKE_MIXDOWN
from ..config.settings import TranscodeSettings
from ..config.video import (
    ENCODER_BACKEND_HANDBRAKE,
    HANDBRAKE_ENCODER_PRESET,
    HANDBRAKE_MAX_HEIGHT,
    HANDBRAKE_SOFTWARE_ENCODER,
    HANDBRAKE_VAAPI_ENCODER,
    HEVC_SOFTWARE_ENCODER,
    HEVC_VAAPI_ENCODER,
    MP4_SUBTITLE_CODEC,
    TEXT_SUBTITLE_CODECS,
)
from ..domain.classification import (
    FILTER_DECIMATE,
    FILTER_DEINTERLACE,
    FILTER_FIELDMATCH,
    ClassificationResult,
    StreamAction,
    TrackSelection,
)
from ..domain.media import MediaDescriptor, TrackInfo

# ffmpeg filter syntax for each named stage.
FFMPEG_FILTERS = {
    FILTER_FIELDMATCH: "fieldmatch",
    FILTER_DECIMATE: "decimate",
    FILTER_DEINTERLACE: "bwdif=mode=send_frame",
}

# HandBrakeCLI flags for each named stage. Field matching and decimation are both
# covered by its detelecine filter.
HANDBRAKE_FILTERS = {
    FILTER_FIELDMATCH: "--detelecine",
    FILTER_DECIMATE: None,
    FILTER_DEINTERLACE: "--decomb",
}

MUXERS = {"mkv": "matroska", "mp4": "mp4"}


def kept_tracks(tracks: Sequence[TrackInfo], selection: Optional[TrackSelection]) -> Tuple[TrackInfo, ...]:
    """The tracks retained by a selection, in stream order. No selection keeps everything."""
    if selection is None:
        return tuple(tracks)
    return tuple(t for t in tracks if t.index in selection.indices)


class CommandBuilder:
    """Base class for the encoder backends."""

    name = ""
    # Appended to "<stem><tag>" to form the temporary output name.
    temp_suffix = ".tmp"

    def __init__(self, settings: TranscodeSettings):
        self.settings = settings

    @property
    def muxer(self) -> str:
        return MUXERS.get(self.settings.output_container, self.settings.output_container)

    def build(self, descriptor: MediaDescriptor, result: ClassificationResult, output_path: Path) -> List[str]:
        raise NotImplementedError("Subclasses must implement the build() method.")


class FfmpegCommandBuilder(CommandBuilder):
    """
    Builds ffmpeg command lines.

    Attributes:
        ffmpeg_cmd (str): The ffmpeg executable.
        use_vaapi (bool): Encode on the GPU through the VAAPI render node.
    """

    name = "ffmpeg"

    def __init__(self, settings: TranscodeSettings, ffmpeg_cmd: str = "ffmpeg", use_vaapi: Optional[bool] = None):
        super().__init__(settings)
        self.ffmpeg_cmd = ffmpeg_cmd
        if use_vaapi is None:
            use_vaapi = Path(settings.vaapi_device).exists()
            if not use_vaapi:
                logger.info(f"VAAPI device {settings.vaapi_device} not found; using {HEVC_SOFTWARE_ENCODER}.")
        self.use_vaapi = use_vaapi

    def video_filter(self, filter_chain: Sequence[str]) -> Optional[str]:
        """
        Renders the filter chain for the chosen pipeline.

        Frames live in GPU memory on the VAAPI path, so they are downloaded, filtered
        on the CPU and uploaded again even when no stage is needed.
        """
        stages = [FFMPEG_FILTERS[stage] for stage in filter_chain]
        if self.use_vaapi:
            return ",".join(["hwdownload", "format=yuv420p", *stages, "format=nv12", "hwupload"])
        return ",".join(stages) or None

    def _video_args(self, result: ClassificationResult) -> List[str]:
        s = self.settings
        if result.video_action == StreamAction.COPY:
            return ["-c:v", "copy"]
        args: List[str] = []
        vf = self.video_filter(result.filter_chain)
        if vf:
            args += ["-vf", vf]
        if self.use_vaapi:
            args += ["-c:v", HEVC_VAAPI_ENCODER, "-qp", str(s.video_qp), "-rc_mode", "VBR"]
        else:
            args += ["-c:v", HEVC_SOFTWARE_ENCODER, "-preset", "medium"]
        args += [
            "-b:v", f"{s.video_bitrate_kbps}k",
            "-maxrate", f"{s.video_maxrate_kbps}k",
            "-bufsize", f"{s.video_bufsize_kbps}k",
        ]
        if self.use_vaapi:
            args += ["-quality", str(s.vaapi_quality)]
        return args

    def _audio_args(self, descriptor: MediaDescriptor, result: ClassificationResult) -> List[str]:
        args: List[str] = []
        selection = result.audio_selection
        for out_idx, track in enumerate(kept_tracks(descriptor.audio_tracks, selection)):
            args += ["-map", f"0:{track.index}"]
            if track.codec == self.settings.target_audio_codec:
                args += [f"-c:a:{out_idx}", "copy"]
            else:
                args += [f"-c:a:{out_idx}", AUDIO_ENCODER, f"-b:a:{out_idx}", f"{self.settings.audio_bitrate_kbps}k"]
            if selection is not None and selection.default_index is not None:
                args += [f"-disposition:a:{out_idx}", "default" if track.index == selection.default_index else "0"]
        return args

    def _subtitle_args(self, descriptor: MediaDescriptor, result: ClassificationResult) -> List[str]:
        args: List[str] = []
        to_mp4 = self.settings.output_container == "mp4"
        out_idx = 0
        for track in kept_tracks(descriptor.subtitle_tracks, result.subtitle_selection):
            if to_mp4 and track.codec not in TEXT_SUBTITLE_CODECS:
                logger.warning(
                    f"Dropping {track.codec} subtitle stream {track.index} of {descriptor.path.name}: MP4 cannot carry it."
                )
                continue
            args += ["-map", f"0:{track.index}", f"-c:s:{out_idx}", MP4_SUBTITLE_CODEC if to_mp4 else "copy"]
            out_idx += 1
        return args

    def build(self, descriptor: MediaDescriptor, result: ClassificationResult, output_path: Path) -> List[str]:
        """
        Returns the full ffmpeg argument list for one encode.

        Args:
            descriptor: The probed source.
            result: The classification of the source.
            output_path: The temporary output file.
        """
        hw_decode = self.use_vaapi and result.video_action == StreamAction.ENCODE
        cmd = [self.ffmpeg_cmd, "-nostdin", "-hide_banner", "-y"]
        if hw_decode:
            cmd += [
                "-vaapi_device", self.settings.vaapi_device,
                "-hwaccel", "vaapi",
                "-hwaccel_output_format", "vaapi",
            ]
        cmd += ["-fflags", "+genpts", "-i", str(descriptor.path), "-copyts"]
        if result.video_action == StreamAction.ENCODE:
            cmd += ["-fps_mode", "passthrough"]

        video_map = f"0:{descriptor.video_index}" if descriptor.video_index is not None else "0:v:0"
        cmd += ["-map", video_map]
        cmd += self._video_args(result)
        cmd += self._audio_args(descriptor, result)
        cmd += self._subtitle_args(descriptor, result)
        if self.muxer == "matroska":
            # Fonts attached for ASS subtitles.
            cmd += ["-map", "0:t?", "-c:t", "copy"]
        cmd += ["-f", self.muxer, str(output_path)]
        return cmd


class HandBrakeCommandBuilder(CommandBuilder):
    """
    Builds HandBrakeCLI command lines.

    HandBrake infers nothing from a `.tmp` name, so the temp output keeps the real
    container extension.
    """

    name = "handbrake"

    def __init__(
        self,
        settings: TranscodeSettings,
        handbrake_cmd: str = "HandBrakeCLI",
        ffmpeg_cmd: str = "ffmpeg",
        use_vaapi: Optional[bool] = None,
    ):
        super().__init__(settings)
        self.handbrake_cmd = handbrake_cmd
        self.remux_builder = FfmpegCommandBuilder(settings, ffmpeg_cmd=ffmpeg_cmd, use_vaapi=False)
        self.use_vaapi = Path(settings.vaapi_device).exists() if use_vaapi is None else use_vaapi
        self.temp_suffix = f".tmp.{settings.output_container}"

    @staticmethod
    def _track_numbers(tracks: Sequence[TrackInfo], selection: Optional[TrackSelection]) -> Optional[str]:
        """HandBrake numbers tracks from 1 within each kind."""
        if selection is None:
            return None
        numbers = [str(pos) for pos, track in enumerate(tracks, start=1) if track.index in selection.indices]
        return ",".join(numbers)

    def build(self, descriptor: MediaDescriptor, result: ClassificationResult, output_path: Path) -> List[str]:
        if result.video_action == StreamAction.COPY:
            logger.debug(f"Video of {descriptor.path.name} is copied; remuxing with ffmpeg instead of HandBrake.")
            return self.remux_builder.build(descriptor, result, output_path)

        s = self.settings
        cmd = [
            self.handbrake_cmd,
            "--input", str(descriptor.path),
            "--output", str(output_path),
            "--format", f"av_{s.output_container}",
            "--encoder", HANDBRAKE_VAAPI_ENCODER if self.use_vaapi else HANDBRAKE_SOFTWARE_ENCODER,
            "--encoder-preset", HANDBRAKE_ENCODER_PRESET,
            "--vb", str(s.video_bitrate_kbps),
            "--maxHeight", str(HANDBRAKE_MAX_HEIGHT),
        ]

        audio_numbers = self._track_numbers(descriptor.audio_tracks, result.audio_selection)
        if audio_numbers is None:
            cmd += ["--all-audio"]
        elif audio_numbers:
            cmd += ["--audio", audio_numbers]
        if result.audio_action == StreamAction.COPY:
            cmd += ["--aencoder", f"copy:{s.target_audio_codec}", "--audio-fallback", HANDBRAKE_AUDIO_ENCODER]
        else:
            cmd += ["--aencoder", HANDBRAKE_AUDIO_ENCODER, "--ab", str(s.audio_bitrate_kbps), "--mixdown", HANDBRAKE_MIXDOWN]

        subtitle_numbers = self._track_numbers(descriptor.subtitle_tracks, result.subtitle_selection)
        if subtitle_numbers is None:
            cmd += ["--all-subtitles"]
        elif subtitle_numbers:
            cmd += ["--subtitle", subtitle_numbers]

        for stage in result.filter_chain:
            flag = HANDBRAKE_FILTERS[stage]
            if flag and flag not in cmd:
                cmd.append(flag)
        return cmd


def make_command_builder(settings: TranscodeSettings, tools) -> CommandBuilder:
    """
    Creates the builder for the configured backend.

    Args:
        settings: The run settings.
        tools: An `ExternalTools` instance used to resolve the executables.
    """
    if settings.encoder_backend == ENCODER_BACKEND_HANDBRAKE:
        return HandBrakeCommandBuilder(settings, handbrake_cmd=tools.handbrake, ffmpeg_cmd=tools.ffmpeg)
    return FfmpegCommandBuilder(settings, ffmpeg_cmd=tools.ffmpeg)
