"""
This module contains the conversion decision logic.

`ClassificationEngine.classify` looks at a `MediaDescriptor` and the run settings
and decides whether the file needs to be transcoded, what its interlace status
is, which filter stages the encode needs, whether video and audio can be copied,
and (for track-aware profiles) which audio and subtitle tracks to keep.

The checks run cheapest first. The only expensive step is the deep scan, which
is delegated to an injected callable and only used when the container's field
order tag does not settle the interlace question.
"""
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from loguru import logger

from ..config.audio import UNTAGGED_LANGUAGES
from ..config.settings import TranscodeSettings
from ..config.video import EXCEPT_FORMAT
from ..domain.classification import (
    FILTER_DECIMATE,
    FILTER_DEINTERLACE,
    FILTER_FIELDMATCH,
    ClassificationResult,
    InterlaceStatus,
    StreamAction,
    TrackSelection,
)
from ..domain.media import FieldOrder, MediaDescriptor, TrackInfo

DeepScan = Callable[[Path], InterlaceStatus]

# Filter stages per interlace status. Field matching must run before decimation so
# that the duplicated frames it exposes are the ones decimate drops.
FILTER_CHAINS = {
    InterlaceStatus.PROGRESSIVE: (),
    InterlaceStatus.INTERLACED: (FILTER_DEINTERLACE,),
    InterlaceStatus.TELECINE: (FILTER_FIELDMATCH, FILTER_DECIMATE, FILTER_DEINTERLACE),
    InterlaceStatus.UNKNOWN: (FILTER_DEINTERLACE,),
}


def filter_chain_for(status: InterlaceStatus) -> Tuple[str, ...]:
    return FILTER_CHAINS[status]


def is_preferred_track(track: TrackInfo, languages: Sequence[str], title_words: Sequence[str]) -> bool:
    """A track is preferred when its language tag or its title names a preferred language."""
    if track.language and track.language in {lang.lower() for lang in languages}:
        return True
    title = track.title.lower()
    return any(word.lower() in title for word in title_words if word)


def is_untagged_track(track: TrackInfo) -> bool:
    return track.language is None or track.language in UNTAGGED_LANGUAGES


def select_tracks(
    tracks: Sequence[TrackInfo],
    languages: Sequence[str],
    title_words: Sequence[str] = (),
    keep_untagged: bool = True,
) -> TrackSelection:
    """
    Applies the language retention policy to the tracks of one kind.

    A single track is always kept. With several tracks, the preferred-language
    tracks are kept, plus untagged ones when `keep_untagged` is set; if that leaves
    nothing, only the first track in stream order is kept. The default track is
    the first kept preferred-language track, or the first kept track otherwise.

    This policy can drop non-preferred tracks a viewer wanted. That is accepted:
    the language list is configurable per run.

    Args:
        tracks: All tracks of one kind, in stream order.
        languages: Preferred language tags (e.g. "eng", "en").
        title_words: Words that mark a track as preferred when found in its title.
        keep_untagged: Keep tracks without a language tag, or tagged "und".

    Returns:
        The `TrackSelection`; `changed` is True when some tracks are dropped.
    """
    if not tracks:
        return TrackSelection()
    if len(tracks) == 1:
        return TrackSelection(indices=(tracks[0].index,), default_index=tracks[0].index, changed=False)

    preferred = [t for t in tracks if is_preferred_track(t, languages, title_words)]
    kept: List[TrackInfo] = [
        t for t in tracks
        if t in preferred or (keep_untagged and is_untagged_track(t))
    ]
    if not kept:
        kept = [tracks[0]]

    default = next((t for t in kept if t in preferred), kept[0])
    return TrackSelection(
        indices=tuple(t.index for t in kept),
        default_index=default.index,
        changed=len(kept) < len(tracks),
    )


class ClassificationEngine:
    """
    Decides what, if anything, has to happen to a file.

    The engine has no state: for a given descriptor, settings and deep scan oracle
    it always returns the same `ClassificationResult`.
    """

    def __init__(self, settings: TranscodeSettings, deep_scan: Optional[DeepScan] = None):
        """
        Args:
            settings: The run settings (target codecs, ceilings, track policy).
            deep_scan: Called with the file path when the field order tag is
                       inconclusive. Without it such files are classified `unknown`.
        """
        self.settings = settings
        self.deep_scan = deep_scan

    def interlace_status(self, descriptor: MediaDescriptor) -> InterlaceStatus:
        """
        Settles the interlace status, scanning only when the tag does not.

        An interlaced field order (tt/bb/tb/bt) or an explicit `progressive` tag is
        trusted as is. Any other value is checked by decoding a sample of the file.
        """
        if descriptor.field_order.is_interlaced:
            return InterlaceStatus.INTERLACED
        if descriptor.field_order == FieldOrder.PROGRESSIVE:
            return InterlaceStatus.PROGRESSIVE
        if self.deep_scan is None:
            return InterlaceStatus.UNKNOWN
        return self.deep_scan(descriptor.path)

    def classify(self, descriptor: MediaDescriptor) -> ClassificationResult:
        """
        Classifies one file.

        Args:
            descriptor: The probed file.

        Returns:
            The decision. `needs_conversion` is False for files that are left alone,
            either because they already match the target or because their codec is
            excluded (`excluded=True`).

        Raises:
            Interrupted: If the run is cancelled during a deep scan.
        """
        settings = self.settings

        if descriptor.video_codec in EXCEPT_FORMAT:
            return ClassificationResult(
                interlace_status=InterlaceStatus.UNKNOWN,
                needs_conversion=False,
                video_action=StreamAction.COPY,
                audio_action=StreamAction.COPY,
                reason=f"{descriptor.video_codec} is never re-encoded",
                excluded=True,
            )
        if not descriptor.has_video:
            return ClassificationResult(
                interlace_status=InterlaceStatus.UNKNOWN,
                needs_conversion=False,
                video_action=StreamAction.COPY,
                audio_action=StreamAction.COPY,
                reason="no video stream",
                excluded=True,
            )

        triggers: List[str] = []
        if descriptor.audio_codec and descriptor.audio_codec != settings.target_audio_codec:
            triggers.append(f"audio codec {descriptor.audio_codec} != {settings.target_audio_codec}")
        elif descriptor.video_codec != settings.target_video_codec:
            triggers.append(f"video codec {descriptor.video_codec} != {settings.target_video_codec}")

        ceiling = settings.bitrate_ceiling_for(descriptor.width)
        bitrate_ok = descriptor.video_bitrate_bps <= ceiling
        if not triggers and not bitrate_ok:
            triggers.append(f"video bitrate {descriptor.video_bitrate_bps} bps > {ceiling} bps")

        # Computed for every file: the filter chain depends on it whenever an encode happens.
        status = self.interlace_status(descriptor)
        if status != InterlaceStatus.PROGRESSIVE:
            triggers.append(f"{status.value} video")

        if status != InterlaceStatus.PROGRESSIVE:
            video_action = StreamAction.ENCODE
        elif descriptor.video_codec == settings.target_video_codec and bitrate_ok:
            video_action = StreamAction.COPY
        else:
            video_action = StreamAction.ENCODE

        audio_selection = subtitle_selection = None
        if settings.track_aware:
            audio_selection = select_tracks(
                descriptor.audio_tracks, settings.preferred_languages, settings.preferred_title_words, settings.keep_untagged
            )
            subtitle_selection = select_tracks(
                descriptor.subtitle_tracks, settings.preferred_languages, settings.preferred_title_words, settings.keep_untagged
            )
            for kind, selection in (("audio", audio_selection), ("subtitle", subtitle_selection)):
                if selection.changed:
                    triggers.append(f"{kind} tracks reduced to {list(selection.indices)}")

        kept_audio = descriptor.audio_tracks
        if audio_selection is not None:
            kept_audio = tuple(t for t in descriptor.audio_tracks if t.index in audio_selection.indices)
        if any(t.codec != settings.target_audio_codec for t in kept_audio):
            audio_action = StreamAction.ENCODE
        else:
            audio_action = StreamAction.COPY

        result = ClassificationResult(
            interlace_status=status,
            needs_conversion=bool(triggers),
            video_action=video_action,
            audio_action=audio_action,
            filter_chain=filter_chain_for(status) if video_action == StreamAction.ENCODE else (),
            audio_selection=audio_selection,
            subtitle_selection=subtitle_selection,
            reason=triggers[0] if triggers else "already in desired format",
        )
        logger.debug(f"Classified {descriptor.path.name}: {result}")
        return result
