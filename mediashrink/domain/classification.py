"""
Value types produced by the classification engine.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class InterlaceStatus(str, Enum):
    PROGRESSIVE = "progressive"
    INTERLACED = "interlaced"
    TELECINE = "telecine"
    UNKNOWN = "unknown"


class StreamAction(str, Enum):
    COPY = "copy"
    ENCODE = "encode"


# Named filter stages. The command builders translate them into backend syntax.
FILTER_FIELDMATCH = "fieldmatch"
FILTER_DECIMATE = "decimate"
FILTER_DEINTERLACE = "deinterlace"


@dataclass(frozen=True)
class TrackSelection:
    """
    Tracks of one kind (audio or subtitle) to retain in the output.

    Attributes:
        indices: Stream indices to keep, in stream order.
        default_index: The kept track flagged as default, or None when nothing is kept.
        changed: True when `indices` is a strict subset of the source tracks.
    """

    indices: Tuple[int, ...] = ()
    default_index: Optional[int] = None
    changed: bool = False


@dataclass(frozen=True)
class ClassificationResult:
    """
    Outcome of classifying one MediaDescriptor.

    `reason` names the first trigger that made conversion necessary (or why the
    file is left alone) and is what the progress log prints.
    """

    interlace_status: InterlaceStatus
    needs_conversion: bool
    video_action: StreamAction
    audio_action: StreamAction
    filter_chain: Tuple[str, ...] = ()
    audio_selection: Optional[TrackSelection] = None
    subtitle_selection: Optional[TrackSelection] = None
    reason: str = ""
    excluded: bool = False

    @property
    def track_selection_changed(self) -> bool:
        return bool(
            (self.audio_selection and self.audio_selection.changed)
            or (self.subtitle_selection and self.subtitle_selection.changed)
        )
