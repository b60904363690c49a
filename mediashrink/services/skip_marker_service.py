"""
Manages the sentinel files that exclude directories, shows and episodes.

A marker is an empty hidden file; only its existence matters. Three scopes exist:

    directory   <dir>/.skip             the whole subtree below <dir>
    show        <dir>/.skip_<show>      files in <dir> whose stem starts with <show>
    episode     <dir>/.skip_<stem>      the single file <dir>/<stem>.*

Markers are written when an encode did not make a file smaller and are never
removed by the program: deleting the file by hand is the only way to retry.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger

from ..config.common import (
    MARKER_SCOPE_DIRECTORY,
    MARKER_SCOPE_EPISODE,
    MARKER_SCOPE_SHOW,
    MARKER_SCOPES,
    SKIP_MARKER_NAME,
    SKIP_MARKER_PREFIX,
)
from ..domain.naming import episode_key, show_key


@dataclass(frozen=True)
class SkipMarker:
    """A marker found on disk: its scope, the key it covers and its file."""

    scope: str
    key: str
    marker_path: Path

    def __str__(self):
        return f"{self.scope} marker {self.marker_path.name} ({self.key})"


def is_marker_file(path: Path) -> bool:
    return path.name == SKIP_MARKER_NAME or path.name.startswith(SKIP_MARKER_PREFIX)


class SkipMarkerStore:
    """
    Reads and writes skip markers.

    The store keeps no state of its own: every check looks at the filesystem, so
    markers written by a concurrent job are seen by the next check.

    Attributes:
        root (Optional[Path]): The scan root. Directory markers are looked up from a
                               file's directory up to and including this directory.
                               Without a root, the file's directory and its parent
                               are checked.
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = root.resolve() if root else None

    def _directory_marker_dirs(self, directory: Path) -> Iterator[Path]:
        directory = directory.resolve()
        if self.root is None or (directory != self.root and self.root not in directory.parents):
            yield directory
            yield directory.parent
            return
        yield directory
        if directory == self.root:
            return
        for parent in directory.parents:
            yield parent
            if parent == self.root:
                return

    @staticmethod
    def marker_path(scope: str, path: Path) -> Path:
        """The marker file that `mark_skipped(scope, path)` would create."""
        if scope == MARKER_SCOPE_DIRECTORY:
            return path.parent / SKIP_MARKER_NAME
        if scope == MARKER_SCOPE_SHOW:
            return path.parent / f"{SKIP_MARKER_PREFIX}{show_key(path)}"
        if scope == MARKER_SCOPE_EPISODE:
            return path.parent / f"{SKIP_MARKER_PREFIX}{episode_key(path)}"
        raise ValueError(f"Unknown marker scope '{scope}'. Expected one of {MARKER_SCOPES}.")

    def is_skipped(self, path: Path) -> Optional[SkipMarker]:
        """
        Finds the marker that excludes a candidate, if any.

        Directory markers are checked first, since they cover every file below them,
        then the show and episode markers in the file's own directory.

        Args:
            path: The candidate video file.

        Returns:
            The matching `SkipMarker`, or None when the file may be processed.
        """
        for directory in self._directory_marker_dirs(path.parent):
            marker = directory / SKIP_MARKER_NAME
            if marker.is_file():
                return SkipMarker(MARKER_SCOPE_DIRECTORY, str(directory), marker)

        for scope in (MARKER_SCOPE_SHOW, MARKER_SCOPE_EPISODE):
            marker = self.marker_path(scope, path)
            if marker.is_file():
                return SkipMarker(scope, marker.name[len(SKIP_MARKER_PREFIX):], marker)
        return None

    def mark_skipped(self, scope: str, path: Path) -> Path:
        """
        Writes the marker of the given scope for a file.

        Creating a marker that already exists is not an error, so concurrent jobs
        may mark the same show without coordination.

        Args:
            scope: One of "directory", "show" or "episode".
            path: The file whose encode did not help.

        Returns:
            The marker file path.
        """
        marker = self.marker_path(scope, path)
        marker.touch(exist_ok=True)
        logger.info(f"Created {scope} skip marker {marker}")
        return marker
