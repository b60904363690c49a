"""
Provides the discovery of candidate files and the clean-up of stray artefacts.

`FileWalker` walks a library lazily and yields the video files worth probing.
`sweep_tagged_artefacts` removes what interrupted runs leave behind: temporary
outputs and the sidecars a media server may have generated for them.
"""
import os
import shutil
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence

from loguru import logger

from ..config.common import TAGGED_SIDECAR_SUFFIXES, TAGGED_TRICKPLAY_SUFFIX
from ..utils.format_utils import contains_any_extensions, formatted_size


def has_processed_tag(path: Path, processed_tags: Iterable[str]) -> bool:
    return any(tag in path.stem for tag in processed_tags)


class FileWalker:
    """
    Discovers candidate video files below a root directory.

    Each call to `iter_candidates` starts a fresh walk, so the walker can be
    iterated more than once. Directories and file names are visited in sorted
    order. Every directory is listed once, when it is visited, so outputs written
    by jobs started from files already yielded are never seen by the same walk.

    Attributes:
        root (Path): The directory to walk.
        extensions (Sequence[str]): Eligible extensions, matched case-insensitively.
        min_size_bytes (int): Files smaller than this are ignored.
        processed_tags (Sequence[str]): Name tags of temporary outputs. A file
                                        carrying one is a leftover of a crashed run.
        delete_processed (bool): Delete tagged leftovers on sight instead of
                                 just ignoring them.
        exclude_dirs (Sequence[Path]): Directories (e.g. the temp dir) never entered.
    """

    def __init__(
        self,
        root: Path,
        extensions: Sequence[str],
        min_size_bytes: int = 0,
        processed_tags: Sequence[str] = (),
        delete_processed: bool = True,
        exclude_dirs: Sequence[Path] = (),
    ):
        self.root = root
        self.extensions = tuple(extensions)
        self.min_size_bytes = min_size_bytes
        self.processed_tags = tuple(processed_tags)
        self.delete_processed = delete_processed
        self.exclude_dirs = {Path(d).resolve() for d in exclude_dirs}

    def __iter__(self) -> Iterator[Path]:
        return self.iter_candidates()

    def _remove_leftover(self, path: Path):
        if not self.delete_processed:
            logger.debug(f"Ignoring tagged file {path}")
            return
        try:
            path.unlink()
            logger.info(f"Deleted leftover from an earlier run: {path}")
        except OSError as e:
            logger.error(f"Could not delete leftover {path}: {e}")

    def iter_candidates(self) -> Iterator[Path]:
        """
        Yields candidate files one at a time.

        Hidden files (skip markers among them) are never yielded. Files that vanish
        between listing and stat are skipped.
        """
        if not self.root.is_dir():
            logger.error(f"Scan root {self.root} is not a directory.")
            return

        for dirpath, dirnames, filenames in os.walk(self.root):
            current = Path(dirpath)
            dirnames[:] = sorted(d for d in dirnames if (current / d).resolve() not in self.exclude_dirs)
            for name in sorted(filenames):
                if name.startswith("."):
                    continue
                path = current / name
                if not contains_any_extensions(path, self.extensions):
                    continue
                try:
                    size = path.stat().st_size
                except OSError as e:
                    logger.debug(f"Cannot stat {path}: {e}")
                    continue
                if has_processed_tag(path, self.processed_tags):
                    self._remove_leftover(path)
                    continue
                if size < self.min_size_bytes:
                    logger.trace(f"Below size floor ({formatted_size(size)}): {path}")
                    continue
                yield path


def sweep_tagged_artefacts(root: Path, tag: str, extra_dirs: Sequence[Path] = ()) -> List[Path]:
    """
    Removes stray artefacts carrying `tag` below `root` and in `extra_dirs`.

    Removed: files named `*<tag>.tmp*` (temporary outputs and staging copies),
    `*<tag>.nfo` and `*<tag>.jpg` files, and `*<tag>.trickplay` directories.

    Returns:
        The removed paths.
    """
    removed: List[Path] = []
    temp_marker = f"{tag}.tmp"
    sidecar_suffixes = tuple(f"{tag}{suffix}" for suffix in TAGGED_SIDECAR_SUFFIXES)
    trickplay_suffix = f"{tag}{TAGGED_TRICKPLAY_SUFFIX}"

    seen = set()
    for base in (root, *extra_dirs):
        base = Path(base)
        if not base.is_dir() or base.resolve() in seen:
            continue
        seen.add(base.resolve())
        for dirpath, dirnames, filenames in os.walk(base):
            current = Path(dirpath)
            for name in list(dirnames):
                if name.endswith(trickplay_suffix):
                    target = current / name
                    try:
                        shutil.rmtree(target)
                        removed.append(target)
                    except OSError as e:
                        logger.error(f"Failed to delete {target}: {e}")
                    dirnames.remove(name)
            for name in filenames:
                if temp_marker in name or name.endswith(sidecar_suffixes):
                    target = current / name
                    try:
                        target.unlink()
                        removed.append(target)
                    except OSError as e:
                        logger.error(f"Failed to delete {target}: {e}")

    for path in removed:
        logger.info(f"Cleaned up {path}")
    return removed


def find_scan_root(path: Optional[Path]) -> Optional[Path]:
    """Resolves the scan root: a directory as is, a file's parent, None if it does not exist."""
    if path is None:
        return None
    resolved = path.expanduser().resolve()
    if resolved.is_dir():
        return resolved
    if resolved.is_file():
        return resolved.parent
    logger.error(f"Input path does not exist: {resolved}")
    return None
