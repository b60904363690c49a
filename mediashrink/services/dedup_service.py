"""
Finds and removes duplicate episodes and movies.

Within each directory, candidate videos are grouped by a key: the normalized
episode code for TV libraries, or the directory itself for movie folders. Each
group of two or more keeps exactly one file, chosen by container priority
(MKV > MP4 > TS > AVI), then by size (largest wins), then by name. Every other
member is deleted together with its sidecars, and trickplay directories left
without a video are deleted too.

Audit mode runs exactly the same planning code and only swaps each delete for a
"would delete" log line, so a preview can never disagree with a real run.
"""
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from loguru import logger

from ..config.common import TAGGED_TRICKPLAY_SUFFIX
from ..config.video import CONTAINER_PRIORITY, DEDUP_KIND_MOVIES, DEDUP_KIND_TV, DEDUP_KINDS, DEDUP_VIDEO_EXTENSIONS
from ..domain.naming import parse_episode_code
from ..utils.format_utils import contains_any_extensions, formatted_size

ACTION_KEEP = "keep"
ACTION_DELETE = "delete"


@dataclass
class DuplicateGroup:
    """
    The files of one directory that share a key.

    Attributes:
        key (str): The episode code (`S01E002`) or, for movies, the folder path.
        directory (Path): The directory holding the members.
        members (List[Path]): All candidate videos with this key.
        kept (Optional[Path]): The survivor.
        kept_size (int): Size of `kept` in bytes when the group was resolved.
        removed (List[Path]): Members that lose to `kept`.
        sidecars (List[Path]): Files and directories belonging to removed members.
    """

    key: str
    directory: Path
    members: List[Path] = field(default_factory=list)
    kept: Optional[Path] = None
    kept_size: int = 0
    removed: List[Path] = field(default_factory=list)
    sidecars: List[Path] = field(default_factory=list)


@dataclass(frozen=True)
class DedupDecision:
    """One line of the decision log."""

    action: str
    path: Path
    group_key: str
    reason: str

    def to_report_dict(self) -> dict:
        return {"path": str(self.path), "outcome": self.action, "group": self.group_key, "reason": self.reason}


def keep_priority(path: Path, size: int):
    """Sort key: lower sorts first and is kept."""
    return CONTAINER_PRIORITY.get(path.suffix.lower(), len(CONTAINER_PRIORITY)), -size, path.name


def _belongs_to(name: str, stem: str) -> bool:
    return name.startswith(f"{stem}.") or name.startswith(f"{stem}-")


class DeduplicationEngine:
    """
    Plans and applies the removal of duplicate videos.

    Attributes:
        root (Path): The library to scan.
        kind (str): "tv" (group by episode code) or "movies" (group by folder).
        audit (bool): Log "would delete" instead of deleting.
    """

    def __init__(
        self,
        root: Path,
        kind: str = DEDUP_KIND_TV,
        audit: bool = False,
        extensions: Sequence[str] = DEDUP_VIDEO_EXTENSIONS,
    ):
        if kind not in DEDUP_KINDS:
            raise ValueError(f"Unknown dedup kind '{kind}'. Expected one of {DEDUP_KINDS}.")
        self.root = root
        self.kind = kind
        self.audit = audit
        self.extensions = tuple(extensions)

    # --- Planning ---

    def _videos_in(self, directory: Path, names: Sequence[str]) -> List[Path]:
        return [
            directory / name
            for name in names
            if not name.startswith(".") and contains_any_extensions(directory / name, self.extensions)
        ]

    def _group_directory(self, directory: Path, videos: List[Path]) -> List[DuplicateGroup]:
        if self.kind == DEDUP_KIND_MOVIES:
            if directory == self.root:
                if len(videos) > 1:
                    logger.warning(f"Not grouping {len(videos)} loose videos in the scan root {directory}; movies are grouped per folder.")
                return []
            return [DuplicateGroup(key=str(directory), directory=directory, members=list(videos))] if videos else []

        by_code: Dict[str, DuplicateGroup] = {}
        for video in videos:
            code = parse_episode_code(video.stem)
            if code is None:
                logger.debug(f"No episode code in {video.name}; not grouped.")
                continue
            by_code.setdefault(code, DuplicateGroup(key=code, directory=directory)).members.append(video)
        return list(by_code.values())

    @staticmethod
    def _resolve(group: DuplicateGroup, entries: Sequence[str], videos: Sequence[Path]) -> bool:
        """Picks the survivor and collects the sidecars. False when under two members are left."""
        sizes: Dict[Path, int] = {}
        for member in group.members:
            try:
                sizes[member] = member.stat().st_size
            except OSError as e:
                logger.warning(f"Leaving {member} out of [{group.key}], it can no longer be read: {e}")
        group.members = [member for member in group.members if member in sizes]
        if len(group.members) < 2:
            return False

        ordered = sorted(group.members, key=lambda p: keep_priority(p, sizes[p]))
        group.kept = ordered[0]
        group.kept_size = sizes[group.kept]
        group.removed = ordered[1:]

        kept_stem = group.kept.stem
        video_names = {v.name for v in videos}
        for removed in group.removed:
            for name in entries:
                if name == removed.name or name in video_names:
                    continue
                if not _belongs_to(name, removed.stem):
                    continue
                # An entry matching both stems belongs to the more specific (longer) one.
                if _belongs_to(name, kept_stem) and len(kept_stem) >= len(removed.stem):
                    continue
                sidecar = group.directory / name
                if sidecar not in group.sidecars:
                    group.sidecars.append(sidecar)
        return True

    def plan(self) -> List[DuplicateGroup]:
        """
        Computes the groups and what to delete, without touching anything.

        Returns:
            All groups with two or more members, resolved.
        """
        groups: List[DuplicateGroup] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            directory = Path(dirpath)
            videos = self._videos_in(directory, sorted(filenames))
            entries = sorted(filenames + dirnames)
            for group in self._group_directory(directory, videos):
                if len(group.members) < 2 or not self._resolve(group, entries, videos):
                    continue
                groups.append(group)
        return groups

    def orphaned_trickplay(self, groups: Sequence[DuplicateGroup]) -> List[Path]:
        """
        Trickplay directories with no video of the same stem left once `groups` are applied.
        """
        doomed = {path for group in groups for path in (*group.removed, *group.sidecars)}
        orphans: List[Path] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            directory = Path(dirpath)
            remaining_stems = {v.stem for v in self._videos_in(directory, filenames) if v not in doomed}
            for name in list(dirnames):
                if not name.endswith(TAGGED_TRICKPLAY_SUFFIX):
                    continue
                trickplay = directory / name
                # Never descend into trickplay folders.
                dirnames.remove(name)
                if trickplay in doomed:
                    continue
                if name[: -len(TAGGED_TRICKPLAY_SUFFIX)] not in remaining_stems:
                    orphans.append(trickplay)
        return orphans

    def decisions(self, groups: Sequence[DuplicateGroup], orphans: Sequence[Path]) -> List[DedupDecision]:
        log: List[DedupDecision] = []
        for group in groups:
            log.append(DedupDecision(ACTION_KEEP, group.kept, group.key, f"best of {len(group.members)}"))
            for removed in group.removed:
                log.append(DedupDecision(ACTION_DELETE, removed, group.key, f"duplicate of {group.kept.name}"))
            for sidecar in group.sidecars:
                log.append(DedupDecision(ACTION_DELETE, sidecar, group.key, "sidecar of a removed duplicate"))
        for orphan in orphans:
            log.append(DedupDecision(ACTION_DELETE, orphan, orphan.name, "orphaned trickplay directory"))
        return log

    # --- Execution ---

    def _delete(self, path: Path):
        if self.audit:
            logger.info(f"[audit] Would delete {path}")
            return
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
            logger.info(f"Deleted {path}")
        except FileNotFoundError:
            logger.debug(f"Already gone: {path}")
        except OSError as e:
            logger.error(f"Failed to delete {path}: {e}")

    def run(self) -> List[DedupDecision]:
        """
        Plans and applies (or, in audit mode, only logs) the deletions.

        Returns:
            The decision log. It is identical in audit and real runs.
        """
        groups = self.plan()
        orphans = self.orphaned_trickplay(groups)
        decisions = self.decisions(groups, orphans)

        for group in groups:
            logger.info(
                f"[{group.key}] keeping {group.kept.name} ({formatted_size(group.kept_size)}), "
                f"removing {[p.name for p in group.removed]}"
            )
        for decision in decisions:
            if decision.action == ACTION_DELETE:
                self._delete(decision.path)
        logger.info(
            f"Deduplication {'audit ' if self.audit else ''}finished: {len(groups)} group(s), "
            f"{sum(1 for d in decisions if d.action == ACTION_DELETE)} deletion(s)."
        )
        return decisions
