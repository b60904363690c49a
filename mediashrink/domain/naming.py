"""
Filename grammar used by skip markers and deduplication.

Grammar of the episode code, matched case-insensitively anywhere in the name:

    episode_code := "S" season [sep] "E" episode  e.g. S01E02, s1e102, S01.E02
                  | season "x" episode            e.g. 1x02, 12x103
    season       := 1-2 digits
    episode      := 2-3 digits (1-3 for the S/E form)

The `S##E##` form wins when both appear. A season/episode pair that is part of a
longer digit run (`1920x1080`) is not a match. The canonical form is
`S{season:02}E{episode:03}`. A name without a code yields None: the parser never
guesses.
"""
import re
from pathlib import Path
from typing import Optional

_SE_PATTERN = re.compile(r"(?<![A-Za-z0-9])S(\d{1,2})[ ._-]?E(\d{1,3})(?!\d)", re.IGNORECASE)
_X_PATTERN = re.compile(r"(?<![0-9])(\d{1,2})x(\d{2,3})(?![0-9])", re.IGNORECASE)


def normalize_episode_code(season: int, episode: int) -> str:
    return f"S{season:02d}E{episode:03d}"


def parse_episode_code(name: str) -> Optional[str]:
    """
    Extracts the canonical episode code from a file name.

    Args:
        name: A file name or stem.

    Returns:
        The code in `S##E###` form, or None when the name carries no code.
    """
    match = _SE_PATTERN.search(name) or _X_PATTERN.search(name)
    if not match:
        return None
    return normalize_episode_code(int(match.group(1)), int(match.group(2)))


def show_key(path: Path) -> str:
    """The first whitespace-delimited token of the file stem, e.g. 'Taggart' for 'Taggart S01E01.mkv'."""
    stem = path.stem.strip()
    return stem.split()[0] if stem else stem


def episode_key(path: Path) -> str:
    """The whole file stem."""
    return path.stem
