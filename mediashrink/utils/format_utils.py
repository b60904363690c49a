"""
Helpers that turn sizes, durations and extension lists into log-friendly values.
"""

from datetime import timedelta
from pathlib import Path
from typing import Iterable


def format_timedelta(td_object: timedelta) -> str:
    """
    Formats a timedelta as "HH:MM:SS".

    Returns "00:00:00" for anything that is not a timedelta. Hours are not wrapped,
    so a 26-hour run prints as "26:00:00".
    """
    if not isinstance(td_object, timedelta):
        return "00:00:00"

    total_seconds = int(td_object.total_seconds())
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02}:{minutes:02}:{seconds:02}"


def formatted_size(size_bytes: int) -> str:
    """
    Converts a byte count into a binary-unit string, e.g. 1536 -> "1.50 KB".

    Whole values drop their decimals ("2 GB"), negative values print as "0 B".
    """
    if size_bytes <= 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    factor = 1024.0
    size = float(size_bytes)
    for unit in units:
        if size < factor:
            if unit == "B":
                return f"{int(size)} {unit}"
            return f"{size:.2f} {unit}".replace(".00", "")
        size /= factor
    return f"{size:.2f} {units[-1]}".replace(".00", "")


def size_change_percent(original_size: int, new_size: int) -> float:
    """Relative change from `original_size` to `new_size`, negative when the file shrank."""
    if original_size <= 0:
        return 0.0
    return (new_size - original_size) / original_size * 100


def contains_any_extensions(file_path_obj: Path, extensions_to_check: Iterable[str]) -> bool:
    """
    Case-insensitive check of a file's suffix against a list of extensions.

    The extensions may be given with or without the leading dot.
    """
    normalized_extensions = {
        ext.lower() if ext.startswith(".") else f".{ext.lower()}"
        for ext in extensions_to_check
    }
    if not normalized_extensions:
        return False
    return file_path_obj.suffix.lower() in normalized_extensions
