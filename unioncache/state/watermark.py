"""
Watermark: the mtime of a sentinel file.  Everything older has been synced.
"""
import os
from pathlib import Path
from typing import Optional


def get_watermark(path: Path) -> Optional[float]:
    """Return the sentinel's mtime, or None if there has been no successful sync."""
    try:
        return os.stat(path).st_mtime
    except FileNotFoundError:
        return None


def set_watermark(path: Path, when: float):
    """Create the sentinel if needed and set its mtime to *when*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    os.utime(path, (when, when))
