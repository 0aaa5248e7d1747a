"""
File utilities (best-effort removal, durable copy, path checks)
"""
import os
import shutil
from pathlib import Path, PurePosixPath
from typing import Optional


def remove_path(path: Path) -> Optional[OSError]:
    """
    Remove a file, symlink or directory tree.

    Returns None on success (or if nothing was there) and the OSError
    otherwise, so callers decide explicitly whether to ignore it.
    """
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        return None
    except OSError as exc:
        return exc
    return None


def copy_and_fsync(src: Path, dest: Path):
    """Copy src to dest and flush dest to stable storage before returning."""
    with open(src, "rb") as src_f, open(dest, "wb") as dst_f:
        shutil.copyfileobj(src_f, dst_f, 1024 * 1024)
        dst_f.flush()
        os.fsync(dst_f.fileno())


def is_safe_relpath(rel: str) -> bool:
    """True if rel is a relative path that stays inside its root."""
    if not rel or "\x00" in rel:
        return False
    p = PurePosixPath(rel)
    if p.is_absolute():
        return False
    return ".." not in p.parts
