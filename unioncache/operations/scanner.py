"""
Listing files in the upper layer of the overlay
"""
import os
import stat
from pathlib import Path
from typing import Iterator, Optional
from ..core.layout import Layout
from ..utils.logging import log, vlog
from ..utils.exclusions import is_excluded

KINDS = ("all", "edited")


def walk_upper(root: Path, patterns: list) -> Iterator[tuple[str, os.stat_result]]:
    """
    Depth-first (pre-order, like `find`) walk of *root*.

    Yields (rel_posix, lstat) for every entry that is not excluded; excluded
    directories are pruned.  Symlinks are reported but never followed and
    entries that vanish while walking are skipped.
    """
    yield from _walk_dir("", str(root), patterns)


def _walk_dir(rel_dir: str, abs_dir: str, patterns: list):
    try:
        with os.scandir(abs_dir) as it:
            entries = sorted(it, key=lambda e: e.name)
    except (FileNotFoundError, NotADirectoryError):
        return
    for entry in entries:
        rel = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
        if is_excluded(rel, patterns):
            continue
        if "\n" in rel:
            vlog(f"  [SKIP-NEWLINE] {rel!r}")
            continue
        try:
            st = entry.stat(follow_symlinks=False)
        except FileNotFoundError:
            continue
        yield rel, st
        if stat.S_ISDIR(st.st_mode):
            yield from _walk_dir(rel, entry.path, patterns)


def list_files(root: Path, kind: str, patterns: list,
               watermark: Optional[float] = None) -> list[str]:
    """
    "all": every entry.  "edited": regular files strictly newer than the
    watermark.  Directories are never "edited", otherwise every directory
    above a changed file would end up in the tarball, recursively.
    """
    if kind not in KINDS:
        raise ValueError(f"unknown list kind {kind!r}")
    result = []
    for rel, st in walk_upper(root, patterns):
        if kind == "edited":
            if not stat.S_ISREG(st.st_mode):
                continue
            if watermark is not None and st.st_mtime <= watermark:
                continue
        result.append(rel)
    return result


def files_list_path(layout: Layout, kind: str) -> Path:
    return layout.compute_edited_files_list if kind == "edited" else layout.compute_all_files_list


def update_files_list(layout: Layout, kind: str, patterns: list,
                      watermark: Optional[float] = None) -> bool:
    """
    Write the "all" or "edited" list for the upper layer.

    Returns True if there is at least one path.  With no paths nothing is
    written (a stale list from an earlier cycle is removed) and False is
    returned.
    """
    files = list_files(layout.upper, kind, patterns, watermark)
    target = files_list_path(layout, kind)
    log(f"[scan] {kind}: {len(files)} path(s) in {layout.upper}")
    if not files:
        target.unlink(missing_ok=True)
        return False
    target.write_text("\n".join(files) + "\n", encoding="utf-8")
    return True


def read_files_list(path: Path) -> list[str]:
    """Read a list written by update_files_list()"""
    if not path.exists():
        return []
    return [line for line in path.read_text(encoding="utf-8").split("\n") if line]
