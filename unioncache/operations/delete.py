"""
Delete propagation in both directions
"""
import os
from pathlib import Path
from ..core.layout import Layout, WHITEOUT_SUFFIX
from ..utils.logging import log, vlog, warn
from ..utils.file_utils import remove_path, is_safe_relpath


def collect_whiteouts(layout: Layout) -> tuple[dict[str, float], list[Path]]:
    """
    Walk the whiteout directory of the overlay.

    Returns ({rel_path: deleted_at_ms}, [marker paths]).  A marker for
    ``a/b`` lives at ``<whiteouts>/a/b_HIDDEN~`` and its mtime is when
    ``a/b`` was deleted.
    """
    whiteouts: dict[str, float] = {}
    markers: list[Path] = []
    root = str(layout.whiteouts)
    n = len(WHITEOUT_SUFFIX)
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            if not name.endswith(WHITEOUT_SUFFIX):
                continue
            path = os.path.join(dirpath, name)
            try:
                st = os.lstat(path)
            except FileNotFoundError:
                continue
            rel = os.path.relpath(path, root).replace(os.sep, "/")[:-n]
            whiteouts[rel] = st.st_mtime * 1000
            markers.append(Path(path))
    return whiteouts, markers


def sync_deletes_from_compute_to_project(rpc, layout: Layout) -> int:
    """
    Report files deleted on compute to the project, then drop the markers.

    The project deletes each one unless it modified the file more recently.
    Markers are only removed once the project has answered.  Returns the
    number of whiteouts reported.
    """
    if not layout.whiteouts.exists():
        vlog("[del] no whiteout directory")
        return 0
    whiteouts, markers = collect_whiteouts(layout)
    if not whiteouts:
        log("[del] compute → project: nothing to do")
        return 0
    log(f"[del] compute → project: reporting {len(whiteouts)} deletion(s) …")
    rpc.call("deleteWhiteouts", {"whiteouts": whiteouts})

    for marker in markers:
        # a marker that survives is reported again next cycle
        err = remove_path(marker)
        if err is not None:
            vlog(f"  could not remove whiteout {marker}: {err}")
    return len(whiteouts)


def sync_deletes_from_project_to_compute(rpc, layout: Layout) -> int:
    """
    Delete every file on compute that the project no longer has.
    Returns the number of paths removed.
    """
    to_delete = rpc.call("filesToDelete", {
        "allComputeFiles": str(layout.compute_all_files_list_on_project),
    }) or []
    removed = 0
    for rel in to_delete:
        if not is_safe_relpath(rel):
            warn(f"  [DEL-LOCAL] refusing unsafe path {rel!r}")
            continue
        # best effort; the error is returned, not raised
        err = remove_path(layout.upper / rel)
        if err is None:
            removed += 1
            vlog(f"  [DEL-LOCAL ✓] {rel}")
        else:
            vlog(f"  [DEL-LOCAL] {rel}: {err}")
    log(f"[del] project → compute: removed {removed} of {len(to_delete)} path(s)")
    return removed
