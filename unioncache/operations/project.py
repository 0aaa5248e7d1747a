"""
Project-side handlers for the RPC calls made by the compute server.

These run in the project (``unioncache rpc <func>``), with *home* being the
project home directory.  stdout carries the JSON reply, so nothing here logs.
"""
import json
import os
from pathlib import Path
from ..utils.file_utils import remove_path, is_safe_relpath
from .scanner import read_files_list


def files_to_delete(home: Path, all_compute_files: str) -> list[str]:
    """
    Every path on the compute server's list that no longer exists in the
    project, i.e. was deleted here and must be deleted there too.
    """
    listing = Path(all_compute_files)
    if not listing.is_absolute():
        listing = home / listing
    result = []
    for rel in read_files_list(listing):
        if not is_safe_relpath(rel):
            continue
        if not os.path.lexists(home / rel):
            result.append(rel)
    return result


def delete_whiteouts(home: Path, whiteouts: dict) -> dict:
    """
    Delete files that were deleted on the compute server, unless the project
    copy was modified after the deletion (mtime strictly newer, in ms).
    """
    deleted = 0
    kept = []
    failed = []
    for rel, deleted_at_ms in whiteouts.items():
        if not is_safe_relpath(rel):
            failed.append(rel)
            continue
        path = home / rel
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            continue
        if st.st_mtime * 1000 > float(deleted_at_ms):
            kept.append(rel)
            continue
        err = remove_path(path)
        if err is None:
            deleted += 1
        else:
            failed.append(rel)
    return {"deleted": deleted, "kept": kept, "failed": failed}


HANDLERS = {
    "filesToDelete": lambda home, payload: files_to_delete(home, payload["allComputeFiles"]),
    "deleteWhiteouts": lambda home, payload: delete_whiteouts(home, payload.get("whiteouts") or {}),
}


def handle_request(home: Path, func: str, raw: str) -> dict:
    """Run one RPC call and build the reply object (never raises)."""
    handler = HANDLERS.get(func)
    if handler is None:
        return {"error": f"unknown function {func!r}"}
    try:
        payload = json.loads(raw) if raw.strip() else {}
        return {"result": handler(home, payload)}
    except (ValueError, KeyError, TypeError, OSError) as exc:
        return {"error": f"{type(exc).__name__}: {exc}"}
