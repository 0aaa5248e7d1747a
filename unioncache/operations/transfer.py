"""
File transfer operations (tarballs in both directions)

Because of latency it is far cheaper to build one compressed tarball, move
it over the mount once and extract it on the other side than to copy files
one by one through the mount.
"""
import os
import shutil
import tarfile
from pathlib import Path
from typing import Optional
from .. import config as _cfg
from ..core.errors import ArchiveError, ExtractError
from ..core.layout import Layout
from ..utils.logging import log, vlog, warn
from ..utils.retry import retry_with_backoff
from ..utils.exclusions import tar_exclude_args
from ..utils.file_utils import copy_and_fsync, is_safe_relpath
from .scanner import update_files_list, read_files_list

# Outcomes of extracting a tarball in the project
SUCCESS = "success"
CONFLICTS_ONLY = "conflicts_only"
FATAL = "fatal"

# GNU tar's closing diagnostic when individual members failed (e.g. a file
# on one side and a directory of the same name on the other).  Matching on
# it is fragile; it stays until the project side can report a structured
# outcome itself.
TAR_PREVIOUS_ERRORS = "failure status due to previous errors"


# ── compute → project ─────────────────────────────────────────────────────────

def _write_tar(tar_path: Path, root: Path, files: list[str]):
    """Pack exactly *files* (relative to root, no recursion) into tar_path."""
    with tarfile.open(tar_path, "w:gz", compresslevel=6) as tar:
        for rel in files:
            tar.add(str(root / rel), arcname=rel, recursive=False)


def update_compute_edited_files_tar(layout: Layout, patterns: list,
                                    watermark: Optional[float]):
    """
    Build the tarball of edited files locally, then copy it to the project.

    It is created on the fast local disk first: that is far less likely to be
    broken by file activity than writing over the mount, and writing to the
    mount costs money.  If files change under us, refresh the edited list
    and try again.
    """
    local_tar = layout.compute_edited_files_tar_create_locally

    def attempt():
        files = read_files_list(layout.compute_edited_files_list)
        log(f"  [PUSH] packing {len(files)} file(s) into {local_tar.name} …")
        _write_tar(local_tar, layout.upper, files)

    def refresh(_attempt, _exc):
        update_files_list(layout, "edited", patterns, watermark)

    try:
        try:
            retry_with_backoff(
                attempt,
                max_attempts=_cfg.TAR_MAX_TRIES,
                initial_delay=_cfg.TAR_RETRY_DELAY,
                multiplier=_cfg.TAR_RETRY_FACTOR,
                max_delay=_cfg.TAR_RETRY_MAX_DELAY,
                retry_on=(OSError, tarfile.TarError),
                on_retry=refresh,
                label="update_compute_edited_files_tar",
            )
        except (OSError, tarfile.TarError) as exc:
            raise ArchiveError("unable to create tarball of recently edited files") from exc
        size_kb = local_tar.stat().st_size // 1024
        log(f"  [PUSH] copying {size_kb} KB → {layout.compute_edited_files_tar}")
        copy_and_fsync(local_tar, layout.compute_edited_files_tar)
    finally:
        local_tar.unlink(missing_ok=True)


def classify_extract(exit_code: int, stderr: str) -> str:
    """Map a project-side `tar -x` result to SUCCESS, CONFLICTS_ONLY or FATAL."""
    if exit_code == 0:
        return SUCCESS
    if TAR_PREVIOUS_ERRORS in (stderr or ""):
        return CONFLICTS_ONLY
    return FATAL


def extract_compute_edited_files_in_project(mgr, layout: Layout) -> str:
    """
    Extract the pushed tarball in the project.

    --keep-newer-files: if a file was changed in the project more recently
    than on compute, the project copy wins.
    """
    args = ["--keep-newer-files", "-xf", str(layout.rel_compute_edited_files_tar)]

    def attempt():
        res = mgr.exec("tar", args, timeout=_cfg.TAR_TIMEOUT, err_on_exit=False)
        outcome = classify_extract(res.exit_code, res.stderr)
        if outcome == FATAL:
            raise ExtractError(f"tar exited {res.exit_code}: {res.stderr.strip()}")
        if outcome == CONFLICTS_ONLY:
            warn(f"  [PUSH] extracted with conflicts left as is: {res.stderr.strip()}")
        return outcome

    log("  [PUSH] extracting in project …")
    try:
        return retry_with_backoff(
            attempt,
            max_attempts=_cfg.EXTRACT_MAX_TRIES,
            initial_delay=_cfg.EXTRACT_RETRY_DELAY,
            retry_on=(ExtractError,),
            label="extract_compute_edited_files_in_project",
        )
    except ExtractError as exc:
        raise ExtractError(f"unable to extract {layout.rel_compute_edited_files_tar}: {exc}") from exc


def sync_writes_from_compute_to_project(mgr, layout: Layout, patterns: list,
                                        watermark: Optional[float]) -> bool:
    """Returns False if nothing was edited since the watermark."""
    if not update_files_list(layout, "edited", patterns, watermark):
        log("[push] nothing changed")
        return False
    update_compute_edited_files_tar(layout, patterns, watermark)
    extract_compute_edited_files_in_project(mgr, layout)
    layout.compute_edited_files_tar.unlink()
    log("[push] done ✓")
    return True


# ── project → compute ─────────────────────────────────────────────────────────

def newer_arg(watermark: Optional[float]) -> str:
    """Date for `tar --newer` (seconds since the epoch)."""
    return f"@{watermark:.6f}" if watermark is not None else "@0"


def update_project_edited_files_tar(mgr, layout: Layout, exclude: list[str],
                                    watermark: Optional[float]):
    """
    Have the project tar up files newer than the watermark, restricted to
    paths that exist in the upper layer (all others are read through the
    lower layer anyway).
    """
    # Directories on the list are archived recursively, so a changed file
    # under a listed directory appears twice in the tarball (once through
    # the directory, once by name).  The keep-newer rule skips the repeat.
    args = (["-zcf", str(layout.project_edited_files_tar)]
            + tar_exclude_args(exclude)
            + ["--newer", newer_arg(watermark),
               "--verbatim-files-from",
               "--files-from", str(layout.compute_all_files_list_on_project)])
    log("  [PULL] packing in project …")
    res = mgr.exec("tar", args, timeout=_cfg.TAR_TIMEOUT, err_on_exit=False)
    if res.exit_code:
        # typically files removed in the project since the list was made
        warn(f"  [PULL] tar exited {res.exit_code}: {res.stderr.strip()}")


def _keep_existing(dest: Path, member: tarfile.TarInfo) -> bool:
    """--keep-newer-files: keep dest if it is at least as new as the member."""
    try:
        st = os.lstat(dest)
    except FileNotFoundError:
        return False
    return st.st_mtime >= member.mtime


def _escapes(root: Path, dest: Path) -> bool:
    """True if a symlink already on disk leads dest's parent out of root."""
    try:
        dest.parent.resolve().relative_to(root)
    except ValueError:
        return True
    return False


def _clear_for(dest: Path):
    """Drop a symlink or file in the way of a new file; a directory is a collision."""
    if dest.is_symlink() or dest.is_file():
        dest.unlink()


def extract_project_edited_files_in_compute(layout: Layout) -> tuple[int, int, int]:
    """
    Extract the project's tarball into the upper layer, keeping local
    entries that are newer.  Returns (extracted, kept, failed).
    """
    tar_path = layout.project_edited_files_tar_from_compute
    extracted = kept = failed = 0
    root = layout.upper.resolve()
    log(f"  [PULL] extracting {tar_path.name} into {layout.upper} …")
    with tarfile.open(tar_path, "r:gz") as tar:
        for member in tar:
            name = member.name.rstrip("/")
            if name.startswith("./"):
                name = name[2:]
            if not is_safe_relpath(name) or name == ".":
                warn(f"  [PULL] refusing unsafe member {member.name!r}")
                failed += 1
                continue
            dest = layout.upper / name
            if _escapes(root, dest):
                warn(f"  [PULL] refusing {name!r}: its directory leads outside {layout.upper}")
                failed += 1
                continue
            try:
                if member.isdir():
                    dest.mkdir(parents=True, exist_ok=True)
                    continue
                if _keep_existing(dest, member):
                    vlog(f"  [KEEP-NEWER] {name}")
                    kept += 1
                    continue
                dest.parent.mkdir(parents=True, exist_ok=True)
                if member.isreg():
                    _clear_for(dest)
                    with tar.extractfile(member) as src_f, open(dest, "wb") as dst_f:
                        shutil.copyfileobj(src_f, dst_f)
                    os.chmod(dest, member.mode & 0o7777)
                    os.utime(dest, (member.mtime, member.mtime))
                elif member.issym():
                    _clear_for(dest)
                    os.symlink(member.linkname, dest)
                else:
                    vlog(f"  [SKIP-TYPE] {name}")
                    continue
                extracted += 1
            except OSError as exc:
                # e.g. a file here and a directory there; leave both as they are
                warn(f"  [PULL] could not extract {name}: {exc}")
                failed += 1
    log(f"  [PULL] extracted={extracted} kept={kept} failed={failed}")
    return extracted, kept, failed


def sync_writes_from_project_to_compute(mgr, layout: Layout, exclude: list[str],
                                        watermark: Optional[float]):
    update_project_edited_files_tar(mgr, layout, exclude, watermark)
    extract_project_edited_files_in_compute(layout)
    layout.project_edited_files_tar_from_compute.unlink()
    log("[pull] done ✓")
