"""
Working paths on the compute server and in the project
"""
import re
from pathlib import Path, PurePosixPath
from .errors import ConfigError

TAR_EXT = ".tar.gz"
WHITEOUT_DIR = ".unionfs-fuse"
WHITEOUT_SUFFIX = "_HIDDEN~"


class Layout:
    """
    Every path the engine touches, derived from the overlay roots and the
    compute server id.

    Paths under ``rel_*`` and ``*_on_project`` are relative to the project
    home and are what remote commands see; everything else is a local path
    (the project workdir is reached through the lower mount).
    """

    def __init__(self, lower, upper, mount, compute_server_id):
        for name, value in (("lower", lower), ("upper", upper), ("mount", mount)):
            if not str(value):
                raise ConfigError(f"{name} path must not be empty")
            if re.search(r"\s", str(value)):
                # tar --files-from and remote command lines split on whitespace
                raise ConfigError(f"no whitespace is allowed in any paths ({name}={value!r})")
        if isinstance(compute_server_id, bool) or not isinstance(compute_server_id, int):
            raise ConfigError(f"compute_server_id must be an integer, got {compute_server_id!r}")
        if compute_server_id < 0:
            raise ConfigError(f"compute_server_id must not be negative, got {compute_server_id}")

        self.lower = Path(lower)
        self.upper = Path(upper)
        self.mount = Path(mount)
        self.compute_server_id = compute_server_id

        self.whiteouts = self.upper / WHITEOUT_DIR
        self.compute_workdir = self.upper / ".compute-server"
        self.rel_project_workdir = PurePosixPath(".compute-servers") / str(compute_server_id)
        self.project_workdir = self.lower / self.rel_project_workdir

        self.last = self.compute_workdir / "last"

        self.compute_edited_files_list = self.compute_workdir / "compute-edited-files-list"
        self.compute_all_files_list = self.project_workdir / "compute-all-files-list"
        self.compute_all_files_list_on_project = self.rel_project_workdir / "compute-all-files-list"

        self.compute_edited_files_tar_create_locally = (
            self.compute_workdir / f"compute-edited-files{TAR_EXT}")
        self.compute_edited_files_tar = self.project_workdir / f"compute-edited-files{TAR_EXT}"
        self.rel_compute_edited_files_tar = (
            self.rel_project_workdir / f"compute-edited-files{TAR_EXT}")

        self.project_edited_files_tar = self.rel_project_workdir / f"project-edited-files{TAR_EXT}"
        self.project_edited_files_tar_from_compute = self.lower / self.project_edited_files_tar

    def __repr__(self):
        return (f"Layout(lower={str(self.lower)!r}, upper={str(self.upper)!r}, "
                f"mount={str(self.mount)!r}, compute_server_id={self.compute_server_id})")
