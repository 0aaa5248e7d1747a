"""
Stand-ins for the project side used by the tests.

LocalShell runs commands with subprocess in a local "project home" (the same
directory the layout uses as lower layer), and InProcessRPC answers RPC calls
with the real project-side handlers.
"""
import json
import os
import shutil
import subprocess
import tempfile
from pathlib import Path

from unioncache.core.errors import RPCError
from unioncache.core.layout import Layout
from unioncache.core.ssh_manager import ExecResult
from unioncache.operations.project import handle_request


def _have_gnu_tar() -> bool:
    if shutil.which("tar") is None:
        return False
    try:
        out = subprocess.run(["tar", "--version"], capture_output=True, text=True).stdout
    except OSError:
        return False
    return "GNU tar" in out


HAVE_GNU_TAR = _have_gnu_tar()


class LocalShell:
    """Same exec() contract as SSHManager, run locally from *root*."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.calls = []

    def exec(self, command, args=None, timeout=30, err_on_exit=True, input_text=None):
        argv = [command] + [str(a) for a in (args or [])]
        self.calls.append(argv)
        proc = subprocess.run(argv, cwd=str(self.root), input=input_text,
                              capture_output=True, text=True, timeout=timeout)
        if proc.returncode != 0 and err_on_exit:
            raise RuntimeError(f"command exited {proc.returncode}: {argv!r}")
        return ExecResult(proc.returncode, proc.stdout, proc.stderr)

    def commands(self, name):
        return [c for c in self.calls if c[0] == name]


class InProcessRPC:
    """ProjectRPC look-alike dispatching straight to the project handlers."""

    def __init__(self, home: Path):
        self.home = Path(home)
        self.calls = []
        self.failing = set()

    def call(self, func, payload):
        self.calls.append((func, payload))
        if func in self.failing:
            raise RPCError(f"{func}: simulated failure")
        reply = handle_request(self.home, func, json.dumps(payload))
        if reply.get("error"):
            raise RPCError(reply["error"])
        return reply["result"]

    def called(self, func):
        return [payload for name, payload in self.calls if name == func]


class OverlayDirs:
    """Temporary lower (project home) and upper layers plus their Layout."""

    def __init__(self, compute_server_id=1):
        self._tmp = tempfile.TemporaryDirectory()
        base = Path(self._tmp.name)
        self.lower = base / "lower"
        self.upper = base / "upper"
        self.lower.mkdir()
        self.upper.mkdir()
        self.layout = Layout(str(self.lower), str(self.upper), str(base / "home"), compute_server_id)

    def make_workdirs(self):
        self.layout.compute_workdir.mkdir(parents=True, exist_ok=True)
        self.layout.project_workdir.mkdir(parents=True, exist_ok=True)

    def cleanup(self):
        self._tmp.cleanup()


def write(path: Path, text: str, mtime: float = None) -> Path:
    """Write a file (creating parents) and optionally set its mtime."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path
