"""
Main sync engine - the periodic cycle between the upper layer and the project

Every CACHE_TIMEOUT seconds one cycle runs:

  ① deletes compute → project   (whiteouts reported over RPC)
  ② list all files in the upper layer
  ③ writes compute → project    (one tarball, extracted with --keep-newer-files)
  ④ writes project → compute    (one tarball of files newer than the watermark)
  ⑤ deletes project → compute   (project computes what is gone)
  ⑥ advance the watermark to the start of the cycle

Any failure aborts the cycle and leaves the watermark alone, so the next
tick simply does all of it again.
"""
import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Optional
from .. import config as _cfg
from .layout import Layout
from ..utils.logging import log, warn, is_verbose, elapsed
from ..utils.exclusions import compile_exclusions
from ..operations.scanner import update_files_list
from ..operations.transfer import (sync_writes_from_compute_to_project,
                                   sync_writes_from_project_to_compute)
from ..operations.delete import (sync_deletes_from_compute_to_project,
                                 sync_deletes_from_project_to_compute)
from ..state.watermark import get_watermark, set_watermark

INIT = "init"
READY = "ready"
SYNCING = "syncing"
CLOSED = "closed"


class FilesystemCache:
    """
    Keeps the upper layer of a union mount in sync with the project.

    *mgr* is the execution channel into the project (SSHManager) and *rpc*
    the RPC channel (ProjectRPC).
    """

    def __init__(self, layout: Layout, mgr, rpc,
                 cache_timeout: Optional[float] = None,
                 exclude: Optional[list[str]] = None):
        self.state = INIT
        self.layout = layout
        self._mgr = mgr
        self._rpc = rpc
        self.cache_timeout = cache_timeout if cache_timeout is not None else _cfg.CACHE_TIMEOUT
        if self.cache_timeout <= 0:
            raise ValueError(f"cache_timeout must be positive, got {self.cache_timeout}")
        self.exclude = list(exclude or [])
        self._patterns = compile_exclusions(self.exclude)
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.failures = 0
        log(f"[sync] created FilesystemCache {layout!r}")
        self.state = READY

    # ── lifecycle ──────────────────────────────────────────────────────────

    def start(self):
        """Run sync() every cache_timeout seconds on a background thread."""
        if self.state == CLOSED:
            raise RuntimeError("FilesystemCache is closed")
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="unioncache-sync", daemon=True)
        self._thread.start()

    def _run(self):
        while not self._stop.wait(self.cache_timeout):
            self.sync()

    def close(self):
        """Stop future cycles; a cycle in flight finishes on its own."""
        log("[sync] close FilesystemCache")
        with self._lock:
            if self.state == CLOSED:
                return
            self.state = CLOSED
        self._stop.set()

    def _begin(self) -> bool:
        with self._lock:
            if self.state != READY:
                return False
            self.state = SYNCING
            return True

    def _end(self):
        with self._lock:
            if self.state != CLOSED:
                self.state = READY

    # ── one cycle ──────────────────────────────────────────────────────────

    def sync(self) -> bool:
        """
        Run one cycle.  Returns True if it completed, False if it failed or
        was skipped because another cycle is running or the cache is closed.
        """
        if not self._begin():
            return False
        log("[sync] sync")
        t0 = time.monotonic()
        try:
            self._sync_once()
        except Exception as exc:
            # typically a lot of filesystem activity changing things mid-cycle
            self.failures += 1
            warn(f"[sync] sync loop failed after {elapsed(t0)} "
                 f"({self.failures} in a row): {exc}")
            if is_verbose():
                traceback.print_exc()
            return False
        finally:
            self._end()
        self.failures = 0
        log(f"[sync] SUCCESS, time={elapsed(t0)}")
        return True

    def _sync_once(self):
        layout = self.layout
        self.make_dirs()
        # sync at least every change between the watermark and now
        cur = time.time()
        last = get_watermark(layout.last)
        sync_deletes_from_compute_to_project(self._rpc, layout)
        have_files = update_files_list(layout, "all", self._patterns)
        sync_writes_from_compute_to_project(self._mgr, layout, self._patterns, last)
        if have_files:
            sync_writes_from_project_to_compute(self._mgr, layout, self.exclude, last)
            sync_deletes_from_project_to_compute(self._rpc, layout)
        else:
            log("[sync] upper layer is empty; nothing to refresh from the project")
        set_watermark(layout.last, cur)

    def make_dirs(self):
        """Ensure both working directories exist (in parallel)."""
        dirs = [self.layout.compute_workdir, self.layout.project_workdir]
        with ThreadPoolExecutor(max_workers=len(dirs)) as pool:
            for fut in [pool.submit(d.mkdir, parents=True, exist_ok=True) for d in dirs]:
                fut.result()


def filesystem_cache(layout: Layout, mgr, rpc,
                     cache_timeout: Optional[float] = None,
                     exclude: Optional[list[str]] = None) -> FilesystemCache:
    """Create a FilesystemCache and start its periodic sync."""
    cache = FilesystemCache(layout, mgr, rpc, cache_timeout=cache_timeout, exclude=exclude)
    cache.start()
    return cache
