"""
Tests for FilesystemCache: full cycles against a local "project" and the
state machine around them.
"""
import os
import threading
import time
import unittest
from unittest import mock

from unioncache.core.sync_engine import (CLOSED, READY, SYNCING, FilesystemCache,
                                         filesystem_cache)
from unioncache.state.watermark import get_watermark

from helpers import HAVE_GNU_TAR, InProcessRPC, LocalShell, OverlayDirs, write


class CycleTestCase(unittest.TestCase):

    def setUp(self):
        self.dirs = OverlayDirs(compute_server_id=1)
        self.layout = self.dirs.layout
        self.shell = LocalShell(self.dirs.lower)
        self.rpc = InProcessRPC(self.dirs.lower)
        self.old = time.time() - 60

    def tearDown(self):
        self.dirs.cleanup()

    def make_cache(self, **kwargs):
        kwargs.setdefault("cache_timeout", 20)
        return FilesystemCache(self.layout, self.shell, self.rpc, **kwargs)

    def reset_calls(self):
        self.shell.calls.clear()
        self.rpc.calls.clear()


@unittest.skipUnless(HAVE_GNU_TAR, "needs GNU tar")
class TestFullCycle(CycleTestCase):

    def setUp(self):
        super().setUp()
        write(self.dirs.upper / "a.txt", "compute a", mtime=self.old)
        write(self.dirs.upper / "dir" / "b.txt", "compute b", mtime=self.old)
        write(self.dirs.lower / "shared.txt", "project only", mtime=self.old)

    def test_first_cycle_pushes_upper_layer(self):
        cache = self.make_cache()
        before = time.time()
        self.assertTrue(cache.sync())
        self.assertEqual((self.dirs.lower / "a.txt").read_text(), "compute a")
        self.assertEqual((self.dirs.lower / "dir" / "b.txt").read_text(), "compute b")
        # files only in the project stay there
        self.assertFalse((self.dirs.upper / "shared.txt").exists())
        self.assertGreaterEqual(get_watermark(self.layout.last), before - 1)
        self.assertEqual(cache.state, READY)
        # tarballs are cleaned up on both sides
        self.assertFalse(self.layout.compute_edited_files_tar.exists())
        self.assertFalse(self.layout.compute_edited_files_tar_create_locally.exists())
        self.assertFalse(self.layout.project_edited_files_tar_from_compute.exists())

    def test_second_cycle_sends_nothing(self):
        cache = self.make_cache()
        self.assertTrue(cache.sync())
        self.reset_calls()
        self.assertTrue(cache.sync())
        pushes = [c for c in self.shell.commands("tar") if "--keep-newer-files" in c]
        self.assertEqual(pushes, [])
        self.assertFalse(self.layout.compute_edited_files_list.exists())
        self.assertEqual((self.dirs.upper / "a.txt").read_text(), "compute a")

    def test_project_edit_reaches_upper_layer(self):
        cache = self.make_cache()
        self.assertTrue(cache.sync())
        write(self.dirs.lower / "a.txt", "edited in project")
        self.assertTrue(cache.sync())
        self.assertEqual((self.dirs.upper / "a.txt").read_text(), "edited in project")
        self.assertEqual((self.dirs.upper / "dir" / "b.txt").read_text(), "compute b")

    def test_compute_edit_after_first_cycle(self):
        cache = self.make_cache()
        self.assertTrue(cache.sync())
        write(self.dirs.upper / "dir" / "b.txt", "b again", mtime=time.time() + 5)
        self.reset_calls()
        self.assertTrue(cache.sync())
        self.assertEqual((self.dirs.lower / "dir" / "b.txt").read_text(), "b again")
        self.assertEqual(len([c for c in self.shell.commands("tar")
                              if "--keep-newer-files" in c]), 1)

    def test_project_delete_reaches_upper_layer(self):
        cache = self.make_cache()
        self.assertTrue(cache.sync())
        os.unlink(self.dirs.lower / "dir" / "b.txt")
        self.assertTrue(cache.sync())
        self.assertFalse((self.dirs.upper / "dir" / "b.txt").exists())
        self.assertTrue((self.dirs.upper / "a.txt").exists())

    def test_compute_delete_reaches_project(self):
        cache = self.make_cache()
        self.assertTrue(cache.sync())
        os.unlink(self.dirs.upper / "a.txt")
        marker = write(self.layout.whiteouts / "a.txt_HIDDEN~", "")
        self.assertTrue(cache.sync())
        self.assertFalse((self.dirs.lower / "a.txt").exists())
        self.assertFalse(marker.exists())
        self.assertEqual(len(self.rpc.called("deleteWhiteouts")), 1)

    def test_newer_project_file_survives_compute_delete(self):
        cache = self.make_cache()
        self.assertTrue(cache.sync())
        os.unlink(self.dirs.upper / "a.txt")
        marker = write(self.layout.whiteouts / "a.txt_HIDDEN~", "", mtime=self.old + 10)
        write(self.dirs.lower / "a.txt", "rewritten in project")
        self.assertTrue(cache.sync())
        self.assertEqual((self.dirs.lower / "a.txt").read_text(), "rewritten in project")
        self.assertFalse(marker.exists())

    def test_excluded_paths_stay_local(self):
        write(self.dirs.upper / "build" / "out.o", "binary", mtime=self.old)
        cache = self.make_cache(exclude=["build"])
        self.assertTrue(cache.sync())
        self.assertFalse((self.dirs.lower / "build").exists())
        listed = self.layout.compute_all_files_list.read_text().split()
        self.assertNotIn("build", listed)
        self.assertNotIn("build/out.o", listed)

    def test_empty_upper_layer_skips_pull(self):
        os.unlink(self.dirs.upper / "a.txt")
        os.unlink(self.dirs.upper / "dir" / "b.txt")
        os.rmdir(self.dirs.upper / "dir")
        cache = self.make_cache()
        self.assertTrue(cache.sync())
        self.assertEqual(self.shell.calls, [])
        self.assertEqual(self.rpc.called("filesToDelete"), [])
        self.assertIsNotNone(get_watermark(self.layout.last))


@unittest.skipUnless(HAVE_GNU_TAR, "needs GNU tar")
class TestFailedCycle(CycleTestCase):

    def setUp(self):
        super().setUp()
        write(self.dirs.upper / "a.txt", "compute a", mtime=self.old)

    @mock.patch("unioncache.utils.retry.time.sleep")
    def test_failure_keeps_watermark_and_next_cycle_recovers(self, _sleep):
        cache = self.make_cache()
        with mock.patch("unioncache.operations.transfer._write_tar",
                        side_effect=OSError("file changed as we read it")):
            self.assertFalse(cache.sync())
        self.assertIsNone(get_watermark(self.layout.last))
        self.assertEqual(cache.failures, 1)
        self.assertEqual(cache.state, READY)

        self.assertTrue(cache.sync())
        self.assertEqual(cache.failures, 0)
        self.assertEqual((self.dirs.lower / "a.txt").read_text(), "compute a")
        self.assertIsNotNone(get_watermark(self.layout.last))

    def test_rpc_failure_keeps_watermark(self):
        cache = self.make_cache()
        self.assertTrue(cache.sync())
        first = get_watermark(self.layout.last)
        time.sleep(0.01)
        self.rpc.failing.add("filesToDelete")
        self.assertFalse(cache.sync())
        self.assertEqual(get_watermark(self.layout.last), first)
        self.rpc.failing.clear()
        self.assertTrue(cache.sync())
        self.assertGreater(get_watermark(self.layout.last), first)

    def test_whiteout_markers_kept_when_project_unreachable(self):
        cache = self.make_cache()
        marker = write(self.layout.whiteouts / "gone.txt_HIDDEN~", "")
        self.rpc.failing.add("deleteWhiteouts")
        self.assertFalse(cache.sync())
        self.assertTrue(marker.exists())
        self.assertIsNone(get_watermark(self.layout.last))


class TestStateMachine(unittest.TestCase):

    def setUp(self):
        self.dirs = OverlayDirs()
        self.cache = FilesystemCache(self.dirs.layout, mock.Mock(), mock.Mock(),
                                     cache_timeout=0.05)

    def tearDown(self):
        self.cache.close()
        self.dirs.cleanup()

    def test_ready_after_construction(self):
        self.assertEqual(self.cache.state, READY)

    def test_invalid_cache_timeout(self):
        for bad in (0, -1):
            with self.assertRaises(ValueError):
                FilesystemCache(self.dirs.layout, mock.Mock(), mock.Mock(), cache_timeout=bad)

    def test_sync_skipped_while_syncing(self):
        self.cache.state = SYNCING
        with mock.patch.object(self.cache, "_sync_once") as once:
            self.assertFalse(self.cache.sync())
        once.assert_not_called()

    def test_overlapping_sync_is_skipped(self):
        inner = []
        with mock.patch.object(self.cache, "_sync_once",
                               side_effect=lambda: inner.append(self.cache.sync())):
            self.assertTrue(self.cache.sync())
        self.assertEqual(inner, [False])
        self.assertEqual(self.cache.state, READY)

    def test_close_is_terminal(self):
        self.cache.close()
        self.assertEqual(self.cache.state, CLOSED)
        with mock.patch.object(self.cache, "_sync_once") as once:
            self.assertFalse(self.cache.sync())
        once.assert_not_called()
        with self.assertRaises(RuntimeError):
            self.cache.start()
        self.cache.close()
        self.assertEqual(self.cache.state, CLOSED)

    def test_close_during_cycle_stays_closed(self):
        with mock.patch.object(self.cache, "_sync_once", side_effect=self.cache.close):
            self.assertTrue(self.cache.sync())
        self.assertEqual(self.cache.state, CLOSED)

    def test_failed_cycle_returns_to_ready(self):
        with mock.patch.object(self.cache, "_sync_once", side_effect=RuntimeError("boom")):
            self.assertFalse(self.cache.sync())
            self.assertFalse(self.cache.sync())
        self.assertEqual(self.cache.failures, 2)
        self.assertEqual(self.cache.state, READY)

    def test_timer_runs_sync_until_closed(self):
        ticked = threading.Event()
        with mock.patch.object(self.cache, "sync", side_effect=lambda: ticked.set() or True):
            self.cache.start()
            self.assertTrue(ticked.wait(2))
            self.cache.close()
            self.cache._thread.join(2)
        self.assertFalse(self.cache._thread.is_alive())

    def test_filesystem_cache_starts_timer(self):
        ticked = threading.Event()
        with mock.patch.object(FilesystemCache, "sync", side_effect=lambda: ticked.set() or True):
            cache = filesystem_cache(self.dirs.layout, mock.Mock(), mock.Mock(), cache_timeout=0.05)
            try:
                self.assertTrue(ticked.wait(2))
            finally:
                cache.close()


if __name__ == "__main__":
    unittest.main()
