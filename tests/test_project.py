"""
Tests for the project-side RPC handlers and the RPC client framing.
"""
import json
import tempfile
import time
import unittest
from pathlib import Path

import paramiko

from unioncache.core.errors import RPCError
from unioncache.core.rpc import ProjectRPC
from unioncache.core.ssh_manager import ExecResult, build_command
from unioncache.operations.project import delete_whiteouts, files_to_delete, handle_request

from helpers import write


class TestHandlers(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.home = Path(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_files_to_delete(self):
        write(self.home / "here.txt", "x")
        (self.home / "dir").mkdir()
        write(self.home / ".compute-servers" / "3" / "compute-all-files-list",
              "here.txt\ndir\ngone.txt\ndir/gone-too.txt\n../outside\n")
        result = files_to_delete(self.home, ".compute-servers/3/compute-all-files-list")
        self.assertEqual(result, ["gone.txt", "dir/gone-too.txt"])

    def test_files_to_delete_without_list(self):
        self.assertEqual(files_to_delete(self.home, "missing-list"), [])

    def test_delete_whiteouts(self):
        t = int(time.time()) - 100
        write(self.home / "old.txt", "o", mtime=t - 10)
        write(self.home / "same.txt", "s", mtime=t)
        write(self.home / "newer.txt", "n", mtime=t + 10)
        write(self.home / "tree" / "leaf.txt", "l", mtime=t - 10)
        import os
        os.utime(self.home / "tree", (t - 10, t - 10))
        result = delete_whiteouts(self.home, {
            "old.txt": t * 1000,
            "same.txt": t * 1000,
            "newer.txt": t * 1000,
            "tree": t * 1000,
            "never-existed.txt": t * 1000,
            "../escape": t * 1000,
        })
        self.assertEqual(result, {"deleted": 3, "kept": ["newer.txt"], "failed": ["../escape"]})
        self.assertFalse((self.home / "old.txt").exists())
        self.assertFalse((self.home / "same.txt").exists())
        self.assertFalse((self.home / "tree").exists())
        self.assertTrue((self.home / "newer.txt").exists())

    def test_handle_request(self):
        write(self.home / "list", "a\n")
        reply = handle_request(self.home, "filesToDelete", json.dumps({"allComputeFiles": "list"}))
        self.assertEqual(reply, {"result": ["a"]})
        self.assertIn("error", handle_request(self.home, "rmRf", "{}"))
        self.assertIn("error", handle_request(self.home, "filesToDelete", "{not json"))
        self.assertIn("error", handle_request(self.home, "filesToDelete", "{}"))


class FakeChannel:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def exec(self, command, args=None, timeout=30, err_on_exit=True, input_text=None):
        self.calls.append((command, args, timeout, err_on_exit, input_text))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class TestProjectRPC(unittest.TestCase):

    def test_call_sends_payload_on_stdin(self):
        ch = FakeChannel(ExecResult(0, json.dumps({"result": ["x"]}), ""))
        rpc = ProjectRPC(ch, command="python3 -m unioncache rpc")
        self.assertEqual(rpc.call("filesToDelete", {"allComputeFiles": "l"}), ["x"])
        command, args, timeout, err_on_exit, input_text = ch.calls[0]
        self.assertEqual(command, "python3")
        self.assertEqual(args, ["-m", "unioncache", "rpc", "filesToDelete"])
        self.assertFalse(err_on_exit)
        self.assertEqual(json.loads(input_text), {"allComputeFiles": "l"})

    def test_error_reply(self):
        rpc = ProjectRPC(FakeChannel(ExecResult(0, '{"error": "boom"}', "")), command="unioncache rpc")
        with self.assertRaises(RPCError):
            rpc.call("deleteWhiteouts", {"whiteouts": {}})

    def test_nonzero_exit(self):
        rpc = ProjectRPC(FakeChannel(ExecResult(127, "", "not found")), command="unioncache rpc")
        with self.assertRaises(RPCError):
            rpc.call("deleteWhiteouts", {"whiteouts": {}})

    def test_garbage_reply(self):
        rpc = ProjectRPC(FakeChannel(ExecResult(0, "Welcome!\n", "")), command="unioncache rpc")
        with self.assertRaises(RPCError):
            rpc.call("filesToDelete", {"allComputeFiles": "l"})

    def test_channel_failure(self):
        rpc = ProjectRPC(FakeChannel(RuntimeError("closed")), command="unioncache rpc")
        with self.assertRaises(RPCError):
            rpc.call("filesToDelete", {"allComputeFiles": "l"})

    def test_exhausted_ssh_retries(self):
        for exc in (paramiko.SSHException("no session"), OSError("reset"), EOFError()):
            rpc = ProjectRPC(FakeChannel(exc), command="unioncache rpc")
            with self.assertRaises(RPCError):
                rpc.call("deleteWhiteouts", {"whiteouts": {}})


class TestBuildCommand(unittest.TestCase):

    def test_quotes_args_and_changes_directory(self):
        self.assertEqual(build_command("tar", ["-xf", "a b.tar"], cwd="/home/user"),
                         "cd /home/user && tar -xf 'a b.tar'")
        self.assertEqual(build_command("ls"), "ls")


if __name__ == "__main__":
    unittest.main()
