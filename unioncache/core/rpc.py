"""
RPC into the project, carried over the execution channel.

A call runs ``<rpc_command> <func>`` in the project home with the JSON
payload on stdin; the command answers with ``{"result": ...}`` or
``{"error": "..."}`` on stdout (see ``unioncache rpc``).
"""
import json
import shlex
from .errors import RPCError
from .ssh_manager import CHANNEL_ERRORS
from .. import config as _cfg
from ..utils.logging import vlog

RPC_TIMEOUT = 1800


class ProjectRPC:
    """Calls named project-side functions through an SSHManager-like channel."""

    def __init__(self, mgr, command: str = None, timeout: int = RPC_TIMEOUT):
        self._mgr = mgr
        self._command = command or _cfg.RPC_COMMAND
        self._timeout = timeout

    def call(self, func: str, payload: dict):
        vlog(f"[rpc] {func}")
        parts = shlex.split(self._command)
        try:
            res = self._mgr.exec(parts[0], parts[1:] + [func],
                                 timeout=self._timeout, err_on_exit=False,
                                 input_text=json.dumps(payload))
        except (RuntimeError, *CHANNEL_ERRORS) as exc:
            raise RPCError(f"{func}: channel failed: {exc}") from exc
        if res.exit_code != 0:
            raise RPCError(f"{func}: exited {res.exit_code}: {res.stderr.strip()}")
        try:
            reply = json.loads(res.stdout)
        except ValueError as exc:
            raise RPCError(f"{func}: unparsable reply {res.stdout[:200]!r}") from exc
        if not isinstance(reply, dict):
            raise RPCError(f"{func}: unexpected reply {reply!r}")
        if reply.get("error"):
            raise RPCError(f"{func}: {reply['error']}")
        return reply.get("result")
