"""
SSH execution channel into the project, with auto-reconnect and keep-alive
"""
import shlex
from collections import namedtuple
from typing import Optional
import paramiko
from .. import config as _cfg
from ..utils.logging import log, vlog
from ..utils.retry import retried

ExecResult = namedtuple("ExecResult", ["exit_code", "stdout", "stderr"])

# Failures of the connection itself, as opposed to a command exiting non-zero
CHANNEL_ERRORS = (paramiko.SSHException, EOFError, OSError)


def build_command(command: str, args: Optional[list] = None, cwd: Optional[str] = None) -> str:
    """Shell command line running *command args…* from *cwd*."""
    line = " ".join([command] + [shlex.quote(str(a)) for a in (args or [])])
    if cwd:
        line = f"cd {shlex.quote(str(cwd))} && {line}"
    return line


class SSHManager:
    """
    Wraps paramiko SSHClient.
    Every command runs from REMOTE_ROOT (the project home).
    Automatically reconnects on channel errors.
    """

    def __init__(self):
        self._ssh: Optional[paramiko.SSHClient] = None

    # ── connection ─────────────────────────────────────────────────────────

    def connect(self):
        if self._ssh:
            try:
                self._ssh.get_transport().send_ignore()  # test if alive
                return
            except (AttributeError, *CHANNEL_ERRORS):
                self._close_quietly()

        log(f"[SSH] connecting to {_cfg.SSH_USER}@{_cfg.SSH_HOST}:{_cfg.SSH_PORT} …")
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        kw: dict = dict(hostname=_cfg.SSH_HOST, port=_cfg.SSH_PORT, username=_cfg.SSH_USER,
                        timeout=20, banner_timeout=30, auth_timeout=30)
        if _cfg.SSH_KEY_PATH:
            kw["key_filename"] = _cfg.SSH_KEY_PATH
        if _cfg.SSH_PASSWORD:
            kw["password"] = _cfg.SSH_PASSWORD

        client.connect(**kw)

        # Keep-alive: send a NOP every 30s
        transport = client.get_transport()
        transport.set_keepalive(30)

        self._ssh = client
        log("[SSH] connected ✓")

    def _close_quietly(self):
        if self._ssh:
            try:
                self._ssh.close()
            except CHANNEL_ERRORS:
                pass
        self._ssh = None

    def disconnect(self):
        self._close_quietly()
        log("[SSH] disconnected.")

    def ensure_connected(self):
        """Call before any remote operation."""
        transport = self._ssh.get_transport() if self._ssh else None
        if transport is not None and transport.is_active():
            return
        self.connect()

    # ── exec ────────────────────────────────────────────────────────────────

    @retried(retry_on=CHANNEL_ERRORS)
    def exec(self, command: str, args: Optional[list] = None, timeout: int = 30,
             err_on_exit: bool = True, input_text: Optional[str] = None) -> ExecResult:
        """
        Run command with args in the project home.

        With err_on_exit a non-zero exit raises RuntimeError; otherwise the
        exit code is just reported in the result.
        """
        self.ensure_connected()
        line = build_command(command, args, cwd=str(_cfg.REMOTE_ROOT))
        vlog(f"[SSH] exec: {line}")
        stdin, stdout, stderr = self._ssh.exec_command(line, timeout=timeout)
        if input_text is not None:
            stdin.write(input_text.encode("utf-8"))
            stdin.flush()
        stdin.channel.shutdown_write()
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()
        if rc != 0 and err_on_exit:
            raise RuntimeError(f"remote command exited {rc}: {line!r}\nstderr: {err.strip()}")
        return ExecResult(rc, out, err)
