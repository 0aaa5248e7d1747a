"""
Logging utilities for unioncache

Everything is printed with a wall-clock prefix.  Warnings go to stderr so
that a command whose stdout is parsed (``unioncache rpc``) stays clean.
"""
import sys
import time
from datetime import datetime

_verbose = False


def set_verbose(verbose: bool):
    """Set the verbose flag"""
    global _verbose
    _verbose = verbose


def is_verbose() -> bool:
    return _verbose


def log(msg: str, stream=None):
    """Log a message with timestamp"""
    ts = datetime.now().strftime("%H:%M:%S")
    print(f"[{ts}] {msg}", file=stream or sys.stdout, flush=True)


def vlog(msg: str):
    """Log a verbose message (only if verbose mode is enabled)"""
    if _verbose:
        log(msg)


def warn(msg: str):
    """Log a warning message on stderr"""
    log(f"⚠  {msg}", stream=sys.stderr)


def elapsed(t0: float) -> str:
    """Seconds since the time.monotonic() reading *t0*, for log lines."""
    return f"{time.monotonic() - t0:.2f}s"
