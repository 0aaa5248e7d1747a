"""Utilities (logging, retry, exclusions, file utilities)"""
from .logging import log, vlog, warn, set_verbose
from .retry import retried, retry_with_backoff
from .exclusions import compile_exclusions, is_excluded, tar_exclude_args
from .file_utils import remove_path, copy_and_fsync, is_safe_relpath

__all__ = [
    "log", "vlog", "warn", "set_verbose",
    "retried", "retry_with_backoff",
    "compile_exclusions", "is_excluded", "tar_exclude_args",
    "remove_path", "copy_and_fsync", "is_safe_relpath",
]
