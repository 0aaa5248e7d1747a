"""Core functionality"""
from .errors import ConfigError, SyncError, ArchiveError, ExtractError, RPCError
from .layout import Layout
from .ssh_manager import SSHManager, ExecResult
from .rpc import ProjectRPC

# sync_engine depends on ..operations, which depends on this package; import
# it as unioncache.core.sync_engine.

__all__ = [
    "ConfigError", "SyncError", "ArchiveError", "ExtractError", "RPCError",
    "Layout", "SSHManager", "ExecResult", "ProjectRPC",
]
