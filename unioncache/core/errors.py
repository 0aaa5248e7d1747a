"""
Exceptions raised by the sync engine
"""


class ConfigError(ValueError):
    """Invalid configuration; raised before any cycle is scheduled."""


class SyncError(RuntimeError):
    """A step failed; aborts the current cycle only."""


class ArchiveError(SyncError):
    pass


class ExtractError(SyncError):
    pass


class RPCError(SyncError):
    pass
