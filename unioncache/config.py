"""
Configuration constants for unioncache
"""
import os
from pathlib import Path, PurePosixPath
from typing import Optional

import yaml

# ══════════════════════════════════════════════════════════════════════════════
#  DEFAULTS  ── overridden by YAML config or apply_profile()
# ══════════════════════════════════════════════════════════════════════════════

CONFIG_FILE = ".unioncache"

# Overlay: lower is the slow remote mount of the project home, upper is the
# fast local layer that receives every write on the compute server.
LOWER = "/data/.lower"
UPPER = "/data/.upper"
MOUNT = "/home/user"
COMPUTE_SERVER_ID = 0

# Seconds between sync cycles
CACHE_TIMEOUT = 20

# Relative paths that are never synced (hidden top-level entries always are)
EXCLUDE: list[str] = []

# Execution channel into the project
SSH_HOST = "example.com"
SSH_PORT = 22
SSH_USER = "user"
# Path to your private key, or None to use ssh-agent / ~/.ssh/id_*
SSH_KEY_PATH: Optional[str] = None
SSH_PASSWORD: Optional[str] = None  # only if you use password auth

# Project home on the remote side; every remote command runs from here
REMOTE_ROOT = PurePosixPath("/home/user")

# Command run in the project to answer RPC calls (function name is appended)
RPC_COMMAND = "unioncache rpc"

# SSH retry settings
RETRY_MAX = 5
RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt

# Local tarball creation races with file activity, so it gets many tries
TAR_MAX_TRIES = 20
TAR_RETRY_DELAY = 0.5
TAR_RETRY_FACTOR = 1.3
TAR_RETRY_MAX_DELAY = 7.5

# Extracting in the project
EXTRACT_MAX_TRIES = 5
EXTRACT_RETRY_DELAY = 0.25

# Timeout (seconds) for tar running in the project over a slow mount
TAR_TIMEOUT = 1800


# ══════════════════════════════════════════════════════════════════════════════
#  GLOBAL CONFIG FILE  ── $XDG_CONFIG_HOME/unioncache/config.yaml
# ══════════════════════════════════════════════════════════════════════════════

def get_global_config_dir() -> Path:
    """Return the global config directory for unioncache."""
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        return Path(xdg) / "unioncache"
    return Path.home() / ".config" / "unioncache"


def load_global_config() -> dict:
    """Load global config from the unioncache config directory."""
    cfg_path = get_global_config_dir() / "config.yaml"
    if not cfg_path.is_file():
        return {}
    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return {}


# ══════════════════════════════════════════════════════════════════════════════
#  PROJECT CONFIG FILE  ── .unioncache (searched upward)
# ══════════════════════════════════════════════════════════════════════════════

def find_config(start: Optional[Path] = None) -> Optional[Path]:
    """
    Search upward from *start* (default: cwd) for a .unioncache YAML file.
    Returns the Path if found, or None if no .unioncache exists in any parent.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config_file(path: Path) -> dict:
    """Parse a .unioncache YAML file and return its contents as a dict."""
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_profile(data: dict, profile_name: str = "default") -> dict:
    """
    Extract a named profile from a .unioncache or config.yaml data dict.
    Falls back to the first profile if the named one is not found.
    Returns a flat profile dict merged with top-level defaults.
    """
    defaults = data.get("defaults", {})
    profiles = data.get("profiles", [])
    if not profiles:
        return defaults.copy()
    profile = next((p for p in profiles if p.get("name") == profile_name), None)
    if profile is None:
        profile = profiles[0]
    merged = defaults.copy()
    merged.update(profile)
    return merged


# ══════════════════════════════════════════════════════════════════════════════
#  APPLY PROFILE  ── mutates module-level variables
# ══════════════════════════════════════════════════════════════════════════════

def apply_profile(profile: dict):
    """
    Apply a profile dict to the module-level config variables.
    Supports keys: lower, upper, mount, compute_server_id, cache_timeout,
                   exclude, server, port, user, ssh_key, ssh_password,
                   remote_root, rpc_command.
    """
    global LOWER, UPPER, MOUNT, COMPUTE_SERVER_ID, CACHE_TIMEOUT, EXCLUDE
    global SSH_HOST, SSH_PORT, SSH_USER, SSH_KEY_PATH, SSH_PASSWORD
    global REMOTE_ROOT, RPC_COMMAND

    if "lower" in profile:
        LOWER = str(profile["lower"])
    if "upper" in profile:
        UPPER = str(profile["upper"])
    if "mount" in profile:
        MOUNT = str(profile["mount"])
    if "compute_server_id" in profile:
        COMPUTE_SERVER_ID = int(profile["compute_server_id"])
    if "cache_timeout" in profile:
        CACHE_TIMEOUT = float(profile["cache_timeout"])
    if "exclude" in profile:
        EXCLUDE = [str(p) for p in (profile["exclude"] or [])]
    if "server" in profile:
        SSH_HOST = str(profile["server"])
    if "port" in profile:
        SSH_PORT = int(profile["port"])
    if "user" in profile:
        SSH_USER = str(profile["user"])
    elif "username" in profile:
        SSH_USER = str(profile["username"])
    if "ssh_key" in profile:
        SSH_KEY_PATH = str(profile["ssh_key"]) if profile["ssh_key"] else None
    if "ssh_password" in profile:
        SSH_PASSWORD = str(profile["ssh_password"]) if profile["ssh_password"] else None
    if "remote_root" in profile:
        REMOTE_ROOT = PurePosixPath(str(profile["remote_root"]))
    if "rpc_command" in profile:
        RPC_COMMAND = str(profile["rpc_command"])
