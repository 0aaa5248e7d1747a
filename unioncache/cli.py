#!/usr/bin/env python3
"""
unioncache  —  keep a union-mounted home directory in sync with its project
===========================================================================

Subcommands:
  init      Create a .unioncache config file in the current directory.
  run       Sync periodically until interrupted.
  once      Run a single sync cycle.
  status    Show the layout, the watermark and pending local changes.
  rpc       Answer one RPC call (runs in the project, over SSH).

Run 'unioncache <subcommand> --help' for more details.
"""
import argparse
import json
import sys
import time
from datetime import datetime
from pathlib import Path


# ── helpers ──────────────────────────────────────────────────────────────────

def _load_profile(args) -> dict:
    """Find and apply the config file; exits if there is none."""
    from unioncache import config as _cfg

    path = Path(args.config) if getattr(args, "config", None) else _cfg.find_config()
    if path is None or not path.is_file():
        print("error: no .unioncache file found in this directory or any parent.", file=sys.stderr)
        print("Run 'unioncache init' to create one.", file=sys.stderr)
        sys.exit(1)

    if args.verbose:
        print(f"[config] Using {path}")

    global_defaults = _cfg.load_global_config().get("defaults", {})
    data = _cfg.load_config_file(path)
    profile = dict(global_defaults)
    profile.update(_cfg.get_profile(data, args.profile or "default"))
    _cfg.apply_profile(profile)
    return profile


def _layout():
    """Layout from the applied profile; exits on invalid paths."""
    from unioncache import config as _cfg
    from unioncache.core.layout import Layout
    from unioncache.core.errors import ConfigError

    try:
        return Layout(_cfg.LOWER, _cfg.UPPER, _cfg.MOUNT, _cfg.COMPUTE_SERVER_ID)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(2)


def _engine(layout):
    from unioncache import config as _cfg
    from unioncache.core.ssh_manager import SSHManager
    from unioncache.core.rpc import ProjectRPC
    from unioncache.core.sync_engine import FilesystemCache

    mgr = SSHManager()
    cache = FilesystemCache(layout, mgr, ProjectRPC(mgr),
                            cache_timeout=_cfg.CACHE_TIMEOUT, exclude=_cfg.EXCLUDE)
    return mgr, cache


# ── init ─────────────────────────────────────────────────────────────────────

def cmd_init(args):
    """Create a .unioncache profile file in the current directory."""
    from unioncache import config as _cfg
    from unioncache.core.layout import Layout
    from unioncache.core.errors import ConfigError

    target = Path.cwd() / _cfg.CONFIG_FILE

    if target.exists() and not args.force:
        print(f"error: {_cfg.CONFIG_FILE} already exists in {Path.cwd()}", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        sys.exit(1)

    g_defaults = _cfg.load_global_config().get("defaults", {})

    lower = args.lower or g_defaults.get("lower", _cfg.LOWER)
    upper = args.upper or g_defaults.get("upper", _cfg.UPPER)
    mount = args.mount or g_defaults.get("mount", _cfg.MOUNT)
    compute_server_id = args.id if args.id is not None else int(
        g_defaults.get("compute_server_id", _cfg.COMPUTE_SERVER_ID))

    try:
        Layout(lower, upper, mount, compute_server_id)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(2)

    server = args.server or g_defaults.get("server", _cfg.SSH_HOST)
    if not args.server and sys.stdin.isatty():
        val = input(f"Project SSH host [{server}]: ").strip()
        if val:
            server = val
    user = args.user or g_defaults.get("user", _cfg.SSH_USER)
    port = args.port or int(g_defaults.get("port", _cfg.SSH_PORT))
    remote_root = args.remote or g_defaults.get("remote_root", mount)
    cache_timeout = args.cache_timeout or g_defaults.get("cache_timeout", _cfg.CACHE_TIMEOUT)
    exclude = args.exclude or g_defaults.get("exclude", [])

    def _yq(value) -> str:
        """Wrap a string in YAML single quotes, escaping embedded single quotes."""
        return "'" + str(value).replace("'", "''") + "'"

    lines = [
        "# .unioncache: unioncache configuration",
        "#",
        "# lower: remote mount of the project home (lower layer of the overlay)",
        "# upper: local layer receiving all writes on this compute server",
        "# exclude: paths relative to the home that are never synced",
        "#          (hidden top-level entries are always excluded)",
        "profiles:",
        f"  - name: {args.profile or 'default'}",
        f"    lower: {_yq(lower)}",
        f"    upper: {_yq(upper)}",
        f"    mount: {_yq(mount)}",
        f"    compute_server_id: {compute_server_id}",
        f"    cache_timeout: {cache_timeout}",
        f"    server: {_yq(server)}",
        f"    port: {port}",
        f"    user: {_yq(user)}",
        f"    remote_root: {_yq(remote_root)}",
    ]
    if exclude:
        lines.append("    exclude:")
        lines += [f"      - {_yq(p)}" for p in exclude]
    else:
        lines.append("    exclude: []")

    content = "\n".join(lines) + "\n"

    if args.dry_run:
        print(f"[dry-run] Would write {target}:")
        print(content)
        return

    target.write_text(content, encoding="utf-8")
    print(f"Created {target}")
    if args.verbose:
        print(content)


# ── run / once ────────────────────────────────────────────────────────────────

def cmd_run(args):
    """Sync every cache_timeout seconds until interrupted."""
    from unioncache.utils.logging import set_verbose, log

    set_verbose(args.verbose)
    _load_profile(args)
    mgr, cache = _engine(_layout())
    mgr.connect()
    cache.start()
    log(f"[sync] syncing every {cache.cache_timeout}s — Ctrl-C to stop")
    try:
        while True:
            time.sleep(3600)
    except KeyboardInterrupt:
        print()
        log("Interrupted by user.")
    finally:
        cache.close()
        mgr.disconnect()


def cmd_once(args):
    """Run a single sync cycle."""
    from unioncache.utils.logging import set_verbose

    set_verbose(args.verbose)
    _load_profile(args)
    mgr, cache = _engine(_layout())
    try:
        mgr.connect()
        ok = cache.sync()
    finally:
        cache.close()
        mgr.disconnect()
    if not ok:
        sys.exit(1)


# ── status ────────────────────────────────────────────────────────────────────

def cmd_status(args):
    """Show the layout, the watermark and what the next cycle would send."""
    from unioncache import config as _cfg
    from unioncache.state.watermark import get_watermark
    from unioncache.operations.scanner import list_files
    from unioncache.operations.delete import collect_whiteouts
    from unioncache.utils.exclusions import compile_exclusions

    profile = _load_profile(args)
    layout = _layout()

    print(f"\nProfile  : {profile.get('name', 'default')}")
    print(f"Lower    : {layout.lower}")
    print(f"Upper    : {layout.upper}")
    print(f"Mount    : {layout.mount}")
    print(f"Project  : {_cfg.SSH_USER}@{_cfg.SSH_HOST}:{_cfg.SSH_PORT}:{_cfg.REMOTE_ROOT}")
    print(f"Workdir  : {layout.project_workdir}")
    print(f"Interval : {_cfg.CACHE_TIMEOUT}s")

    last = get_watermark(layout.last)
    if last is None:
        print("\nNo successful sync yet.")
    else:
        print(f"\nLast sync: {datetime.fromtimestamp(last).isoformat(sep=' ', timespec='seconds')}")

    if not layout.upper.is_dir():
        print(f"Upper layer {layout.upper} does not exist.")
        return
    edited = list_files(layout.upper, "edited", compile_exclusions(_cfg.EXCLUDE), last)
    whiteouts = collect_whiteouts(layout)[0] if layout.whiteouts.exists() else {}
    print(f"Edited   : {len(edited)} file(s) waiting to be sent")
    print(f"Deleted  : {len(whiteouts)} whiteout(s) waiting to be reported")
    if args.verbose:
        for rel in edited:
            print(f"  M {rel}")
        for rel in sorted(whiteouts):
            print(f"  D {rel}")


# ── rpc (project side) ────────────────────────────────────────────────────────

def cmd_rpc(args):
    """Read a JSON payload on stdin, run the handler, print the JSON reply."""
    from unioncache.operations.project import handle_request

    home = Path(args.home) if args.home else Path.cwd()
    reply = handle_request(home, args.func, sys.stdin.read())
    print(json.dumps(reply))


# ── main ──────────────────────────────────────────────────────────────────────

def main():
    """CLI entry point for unioncache"""
    parser = argparse.ArgumentParser(
        prog="unioncache",
        description="Keep a union-mounted home directory in sync with its project",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    # ── init ──────────────────────────────────────────────────────────────────
    init_p = subparsers.add_parser(
        "init",
        help="Create a .unioncache config file in the current directory",
        description="Create a .unioncache YAML config file.",
    )
    init_p.add_argument("--lower", metavar="PATH", help="Remote mount of the project home")
    init_p.add_argument("--upper", metavar="PATH", help="Local upper layer of the overlay")
    init_p.add_argument("--mount", metavar="PATH", help="Where the overlay is mounted")
    init_p.add_argument("--id", type=int, metavar="N", help="Compute server id")
    init_p.add_argument("--server", metavar="HOST", help="Project SSH hostname or IP")
    init_p.add_argument("--user", metavar="NAME", help="SSH username")
    init_p.add_argument("--port", type=int, metavar="N", help="SSH port (default: 22)")
    init_p.add_argument("--remote", metavar="PATH",
                        help="Project home on the remote side (default: the mount path)")
    init_p.add_argument("--cache-timeout", type=float, metavar="SECONDS",
                        help="Seconds between sync cycles (default: 20)")
    init_p.add_argument("--exclude", action="append", metavar="PATH",
                        help="Relative path never to sync (repeatable)")
    init_p.add_argument("--profile", metavar="NAME", default="default",
                        help="Profile name to create (default: default)")
    init_p.add_argument("--force", action="store_true", help="Overwrite existing .unioncache")
    init_p.add_argument("-n", "--dry-run", action="store_true",
                        help="Preview without writing files")
    init_p.add_argument("-v", "--verbose", action="store_true", help="Show extra output")

    # ── run / once / status ───────────────────────────────────────────────────
    for name, help_text in (("run", "Sync periodically until interrupted"),
                            ("once", "Run a single sync cycle"),
                            ("status", "Show layout, last sync and pending changes")):
        p = subparsers.add_parser(name, help=help_text, description=help_text + ".")
        p.add_argument("--config", metavar="FILE",
                       help="Config file (default: nearest .unioncache)")
        p.add_argument("--profile", metavar="NAME", default="default",
                       help="Profile to use (default: default)")
        p.add_argument("-v", "--verbose", action="store_true", help="Show extra output")

    # ── rpc ───────────────────────────────────────────────────────────────────
    rpc_p = subparsers.add_parser(
        "rpc",
        help="Answer one RPC call from a compute server (runs in the project)",
        description="Read a JSON payload on stdin and print the JSON reply.",
    )
    rpc_p.add_argument("func", metavar="FUNC", help="filesToDelete or deleteWhiteouts")
    rpc_p.add_argument("--home", metavar="PATH",
                       help="Project home directory (default: current directory)")

    args = parser.parse_args()

    if args.command == "init":
        cmd_init(args)
    elif args.command == "run":
        cmd_run(args)
    elif args.command == "once":
        cmd_once(args)
    elif args.command == "status":
        cmd_status(args)
    elif args.command == "rpc":
        cmd_rpc(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
