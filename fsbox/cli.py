"""
fsbox CLI — box maintenance from the shell

Commands:
    fsbox create                                  — create box + schema (idempotent)
    fsbox destroy                                 — delete the box file
    fsbox entry INODE NAME PARENT [--file ...]    — upsert one entry
    fsbox rm-entry INODE                          — shallow subtree delete
    fsbox file INODE [--mountpoint M ...]         — upsert one payload record
    fsbox rm-file INODE                           — delete one payload record
    fsbox xattr set|del INODE NAME [VALUE]        — extended attributes
    fsbox truncate entries|files|attributes       — bulk delete (root kept)
    fsbox load entries|files --source DB "query"  — atomic bulk load
    fsbox exec "SQL"                              — UNCHECKED raw statement
    fsbox ls [PARENT]                             — list children
    fsbox show INODE                              — entry + file + xattrs
    fsbox stats                                   — row counts
    fsbox serve                                   — start MCP server (foreground)

Environment variables:
    FSBOX_BOX       Path to the box file
    FSBOX_LOCATION  Confinement directory every box must live in
    FSBOX_CONFIG    JSON config file (location, data_dir, umask, busy_timeout)
    FSBOX_DATA_DIR  Hosting engine data directory (location must stay outside)

Precedence (invariant):
    CLI --flag  >  FSBOX_* env var  >  config file  >  compiled default

Exit codes:
    0  Success (including idempotent no-op)
    1  Operational error (failed operation, bad args, path refused)
    2  Internal failure (unexpected exception, I/O error)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Defensive env parsing
# ---------------------------------------------------------------------------


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Parse string env var with fallback (empty counts as unset)."""
    return os.environ.get(name) or default


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def _resolve_config(args: argparse.Namespace):
    """Resolve config: file (--config > FSBOX_CONFIG), then flag/env overrides."""
    from fsbox.config import load_config

    cfg = load_config(getattr(args, "config", None) or _env_str("FSBOX_CONFIG"))
    location = getattr(args, "location", None) or _env_str("FSBOX_LOCATION")
    if location:
        cfg.location = location
    data_dir = _env_str("FSBOX_DATA_DIR")
    if data_dir:
        cfg.data_dir = data_dir
    return cfg


def _resolve_box(args: argparse.Namespace) -> str:
    """Resolve box path: CLI --box > FSBOX_BOX."""
    box = getattr(args, "box", None) or _env_str("FSBOX_BOX")
    if not box:
        from fsbox.errors import ValidationError
        raise ValidationError("No box given (use --box or FSBOX_BOX)")
    return box


def _open_store(args: argparse.Namespace, source=None):
    """Build a BoxStore for the resolved box and config."""
    from fsbox.store import BoxStore
    return BoxStore(_resolve_box(args), _resolve_config(args), source=source)


# ---------------------------------------------------------------------------
# Stderr helpers (respect --quiet)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


def _finish(outcome, what: str) -> None:
    """Report an Outcome/RawOutcome and exit 1 on failure."""
    if outcome:
        _info(f"[{what}] ok")
        return
    error = getattr(outcome, "error", None)
    if error is not None:
        _warn(f"[{what}] failed ({error.kind}): {error}")
    else:
        _warn(f"[{what}] failed: {outcome.message}")
    sys.exit(1)


def _hex(value: Optional[str]) -> Optional[bytes]:
    if value is None:
        return None
    try:
        return bytes.fromhex(value)
    except ValueError as exc:
        from fsbox.errors import ValidationError
        raise ValidationError(f"invalid hex blob {value!r}: {exc}") from None


# ===========================================================================
# Commands
# ===========================================================================


def cmd_create(args: argparse.Namespace) -> None:
    """Create the box (idempotent)."""
    store = _open_store(args)
    _finish(store.create(), "create")


def cmd_destroy(args: argparse.Namespace) -> None:
    """Delete the box file."""
    store = _open_store(args)
    _finish(store.destroy(), "destroy")


def cmd_entry(args: argparse.Namespace) -> None:
    """Upsert one entry."""
    store = _open_store(args)
    outcome = store.upsert_entry(
        args.inode, args.name, args.parent,
        ctime=args.ctime, mtime=args.mtime, nlink=args.nlink, size=args.size,
        is_dir=not args.file, decrypted_size=args.decrypted_size,
    )
    _finish(outcome, "entry")


def cmd_rm_entry(args: argparse.Namespace) -> None:
    """Delete an entry and its direct children."""
    store = _open_store(args)
    _finish(store.delete_entry_subtree(args.inode), "rm-entry")


def cmd_file(args: argparse.Namespace) -> None:
    """Upsert one payload record (blobs given as hex)."""
    store = _open_store(args)
    outcome = store.upsert_file(
        args.inode,
        mountpoint=args.mountpoint,
        rel_path=args.rel_path,
        header=_hex(args.header),
        payload_size=args.payload_size,
        prepend=_hex(args.prepend),
        append=_hex(args.append),
    )
    _finish(outcome, "file")


def cmd_rm_file(args: argparse.Namespace) -> None:
    store = _open_store(args)
    _finish(store.delete_file(args.inode), "rm-file")


def cmd_xattr(args: argparse.Namespace) -> None:
    """Set or delete one extended attribute."""
    store = _open_store(args)
    if args.action == "set":
        if args.value is None:
            _warn("[xattr] set requires a VALUE")
            sys.exit(1)
        outcome = store.upsert_attribute(args.inode, args.name, args.value)
    else:
        outcome = store.delete_attribute(args.inode, args.name)
    _finish(outcome, f"xattr {args.action}")


def cmd_truncate(args: argparse.Namespace) -> None:
    store = _open_store(args)
    table = "extended_attributes" if args.table == "attributes" else args.table
    _finish(store.truncate(table), f"truncate {args.table}")


def cmd_load(args: argparse.Namespace) -> None:
    """Bulk-load entries or files from an SQLite source database."""
    from fsbox.rowsource import SQLiteRowSource

    store = _open_store(args)
    # The source lives outside the box location: it is read-only input.
    source = SQLiteRowSource(args.source, timeout=store.config.busy_timeout)
    if args.kind == "entries":
        outcome = store.bulk_load_entries(args.query, source)
    else:
        outcome = store.bulk_load_files(args.query, source)
    _finish(outcome, f"load {args.kind}")


def cmd_exec(args: argparse.Namespace) -> None:
    """Run raw SQL against the box (unchecked)."""
    store = _open_store(args)
    _finish(store.raw_exec(args.sql), "exec")


def cmd_ls(args: argparse.Namespace) -> None:
    """List the children of a directory entry."""
    store = _open_store(args)
    children = store.list_children(args.parent)
    if getattr(args, "json", False):
        print(json.dumps([e.to_dict() for e in children], indent=2))
        return
    for e in children:
        kind = "d" if e.is_dir else "f"
        print(f"{e.inode}\t{kind}\t{e.size}\t{e.name}")


def cmd_show(args: argparse.Namespace) -> None:
    """Display one entry with its payload record and attributes."""
    store = _open_store(args)
    entry = store.get_entry(args.inode)
    if entry is None:
        _warn(f"No entry with inode {args.inode}")
        sys.exit(1)
    record = store.get_file(args.inode)
    data = {
        "entry": entry.to_dict(),
        "file": record.to_dict() if record else None,
        "xattrs": store.get_attributes(args.inode),
    }
    if getattr(args, "json", False):
        print(json.dumps(data, indent=2))
        return
    for key, value in data["entry"].items():
        print(f"{key:>15}: {value}")
    if data["file"]:
        for key, value in data["file"].items():
            if key != "inode":
                print(f"{key:>15}: {value}")
    for key, value in data["xattrs"].items():
        print(f"{'xattr ' + key:>15}: {value}")


def cmd_stats(args: argparse.Namespace) -> None:
    store = _open_store(args)
    stats = store.stats()
    if getattr(args, "json", False):
        print(json.dumps(stats, indent=2))
        return
    for key, value in stats.items():
        print(f"{key:>20}: {value}")


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the MCP server in the foreground."""
    from fsbox.mcp.server import create_server

    cfg = _resolve_config(args)
    mcp = create_server(cfg)
    mcp.run()


# ===========================================================================
# Parser
# ===========================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the fsbox argument parser."""
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--box", default=argparse.SUPPRESS,
        help="Path to the box file (default: $FSBOX_BOX)",
    )
    _common.add_argument(
        "--location", default=argparse.SUPPRESS,
        help="Confinement directory (default: $FSBOX_LOCATION or config)",
    )
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="JSON config file (default: $FSBOX_CONFIG)",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output (ls, show, stats)",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="fsbox",
        description="fsbox — filesystem metadata boxes in a single SQLite file",
        parents=[_common],
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    p = sub.add_parser("create", parents=[_common], help="Create the box (idempotent)")
    p.set_defaults(func=cmd_create)

    p = sub.add_parser("destroy", parents=[_common], help="Delete the box file")
    p.set_defaults(func=cmd_destroy)

    p = sub.add_parser("entry", parents=[_common], help="Upsert one entry")
    p.add_argument("inode", type=int)
    p.add_argument("name")
    p.add_argument("parent", type=int, help="Parent inode")
    p.add_argument("--ctime", type=int, default=0)
    p.add_argument("--mtime", type=int, default=0)
    p.add_argument("--nlink", type=int, default=1)
    p.add_argument("--size", type=int, default=0)
    p.add_argument("--file", action="store_true", help="Regular file (default: directory)")
    p.add_argument("--decrypted-size", default=None)
    p.set_defaults(func=cmd_entry)

    p = sub.add_parser("rm-entry", parents=[_common], help="Delete entry + direct children")
    p.add_argument("inode", type=int)
    p.set_defaults(func=cmd_rm_entry)

    p = sub.add_parser("file", parents=[_common], help="Upsert one payload record")
    p.add_argument("inode", type=int)
    p.add_argument("--mountpoint", default=None)
    p.add_argument("--rel-path", default=None)
    p.add_argument("--header", default=None, help="Header blob (hex)")
    p.add_argument("--payload-size", type=int, default=0)
    p.add_argument("--prepend", default=None, help="Prepended bytes (hex)")
    p.add_argument("--append", default=None, help="Appended bytes (hex)")
    p.set_defaults(func=cmd_file)

    p = sub.add_parser("rm-file", parents=[_common], help="Delete one payload record")
    p.add_argument("inode", type=int)
    p.set_defaults(func=cmd_rm_file)

    p = sub.add_parser("xattr", parents=[_common], help="Set or delete an extended attribute")
    p.add_argument("action", choices=["set", "del"])
    p.add_argument("inode", type=int)
    p.add_argument("name")
    p.add_argument("value", nargs="?", default=None)
    p.set_defaults(func=cmd_xattr)

    p = sub.add_parser("truncate", parents=[_common], help="Bulk delete a table (root kept)")
    p.add_argument("table", choices=["entries", "files", "attributes"])
    p.set_defaults(func=cmd_truncate)

    p = sub.add_parser("load", parents=[_common], help="Atomic bulk load from an SQLite source")
    p.add_argument("kind", choices=["entries", "files"])
    p.add_argument("query", help="SELECT returning the columns in layout order")
    p.add_argument("--source", required=True, help="Source SQLite database (read-only)")
    p.set_defaults(func=cmd_load)

    p = sub.add_parser("exec", parents=[_common], help="Run raw SQL (UNCHECKED)")
    p.add_argument("sql")
    p.set_defaults(func=cmd_exec)

    p = sub.add_parser("ls", parents=[_common], help="List children of a directory")
    p.add_argument("parent", type=int, nargs="?", default=1, help="Parent inode (default: 1)")
    p.set_defaults(func=cmd_ls)

    p = sub.add_parser("show", parents=[_common], help="Show one entry")
    p.add_argument("inode", type=int)
    p.set_defaults(func=cmd_show)

    p = sub.add_parser("stats", parents=[_common], help="Row counts")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("serve", parents=[_common], help="Start MCP server")
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    global _quiet
    from fsbox.errors import BoxError

    parser = build_parser()
    args = parser.parse_args(argv)

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        # failures are reported once, by _finish/_warn
        logging.basicConfig(level=logging.ERROR)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except BoxError as e:
        # Contract violations and read failures: operational, not internal
        _warn(f"Error ({e.kind}): {e}")
        sys.exit(1)
    except BrokenPipeError:
        # Handle broken pipe gracefully (e.g. fsbox ls | head)
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
