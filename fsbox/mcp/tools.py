"""
fsbox MCP Tools — the box operation surface as MCP tools.

Thin wrappers around BoxStore.  Each tool follows the same order:

    ① Path guard     — box (and source) paths must lie under the location
    ② Tool execution — BoxStore operation → Outcome / RawOutcome
    ③ Reply          — {"status": "ok"|"error", ...}; errors carry their kind

Tool groups:
    LIFECYCLE:    box_create, box_destroy
    MUTATION:     box_upsert_entry, box_delete_entry, box_upsert_file,
                  box_delete_file, box_set_xattr, box_delete_xattr
    BULK:         box_bulk_load
    MAINTENANCE:  box_truncate, box_raw_exec (unchecked)
    READ:         box_read, box_list
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from fsbox.config import BoxConfig
from fsbox.errors import BoxError
from fsbox.guard import PathGuard
from fsbox.rowsource import SQLiteRowSource
from fsbox.store import BoxStore

logger = logging.getLogger(__name__)

_TRUNCATE_TABLES = {
    "entries": "entries",
    "files": "files",
    "attributes": "extended_attributes",
}


def _hex(value: Optional[str]) -> Optional[bytes]:
    return bytes.fromhex(value) if value is not None else None


def register_box_tools(mcp, config: BoxConfig, *, guard: Optional[PathGuard] = None) -> None:
    """
    Register the box MCP tools on a FastMCP server instance.

    Args:
        mcp: FastMCP server instance.
        config: BoxConfig carrying the confinement location.
        guard: PathGuard for path validation (built from config if None).
    """
    if guard is None:
        guard = PathGuard.from_config(config)

    def _call(box: str, op: Callable[[BoxStore], Any]) -> Dict[str, Any]:
        """Guard *box*, run *op* on its store, shape the reply."""
        try:
            store = BoxStore(box, config)
            result = op(store)
        except BoxError as exc:
            logger.warning("Tool call refused for %s: %s", box, exc)
            return {"status": "error", "kind": exc.kind, "message": str(exc)}
        except (ValueError, OverflowError) as exc:  # malformed hex blobs
            return {"status": "error", "kind": "validation", "message": str(exc)}
        if isinstance(result, dict):
            result.setdefault("status", "ok")
            return result
        reply = result.to_dict()
        reply["box"] = guard.relative(store.path)
        return reply

    # =====================================================================
    # LIFECYCLE
    # =====================================================================

    @mcp.tool()
    def box_create(box: str) -> Dict[str, Any]:
        """Create a box file and its schema. Idempotent.

        Args:
            box: Absolute path of the box, under the configured location.
        """
        return _call(box, lambda s: s.create())

    @mcp.tool()
    def box_destroy(box: str) -> Dict[str, Any]:
        """Delete a box file."""
        return _call(box, lambda s: s.destroy())

    # =====================================================================
    # MUTATION
    # =====================================================================

    @mcp.tool()
    def box_upsert_entry(
        box: str,
        inode: int,
        name: str,
        parent_inode: int,
        ctime: int = 0,
        mtime: int = 0,
        nlink: int = 1,
        size: int = 0,
        is_dir: bool = True,
        decrypted_size: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert or fully replace one entry of the tree.

        Fails with kind "constraint" when another inode already has the
        same name under parent_inode.
        """
        return _call(box, lambda s: s.upsert_entry(
            inode, name, parent_inode,
            ctime=ctime, mtime=mtime, nlink=nlink, size=size,
            is_dir=is_dir, decrypted_size=decrypted_size,
        ))

    @mcp.tool()
    def box_delete_entry(box: str, inode: int) -> Dict[str, Any]:
        """Delete an entry and its DIRECT children only (not recursive)."""
        return _call(box, lambda s: s.delete_entry_subtree(inode))

    @mcp.tool()
    def box_upsert_file(
        box: str,
        inode: int,
        mountpoint: Optional[str] = None,
        rel_path: Optional[str] = None,
        header_hex: Optional[str] = None,
        payload_size: int = 0,
        prepend_hex: Optional[str] = None,
        append_hex: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert or fully replace the payload record of an inode.

        Blobs are passed as hex strings and stored verbatim.
        """
        return _call(box, lambda s: s.upsert_file(
            inode,
            mountpoint=mountpoint,
            rel_path=rel_path,
            header=_hex(header_hex),
            payload_size=payload_size,
            prepend=_hex(prepend_hex),
            append=_hex(append_hex),
        ))

    @mcp.tool()
    def box_delete_file(box: str, inode: int) -> Dict[str, Any]:
        """Delete the payload record of an inode (no-op if absent)."""
        return _call(box, lambda s: s.delete_file(inode))

    @mcp.tool()
    def box_set_xattr(box: str, inode: int, name: str, value: str) -> Dict[str, Any]:
        """Set one extended attribute."""
        return _call(box, lambda s: s.upsert_attribute(inode, name, value))

    @mcp.tool()
    def box_delete_xattr(box: str, inode: int, name: str) -> Dict[str, Any]:
        """Delete one extended attribute."""
        return _call(box, lambda s: s.delete_attribute(inode, name))

    # =====================================================================
    # BULK
    # =====================================================================

    @mcp.tool()
    def box_bulk_load(box: str, kind: str, source: str, query: str) -> Dict[str, Any]:
        """Atomically load every row of a query into entries or files.

        Args:
            box: Target box path.
            kind: "entries" or "files".
            source: SQLite database to query (read-only), under the location.
            query: SELECT returning the columns in layout order.

        All rows are committed, or none.
        """
        if kind not in ("entries", "files"):
            return {
                "status": "error", "kind": "validation",
                "message": f"kind must be 'entries' or 'files', got {kind!r}",
            }

        def op(store: BoxStore):
            rows = SQLiteRowSource(guard.check(source), timeout=config.busy_timeout)
            if kind == "entries":
                return store.bulk_load_entries(query, rows)
            return store.bulk_load_files(query, rows)

        return _call(box, op)

    # =====================================================================
    # MAINTENANCE
    # =====================================================================

    @mcp.tool()
    def box_truncate(box: str, table: str) -> Dict[str, Any]:
        """Empty a table: entries (root kept), files, or attributes."""
        if table not in _TRUNCATE_TABLES:
            return {
                "status": "error", "kind": "validation",
                "message": f"table must be one of {', '.join(_TRUNCATE_TABLES)}",
            }
        return _call(box, lambda s: s.truncate(_TRUNCATE_TABLES[table]))

    @mcp.tool()
    def box_raw_exec(box: str, sql: str) -> Dict[str, Any]:
        """Execute raw SQL on a box. UNCHECKED: no validation of any kind.

        Errors are reported with the engine's message verbatim.
        """
        return _call(box, lambda s: s.raw_exec(sql))

    # =====================================================================
    # READ
    # =====================================================================

    @mcp.tool()
    def box_read(box: str, inode: int) -> Dict[str, Any]:
        """Read an entry with its payload record and extended attributes."""
        def op(store: BoxStore):
            entry = store.get_entry(inode)
            if entry is None:
                return {"status": "not_found", "inode": inode}
            record = store.get_file(inode)
            return {
                "entry": entry.to_dict(),
                "file": record.to_dict() if record else None,
                "xattrs": store.get_attributes(inode),
            }
        return _call(box, op)

    @mcp.tool()
    def box_list(box: str, parent_inode: int = 1) -> Dict[str, Any]:
        """List the children of a directory entry, ordered by inode."""
        def op(store: BoxStore):
            children = store.list_children(parent_inode)
            return {
                "parent_inode": parent_inode,
                "count": len(children),
                "entries": [e.to_dict() for e in children],
            }
        return _call(box, op)
