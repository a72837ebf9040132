"""
Box Store — mutation API, reads and maintenance over one box file.

A BoxStore is bound to one box path, validated against the confinement
location of an explicit BoxConfig when the store is built.  It holds no
connection: every operation opens the file, does its work inside at most
one transaction, and closes it again before returning.

Result contract:
    - contract violations (bad path, missing required argument) raise
      ConfigurationError / ValidationError
    - every other failure is returned inside a falsy Outcome whose
      ``error`` names the kind (store_open, constraint, engine...)
    - raw_exec() returns a RawOutcome: it is unchecked by construction
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from fsbox.config import BoxConfig
from fsbox.errors import (
    BoxError,
    EngineError,
    StoreOpenError,
    ValidationError,
    from_sqlite,
)
from fsbox.guard import PathGuard
from fsbox.loader import ENTRY_LAYOUT, FILE_LAYOUT, LoadLayout, bulk_load
from fsbox.rowsource import RowSource
from fsbox.schema import (
    DELETE_ATTRIBUTE_SQL,
    DELETE_FILE_SQL,
    DELETE_SUBTREE_SQL,
    TABLES,
    TRUNCATE_SQL,
    UPSERT_ATTRIBUTE_SQL,
    UPSERT_ENTRY_SQL,
    UPSERT_FILE_SQL,
    box_exists,
    create_box,
    destroy_box,
    open_box,
)
from fsbox.types import Attribute, Entry, FileRecord, Outcome, RawOutcome

logger = logging.getLogger(__name__)

_INT64_MIN, _INT64_MAX = -(2 ** 63), 2 ** 63 - 1


def _require(field_name: str, value: Any, typ: type = int) -> None:
    """Raise ValidationError if a required argument is missing or mistyped."""
    if value is None:
        raise ValidationError(f"Null arguments not accepted: {field_name}")
    if typ is int and isinstance(value, bool):
        raise ValidationError(f"{field_name}: expected int, got bool")
    if not isinstance(value, typ):
        raise ValidationError(
            f"{field_name}: expected {typ.__name__}, got {type(value).__name__}"
        )
    if typ is int and not _INT64_MIN <= value <= _INT64_MAX:
        raise ValidationError(f"{field_name}: {value} out of 64-bit integer range")


def _optional(field_name: str, value: Any, typ: Union[type, tuple]) -> None:
    if value is not None and not isinstance(value, typ):
        raise ValidationError(f"{field_name}: unexpected type {type(value).__name__}")


_BLOB = (bytes, bytearray, memoryview)


class BoxStore:
    """Operations on one box file.

    Args:
        path: Absolute path of the box file.
        config: Configuration carrying the confinement location.
        source: Default RowSource for the bulk loaders.

    Raises:
        ConfigurationError: invalid config, or path outside the location.
    """

    def __init__(
        self,
        path: Union[str, Path],
        config: BoxConfig,
        *,
        source: Optional[RowSource] = None,
    ):
        self._config = config
        self._guard = PathGuard.from_config(config)
        self._path = self._guard.check(path)
        self._source = source

    @property
    def path(self) -> Path:
        return self._path

    @property
    def config(self) -> BoxConfig:
        return self._config

    def __repr__(self) -> str:
        return f"BoxStore({self._guard.relative(self._path)!r})"

    # -- Lifecycle ---------------------------------------------------------

    def create(self) -> Outcome:
        """Create the box and its schema (idempotent)."""
        return create_box(
            self._path, umask=self._config.umask, timeout=self._config.busy_timeout,
        )

    def destroy(self) -> Outcome:
        """Delete the box file."""
        return destroy_box(self._path)

    def exists(self) -> bool:
        return box_exists(self._path)

    # -- Plumbing ----------------------------------------------------------

    @contextmanager
    def _connect(self, readonly: bool = False) -> Iterator[sqlite3.Connection]:
        with open_box(
            self._path, readonly=readonly, timeout=self._config.busy_timeout,
        ) as conn:
            yield conn

    def _write(self, action: str, sql: str, params: Sequence[Any] = ()) -> Outcome:
        """Run one write statement in autocommit mode and report the outcome."""
        try:
            with self._connect() as conn:
                conn.execute(sql, params)
        except BoxError as exc:
            logger.warning("%s failed on %s: %s", action, self._path, exc)
            return Outcome.failure(exc)
        except sqlite3.Error as exc:
            error = from_sqlite(exc)
            logger.warning("%s failed on %s: %s", action, self._path, error)
            return Outcome.failure(error)
        except (OverflowError, UnicodeEncodeError) as exc:
            # values sqlite3 cannot bind
            error = EngineError(str(exc))
            logger.warning("%s failed on %s: %s", action, self._path, error)
            return Outcome.failure(error)
        logger.debug("%s done on %s", action, self._path)
        return Outcome.success()

    # -- Entries -----------------------------------------------------------

    def upsert_entry(
        self,
        inode: int,
        name: str,
        parent_inode: int,
        ctime: int = 0,
        mtime: int = 0,
        nlink: int = 1,
        size: int = 0,
        is_dir: bool = True,
        decrypted_size: Optional[str] = None,
    ) -> Outcome:
        """
        Insert or fully replace the entry keyed by *inode*.

        A rename, move or resize is a full upsert with every field supplied
        again.  Fails with a ConstraintError outcome if another inode already
        owns (parent_inode, name).  Parent existence and cycles are not
        checked.
        """
        _require("inode", inode)
        _require("name", name, str)
        _require("parent_inode", parent_inode)
        for field_name, value in (
            ("ctime", ctime), ("mtime", mtime), ("nlink", nlink), ("size", size),
        ):
            _require(field_name, value)
        if is_dir is None:
            raise ValidationError("Null arguments not accepted: is_dir")
        if not isinstance(is_dir, int) or is_dir not in (0, 1):
            raise ValidationError(f"is_dir: expected bool, got {is_dir!r}")
        _optional("decrypted_size", decrypted_size, (str, int))
        if isinstance(decrypted_size, int):
            decrypted_size = str(decrypted_size)

        logger.debug("Inserting entry [%d]/%s | %d", parent_inode, name, inode)
        return self._write(
            f"upsert entry {inode}",
            UPSERT_ENTRY_SQL,
            (inode, name, parent_inode, decrypted_size,
             ctime, mtime, nlink, size, int(bool(is_dir))),
        )

    def delete_entry_subtree(self, inode: int) -> Outcome:
        """Delete *inode* and its direct children only.

        Grandchildren are left in place with a dangling parent_inode;
        callers wanting a full removal repeat the call bottom-up.  The root
        entry is never deleted.
        """
        _require("inode", inode)
        return self._write(f"delete entry {inode}", DELETE_SUBTREE_SQL, (inode,))

    # -- Files -------------------------------------------------------------

    def upsert_file(
        self,
        inode: int,
        mountpoint: Optional[str] = None,
        rel_path: Optional[str] = None,
        header: Optional[bytes] = None,
        payload_size: int = 0,
        prepend: Optional[bytes] = None,
        append: Optional[bytes] = None,
    ) -> Outcome:
        """Insert or fully replace the payload record of *inode*."""
        _require("inode", inode)
        _optional("mountpoint", mountpoint, str)
        _optional("rel_path", rel_path, str)
        _optional("header", header, _BLOB)
        _optional("prepend", prepend, _BLOB)
        _optional("append", append, _BLOB)
        if payload_size is None:
            payload_size = 0
        _require("payload_size", payload_size)

        return self._write(
            f"upsert file {inode}",
            UPSERT_FILE_SQL,
            (inode, mountpoint, rel_path, header, payload_size, prepend, append),
        )

    def delete_file(self, inode: int) -> Outcome:
        """Remove the payload record of *inode*; a missing record is a no-op."""
        _require("inode", inode)
        return self._write(f"delete file {inode}", DELETE_FILE_SQL, (inode,))

    # -- Extended attributes -----------------------------------------------

    def upsert_attribute(self, inode: int, name: str, value: str) -> Outcome:
        _require("inode", inode)
        _require("name", name, str)
        _require("value", value, str)
        return self._write(
            f"upsert attribute {inode}:{name}", UPSERT_ATTRIBUTE_SQL, (inode, name, value),
        )

    def delete_attribute(self, inode: int, name: str) -> Outcome:
        _require("inode", inode)
        _require("name", name, str)
        return self._write(
            f"delete attribute {inode}:{name}", DELETE_ATTRIBUTE_SQL, (inode, name),
        )

    # -- Bulk loading ------------------------------------------------------

    def _bulk(self, query: str, source: Optional[RowSource], layout: LoadLayout) -> Outcome:
        _require("query", query, str)
        source = source or self._source
        if source is None:
            raise ValidationError("No row source given for bulk load")
        return bulk_load(
            self._path, source, query, layout, timeout=self._config.busy_timeout,
        )

    def bulk_load_entries(self, query: str, source: Optional[RowSource] = None) -> Outcome:
        """Atomically upsert every row of *query* into ``entries``."""
        return self._bulk(query, source, ENTRY_LAYOUT)

    def bulk_load_files(self, query: str, source: Optional[RowSource] = None) -> Outcome:
        """Atomically upsert every row of *query* into ``files``."""
        return self._bulk(query, source, FILE_LAYOUT)

    # -- Maintenance -------------------------------------------------------

    def truncate(self, table: str) -> Outcome:
        """Bulk-delete *table* under its fixed predicate (root entry kept)."""
        if table not in TRUNCATE_SQL:
            raise ValidationError(
                f"Unknown table {table!r}; expected one of {', '.join(TABLES)}"
            )
        return self._write(f"truncate {table}", TRUNCATE_SQL[table])

    def truncate_entries(self) -> Outcome:
        return self.truncate("entries")

    def truncate_files(self) -> Outcome:
        return self.truncate("files")

    def truncate_attributes(self) -> Outcome:
        return self.truncate("extended_attributes")

    def raw_exec(self, sql: str) -> RawOutcome:
        """Execute caller SQL verbatim.  UNCHECKED: no validation, no retry.

        Failures carry the engine's own message.  Nothing is rolled back
        beyond what the statements themselves imply.
        """
        _require("sql", sql, str)
        try:
            with self._connect() as conn:
                conn.executescript(sql)
        except StoreOpenError as exc:
            logger.warning("raw exec failed on %s: %s", self._path, exc)
            return RawOutcome(ok=False, message=str(exc))
        except sqlite3.Error as exc:
            logger.warning("SQL error in %s: %s", self._path, exc)
            return RawOutcome(ok=False, message=str(exc))
        except UnicodeEncodeError as exc:
            logger.warning("Unencodable SQL for %s: %s", self._path, exc)
            return RawOutcome(ok=False, message=str(exc))
        logger.info("SQL statement executed successfully on %s", self._path)
        return RawOutcome(ok=True)

    # -- Reads -------------------------------------------------------------

    def _fetch(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            with self._connect(readonly=True) as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise from_sqlite(exc) from exc
        except (OverflowError, UnicodeEncodeError) as exc:
            raise EngineError(str(exc)) from exc

    def get_entry(self, inode: int) -> Optional[Entry]:
        """Read a single entry by inode."""
        rows = self._fetch("SELECT * FROM entries WHERE inode = ?", (inode,))
        return Entry.from_row(rows[0]) if rows else None

    def lookup(self, parent_inode: int, name: str) -> Optional[Entry]:
        """Resolve one path component through the ``names`` index."""
        rows = self._fetch(
            "SELECT * FROM entries WHERE parent_inode = ? AND name = ?",
            (parent_inode, name),
        )
        return Entry.from_row(rows[0]) if rows else None

    def list_children(self, parent_inode: int) -> List[Entry]:
        """Children of *parent_inode* ordered by inode (``listing`` index).

        The root is its own parent and is excluded from its own listing.
        """
        rows = self._fetch(
            "SELECT * FROM entries WHERE parent_inode = ? AND inode != parent_inode "
            "ORDER BY inode",
            (parent_inode,),
        )
        return [Entry.from_row(r) for r in rows]

    def get_file(self, inode: int) -> Optional[FileRecord]:
        rows = self._fetch("SELECT * FROM files WHERE inode = ?", (inode,))
        return FileRecord.from_row(rows[0]) if rows else None

    def get_attributes(self, inode: int) -> Dict[str, str]:
        rows = self._fetch(
            "SELECT name, value FROM extended_attributes WHERE inode = ? ORDER BY name",
            (inode,),
        )
        return {r["name"]: r["value"] for r in rows}

    def list_attributes(self, inode: int) -> List[Attribute]:
        return [
            Attribute(inode=inode, name=k, value=v)
            for k, v in self.get_attributes(inode).items()
        ]

    def count(self, table: str) -> int:
        """Row count of one box table."""
        if table not in TABLES:
            raise ValidationError(f"Unknown table {table!r}")
        rows = self._fetch(f"SELECT COUNT(*) AS cnt FROM {table}")
        return rows[0]["cnt"]

    def stats(self) -> Dict[str, Any]:
        """Row counts per table plus file size."""
        counts = {table: self.count(table) for table in TABLES}
        counts["size_bytes"] = self._path.stat().st_size
        return counts
