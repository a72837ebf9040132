"""
Box Schema Manager — creation, destruction and scoped opening of box files.

Tables:
    entries              - Directory-tree nodes (inode 1 is the root "/")
    files                - Payload metadata per non-directory inode
    extended_attributes  - (inode, name) -> value

The schema is a shared, externally-read file format: independent readers
open box files directly, so any change here breaks them.

Every connection is opened in autocommit mode (``isolation_level=None``):
DDL runs statement by statement, and callers needing a transaction issue
BEGIN/COMMIT/ROLLBACK themselves.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Tuple, Union

from fsbox.errors import SchemaError, StoreOpenError
from fsbox.types import Outcome

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

# parent_inode declares a self-reference for readers, but foreign keys are
# never switched on: dangling parents are allowed (shallow subtree delete).
ENTRIES_SQL = """
CREATE TABLE IF NOT EXISTS entries (
    inode           INT64 NOT NULL PRIMARY KEY,
    name            TEXT NOT NULL,
    parent_inode    INT64 NOT NULL REFERENCES entries(inode),
    ctime           INT64 NOT NULL DEFAULT 0,
    mtime           INT64 NOT NULL DEFAULT 0,
    nlink           INT NOT NULL DEFAULT 1,
    size            INT64 NOT NULL DEFAULT 0,
    decrypted_size  TEXT,
    is_dir          INT NOT NULL DEFAULT 1   -- if 0, JOIN with files
)
"""

FILES_SQL = """
CREATE TABLE IF NOT EXISTS files (
    inode         INT64 PRIMARY KEY,
    mountpoint    TEXT,
    rel_path      TEXT,
    header        BLOB,
    payload_size  INT64 NOT NULL DEFAULT 0,  -- decrypted size on disk
    prepend       BLOB,
    append        BLOB
)
"""

ATTRIBUTES_SQL = """
CREATE TABLE IF NOT EXISTS extended_attributes (
    inode  INT64 NOT NULL,
    name   TEXT NOT NULL,
    value  TEXT NOT NULL,
    PRIMARY KEY (inode, name)
)
"""

NAMES_INDEX_SQL = (
    "CREATE UNIQUE INDEX IF NOT EXISTS names ON entries(parent_inode, name)"
)
LISTING_INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS listing ON entries(parent_inode, inode, name)"
)
ROOT_ENTRY_SQL = (
    "INSERT INTO entries(inode, name, parent_inode) VALUES (1, '/', 1) "
    "ON CONFLICT DO NOTHING"
)

# (label, statement) in execution order; labels end up in error messages.
SCHEMA_STEPS: List[Tuple[str, str]] = [
    ("files table", FILES_SQL),
    ("extended_attributes table", ATTRIBUTES_SQL),
    ("entries table", ENTRIES_SQL),
    ("names index", NAMES_INDEX_SQL),
    ("listing index", LISTING_INDEX_SQL),
    ("root entry", ROOT_ENTRY_SQL),
]

TABLES = ("entries", "files", "extended_attributes")

# ---------------------------------------------------------------------------
# Write statements (parameter order is the bulk-load column order)
# ---------------------------------------------------------------------------

UPSERT_ENTRY_SQL = """
INSERT INTO entries(inode, name, parent_inode, decrypted_size,
                    ctime, mtime, nlink, size, is_dir)
VALUES (?,?,?,?,?,?,?,?,?)
ON CONFLICT(inode) DO UPDATE SET
    name=excluded.name,
    parent_inode=excluded.parent_inode,
    decrypted_size=excluded.decrypted_size,
    ctime=excluded.ctime,
    mtime=excluded.mtime,
    nlink=excluded.nlink,
    size=excluded.size,
    is_dir=excluded.is_dir
"""

UPSERT_FILE_SQL = """
INSERT INTO files(inode, mountpoint, rel_path, header,
                  payload_size, prepend, append)
VALUES (?,?,?,?,?,?,?)
ON CONFLICT(inode) DO UPDATE SET
    mountpoint=excluded.mountpoint,
    rel_path=excluded.rel_path,
    header=excluded.header,
    payload_size=excluded.payload_size,
    prepend=excluded.prepend,
    append=excluded.append
"""

UPSERT_ATTRIBUTE_SQL = """
INSERT INTO extended_attributes(inode, name, value) VALUES (?,?,?)
ON CONFLICT(inode, name) DO UPDATE SET value=excluded.value
"""

# The root never goes away, not even when its own subtree is deleted.
DELETE_SUBTREE_SQL = (
    "DELETE FROM entries WHERE (inode = ?1 OR parent_inode = ?1) AND inode != 1"
)
DELETE_FILE_SQL = "DELETE FROM files WHERE inode = ?"
DELETE_ATTRIBUTE_SQL = "DELETE FROM extended_attributes WHERE inode = ? AND name = ?"

# table -> fixed truncation statement
TRUNCATE_SQL = {
    "entries": "DELETE FROM entries WHERE inode > 1",
    "files": "DELETE FROM files",
    "extended_attributes": "DELETE FROM extended_attributes",
}


# ---------------------------------------------------------------------------
# Scoped connections
# ---------------------------------------------------------------------------

def _probe(conn: sqlite3.Connection, path: PathLike) -> None:
    """Force SQLite to read the file header so corrupt files fail early."""
    try:
        conn.execute("PRAGMA schema_version").fetchone()
    except sqlite3.DatabaseError as exc:
        raise StoreOpenError(f"Can't open box {path}: {exc}") from exc


@contextmanager
def open_box(
    path: PathLike, *, readonly: bool = False, timeout: float = 0.0,
) -> Iterator[sqlite3.Connection]:
    """Open an existing box file for the duration of one operation.

    Never creates the file: a missing, unreadable or corrupt box raises
    StoreOpenError.  The connection is closed on every exit path.
    """
    mode = "ro" if readonly else "rw"
    uri = f"{Path(path).as_uri()}?mode={mode}"
    try:
        conn = sqlite3.connect(uri, uri=True, timeout=timeout, isolation_level=None)
    except sqlite3.Error as exc:
        raise StoreOpenError(f"Can't open box {path}: {exc}") from exc
    try:
        _probe(conn, path)
        conn.row_factory = sqlite3.Row
        logger.debug("Box open (%s): %s", mode, path)
        yield conn
    finally:
        conn.close()


@contextmanager
def _umask(mask: int) -> Iterator[None]:
    old = os.umask(mask)
    try:
        yield
    finally:
        os.umask(old)


# ---------------------------------------------------------------------------
# Create / destroy
# ---------------------------------------------------------------------------

def create_box(path: PathLike, *, umask: int = 0o007, timeout: float = 0.0) -> Outcome:
    """Create the box file and its schema, idempotently.

    Statements run one at a time without an enclosing transaction: if one
    fails, whatever already succeeded stays, and re-running is safe.
    """
    with _umask(umask):
        try:
            conn = sqlite3.connect(str(path), timeout=timeout, isolation_level=None)
        except sqlite3.Error as exc:
            logger.warning("Can't open box %s: %s", path, exc)
            return Outcome.failure(StoreOpenError(f"Can't open box {path}: {exc}"))
        try:
            try:
                _probe(conn, path)
            except StoreOpenError as exc:
                logger.warning("%s", exc)
                return Outcome.failure(exc)
            logger.debug("Box open for creation: %s (umask %03o)", path, umask)
            for label, sql in SCHEMA_STEPS:
                try:
                    conn.execute(sql)
                except sqlite3.Error as exc:
                    logger.warning("SQL error creating the %s in %s: %s", label, path, exc)
                    return Outcome.failure(
                        SchemaError(f"SQL error creating the {label}: {exc}")
                    )
        finally:
            conn.close()
    logger.info("Box created: %s", path)
    return Outcome.success()


def destroy_box(path: PathLike) -> Outcome:
    """Delete the box file (and any journal left next to it)."""
    try:
        os.unlink(path)
    except OSError as exc:
        logger.warning("Can't remove box %s: %s", path, exc)
        return Outcome.failure(StoreOpenError(f"Can't remove box {path}: {exc.strerror}"))
    for suffix in ("-journal", "-wal", "-shm"):
        leftover = Path(f"{path}{suffix}")
        try:
            leftover.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Can't remove %s: %s", leftover, exc)
    logger.info("Box removed: %s", path)
    return Outcome.success()


def box_exists(path: PathLike) -> bool:
    """True if the box file is Present (exists as a regular file)."""
    return Path(path).is_file()
