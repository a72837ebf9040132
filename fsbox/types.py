"""
Box Data Model

Entries (directory-tree nodes), payload records and extended attributes,
plus the result types returned by every box operation.

Payload bytes (header, prepend, append) are opaque: they are stored and
returned verbatim, never interpreted.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from fsbox.errors import BoxError

ROOT_INODE = 1
ROOT_NAME = "/"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@dataclass
class Entry:
    """One node (file or directory) of the represented filesystem tree."""

    inode: int
    name: str
    parent_inode: int
    ctime: int = 0
    mtime: int = 0
    nlink: int = 1
    size: int = 0
    is_dir: bool = True
    decrypted_size: Optional[str] = None  # unset for directories

    @property
    def is_root(self) -> bool:
        return self.inode == ROOT_INODE

    def to_dict(self) -> Dict[str, Any]:
        """Serialize entry to a plain dictionary."""
        return asdict(self)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Entry:
        """Build an entry from an ``entries`` row."""
        return cls(
            inode=row["inode"],
            name=row["name"],
            parent_inode=row["parent_inode"],
            ctime=row["ctime"],
            mtime=row["mtime"],
            nlink=row["nlink"],
            size=row["size"],
            is_dir=bool(row["is_dir"]),
            decrypted_size=row["decrypted_size"],
        )


@dataclass
class FileRecord:
    """Payload metadata for one non-directory entry."""

    inode: int
    mountpoint: Optional[str] = None
    rel_path: Optional[str] = None
    header: Optional[bytes] = None
    payload_size: int = 0
    prepend: Optional[bytes] = None
    append: Optional[bytes] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a dictionary; blobs become hex strings."""
        d = asdict(self)
        for key in ("header", "prepend", "append"):
            if d[key] is not None:
                d[key] = bytes(d[key]).hex()
        return d

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> FileRecord:
        """Build a record from a ``files`` row."""
        return cls(
            inode=row["inode"],
            mountpoint=row["mountpoint"],
            rel_path=row["rel_path"],
            header=_as_bytes(row["header"]),
            payload_size=row["payload_size"],
            prepend=_as_bytes(row["prepend"]),
            append=_as_bytes(row["append"]),
        )


@dataclass
class Attribute:
    """Extended attribute keyed by (inode, name)."""

    inode: int
    name: str
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _as_bytes(value: Any) -> Optional[bytes]:
    if value is None:
        return None
    return bytes(value)


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------

@dataclass
class Outcome:
    """Result of a validated box operation.

    Truthy on success.  On failure ``error`` holds the BoxError describing
    what went wrong; no partial counts are ever reported.
    """

    ok: bool
    error: Optional[BoxError] = None

    def __bool__(self) -> bool:
        return self.ok

    @property
    def kind(self) -> Optional[str]:
        """Error kind (``"constraint"``, ``"null_field"``...), None on success."""
        return self.error.kind if self.error is not None else None

    @classmethod
    def success(cls) -> Outcome:
        return cls(ok=True)

    @classmethod
    def failure(cls, error: BoxError) -> Outcome:
        return cls(ok=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"status": "ok"}
        return {"status": "error", "kind": self.kind, "message": str(self.error)}


@dataclass
class RawOutcome:
    """Result of an unchecked raw statement.

    Deliberately not an Outcome: nothing was validated.  ``message`` is the
    engine's own error text, verbatim, when ``ok`` is False.
    """

    ok: bool
    message: str = ""

    def __bool__(self) -> bool:
        return self.ok

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"status": "ok", "checked": False}
        return {"status": "error", "checked": False, "message": self.message}
