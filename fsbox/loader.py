"""
Bulk Loader — transactional replay of an external row set into a box.

Algorithm (one call = one atomic unit):
    1. Evaluate the query against a read-only RowSource → RowSet
    2. Check the layout positionally (column count, then each column's
       declared type); a mismatch fails before the box is even opened
    3. Open the box and BEGIN IMMEDIATE (one write transaction)
    4. Stream every row through one prepared upsert statement
       (executemany resets and rebinds it per row); a NULL in a required
       column or a value of the wrong type aborts the whole load
    5. COMMIT if every row went through, ROLLBACK otherwise

Validation is positional, never by column name: queries must select the
columns in layout order.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, List, Tuple, Union

from fsbox.errors import (
    BoxError,
    EngineError,
    FormatMismatchError,
    NullFieldError,
    from_sqlite,
)
from fsbox.rowsource import ColumnType, RowSet, RowSource
from fsbox.schema import UPSERT_ENTRY_SQL, UPSERT_FILE_SQL, open_box
from fsbox.types import Outcome

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Layouts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LoadColumn:
    """Expected column at one position of a bulk-load source."""

    name: str
    type: ColumnType
    nullable: bool = False
    default: Any = None  # bound in place of NULL for nullable columns


@dataclass(frozen=True)
class LoadLayout:
    """Hard-coded column layout and target statement for one table."""

    kind: str
    columns: Tuple[LoadColumn, ...]
    statement: str

    @property
    def width(self) -> int:
        return len(self.columns)


ENTRY_LAYOUT = LoadLayout(
    kind="entries",
    columns=(
        LoadColumn("inode", ColumnType.INT64),
        LoadColumn("name", ColumnType.TEXT),
        LoadColumn("parent_inode", ColumnType.INT64),
        LoadColumn("decrypted_size", ColumnType.TEXT, nullable=True),
        LoadColumn("ctime", ColumnType.INT64),
        LoadColumn("mtime", ColumnType.INT64),
        LoadColumn("nlink", ColumnType.INT32),
        LoadColumn("size", ColumnType.INT64),
        LoadColumn("is_dir", ColumnType.BOOL),
    ),
    statement=UPSERT_ENTRY_SQL,
)

FILE_LAYOUT = LoadLayout(
    kind="files",
    columns=(
        LoadColumn("inode", ColumnType.INT64),
        LoadColumn("mountpoint", ColumnType.TEXT),
        LoadColumn("rel_path", ColumnType.TEXT),
        LoadColumn("header", ColumnType.BLOB, nullable=True),
        LoadColumn("payload_size", ColumnType.INT64, nullable=True, default=0),
        LoadColumn("prepend", ColumnType.BLOB, nullable=True),
        LoadColumn("append", ColumnType.BLOB, nullable=True),
    ),
    statement=UPSERT_FILE_SQL,
)

LAYOUTS = {layout.kind: layout for layout in (ENTRY_LAYOUT, FILE_LAYOUT)}


# ---------------------------------------------------------------------------
# Validation and binding
# ---------------------------------------------------------------------------

def check_layout(rowset: RowSet, layout: LoadLayout) -> None:
    """Raise FormatMismatchError unless *rowset* matches *layout* positionally."""
    if rowset.column_count != layout.width:
        raise FormatMismatchError(
            f"source returns {rowset.column_count} fields. Expecting {layout.width}"
        )
    for pos, expected in enumerate(layout.columns):
        got = rowset.column_type(pos)
        if got is not expected.type:
            raise FormatMismatchError(
                f"invalid type at position {pos} ({expected.name}): expected "
                f"{expected.type.value}, got {got.value if got else 'undeclared'}"
            )


def _bind_rows(rowset: RowSet, layout: LoadLayout) -> Iterator[List[Any]]:
    """Yield one parameter list per row, in source order."""
    for i, row in enumerate(rowset.rows):
        if len(row) != layout.width:
            raise FormatMismatchError(
                f"row {i}: {len(row)} values. Expecting {layout.width}"
            )
        params: List[Any] = []
        for col, value in zip(layout.columns, row):
            if value is None:
                if not col.nullable:
                    raise NullFieldError(f"row {i}: NULL in required column {col.name}")
                params.append(col.default)
                continue
            if not col.type.accepts(value):
                raise FormatMismatchError(
                    f"row {i}: {col.name} expects {col.type.value}, "
                    f"got {type(value).__name__}"
                )
            params.append(int(value) if col.type is ColumnType.BOOL else value)
        yield params


def _replay(conn: sqlite3.Connection, rowset: RowSet, layout: LoadLayout) -> None:
    """Run every row inside one transaction; roll back on any failure."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        conn.executemany(layout.statement, _bind_rows(rowset, layout))
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
            logger.debug("Bulk load of %s rolled back", layout.kind)
        raise


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def bulk_load(
    box_path: Union[str, Path],
    source: RowSource,
    query: str,
    layout: LoadLayout,
    *,
    timeout: float = 0.0,
) -> Outcome:
    """Load every row of ``source.execute(query)`` into the box, atomically.

    Returns a truthy Outcome when all rows were committed, a falsy one
    carrying the error otherwise.  No partial counts are reported.
    """
    try:
        rowset = source.execute(query)
        check_layout(rowset, layout)
    except BoxError as exc:
        logger.warning("Bulk load of %s rejected: %s", layout.kind, exc)
        return Outcome.failure(exc)
    except (ValueError, OverflowError) as exc:
        error = EngineError(str(exc))
        logger.warning("Bulk load of %s rejected: %s", layout.kind, error)
        return Outcome.failure(error)

    try:
        with open_box(box_path, timeout=timeout) as conn:
            _replay(conn, rowset, layout)
    except BoxError as exc:
        logger.warning("Bulk load of %s into %s failed: %s", layout.kind, box_path, exc)
        return Outcome.failure(exc)
    except sqlite3.Error as exc:
        error = from_sqlite(exc)
        logger.warning("Bulk load of %s into %s failed: %s", layout.kind, box_path, error)
        return Outcome.failure(error)
    except (ValueError, OverflowError) as exc:
        # values sqlite3 cannot bind; the transaction was rolled back
        error = EngineError(str(exc))
        logger.warning("Bulk load of %s into %s failed: %s", layout.kind, box_path, error)
        return Outcome.failure(error)

    logger.info("Bulk-loaded %d %s row(s) into %s", len(rowset), layout.kind, box_path)
    return Outcome.success()
