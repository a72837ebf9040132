"""
Row Sources — read-only tabular inputs for the bulk loader.

A row source evaluates a query and returns a RowSet: a declared column
layout (name + type per position) and the materialized rows, each a
positional sequence where None means NULL.

Adapters:
    SQLiteRowSource  - evaluates SELECT queries against an SQLite file
                       opened read-only; column types come from the
                       declared types of the selected columns.
    StaticRowSource  - fixed query -> RowSet mapping (embedding, tests).
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from fsbox.errors import EngineError, StoreOpenError

logger = logging.getLogger(__name__)

_INT64_RANGE = (-(2 ** 63), 2 ** 63 - 1)
_INT32_RANGE = (-(2 ** 31), 2 ** 31 - 1)


def _utf8_encodable(value: str) -> bool:
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


class ColumnType(Enum):
    """Logical column types understood by the bulk loader."""

    INT64 = "int64"
    INT32 = "int32"
    TEXT = "text"
    BLOB = "blob"
    BOOL = "bool"

    def accepts(self, value: Any) -> bool:
        """True if a non-NULL *value* is a legal instance of this type."""
        if self in (ColumnType.INT64, ColumnType.INT32):
            if not isinstance(value, int) or isinstance(value, bool):
                return False
            lo, hi = _INT64_RANGE if self is ColumnType.INT64 else _INT32_RANGE
            return lo <= value <= hi
        if self is ColumnType.TEXT:
            return isinstance(value, str) and _utf8_encodable(value)
        if self is ColumnType.BLOB:
            return isinstance(value, (bytes, bytearray, memoryview))
        # SQLite has no boolean storage class: 0/1 integers qualify.
        return isinstance(value, bool) or (isinstance(value, int) and value in (0, 1))


# Declared SQL type name (parenthesized size stripped) -> logical type.
# Names follow SQL usage: INT/INTEGER are 32-bit, INT64/BIGINT 64-bit.
_DECLARED_TYPES: Dict[str, ColumnType] = {
    "INT64": ColumnType.INT64,
    "BIGINT": ColumnType.INT64,
    "INT8": ColumnType.INT64,
    "INT": ColumnType.INT32,
    "INTEGER": ColumnType.INT32,
    "INT4": ColumnType.INT32,
    "TEXT": ColumnType.TEXT,
    "VARCHAR": ColumnType.TEXT,
    "CHAR": ColumnType.TEXT,
    "CLOB": ColumnType.TEXT,
    "BLOB": ColumnType.BLOB,
    "BYTEA": ColumnType.BLOB,
    "BOOL": ColumnType.BOOL,
    "BOOLEAN": ColumnType.BOOL,
}


def column_type_from_decl(declared: Optional[str]) -> Optional[ColumnType]:
    """Map a declared SQL type (``"INT64"``, ``"varchar(32)"``) to a ColumnType.

    Returns None for empty or unknown declarations.
    """
    if not declared:
        return None
    base = declared.split("(", 1)[0].strip().upper()
    return _DECLARED_TYPES.get(base)


@dataclass
class Column:
    """One positional column of a row set."""

    name: str
    type: Optional[ColumnType]  # None = undeclared / unknown


@dataclass
class RowSet:
    """Materialized query result with its declared layout."""

    columns: List[Column] = field(default_factory=list)
    rows: List[Sequence[Any]] = field(default_factory=list)

    @property
    def column_count(self) -> int:
        return len(self.columns)

    def column_type(self, index: int) -> Optional[ColumnType]:
        return self.columns[index].type

    def value(self, row: int, column: int) -> Any:
        """Value at (row, column); None means NULL."""
        return self.rows[row][column]

    def __len__(self) -> int:
        return len(self.rows)


class RowSource(Protocol):
    """Read-only tabular query interface consumed by the bulk loader."""

    def execute(self, query: str) -> RowSet:
        ...


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------

class StaticRowSource:
    """Row source answering from a fixed ``{query: RowSet}`` mapping."""

    def __init__(self, results: Optional[Dict[str, RowSet]] = None):
        self._results: Dict[str, RowSet] = dict(results or {})

    def add(self, query: str, rowset: RowSet) -> None:
        self._results[query] = rowset

    def execute(self, query: str) -> RowSet:
        try:
            return self._results[query]
        except KeyError:
            raise EngineError(f"Unknown query: {query!r}") from None


class SQLiteRowSource:
    """Evaluate SELECT queries against an SQLite database opened read-only.

    The query is wrapped in a temporary view so that ``PRAGMA table_info``
    reports the declared type of every result column.  Columns computed by
    expressions usually carry no declared type and therefore never match a
    bulk-load layout; select plain table columns.
    """

    _VIEW = "fsbox_rowset"

    def __init__(self, db_path: Union[str, Path], *, timeout: float = 0.0):
        self._db_path = Path(db_path)
        self._timeout = timeout

    def execute(self, query: str) -> RowSet:
        query = query.strip().rstrip(";").strip()
        uri = f"{self._db_path.resolve().as_uri()}?mode=ro"
        try:
            conn = sqlite3.connect(
                uri, uri=True, timeout=self._timeout, isolation_level=None,
            )
        except sqlite3.Error as exc:
            raise StoreOpenError(f"Can't open source {self._db_path}: {exc}") from exc
        try:
            try:
                conn.execute(f"CREATE TEMP VIEW {self._VIEW} AS {query}")
                info = conn.execute(
                    f"PRAGMA temp.table_info({self._VIEW})"
                ).fetchall()
                rows = conn.execute(f"SELECT * FROM temp.{self._VIEW}").fetchall()
            except sqlite3.Error as exc:
                raise EngineError(f"Source query failed: {exc}") from exc
        finally:
            conn.close()

        # table_info rows: (cid, name, type, notnull, dflt_value, pk)
        columns = [
            Column(name=r[1], type=column_type_from_decl(r[2]))
            for r in sorted(info, key=lambda r: r[0])
        ]
        logger.debug(
            "Source %s: %d column(s), %d row(s)", self._db_path, len(columns), len(rows),
        )
        return RowSet(columns=columns, rows=rows)
