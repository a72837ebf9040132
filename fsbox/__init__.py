"""
fsbox — filesystem metadata boxes in a single SQLite file.

A box holds the directory tree, payload metadata and extended attributes
of a filesystem whose (encrypted) contents live elsewhere.  Boxes are
created, mutated row by row, or bulk-loaded atomically from an external
row source; downstream tools read the file directly.
"""

__version__ = "0.3.0"

from fsbox.errors import (
    BoxError,
    ConfigurationError,
    StoreOpenError,
    SchemaError,
    ValidationError,
    NullFieldError,
    FormatMismatchError,
    ConstraintError,
    EngineError,
)
from fsbox.types import Entry, FileRecord, Attribute, Outcome, RawOutcome
from fsbox.config import BoxConfig, load_config
from fsbox.rowsource import (
    Column,
    ColumnType,
    RowSet,
    RowSource,
    SQLiteRowSource,
    StaticRowSource,
)
from fsbox.store import BoxStore

__all__ = [
    "__version__",
    "BoxError",
    "ConfigurationError",
    "StoreOpenError",
    "SchemaError",
    "ValidationError",
    "NullFieldError",
    "FormatMismatchError",
    "ConstraintError",
    "EngineError",
    "Entry",
    "FileRecord",
    "Attribute",
    "Outcome",
    "RawOutcome",
    "BoxConfig",
    "load_config",
    "Column",
    "ColumnType",
    "RowSet",
    "RowSource",
    "SQLiteRowSource",
    "StaticRowSource",
    "BoxStore",
]
