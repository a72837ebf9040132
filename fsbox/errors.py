"""
Box Error Taxonomy

Every failure raised or reported by fsbox is a BoxError subclass.  Contract
violations (ConfigurationError, ValidationError) are raised to the caller;
engine-side failures are caught at the operation boundary and carried inside
a falsy Outcome (see fsbox.types).
"""

from __future__ import annotations

import sqlite3


class BoxError(Exception):
    """Base class for all fsbox errors."""

    kind = "error"


class ConfigurationError(BoxError, ValueError):
    """Path outside the confinement root, not absolute, or bad config value."""

    kind = "configuration"


class StoreOpenError(BoxError):
    """The box file cannot be opened or created (missing, unreadable, corrupt)."""

    kind = "store_open"


class SchemaError(BoxError):
    """A DDL statement failed while creating the box schema."""

    kind = "schema"


class ValidationError(BoxError, ValueError):
    """A required field is missing or an argument has the wrong shape."""

    kind = "validation"


class NullFieldError(ValidationError):
    """A bulk-load row carries NULL in a required column."""

    kind = "null_field"


class FormatMismatchError(BoxError):
    """A bulk-load source does not match the expected column layout."""

    kind = "format_mismatch"


class ConstraintError(BoxError):
    """The write would violate a uniqueness constraint."""

    kind = "constraint"


class EngineError(BoxError):
    """Opaque SQLite failure; the message is the engine's own."""

    kind = "engine"


# Messages SQLite emits when the file exists but is not usable as a database.
_OPEN_FAILURE_MARKERS = (
    "unable to open database",
    "file is not a database",
    "database disk image is malformed",
)


def from_sqlite(exc: sqlite3.Error) -> BoxError:
    """Map a sqlite3 exception onto the fsbox taxonomy."""
    msg = str(exc)
    if isinstance(exc, sqlite3.IntegrityError):
        return ConstraintError(msg)
    if any(marker in msg for marker in _OPEN_FAILURE_MARKERS):
        return StoreOpenError(msg)
    return EngineError(msg)
