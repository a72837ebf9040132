"""
Box Path Guard — confinement of box files to one directory tree.

Every path handed to a box operation is canonicalized and checked here
before any file is touched: it must be absolute, contain no '..' segment,
and resolve (symlinks followed) below the configured location.

The guard is built from an explicit BoxConfig and shared by the store,
the CLI and the MCP tools.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from fsbox.config import BoxConfig
from fsbox.errors import ConfigurationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class PathGuard:
    """Path validation against the box location."""

    def __init__(self, location: Optional[PathLike] = None):
        self._location: Optional[Path] = (
            Path(location).resolve() if location else None
        )

    @classmethod
    def from_config(cls, config: BoxConfig) -> PathGuard:
        """Build a guard from a validated config (raises ConfigurationError)."""
        config.ensure_valid()
        return cls(config.location)

    @property
    def location(self) -> Optional[Path]:
        """Return the canonical location, or None if unset."""
        return self._location

    def check(self, requested: PathLike) -> Path:
        """
        Resolve and validate a box path against the location.

        Algorithm:
        1. Reject relative paths
        2. Reject any '..' segment before resolving
        3. Resolve: Path(requested).resolve(strict=False)
        4. Containment: resolved must be under the location

        Raises ConfigurationError on violation.  If no location is set,
        containment is skipped.
        """
        raw = Path(requested)
        if not raw.is_absolute():
            raise ConfigurationError(f'path "{requested}" must be absolute')

        for part in raw.parts:
            if part == "..":
                raise ConfigurationError(
                    f"Path traversal rejected: '..' in path '{requested}'"
                )

        resolved = raw.resolve()

        if self._location is not None:
            try:
                resolved.relative_to(self._location)
            except ValueError:
                raise ConfigurationError(
                    f'path "{resolved}" must be below the box location: '
                    f"{self._location}"
                ) from None

        logger.debug("Path accepted: %s", resolved)
        return resolved

    def relative(self, resolved: Path) -> str:
        """
        Return a location-relative path string for logs and tool replies.

        Never leaks absolute paths when a location is configured.
        """
        if self._location is not None:
            try:
                return str(resolved.relative_to(self._location))
            except ValueError:
                pass
        return str(resolved)
