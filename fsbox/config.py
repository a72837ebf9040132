"""
Box Configuration

Configuration dataclass for fsbox: the confinement location every box path
must lie within, the hosting engine's data directory (which the location must
stay clear of), the creation umask and the SQLite busy timeout.  Includes
load_config() for reading a JSON config file with silent fallback to
compiled defaults.

The configuration is an explicit value handed to BoxStore at construction;
nothing here is process-global.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fsbox.errors import ConfigurationError


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and not isinstance(value, typ):
        errors.append(f"{name}: expected {typ.__name__}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


def _is_under(path: str, root: str) -> bool:
    """True if canonical *path* equals or lies below canonical *root*."""
    path = os.path.normpath(path)
    root = os.path.normpath(root)
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


@dataclass
class BoxConfig:
    """Top-level fsbox configuration."""
    location: Optional[str] = None     # confinement root for box files
    data_dir: Optional[str] = None     # hosting engine data area, off-limits
    umask: int = 0o007                 # process umask while creating a box
    busy_timeout: float = 0.0          # seconds SQLite waits on a locked file

    def __post_init__(self):
        if isinstance(self.busy_timeout, int) and not isinstance(self.busy_timeout, bool):
            self.busy_timeout = float(self.busy_timeout)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> BoxConfig:
        """Build config from a dict (e.g. JSON).  Unknown keys are ignored."""
        kwargs = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        umask = kwargs.get("umask")
        if isinstance(umask, str):
            kwargs["umask"] = int(umask, 8)
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if not self.location:
            errors.append("location: can't be empty")
        elif not os.path.isabs(self.location):
            errors.append(f"location: must be an absolute path: {self.location}")
        elif self.data_dir and _is_under(self.location, self.data_dir):
            errors.append(
                f"location: {self.location} cannot be inside the data "
                f"directory {self.data_dir}"
            )
        _check_range(errors, "umask", self.umask, 0, 0o777, int)
        _check_range(errors, "busy_timeout", self.busy_timeout, 0.0, 3600.0, float)
        return errors

    def ensure_valid(self) -> BoxConfig:
        """Raise ConfigurationError unless validate() is clean."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                f"Config validation failed: {'; '.join(errors)}"
            )
        return self


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> BoxConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ConfigurationError on invalid config values.

    Returns:
        BoxConfig with values from file or defaults.

    Raises:
        ConfigurationError: If strict=True and config values are invalid.
    """
    if path is None:
        cfg = BoxConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = BoxConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, ValueError, AttributeError):
            cfg = BoxConfig()

    if strict:
        cfg.ensure_valid()

    return cfg
