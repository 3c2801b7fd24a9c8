"""Filesystem helpers for preparing configured directories."""

from __future__ import annotations

import os
from pathlib import Path


class ConfigError(Exception):
    """Raised when the configuration cannot be applied to the filesystem."""


def create_directory(path: str | os.PathLike[str]) -> None:
    """Create a directory and all of its parents."""
    path = Path(path)
    try:
        os.makedirs(os.path.normpath(path), exist_ok=True)
    except OSError as err:
        raise ConfigError(f"failed to create directory {path} since {err}") from err


def need_directory(path: str | os.PathLike[str]) -> None:
    """Ensure that a directory exists at path, creating it when missing."""
    path = Path(path)
    if path.exists():
        if not path.is_dir():
            raise ConfigError(f"the path [{path}] exists but not a directory")
    else:
        create_directory(path)