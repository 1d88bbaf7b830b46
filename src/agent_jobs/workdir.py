"""Working directory resolution and path containment checks."""

from __future__ import annotations

import os
from pathlib import Path

from .errors import ValidationError


def resolve_working_directory(working_directory: str | Path | None) -> Path:
    """Resolve the base directory for a request, defaulting to the current directory.

    Raises:
        ValidationError: If the directory does not exist
    """
    if working_directory is None or working_directory == "":
        return Path.cwd().resolve()
    path = Path(os.path.expanduser(str(working_directory))).resolve()
    if not path.is_dir():
        raise ValidationError(f"working_directory does not exist: {working_directory}")
    return path


def resolve_within(base: Path, value: str | Path, label: str = "path") -> Path:
    """Resolve ``value`` against ``base`` and reject results outside ``base``.

    Raises:
        ValidationError: If the resolved path escapes the base directory
    """
    candidate = Path(os.path.expanduser(str(value)))
    if not candidate.is_absolute():
        candidate = base / candidate
    resolved = candidate.resolve()
    if not resolved.is_relative_to(base):
        raise ValidationError(f"{label} resolves outside the working directory: {value}")
    return resolved
