"""Scoped, atomic JSON state persistence.

Each document is addressed by a mode name and an optional session id. Global
documents live at ``<root>/<mode>-state.json`` and session documents at
``<root>/sessions/<session_id>/<mode>-state.json``. Writes go to a temp file in
the target directory and are renamed into place, so readers observe either the
previous document or the new one, never a partial write.
"""

from __future__ import annotations

import json
import logging
import os
import re
import socket
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .config import DEFAULT_KNOWN_MODES
from .errors import StateError, ValidationError

logger = logging.getLogger(__name__)

STATE_SUFFIX = "-state.json"
META_KEY = "_meta"
SESSIONS_DIR = "sessions"
JOBS_DIR = "jobs"
RESERVED_NAMES = frozenset({SESSIONS_DIR, JOBS_DIR})
RECORD_NAMESPACES = frozenset({JOBS_DIR})

_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def validate_segment(value: str, label: str) -> str:
    """Validate a single path segment (no separators, no state suffix)."""
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{label} must be a non-empty string")
    if not _SEGMENT_PATTERN.match(value) or value.endswith(STATE_SUFFIX):
        raise ValidationError(f"Invalid {label}: {value!r}")
    return value


def validate_mode(mode: str) -> str:
    """Validate a public mode name.

    Modes are single segments and may not shadow the session or job directories.
    """
    validate_segment(mode, "mode")
    if mode in RESERVED_NAMES:
        raise ValidationError(f"Mode name is reserved: {mode!r}")
    return mode


def validate_session_id(session_id: str) -> str:
    """Validate a session id, which must be a single path segment."""
    return validate_segment(session_id, "session_id")


@dataclass(frozen=True)
class StateDocument:
    """A stored mode document and the metadata stamped by the store."""

    mode: str
    session_id: str | None
    payload: dict[str, Any]
    written_at: str | None
    writer: str | None

    @property
    def active(self) -> bool:
        return bool(self.payload.get("active"))

    def to_dict(self) -> dict[str, Any]:
        """Return the on-disk representation (payload plus ``_meta``)."""
        data = dict(self.payload)
        data[META_KEY] = {
            "written_at": self.written_at,
            "writer": self.writer,
            "mode": self.mode,
            "session_id": self.session_id,
        }
        return data


@dataclass(frozen=True)
class ModeStatus:
    """Active/inactive summary of one mode in one scope."""

    mode: str
    session_id: str | None
    active: bool
    exists: bool
    written_at: str | None = None


class StateStore:
    """Reads and writes mode documents under a state root directory."""

    def __init__(
        self,
        root: Path,
        writer: str | None = None,
        known_modes: tuple[str, ...] = DEFAULT_KNOWN_MODES,
    ) -> None:
        """Initialize the store.

        Args:
            root: State root directory (created lazily on first write)
            writer: Identifier stamped into ``_meta.writer`` (default: host:pid)
            known_modes: Modes always reported by ``status()`` even when absent
        """
        self.root = root
        self.writer = writer or f"{socket.gethostname()}:{os.getpid()}"
        self.known_modes = known_modes

    def _scope_dir(self, session_id: str | None) -> Path:
        if session_id is None:
            return self.root
        return self.root / SESSIONS_DIR / validate_session_id(session_id)

    def path_for(self, mode: str, session_id: str | None = None) -> Path:
        """Return the file path backing (mode, session_id)."""
        return self._scope_dir(session_id) / f"{validate_mode(mode)}{STATE_SUFFIX}"

    def _record_dir(self, namespace: str, keys: tuple[str, ...]) -> Path:
        if namespace not in RECORD_NAMESPACES:
            raise ValidationError(f"Unknown record namespace: {namespace!r}")
        return self.root.joinpath(namespace, *(validate_segment(key, "record key") for key in keys))

    def record_path(self, namespace: str, *keys: str) -> Path:
        """Return the path of an internal record such as ``jobs/<provider>/<id>``.

        Records live in reserved directories that public modes cannot reach.
        """
        if not keys:
            raise ValidationError("Record key is empty")
        return self._record_dir(namespace, keys[:-1]) / (
            f"{validate_segment(keys[-1], 'record key')}{STATE_SUFFIX}"
        )

    def write(
        self,
        mode: str,
        payload: Mapping[str, Any],
        session_id: str | None = None,
    ) -> StateDocument:
        """Atomically write a document, replacing any previous one.

        Raises:
            ValidationError: If the mode, session id, or payload is invalid
            StateError: If the file cannot be written
        """
        return self._write_document(self.path_for(mode, session_id), mode, session_id, payload)

    def write_record(self, path: Path, payload: Mapping[str, Any]) -> StateDocument:
        """Atomically write an internal record at a path from ``record_path``."""
        return self._write_document(path, self._record_label(path), None, payload)

    def _record_label(self, path: Path) -> str:
        relative = path.relative_to(self.root)
        return "/".join((*relative.parts[:-1], relative.name[: -len(STATE_SUFFIX)]))

    def _write_document(
        self,
        path: Path,
        mode: str,
        session_id: str | None,
        payload: Mapping[str, Any],
    ) -> StateDocument:
        if not isinstance(payload, Mapping):
            raise ValidationError("state payload must be a JSON object")

        document = StateDocument(
            mode=mode,
            session_id=session_id,
            payload={key: value for key, value in payload.items() if key != META_KEY},
            written_at=datetime.now(UTC).isoformat(),
            writer=self.writer,
        )
        try:
            content = json.dumps(document.to_dict(), indent=2)
        except (TypeError, ValueError) as err:
            raise ValidationError(f"state payload is not JSON serializable: {err}") from err

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path_str = tempfile.mkstemp(
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                text=True,
            )
        except OSError as err:
            raise StateError(f"Failed to prepare state file {path}: {err}") from err

        try:
            with open(temp_fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            Path(temp_path_str).replace(path)
        except OSError as err:
            Path(temp_path_str).unlink(missing_ok=True)
            raise StateError(f"Failed to write state file {path}: {err}") from err

        logger.debug(f"Wrote state {mode} (session={session_id}) to {path}")
        return document

    def read(self, mode: str, session_id: str | None = None) -> StateDocument | None:
        """Read a document, returning None when it has never been written.

        Raises:
            ValidationError: If the mode or session id is invalid
            StateError: If the file exists but cannot be read or parsed
        """
        return self._read_document(self.path_for(mode, session_id), mode, session_id)

    def read_record(self, path: Path) -> StateDocument | None:
        """Read an internal record at a path from ``record_path``."""
        return self._read_document(path, self._record_label(path), None)

    def _read_document(self, path: Path, mode: str, session_id: str | None) -> StateDocument | None:
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as err:
            raise StateError(f"Corrupted or unreadable state file {path}: {err}") from err

        if not isinstance(data, dict):
            raise StateError(f"State file {path} does not contain a JSON object")

        meta = data.pop(META_KEY, None)
        if not isinstance(meta, dict):
            meta = {}
        return StateDocument(
            mode=mode,
            session_id=session_id,
            payload=data,
            written_at=meta.get("written_at"),
            writer=meta.get("writer"),
        )

    def clear(self, mode: str, session_id: str | None = None) -> bool:
        """Remove a document. Returns False when there was nothing to remove."""
        path = self.path_for(mode, session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as err:
            raise StateError(f"Failed to remove state file {path}: {err}") from err
        logger.debug(f"Cleared state {mode} (session={session_id})")
        return True

    def list_modes(self, session_id: str | None = None) -> list[str]:
        """List the modes stored in a scope, sorted by name."""
        return self._list_names(self._scope_dir(session_id), exclude=RESERVED_NAMES)

    def list_records(self, namespace: str, *keys: str) -> list[str]:
        """List record names stored directly under ``<namespace>/<keys...>``."""
        return self._list_names(self._record_dir(namespace, keys))

    @staticmethod
    def _list_names(directory: Path, exclude: frozenset[str] = frozenset()) -> list[str]:
        if not directory.is_dir():
            return []
        names: list[str] = []
        for path in sorted(directory.glob(f"*{STATE_SUFFIX}")):
            name = path.name[: -len(STATE_SUFFIX)]
            if _SEGMENT_PATTERN.match(name) and name not in exclude:
                names.append(name)
        return names

    def list_active(self, session_id: str | None = None) -> list[str]:
        """Return the modes in a scope whose payload has a truthy ``active`` field."""
        active: list[str] = []
        for mode in self.list_modes(session_id=session_id):
            try:
                document = self.read(mode, session_id)
            except StateError as err:
                logger.warning(f"Skipping unreadable state for mode {mode}: {err}")
                continue
            if document is not None and document.active:
                active.append(mode)
        return active

    def status(self, mode: str | None = None, session_id: str | None = None) -> list[ModeStatus]:
        """Summarize one mode, or every known mode of a scope when mode is None."""
        if mode is not None:
            return [self._mode_status(mode, session_id)]
        modes = sorted(set(self.known_modes) | set(self.list_modes(session_id=session_id)))
        return [self._mode_status(name, session_id) for name in modes]

    def _mode_status(self, mode: str, session_id: str | None) -> ModeStatus:
        try:
            document = self.read(mode, session_id)
        except StateError as err:
            logger.warning(f"State for mode {mode} is unreadable: {err}")
            return ModeStatus(mode=mode, session_id=session_id, active=False, exists=True)
        if document is None:
            return ModeStatus(mode=mode, session_id=session_id, active=False, exists=False)
        return ModeStatus(
            mode=mode,
            session_id=session_id,
            active=document.active,
            exists=True,
            written_at=document.written_at,
        )

    def list_sessions(self) -> list[str]:
        """Return the ids of sessions that have a state directory."""
        sessions_dir = self.root / SESSIONS_DIR
        if not sessions_dir.is_dir():
            return []
        return sorted(
            child.name
            for child in sessions_dir.iterdir()
            if child.is_dir() and _SEGMENT_PATTERN.match(child.name)
        )
