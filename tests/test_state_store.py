"""Tests for the scoped state store."""

from __future__ import annotations

import json
import sys
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from agent_jobs.errors import StateError, ValidationError
from agent_jobs.state_store import META_KEY, StateStore, validate_mode, validate_session_id


class TestPaths:
    """Tests for mode and session path mapping."""

    def test_global_path(self, store: StateStore):
        """Test global documents live directly under the root."""
        assert store.path_for("ralph") == store.root / "ralph-state.json"

    def test_session_path(self, store: StateStore):
        """Test session documents live under sessions/<id>."""
        assert store.path_for("ralph", "abc") == store.root / "sessions" / "abc" / "ralph-state.json"

    def test_record_path(self, store: StateStore):
        """Test internal records live under their namespace directory."""
        assert store.record_path("jobs", "codex", "1a2b") == store.root / "jobs" / "codex" / "1a2b-state.json"

    def test_record_path_rejects_unknown_namespace(self, store: StateStore):
        """Test records cannot be placed outside the reserved namespaces."""
        with pytest.raises(ValidationError, match="namespace"):
            store.record_path("sessions", "abc", "ralph")

    @pytest.mark.parametrize(
        "mode",
        [
            "",
            "../etc",
            "a//b",
            ".hidden",
            "a/../b",
            "x-state.json",
            "sessions/abc/ralph",
            "jobs/codex/1a2b",
            "jobs",
            "sessions",
        ],
    )
    def test_invalid_modes(self, mode: str):
        """Test that traversal and malformed modes are rejected."""
        with pytest.raises(ValidationError):
            validate_mode(mode)

    @pytest.mark.parametrize("session_id", ["", "a/b", "..", None])
    def test_invalid_session_ids(self, session_id):
        """Test that session ids must be one safe path segment."""
        with pytest.raises(ValidationError):
            validate_session_id(session_id)


class TestReadWrite:
    """Tests for write, read and clear."""

    def test_read_absent_returns_none(self, store: StateStore):
        """Test reading a never-written mode returns None, not an error."""
        assert store.read("ralph") is None
        assert store.read("ralph", "abc") is None

    def test_write_then_read(self, store: StateStore):
        """Test a written document reads back with metadata."""
        written = store.write("ralph", {"active": True, "iteration": 3})

        document = store.read("ralph")

        assert document is not None
        assert document.payload == {"active": True, "iteration": 3}
        assert document.active is True
        assert document.writer == "test:1"
        assert document.written_at == written.written_at

    def test_meta_is_stamped_on_disk(self, store: StateStore):
        """Test the stored file carries a _meta block."""
        store.write("ralph", {"active": False}, "abc")

        data = json.loads(store.path_for("ralph", "abc").read_text(encoding="utf-8"))

        assert data["active"] is False
        assert data[META_KEY]["mode"] == "ralph"
        assert data[META_KEY]["session_id"] == "abc"
        assert data[META_KEY]["writer"] == "test:1"

    def test_caller_meta_is_replaced(self, store: StateStore):
        """Test a caller-supplied _meta key does not survive the write."""
        store.write("ralph", {"active": True, META_KEY: {"writer": "spoofed"}})

        assert store.read("ralph").writer == "test:1"

    def test_write_replaces_previous_document(self, store: StateStore):
        """Test a second write fully replaces the first."""
        store.write("ralph", {"active": True, "old": 1})
        store.write("ralph", {"active": False})

        assert store.read("ralph").payload == {"active": False}

    def test_rejects_non_mapping_payload(self, store: StateStore):
        """Test that payloads must be JSON objects."""
        with pytest.raises(ValidationError):
            store.write("ralph", ["not", "an", "object"])

    def test_rejects_unserializable_payload(self, store: StateStore):
        """Test that non-JSON values are rejected before touching disk."""
        with pytest.raises(ValidationError):
            store.write("ralph", {"value": object()})
        assert not store.path_for("ralph").exists()

    def test_failed_replace_keeps_previous_document(self, store: StateStore):
        """Test that a failed rename leaves the old document and no temp files."""
        store.write("ralph", {"active": True, "version": 1})

        with patch.object(Path, "replace", side_effect=OSError("disk full")):
            with pytest.raises(StateError):
                store.write("ralph", {"active": True, "version": 2})

        assert store.read("ralph").payload["version"] == 1
        assert list(store.root.glob(".*.tmp")) == []

    def test_no_temp_files_left_after_write(self, store: StateStore):
        """Test that successful writes leave only the target file."""
        for version in range(5):
            store.write("ralph", {"version": version})

        assert sorted(p.name for p in store.root.iterdir()) == ["ralph-state.json"]

    @pytest.mark.skipif(sys.platform == "win32", reason="open files block rename on Windows")
    def test_concurrent_writers_never_tear_reads(self, store: StateStore):
        """Test a reader racing several writers sees only whole documents."""
        payloads = [
            {"active": bool(n % 2), "writer": n, "blob": str(n) * 200_000} for n in range(3)
        ]
        store.write("ralph", payloads[0])
        stop = threading.Event()
        writer_errors: list[Exception] = []

        def write_loop(payload: dict) -> None:
            try:
                while not stop.is_set():
                    store.write("ralph", payload)
            except Exception as err:  # surfaced by the assertion below
                writer_errors.append(err)

        writers = [threading.Thread(target=write_loop, args=(payload,)) for payload in payloads]
        for writer in writers:
            writer.start()
        try:
            reads = 0
            deadline = time.monotonic() + 1.0
            while time.monotonic() < deadline or reads < 50:
                document = store.read("ralph")
                assert document is not None
                assert document.payload in payloads
                reads += 1
        finally:
            stop.set()
            for writer in writers:
                writer.join(timeout=10)

        assert writer_errors == []
        assert list(store.root.glob(".*.tmp")) == []

    def test_corrupt_file_raises_state_error(self, store: StateStore):
        """Test that a corrupt file is reported, not treated as absent."""
        path = store.path_for("ralph")
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StateError):
            store.read("ralph")
        assert path.exists()

    def test_non_object_file_raises_state_error(self, store: StateStore):
        """Test that a JSON array on disk is reported as corrupt."""
        path = store.path_for("ralph")
        path.parent.mkdir(parents=True)
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(StateError):
            store.read("ralph")

    def test_clear_is_idempotent(self, store: StateStore):
        """Test clearing twice succeeds and leaves the mode absent."""
        store.write("ralph", {"active": True})

        assert store.clear("ralph") is True
        assert store.clear("ralph") is False
        assert store.read("ralph") is None

    def test_clear_absent_mode(self, store: StateStore):
        """Test clearing a mode that was never written is not an error."""
        assert store.clear("ultrawork", "abc") is False


class TestScopes:
    """Tests for session isolation, listing and status."""

    def test_session_isolation(self, store: StateStore):
        """Test that session and global documents never alias."""
        store.write("ralph", {"active": True}, "abc")

        assert store.read("ralph") is None
        assert store.read("ralph", "xyz") is None
        assert store.read("ralph", "abc").active is True

        store.clear("ralph")
        assert store.read("ralph", "abc") is not None

    def test_list_active_is_scoped(self, store: StateStore):
        """Test a session-scoped active mode only shows up in that session."""
        store.write("ralph", {"active": True}, "abc")

        assert store.list_active("abc") == ["ralph"]
        assert store.list_active() == []
        assert store.list_active("other") == []

    def test_list_active_sorted_and_filtered(self, store: StateStore):
        """Test inactive modes are excluded and results are sorted."""
        store.write("ultrawork", {"active": True})
        store.write("autopilot", {"active": True})
        store.write("ralph", {"active": False})
        store.write("ecomode", {"enabled": True})

        assert store.list_active() == ["autopilot", "ultrawork"]

    def test_list_active_skips_corrupt_files(self, store: StateStore):
        """Test one unreadable document does not hide the others."""
        store.write("ralph", {"active": True})
        store.path_for("swarm").write_text("garbage", encoding="utf-8")

        assert store.list_active() == ["ralph"]

    def test_list_active_ignores_records(self, store: StateStore):
        """Test internal records are not listed as modes."""
        store.write_record(store.record_path("jobs", "codex", "abc123"), {"active": True})

        assert store.list_active() == []

    def test_status_single_mode(self, store: StateStore):
        """Test status for one mode reports existence and activity."""
        store.write("ralph", {"active": True}, "abc")

        [status] = store.status("ralph", "abc")

        assert status.active is True
        assert status.exists is True
        assert status.written_at is not None

    def test_status_all_modes_includes_known_modes(self, store: StateStore):
        """Test status without a mode covers known modes and stored ones."""
        store.write("custom-mode", {"active": True})

        statuses = {status.mode: status for status in store.status()}

        assert "ralph" in statuses
        assert statuses["ralph"].exists is False
        assert statuses["custom-mode"].active is True

    def test_status_corrupt_mode(self, store: StateStore):
        """Test a corrupt document is reported as existing but inactive."""
        path = store.path_for("ralph")
        path.parent.mkdir(parents=True)
        path.write_text("{", encoding="utf-8")

        [status] = store.status("ralph")

        assert status.exists is True
        assert status.active is False

    def test_list_sessions(self, store: StateStore):
        """Test sessions are discovered from their directories."""
        store.write("ralph", {"active": True}, "b-session")
        store.write("ralph", {"active": True}, "a-session")

        assert store.list_sessions() == ["a-session", "b-session"]

    def test_default_writer_identity(self, tmp_path: Path):
        """Test the default writer stamp is host:pid."""
        store = StateStore(tmp_path)
        assert ":" in store.writer
