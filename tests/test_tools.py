"""Tests for the tool handlers."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from agent_jobs.config import Config
from agent_jobs.job_registry import JobRegistry
from agent_jobs.models import JobStatus
from agent_jobs.tools import AgentJobsTools


@pytest.fixture
def tools(config: Config) -> AgentJobsTools:
    return AgentJobsTools(config)


@pytest.fixture
def wd(workdir: Path) -> str:
    return str(workdir)


class TestStateTools:
    """Tests for the mode state tools."""

    def test_read_absent(self, tools: AgentJobsTools, wd: str):
        """Test reading a missing mode is not an error."""
        result = tools.state_read("ralph", working_directory=wd)

        assert not result.is_error
        assert result.text == "No state found for mode: ralph"
        assert result.data == {"found": False}

    def test_write_then_read(self, tools: AgentJobsTools, wd: str):
        """Test a written document is returned with its metadata."""
        written = tools.state_write("ralph", {"active": True, "iteration": 2}, working_directory=wd)
        assert not written.is_error
        assert written.text.startswith("Successfully wrote state for mode: ralph")

        result = tools.state_read("ralph", working_directory=wd)

        assert "## State: ralph" in result.text
        assert result.data["state"]["iteration"] == 2
        assert "_meta" in result.data["state"]

    def test_write_rejects_non_object(self, tools: AgentJobsTools, wd: str):
        """Test invalid payloads become error results."""
        result = tools.state_write("ralph", "active", working_directory=wd)
        assert result.is_error
        assert "JSON object" in result.text

    def test_invalid_mode(self, tools: AgentJobsTools, wd: str):
        """Test traversal in mode names is an error result."""
        result = tools.state_read("../secrets", working_directory=wd)
        assert result.is_error

    def test_slashed_mode_cannot_reach_session_scope(self, tools: AgentJobsTools, wd: str):
        """Test a global write cannot overwrite a session document by path."""
        tools.state_write("ralph", {"active": True, "owner": "session"}, session_id="abc", working_directory=wd)

        result = tools.state_write("sessions/abc/ralph", {"active": False}, working_directory=wd)

        assert result.is_error
        session = tools.state_read("ralph", session_id="abc", working_directory=wd)
        assert session.data["state"]["owner"] == "session"
        assert session.data["state"]["active"] is True

    @pytest.mark.parametrize("tool", ["state_write", "state_read", "state_clear"])
    def test_state_tools_cannot_address_job_records(
        self, tools: AgentJobsTools, wd: str, registry: JobRegistry, tool: str
    ):
        """Test job records are out of reach of the mode state tools."""
        job = registry.create_job("codex", output_file="o.md", prompt_file="p.md")
        registry.update_job("codex", job.id, {"status": "completed", "exit_code": 0})

        handler = getattr(tools, tool)
        if tool == "state_write":
            result = handler(f"jobs/codex/{job.id}", {"status": "running"}, working_directory=wd)
        else:
            result = handler(f"jobs/codex/{job.id}", working_directory=wd)

        assert result.is_error
        assert registry.get_job("codex", job.id).status == JobStatus.COMPLETED

    @pytest.mark.parametrize("mode", ["jobs", "sessions"])
    def test_reserved_mode_names(self, tools: AgentJobsTools, wd: str, mode: str):
        """Test modes cannot take the names of the internal directories."""
        result = tools.state_write(mode, {"active": True}, working_directory=wd)
        assert result.is_error
        assert "reserved" in result.text

    def test_missing_working_directory(self, tools: AgentJobsTools, tmp_path: Path):
        """Test an unknown working directory is an error result."""
        result = tools.state_read("ralph", working_directory=str(tmp_path / "nope"))
        assert result.is_error
        assert "working_directory does not exist" in result.text

    def test_clear_twice(self, tools: AgentJobsTools, wd: str):
        """Test clearing is idempotent and both calls succeed."""
        tools.state_write("ralph", {"active": True}, working_directory=wd)

        first = tools.state_clear("ralph", working_directory=wd)
        second = tools.state_clear("ralph", working_directory=wd)

        assert not first.is_error
        assert first.text == "Successfully cleared state for mode: ralph"
        assert not second.is_error
        assert "already cleared" in second.text

    def test_list_active_by_session(self, tools: AgentJobsTools, wd: str):
        """Test session-scoped modes only appear for their session."""
        tools.state_write("ralph", {"active": True}, session_id="abc", working_directory=wd)

        scoped = tools.state_list_active("abc", working_directory=wd)
        global_ = tools.state_list_active(working_directory=wd)

        assert scoped.data["modes"] == ["ralph"]
        assert "- ralph" in scoped.text
        assert global_.data["modes"] == []
        assert "No modes are currently active" in global_.text

    def test_get_status_single(self, tools: AgentJobsTools, wd: str):
        """Test status for a single mode."""
        tools.state_write("ultrawork", {"active": True}, working_directory=wd)

        result = tools.state_get_status("ultrawork", working_directory=wd)

        assert "## Status: ultrawork" in result.text
        assert "- Active: yes" in result.text

    def test_get_status_all(self, tools: AgentJobsTools, wd: str):
        """Test the all-modes summary marks active and inactive modes."""
        tools.state_write("ralph", {"active": True}, working_directory=wd)

        result = tools.state_get_status(working_directory=wd)

        assert "## All Mode Statuses" in result.text
        assert "[ACTIVE] ralph" in result.text
        assert "[INACTIVE] autopilot" in result.text

    def test_corrupt_state_is_error(self, tools: AgentJobsTools, wd: str, config: Config, workdir: Path):
        """Test a corrupt state file is reported as an error result."""
        path = config.state_root(workdir) / "ralph-state.json"
        path.parent.mkdir(parents=True)
        path.write_text("{", encoding="utf-8")

        result = tools.state_read("ralph", working_directory=wd)

        assert result.is_error
        assert "Corrupted" in result.text


class TestJobTools:
    """Tests for the job tools."""

    def test_launch_validation_error(self, tools: AgentJobsTools, wd: str, script_provider):
        """Test validation failures become error results."""
        result = tools.launch_job("script", working_directory=wd)

        assert result.is_error
        assert result.text == "Either 'prompt' (inline) or 'prompt_file' (file path) is required"

    def test_launch_unknown_provider(self, tools: AgentJobsTools, wd: str):
        result = tools.launch_job("copilot", prompt="hi", working_directory=wd)
        assert result.is_error
        assert "Unknown provider" in result.text

    def test_launch_foreground(self, tools: AgentJobsTools, wd: str, script_provider):
        """Test a foreground launch returns the response text."""
        result = tools.launch_job("script", prompt="hello", working_directory=wd)

        assert not result.is_error
        assert result.text == "echo: hello"
        assert result.data["job"]["status"] == "completed"

    def test_launch_foreground_failure(self, tools: AgentJobsTools, wd: str, script_provider):
        """Test a failing foreground job is an error result naming the job."""
        result = tools.launch_job("script", prompt="hello", extra_args=["0", "4"], working_directory=wd)

        assert result.is_error
        assert "Script job" in result.text
        assert "failed" in result.text

    def test_missing_cli(self, tools: AgentJobsTools, wd: str):
        """Test an unavailable CLI is an error result with the install hint."""
        with patch("agent_jobs.providers.shutil.which", return_value=None):
            result = tools.launch_job("codex", prompt="hello", working_directory=wd)

        assert result.is_error
        assert "Codex CLI is not available" in result.text
        assert "npm install -g @openai/codex" in result.text

    def test_unknown_job(self, tools: AgentJobsTools, wd: str):
        """Test job tools report unknown ids as errors."""
        for result in (
            tools.wait_for_job("deadbeef", working_directory=wd),
            tools.check_job_status("deadbeef", working_directory=wd),
            tools.kill_job("deadbeef", working_directory=wd),
        ):
            assert result.is_error
            assert "No job found with ID: deadbeef" in result.text

    def test_invalid_job_id(self, tools: AgentJobsTools, wd: str):
        result = tools.check_job_status("../etc", working_directory=wd)
        assert result.is_error
        assert "Invalid job_id" in result.text

    def test_check_status(self, tools: AgentJobsTools, wd: str, registry: JobRegistry):
        """Test status checks find the provider from the job id."""
        job = registry.create_job("codex", output_file="o.md", prompt_file="p.md", model="gpt-4.1")

        result = tools.check_job_status(job.id, working_directory=wd)

        assert not result.is_error
        assert f"**Job ID:** {job.id}" in result.text
        assert "**Status:** spawned" in result.text
        assert "**Model:** gpt-4.1" in result.text

    def test_wait_invalid_timeout(self, tools: AgentJobsTools, wd: str, registry: JobRegistry):
        job = registry.create_job("codex", output_file="o.md", prompt_file="p.md")
        result = tools.wait_for_job(job.id, timeout_ms=0, working_directory=wd)
        assert result.is_error
        assert "timeout_ms must be positive" in result.text

    def test_wait_timeout_is_not_error(self, tools: AgentJobsTools, wd: str, registry: JobRegistry):
        """Test a wait that runs out of time is a normal result."""
        job = registry.create_job("codex", output_file="o.md", prompt_file="p.md")

        result = tools.wait_for_job(job.id, timeout_ms=10, provider="codex", working_directory=wd)

        assert not result.is_error
        assert "## Wait Timed Out" in result.text
        assert result.data["outcome"] == "timeout"

    def test_wait_failed_job_is_error(self, tools: AgentJobsTools, wd: str, registry: JobRegistry):
        job = registry.create_job("codex", output_file="o.md", prompt_file="p.md")
        registry.update_job("codex", job.id, {"status": "failed", "exit_code": 1, "error": "boom"})

        result = tools.wait_for_job(job.id, working_directory=wd)

        assert result.is_error
        assert "## Job Failed" in result.text
        assert "**Error:** boom" in result.text

    def test_kill_finished_job(self, tools: AgentJobsTools, wd: str, registry: JobRegistry):
        """Test killing a finished job is an error result."""
        job = registry.create_job("codex", output_file="o.md", prompt_file="p.md")
        registry.update_job("codex", job.id, {"status": "completed", "exit_code": 0})

        result = tools.kill_job(job.id, working_directory=wd)

        assert result.is_error
        assert "is not running (status: completed)" in result.text
        assert registry.get_job("codex", job.id).status == JobStatus.COMPLETED

    def test_kill_spawned_job(self, tools: AgentJobsTools, wd: str, registry: JobRegistry):
        job = registry.create_job("codex", output_file="o.md", prompt_file="p.md")

        result = tools.kill_job(job.id, signal="SIGKILL", working_directory=wd)

        assert not result.is_error
        assert "Sent SIGKILL" in result.text
        assert result.data["job"]["status"] == "killed"

    def test_kill_invalid_signal(self, tools: AgentJobsTools, wd: str, registry: JobRegistry):
        job = registry.create_job("codex", output_file="o.md", prompt_file="p.md")
        result = tools.kill_job(job.id, signal="SIGSTOP", working_directory=wd)
        assert result.is_error
        assert "Unsupported signal" in result.text

    def test_list_jobs_empty(self, tools: AgentJobsTools, wd: str):
        result = tools.list_jobs("codex", working_directory=wd)
        assert not result.is_error
        assert "No codex jobs match filter: active" in result.text

    def test_list_jobs_invalid_filter(self, tools: AgentJobsTools, wd: str):
        result = tools.list_jobs("codex", "done", working_directory=wd)
        assert result.is_error

    def test_list_jobs(self, tools: AgentJobsTools, wd: str, registry: JobRegistry):
        job = registry.create_job("gemini", output_file="o.md", prompt_file="p.md")

        result = tools.list_jobs("gemini", working_directory=wd)

        assert "## Jobs (1)" in result.text
        assert f"### {job.id}" in result.text
