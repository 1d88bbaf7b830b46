"""Shared fixtures for agent job tests."""

from __future__ import annotations

import sys
from collections.abc import Iterator, Sequence
from pathlib import Path

import pytest

from agent_jobs.config import Config
from agent_jobs.job_registry import JobRegistry
from agent_jobs.providers import Provider, ProviderCommand, register_provider, unregister_provider
from agent_jobs.state_store import StateStore

# Reads the prompt from stdin, sleeps argv[1] seconds, echoes, exits with argv[2]
ECHO_SCRIPT = (
    "import sys, time\n"
    "prompt = sys.stdin.read()\n"
    "delay = float(sys.argv[1]) if len(sys.argv) > 1 else 0\n"
    "code = int(sys.argv[2]) if len(sys.argv) > 2 else 0\n"
    "time.sleep(delay)\n"
    "print('echo: ' + prompt.strip())\n"
    "sys.stdout.flush()\n"
    "sys.exit(code)\n"
)


class ScriptProvider(Provider):
    """Provider that runs a short Python script instead of an AI CLI."""

    name = "script"
    SUPPORTED_MODELS = ("echo",)
    DEFAULT_MODEL = "echo"

    def default_executable(self) -> str:
        return sys.executable

    def build_command(
        self,
        model: str | None = None,
        extra_args: Sequence[str] = (),
    ) -> ProviderCommand:
        return ProviderCommand(
            executable=self._executable, args=("-c", ECHO_SCRIPT, *extra_args)
        )

    def get_provider_name(self) -> str:
        return "Script"


@pytest.fixture
def script_provider() -> Iterator[type[ScriptProvider]]:
    """Register the script provider for the duration of a test."""
    register_provider(ScriptProvider)
    yield ScriptProvider
    unregister_provider(ScriptProvider.name)


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config with fast polling and a cache directory inside tmp_path."""
    return Config(
        cache_dir=tmp_path / "cache",
        poll_initial_ms=20,
        poll_max_ms=200,
        kill_grace_seconds=2.0,
    )


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    """Resolved working directory for a test."""
    path = tmp_path / "project"
    path.mkdir()
    return path.resolve()


@pytest.fixture
def store(workdir: Path, config: Config) -> StateStore:
    return StateStore(config.state_root(workdir), writer="test:1")


@pytest.fixture
def registry(store: StateStore) -> JobRegistry:
    return JobRegistry(store)


@pytest.fixture
def echo_command() -> tuple[str, ...]:
    """Command line of the echo script without extra arguments."""
    return (sys.executable, "-c", ECHO_SCRIPT)
