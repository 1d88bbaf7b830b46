"""Platform-agnostic subprocess helpers for Windows/Linux/macOS compatibility.

This module centralizes platform-specific process logic: spawning detached
processes, signalling recorded pids, and terminating children gracefully.
"""

from __future__ import annotations

import logging
import os
import platform
import shlex
import signal
import subprocess
import time
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ALLOWED_SIGNALS = ("SIGTERM", "SIGINT", "SIGHUP", "SIGQUIT", "SIGKILL")


def _is_windows() -> bool:
    return platform.system() == "Windows"


def format_command_string(command: list[str] | tuple[str, ...]) -> str:
    """Format command as a properly quoted string for the current platform.

    Uses platform-specific quoting rules:
    - Windows: subprocess.list2cmdline() for cmd.exe/PowerShell compatibility
    - Linux/macOS: shlex.join() for POSIX shell compatibility
    """
    if _is_windows():
        return subprocess.list2cmdline(command)
    return shlex.join(command)


def get_clean_env(additions: dict[str, str] | None = None) -> dict[str, str]:
    """Get environment with CLAUDE* variables removed and optional additions.

    Prevents nested Claude Code session conflicts when a job launches the
    Claude CLI from inside a Claude session.
    """
    env = os.environ.copy()
    for key in list(env.keys()):
        if key.startswith("CLAUDE"):
            del env[key]
    if additions:
        env.update(additions)
    return env


def popen_command(
    command: list[str] | tuple[str, ...],
    *,
    cwd: Path | str | None = None,
    stdin: Any = None,
    stdout: Any = subprocess.PIPE,
    stderr: Any = subprocess.STDOUT,
    detach: bool = False,
    env: dict[str, str] | None = None,
) -> subprocess.Popen[bytes]:
    """Platform-agnostic subprocess.Popen() wrapper for non-blocking execution.

    Args:
        command: Command as list or tuple
        cwd: Working directory (optional)
        stdin: stdin redirection
        stdout: stdout redirection (default: PIPE)
        stderr: stderr redirection (default: STDOUT)
        detach: Start the process in its own session/process group so it is
            not affected by signals sent to the caller's group and survives it
        env: Environment for the child (default: inherit)

    Raises:
        OSError: If the executable cannot be started
    """
    if _is_windows():
        creationflags = 0
        if detach:
            creationflags = subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.DETACHED_PROCESS
        return subprocess.Popen(
            format_command_string(command),
            cwd=cwd,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            shell=True,
            env=env,
            creationflags=creationflags,
        )
    return subprocess.Popen(
        command,
        cwd=cwd,
        stdin=stdin,
        stdout=stdout,
        stderr=stderr,
        shell=False,
        env=env,
        start_new_session=detach,
    )


def resolve_signal(signal_name: str | None) -> signal.Signals:
    """Map a signal name to a signal, defaulting to SIGTERM.

    Raises:
        ValueError: If the name is not an allowed termination signal
    """
    name = (signal_name or "SIGTERM").upper()
    if not name.startswith("SIG"):
        name = f"SIG{name}"
    if name not in ALLOWED_SIGNALS or not hasattr(signal, name):
        raise ValueError(
            f"Unsupported signal: {signal_name}. Allowed: {', '.join(ALLOWED_SIGNALS)}"
        )
    return signal.Signals[name]


def send_signal(pid: int, sig: signal.Signals) -> bool:
    """Deliver a signal to a pid.

    Returns:
        True if the signal was delivered, False if no such process exists
    """
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        return False
    logger.info(f"Sent {sig.name} to PID {pid}")
    return True


def is_pid_alive(pid: int) -> bool:
    """Check if a process with the given PID is still running."""
    try:
        # Signal 0 checks existence without sending anything
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    except OSError as err:
        logger.warning(f"Error checking PID {pid}: {err}")
        return False


def wait_for_exit(pid: int, timeout: float, interval: float = 0.05) -> bool:
    """Wait up to ``timeout`` seconds for a pid to disappear.

    Returns:
        True if the process is gone, False if it is still alive
    """
    deadline = time.monotonic() + timeout
    while True:
        _reap(pid)
        if not is_pid_alive(pid):
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(interval)


def _reap(pid: int) -> None:
    # A zombie child of this process still answers signal 0
    if _is_windows():
        return
    try:
        os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        pass
    except OSError as err:
        logger.debug(f"waitpid({pid}) failed: {err}")


def safe_terminate_process(process: subprocess.Popen[Any], timeout: int = 5) -> None:
    """Safely terminate a subprocess with graceful fallback to kill.

    Args:
        process: The subprocess to terminate
        timeout: Seconds to wait for graceful termination before force kill
    """
    try:
        process.terminate()
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {process.pid} did not terminate gracefully, forcing kill")
        try:
            process.kill()
            process.wait(timeout=2)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Failed to kill process {process.pid}: {e}")
    except OSError as e:
        logger.error(f"Error terminating process {process.pid}: {e}")
