"""Command line entry point for agent job management.

This module handles argument parsing, logging setup and rendering of tool
results with rich.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape

from .config import load_config
from .controller import ACTIVE_FILTER
from .errors import ConfigError
from .launcher import UNSET
from .log_setup import setup_logging
from .providers import available_providers
from .tools import AgentJobsTools, ToolResult

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        prog="agent-jobs",
        description="Launch and track background AI CLI jobs and mode state",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("./config.json"),
        help="Path to config.json (default: ./config.json, optional)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "-C",
        "--directory",
        dest="working_directory",
        help="Working directory holding state, prompts and outputs (default: cwd)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Print the structured result instead of formatted text",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    launch = commands.add_parser("launch", help="Launch a provider job")
    launch.add_argument("provider", choices=available_providers())
    prompt_group = launch.add_mutually_exclusive_group(required=True)
    prompt_group.add_argument("--prompt", help="Inline prompt (foreground only)")
    prompt_group.add_argument("--prompt-file", help="Prompt file relative to the working directory")
    launch.add_argument("--output-file", help="Where the CLI output is written")
    launch.add_argument("--model", help="Model override")
    launch.add_argument("--agent-role", help="Agent role recorded with the job")
    launch.add_argument(
        "--context-file",
        action="append",
        default=[],
        dest="context_files",
        help="File prepended to the prompt (repeatable)",
    )
    launch.add_argument(
        "--background",
        action="store_true",
        help="Return immediately and run the job under a detached supervisor",
    )
    launch.add_argument(
        "--extra-arg",
        action="append",
        default=[],
        dest="extra_args",
        help="Extra argument passed to the provider CLI (repeatable)",
    )

    wait = commands.add_parser("wait", help="Wait for a job to finish")
    wait.add_argument("job_id")
    wait.add_argument("--provider", help="Provider name (looked up when omitted)")
    wait.add_argument("--timeout-ms", type=int, help="Maximum wait in milliseconds")

    status = commands.add_parser("status", help="Show a job's current status")
    status.add_argument("job_id")
    status.add_argument("--provider", help="Provider name (looked up when omitted)")

    kill = commands.add_parser("kill", help="Send a termination signal to a job")
    kill.add_argument("job_id")
    kill.add_argument("--provider", help="Provider name (looked up when omitted)")
    kill.add_argument("--signal", default=None, help="Signal name (default: SIGTERM)")

    list_cmd = commands.add_parser("list", help="List a provider's jobs")
    list_cmd.add_argument("provider")
    list_cmd.add_argument(
        "--status",
        default=ACTIVE_FILTER,
        help="active (default), all, or a literal job status",
    )
    list_cmd.add_argument("--limit", type=int, default=None)

    state = commands.add_parser("state", help="Read and write mode state")
    state_commands = state.add_subparsers(dest="state_command", required=True)

    state_read = state_commands.add_parser("read", help="Read a mode's state")
    state_read.add_argument("mode")
    state_read.add_argument("--session-id")

    state_write = state_commands.add_parser("write", help="Write a mode's state")
    state_write.add_argument("mode")
    state_write.add_argument("payload", help="JSON object, or - to read it from stdin")
    state_write.add_argument("--session-id")

    state_clear = state_commands.add_parser("clear", help="Clear a mode's state")
    state_clear.add_argument("mode")
    state_clear.add_argument("--session-id")

    state_active = state_commands.add_parser("list-active", help="List active modes")
    state_active.add_argument("--session-id")

    state_status = state_commands.add_parser("status", help="Show mode status")
    state_status.add_argument("mode", nargs="?")
    state_status.add_argument("--session-id")

    return parser.parse_args(argv)


def _load_payload(raw: str) -> object:
    text = sys.stdin.read() if raw == "-" else raw
    try:
        return json.loads(text)
    except json.JSONDecodeError as err:
        raise ValueError(f"State payload is not valid JSON: {err}") from err


def _dispatch(tools: AgentJobsTools, args: argparse.Namespace) -> ToolResult:
    wd = args.working_directory

    if args.command == "launch":
        prompt_file = args.prompt_file if args.prompt_file is not None else UNSET
        return tools.launch_job(
            args.provider,
            prompt=args.prompt,
            prompt_file=prompt_file,
            output_file=args.output_file,
            agent_role=args.agent_role,
            model=args.model,
            context_files=args.context_files,
            extra_args=args.extra_args,
            background=args.background,
            working_directory=wd,
        )
    if args.command == "wait":
        return tools.wait_for_job(
            args.job_id, args.timeout_ms, provider=args.provider, working_directory=wd
        )
    if args.command == "status":
        return tools.check_job_status(args.job_id, provider=args.provider, working_directory=wd)
    if args.command == "kill":
        return tools.kill_job(
            args.job_id, args.signal, provider=args.provider, working_directory=wd
        )
    if args.command == "list":
        return tools.list_jobs(args.provider, args.status, args.limit, working_directory=wd)

    if args.state_command == "read":
        return tools.state_read(args.mode, args.session_id, working_directory=wd)
    if args.state_command == "write":
        try:
            payload = _load_payload(args.payload)
        except ValueError as err:
            return ToolResult(text=str(err), is_error=True)
        return tools.state_write(args.mode, payload, args.session_id, working_directory=wd)
    if args.state_command == "clear":
        return tools.state_clear(args.mode, args.session_id, working_directory=wd)
    if args.state_command == "list-active":
        return tools.state_list_active(args.session_id, working_directory=wd)
    return tools.state_get_status(args.mode, args.session_id, working_directory=wd)


def _render(console: Console, result: ToolResult, as_json: bool) -> None:
    if as_json:
        console.print_json(
            json.dumps(
                {"text": result.text, "is_error": result.is_error, "data": result.data},
                default=str,
            )
        )
        return
    if result.is_error:
        console.print(f"[red]Error:[/red] {escape(result.text)}", highlight=False)
        return
    console.print(Markdown(result.text))


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the agent-jobs command.

    Returns:
        Exit code (0=success, 1=error)
    """
    args = _parse_args(argv)
    console = Console()

    try:
        config = load_config(args.config.resolve())
    except ConfigError as err:
        console.print(f"[red]Error loading config: {err}[/red]")
        return 1

    log_file = config.cache_dir / "agent-jobs.log"
    setup_logging(log_file, args.debug)
    logger.info(
        f"agent-jobs {args.command} invoked",
        extra={
            "extra_context": {
                "config_path": str(args.config),
                "working_directory": args.working_directory,
            }
        },
    )

    tools = AgentJobsTools(config, log_file=log_file)
    try:
        result = _dispatch(tools, args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user (KeyboardInterrupt)")
        console.print("[yellow]Interrupted[/yellow]")
        return 130

    _render(console, result, args.as_json)
    return 1 if result.is_error else 0


if __name__ == "__main__":
    sys.exit(main())
