"""Prompt persistence and composition for provider jobs."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from pathlib import Path

from .errors import ValidationError

logger = logging.getLogger(__name__)

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def slugify(text: str, max_length: int = 40) -> str:
    """Turn free text into a filename-safe slug ("prompt" if nothing survives)."""
    slug = _SLUG_INVALID.sub("-", text.lower()).strip("-")
    slug = slug[:max_length].rstrip("-")
    return slug or "prompt"


def persist_inline_prompt(prompts_dir: Path, provider: str, prompt: str, job_id: str) -> Path:
    """Write an inline prompt to an audit file and return its path."""
    prompts_dir.mkdir(parents=True, exist_ok=True)
    path = prompts_dir / f"{provider}-prompt-{slugify(prompt)}-{job_id}.md"
    path.write_text(prompt, encoding="utf-8")
    logger.info(f"Persisted inline prompt to {path}")
    return path


def default_output_path(prompts_dir: Path, provider: str, job_id: str) -> Path:
    """Return the output file used when the caller does not name one."""
    return prompts_dir / f"{provider}-response-{job_id}.md"


def read_prompt_file(path: Path) -> str:
    """Read a prompt file.

    Raises:
        ValidationError: If the file cannot be read or is blank
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as err:
        raise ValidationError(f"Failed to read prompt file {path}: {err}") from err
    if not text.strip():
        raise ValidationError(f"Prompt file is empty: {path}")
    return text


def read_output(path: Path, parse: Callable[[str], str] | None = None) -> str | None:
    """Read a job's output file, or None if it does not exist yet."""
    try:
        raw = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return None
    except OSError as err:
        logger.warning(f"Failed to read output file {path}: {err}")
        return None
    return parse(raw) if parse is not None else raw


def truncate(text: str, limit: int) -> str:
    """Truncate text to ``limit`` characters, marking the cut."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n... [truncated, {len(text) - limit} more characters]"


def build_prompt(prompt: str, context_files: Sequence[str | Path] = ()) -> str:
    """Prepend the contents of context files to the prompt.

    Unreadable files are included as an error marker rather than failing the job.
    """
    if not context_files:
        return prompt

    sections: list[str] = []
    for file_path in context_files:
        try:
            content = Path(file_path).read_text(encoding="utf-8")
            sections.append(f"--- File: {file_path} ---\n{content}")
        except OSError as err:
            sections.append(f"--- File: {file_path} --- (Error reading: {err})")
    return "\n\n".join([*sections, prompt])
