"""JSON-lines logging shared by the CLI and detached job supervisors.

Every process writes to the same rotating file, so each line carries the pid
and, for supervisors, the job it belongs to.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 3


class JSONFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        context: dict[str, Any] = {
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "process": record.process,
        }
        context.update(getattr(record, "job_context", {}))
        context.update(getattr(record, "extra_context", {}))

        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "event": record.getMessage(),
            "context": context,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class JobContextFilter(logging.Filter):
    """Stamp fixed fields (job id, provider) onto every record."""

    def __init__(self, fields: dict[str, Any]) -> None:
        super().__init__()
        self.fields = dict(fields)

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_context = self.fields
        return True


def setup_logging(
    log_file: Path,
    debug: bool = False,
    context: dict[str, Any] | None = None,
) -> None:
    """Route all logging to a rotating JSON-lines file.

    Args:
        log_file: Path to log file, created with its parent directory
        debug: Enable debug level logging
        context: Fields added to every line written by this process
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(JSONFormatter())
    handler.setLevel(level)
    if context:
        handler.addFilter(JobContextFilter(context))
    root_logger.addHandler(handler)

    logger.info(
        "Logging initialized",
        extra={"extra_context": {"log_file": str(log_file), "debug": debug}},
    )
