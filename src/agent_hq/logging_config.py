"""Logging configuration for agent-hq.

Provides a configured logger that writes to ~/.agent-hq/agent-hq.log, plus
JSON-lines audit loggers for the side logs (write errors, deletions and
display order changes).
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import DATA_DIR, LOG_FILE


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured logger that writes to the agent-hq log file
    """
    logger = logging.getLogger(name)

    # Only configure if not already configured
    if not logger.handlers:
        logger.setLevel(logging.DEBUG)

        try:
            DATA_DIR.mkdir(mode=0o700, parents=True, exist_ok=True)
            file_handler = logging.FileHandler(LOG_FILE)
        except OSError:
            # Read-only home: keep running without a log file
            logger.addHandler(logging.NullHandler())
            return logger

        file_handler.setLevel(logging.DEBUG)
        file_formatter = logging.Formatter(
            "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger


class _AuditHandler(logging.FileHandler):
    """File handler that never lets a failed audit write escape."""

    def handleError(self, record: logging.LogRecord) -> None:
        pass


def get_audit_logger(name: str, path: Path) -> logging.Logger:
    """Get a logger that appends raw JSON lines to ``path``.

    Each (name, path) pair gets its own logger so tests can point audit logs
    at a temporary directory.
    """
    logger = logging.getLogger(f"agent_hq.audit.{name}.{path}")
    if not logger.handlers:
        logger.setLevel(logging.INFO)
        logger.propagate = False
        try:
            path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            handler: logging.Handler = _AuditHandler(path, delay=True)
        except OSError:
            handler = logging.NullHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    return logger


def audit(logger: logging.Logger, **fields: Any) -> None:
    """Write one timestamped JSON entry to an audit logger."""
    entry = {"timestamp": datetime.now(timezone.utc).isoformat(), **fields}
    logger.info(json.dumps(entry, default=str))


class AgentHQError(Exception):
    """Base exception for agent-hq errors."""

    pass


class StoreError(AgentHQError):
    """Error reading or writing the session store."""

    pass


class DaemonError(AgentHQError):
    """The store daemon is missing or unusable."""

    pass


class TmuxError(AgentHQError):
    """Error related to tmux operations."""

    pass
