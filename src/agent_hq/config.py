"""Configuration constants, paths and the persisted user config."""

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

# Base directory for all agent-hq data
DATA_DIR = Path(os.environ.get("AGENT_HQ_HOME", Path.home() / ".agent-hq"))
STORE_FILE = DATA_DIR / "sessions.json"
CONFIG_FILE = DATA_DIR / "config.json"
SOCKET_PATH = DATA_DIR / "agent-hq.sock"

# Log files
LOG_FILE = DATA_DIR / "agent-hq.log"
ERROR_LOG_FILE = DATA_DIR / "error.log"
DELETION_LOG_FILE = DATA_DIR / "deletion.log"
DISPLAY_ORDER_LOG_FILE = DATA_DIR / "display-order-changes.log"

# Native agent transcripts
CLAUDE_PROJECTS_DIR = Path.home() / ".claude" / "projects"

# External agent (no hooks, transcript directory only)
EXTERNAL_SESSION_PREFIX = "codex-"
EXTERNAL_HOME = Path(os.environ.get("CODEX_HOME", Path.home() / ".codex"))
EXTERNAL_SESSIONS_DIR = EXTERNAL_HOME / "sessions"

# Write cache
WRITE_DEBOUNCE_SECONDS = 0.1
WRITE_MAX_RETRIES = 3
WRITE_RETRY_DELAY_SECONDS = 0.05

# Daemon
DAEMON_TIMEOUT_SECONDS = 1.0

# Loops
CLEANUP_INTERVAL_SECONDS = 15.0
REFRESH_INTERVAL_SECONDS = 5.0

# Caches
TTY_CACHE_TTL_SECONDS = 30.0
MAX_TTY_CACHE_SIZE = 100
TMUX_CACHE_TTL_SECONDS = 1.0
TRANSCRIPT_INDEX_TTL_SECONDS = 5.0

# Transcript matching and status inference
TRANSCRIPT_MATCH_TOLERANCE_SECONDS = 10.0
EXTERNAL_IDLE_THRESHOLD_SECONDS = 30.0
EXTERNAL_NO_TRANSCRIPT_GRACE_SECONDS = 60.0

# Dashboard
MAX_VISIBLE_SESSIONS = 9


class SummaryConfig(BaseModel):
    """Settings for the optional session summary feature."""

    enabled: bool = False
    provider: str = "anthropic"
    api_key: str = ""
    model: str | None = None


class Config(BaseModel):
    """User configuration stored in config.json."""

    # 0 = no timeout (sessions persist until cleared or their TTY closes)
    session_timeout_minutes: int = Field(default=0, ge=0)
    summary: SummaryConfig | None = None


def ensure_dirs() -> None:
    """Create the data directory if it doesn't exist."""
    DATA_DIR.mkdir(mode=0o700, parents=True, exist_ok=True)


def read_config(path: Path | None = None) -> Config:
    """Read configuration, falling back to defaults when missing or invalid."""
    path = path or CONFIG_FILE
    if not path.exists():
        return Config()

    try:
        return Config.model_validate(json.loads(path.read_text()))
    except (json.JSONDecodeError, ValidationError, OSError) as e:
        # Imported here to avoid a cycle: logging_config reads paths from this module
        from .logging_config import get_logger

        get_logger(__name__).warning(f"Invalid config file {path}, using defaults: {e}")
        return Config()


def write_config(config: Config, path: Path | None = None) -> None:
    """Persist configuration with owner-only permissions."""
    path = path or CONFIG_FILE
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    path.write_text(config.model_dump_json(indent=2, exclude_none=True))
    os.chmod(path, 0o600)


def get_session_timeout_seconds(path: Path | None = None) -> float:
    """Session timeout in seconds, 0 when disabled."""
    return read_config(path).session_timeout_minutes * 60


def set_session_timeout(minutes: int, path: Path | None = None) -> None:
    config = read_config(path)
    config.session_timeout_minutes = minutes
    write_config(config, path)


def get_summary_config(path: Path | None = None) -> SummaryConfig | None:
    return read_config(path).summary


def is_summary_enabled(path: Path | None = None) -> bool:
    """Summaries need both the flag and an API key."""
    summary = get_summary_config(path)
    return bool(summary and summary.enabled and summary.api_key)


def enable_summary(api_key: str, model: str | None = None, path: Path | None = None) -> None:
    config = read_config(path)
    config.summary = SummaryConfig(enabled=True, api_key=api_key, model=model)
    write_config(config, path)


def disable_summary(path: Path | None = None) -> None:
    """Turn summaries off but keep the API key for re-enabling."""
    config = read_config(path)
    if config.summary:
        config.summary.enabled = False
        write_config(config, path)
