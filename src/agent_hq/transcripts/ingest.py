"""Incremental ingestion of external-agent transcripts.

The external agent writes append-only JSON-lines transcripts and sends no
hooks. Each pass reads only the bytes added since the previous pass and
replays the interesting entries through the store as hook events.
"""

import json
import os
import re
import time
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path

from ..config import EXTERNAL_SESSION_PREFIX, EXTERNAL_SESSIONS_DIR, get_session_timeout_seconds
from ..logging_config import get_logger
from ..store.file_store import SessionStore
from ..store.models import HookEvent

logger = get_logger(__name__)

SESSION_ID_PATTERN = re.compile(r"[0-9a-f]{8}(?:-[0-9a-f]{4}){3}-[0-9a-f]{12}", re.IGNORECASE)


def is_disabled() -> bool:
    return os.environ.get("AGENT_HQ_DISABLE_EXTERNAL", "").lower() in ("1", "true")


def active_window_seconds() -> float | None:
    """How far back to look for live transcripts, None for everything.

    AGENT_HQ_EXTERNAL_RECENT_MINUTES wins over the session timeout.
    """
    env = os.environ.get("AGENT_HQ_EXTERNAL_RECENT_MINUTES")
    if env is not None:
        try:
            minutes = float(env)
        except ValueError:
            return None
        return minutes * 60 if minutes > 0 else None
    timeout = get_session_timeout_seconds()
    return timeout or None


def session_id_from_path(path: Path) -> str | None:
    match = SESSION_ID_PATTERN.search(path.name)
    return match.group(0) if match else None


def encode_session_id(raw_id: str) -> str:
    return f"{EXTERNAL_SESSION_PREFIX}{raw_id}"


@dataclass
class _FileState:
    session_id: str
    offset: int = 0
    remainder: str = ""
    cwd: str | None = None
    last_message: str | None = None


def _assistant_text(content: object) -> str | None:
    if isinstance(content, str):
        return content.strip() or None
    if not isinstance(content, list):
        return None
    parts = [
        part["text"]
        for part in content
        if isinstance(part, dict)
        and isinstance(part.get("text"), str)
        and part.get("type", "output_text") == "output_text"
        and part["text"]
    ]
    return "\n".join(parts).strip() or None


class ExternalTranscriptIngester:
    """Tails external transcripts and feeds them into a SessionStore."""

    def __init__(
        self,
        store: SessionStore,
        sessions_dir: Path = EXTERNAL_SESSIONS_DIR,
        active_window: float | None = None,
    ):
        self.store = store
        self.sessions_dir = Path(sessions_dir)
        self.active_window = active_window
        self._states: dict[str, _FileState] = {}

    def _candidate_files(self) -> list[Path]:
        if self.active_window is None:
            return sorted(self.sessions_dir.rglob("*.jsonl"))

        # Transcripts live under YYYY/MM/DD; only walk the days in the window
        today = date.today()
        day = date.fromtimestamp(time.time() - self.active_window)
        files: list[Path] = []
        while day <= today:
            day_dir = self.sessions_dir / f"{day.year:04d}" / f"{day.month:02d}" / f"{day.day:02d}"
            if day_dir.is_dir():
                files.extend(sorted(day_dir.rglob("*.jsonl")))
            day += timedelta(days=1)

        cutoff = time.time() - self.active_window
        recent = []
        for path in files:
            try:
                if path.stat().st_mtime >= cutoff:
                    recent.append(path)
            except OSError as e:
                logger.warning(f"Cannot stat transcript {path}: {e}")
        return recent

    def sync_once(self) -> int:
        """Ingest new lines from every live transcript. Returns files touched."""
        if is_disabled() or not self.sessions_dir.is_dir():
            return 0
        count = 0
        for path in self._candidate_files():
            if self.ingest_file(path):
                count += 1
        return count

    def ingest_file(self, path: Path) -> bool:
        state = self._states.get(str(path))
        if state is None:
            raw_id = session_id_from_path(path)
            if not raw_id:
                return False
            state = _FileState(session_id=encode_session_id(raw_id))
            self._states[str(path)] = state

        lines = self._read_new_lines(path, state)
        for line in lines:
            self._ingest_line(line, state)
        return bool(lines)

    def _read_new_lines(self, path: Path, state: _FileState) -> list[str]:
        try:
            size = path.stat().st_size
            if size < state.offset:
                # Truncated or replaced: start over
                state.offset, state.remainder = 0, ""
            if size == state.offset:
                return []
            with open(path, "rb") as f:
                f.seek(state.offset)
                data = f.read(size - state.offset)
        except OSError as e:
            logger.warning(f"Reading transcript {path} failed: {e}")
            return []

        state.offset = size
        text = state.remainder + data.decode("utf-8", errors="replace")
        *lines, state.remainder = text.split("\n")
        return [line for line in lines if line.strip()]

    def _event(self, state: _FileState, name: str, **fields: str) -> HookEvent:
        return HookEvent(
            session_id=state.session_id,
            cwd=state.cwd or os.getcwd(),
            hook_event_name=name,
            **fields,
        )

    def _set_last_message(
        self, state: _FileState, message: str | None, timestamp: str | None
    ) -> None:
        if message and message != state.last_message:
            state.last_message = message
            self.store.update_session_last_message(state.session_id, message, timestamp)

    def _ingest_line(self, line: str, state: _FileState) -> None:
        try:
            entry = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping malformed transcript line for {state.session_id}: {e}")
            return
        if not isinstance(entry, dict) or not isinstance(entry.get("payload"), dict):
            return

        entry_type = entry.get("type")
        payload = entry["payload"]
        timestamp = entry.get("timestamp") if isinstance(entry.get("timestamp"), str) else None

        if entry_type == "session_meta":
            if isinstance(payload.get("id"), str):
                state.session_id = encode_session_id(payload["id"])
            if isinstance(payload.get("cwd"), str) and payload["cwd"]:
                state.cwd = payload["cwd"]
            self.store.update_session(self._event(state, "SessionStart", source="startup"))
        elif entry_type == "turn_context":
            if isinstance(payload.get("cwd"), str) and payload["cwd"]:
                state.cwd = payload["cwd"]
        elif entry_type == "event_msg":
            message = payload.get("message")
            if payload.get("type") == "user_message" and isinstance(message, str):
                self.store.update_session(self._event(state, "UserPromptSubmit", prompt=message))
            elif payload.get("type") == "agent_message" and isinstance(message, str):
                self._set_last_message(state, message.strip(), timestamp)
        elif entry_type == "response_item":
            item_type = payload.get("type")
            if item_type == "function_call" and isinstance(payload.get("name"), str):
                self.store.update_session(
                    self._event(state, "PreToolUse", tool_name=payload["name"])
                )
            elif item_type == "function_call_output":
                self.store.update_session(self._event(state, "PostToolUse"))
            elif item_type == "message" and payload.get("role") == "assistant":
                self._set_last_message(state, _assistant_text(payload.get("content")), timestamp)
