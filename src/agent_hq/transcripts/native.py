"""Reading the hook-reporting agent's own transcripts."""

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel

from ..config import CLAUDE_PROJECTS_DIR
from ..logging_config import get_logger
from ..store.models import AgentKind, SessionStatus, StoreData

logger = get_logger(__name__)


class ConversationMessage(BaseModel):
    id: str
    type: Literal["user", "assistant"]
    content: str
    timestamp: str | None = None


def build_transcript_path(cwd: str, session_id: str, projects_dir: Path | None = None) -> Path:
    """Transcript location: the project directory is the cwd with / replaced by -."""
    projects_dir = projects_dir or CLAUDE_PROJECTS_DIR
    return projects_dir / cwd.replace("/", "-") / f"{session_id}.jsonl"


def _read_entries(path: Path) -> list[dict]:
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return []

    entries = []
    for line in lines:
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict):
            entries.append(entry)
    return entries


def _text_content(entry: dict) -> str | None:
    content = (entry.get("message") or {}).get("content")
    if isinstance(content, str):
        # Meta entries and slash command echoes are not conversation
        if entry.get("isMeta") or "<local-command-" in content or "<command-name>" in content:
            return None
        return content or None
    if isinstance(content, list):
        parts = [
            part["text"]
            for part in content
            if isinstance(part, dict) and part.get("type") == "text" and part.get("text")
        ]
        return "\n".join(parts) or None
    return None


def get_last_assistant_message(path: Path) -> str | None:
    """Text of the most recent assistant entry in a transcript."""
    for entry in reversed(_read_entries(path)):
        if entry.get("type") == "assistant":
            text = _text_content(entry)
            if text:
                return text
    return None


def get_messages(
    path: Path, limit: int = 50, offset: int = 0
) -> tuple[list[ConversationMessage], bool]:
    """A page of user/assistant messages counted back from the newest.

    Returns:
        The messages (oldest first) and whether older messages remain
    """
    messages: list[ConversationMessage] = []
    for entry in _read_entries(path):
        if entry.get("type") not in ("user", "assistant"):
            continue
        text = _text_content(entry)
        if not text:
            continue
        messages.append(
            ConversationMessage(
                id=entry.get("uuid") or f"msg-{len(messages)}",
                type=entry["type"],
                content=text,
                timestamp=entry.get("timestamp"),
            )
        )

    total = len(messages)
    start = max(0, total - offset - limit)
    end = max(0, total - offset)
    return messages[start:end], start > 0


def sync_transcripts(store: StoreData, projects_dir: Path | None = None) -> bool:
    """Copy the latest assistant output into ``last_message`` for active sessions.

    Returns True if any session changed.
    """
    changed = False
    for session in store.sessions.values():
        if session.status == SessionStatus.STOPPED or session.agent != AgentKind.NATIVE:
            continue
        path = build_transcript_path(
            session.initial_cwd or session.cwd, session.session_id, projects_dir
        )
        message = get_last_assistant_message(path)
        if message and message != session.last_message:
            session.last_message = message
            changed = True
    return changed
