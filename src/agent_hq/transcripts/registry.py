"""Matching external-agent sessions to their transcript files.

The external agent does not report hooks, so a session's transcript is
found by scanning its sessions directory and pairing the session with the
transcript created closest to it. The scan is cached per directory
signature for a short TTL.
"""

import json
import os
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Literal, NamedTuple, Sequence

from ..config import (
    EXTERNAL_IDLE_THRESHOLD_SECONDS,
    EXTERNAL_NO_TRANSCRIPT_GRACE_SECONDS,
    TRANSCRIPT_INDEX_TTL_SECONDS,
    TRANSCRIPT_MATCH_TOLERANCE_SECONDS,
)
from ..logging_config import get_logger
from ..store.models import AgentKind, Session, SessionStatus, StoreData, now_iso, parse_timestamp

logger = get_logger(__name__)

# rollout-2025-01-15T10-30-45-<uuid>.jsonl
FILENAME_TIMESTAMP_PATTERN = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2})-(\d{2})-(\d{2})"
)
TAIL_BYTES = 64 * 1024

EntryType = Literal["user", "assistant"]


class TranscriptEntry(NamedTuple):
    path: str
    created_at: float  # epoch seconds


class TranscriptIndexCache:
    """A cached transcript scan: value, directory signature and expiry."""

    def __init__(self, ttl: float = TRANSCRIPT_INDEX_TTL_SECONDS):
        self.ttl = ttl
        self.value: list[TranscriptEntry] | None = None
        self.signature: tuple[str, int] | None = None
        self.expiry = 0.0

    def get(self, signature: tuple[str, int] | None, now: float) -> list[TranscriptEntry] | None:
        if self.value is None or signature != self.signature or now >= self.expiry:
            return None
        return self.value

    def put(
        self, value: list[TranscriptEntry], signature: tuple[str, int] | None, now: float
    ) -> None:
        self.value = value
        self.signature = signature
        self.expiry = now + self.ttl

    def invalidate(self) -> None:
        self.value = None
        self.signature = None
        self.expiry = 0.0


def directory_signature(directory: Path) -> tuple[str, int] | None:
    try:
        return (str(directory), directory.stat().st_mtime_ns)
    except OSError:
        return None


def parse_filename_timestamp(name: str) -> float | None:
    """Creation time encoded in a transcript filename (UTC), if any."""
    match = FILENAME_TIMESTAMP_PATTERN.search(name)
    if not match:
        return None
    try:
        parts = [int(p) for p in match.groups()]
        return datetime(*parts, tzinfo=timezone.utc).timestamp()
    except ValueError:
        return None


def file_birth_time(path: Path) -> float | None:
    """Filesystem birth time, or mtime where the platform has none."""
    try:
        stat = path.stat()
    except OSError:
        return None
    return getattr(stat, "st_birthtime", stat.st_mtime)


def scan_transcripts(directory: Path) -> list[TranscriptEntry]:
    """Recursively collect ``.jsonl`` transcripts with their creation times."""
    entries: list[TranscriptEntry] = []
    if not directory.is_dir():
        return entries

    try:
        for root, _dirs, files in os.walk(directory):
            for name in files:
                if not name.endswith(".jsonl"):
                    continue
                path = Path(root) / name
                created_at = parse_filename_timestamp(name)
                if created_at is None:
                    created_at = file_birth_time(path)
                if created_at is not None:
                    entries.append(TranscriptEntry(str(path), created_at))
    except OSError as e:
        logger.warning(f"Transcript scan of {directory} failed: {e}")
        return []
    return entries


def build_transcript_index(
    directory: Path,
    cache: TranscriptIndexCache,
    now: float | None = None,
) -> list[TranscriptEntry]:
    """Return the transcript index, rescanning on signature change or expiry."""
    now = time.monotonic() if now is None else now
    signature = directory_signature(directory)
    cached = cache.get(signature, now)
    if cached is not None:
        return cached

    entries = scan_transcripts(directory)
    cache.put(entries, signature, now)
    logger.debug(f"Transcript index rebuilt with {len(entries)} entries")
    return entries


def find_closest_transcript(
    created_at: datetime,
    index: Sequence[TranscriptEntry],
    tolerance: float = TRANSCRIPT_MATCH_TOLERANCE_SECONDS,
) -> TranscriptEntry | None:
    """The entry created closest to ``created_at``, within ``tolerance`` seconds."""
    target = created_at.timestamp()
    best: TranscriptEntry | None = None
    best_delta = tolerance
    for entry in index:
        delta = abs(entry.created_at - target)
        if delta <= best_delta and (best is None or delta < best_delta):
            best, best_delta = entry, delta
    return best


ResolutionStrategy = Callable[[Session, Sequence[TranscriptEntry]], str | None]


def cached_path(session: Session, index: Sequence[TranscriptEntry]) -> str | None:
    if session.transcript_path and os.path.exists(session.transcript_path):
        return session.transcript_path
    return None


def closest_by_creation_time(session: Session, index: Sequence[TranscriptEntry]) -> str | None:
    created_at = parse_timestamp(session.created_at)
    if created_at is None:
        return None
    entry = find_closest_transcript(created_at, index)
    return entry.path if entry else None


RESOLUTION_STRATEGIES: tuple[ResolutionStrategy, ...] = (cached_path, closest_by_creation_time)


def resolve_transcript_path(
    session: Session,
    index: Sequence[TranscriptEntry],
    strategies: Sequence[ResolutionStrategy] = RESOLUTION_STRATEGIES,
) -> str | None:
    """Try each strategy in order and return the first path found."""
    for strategy in strategies:
        path = strategy(session, index)
        if path:
            return path
    return None


def classify_entry(entry: dict) -> EntryType | None:
    """Whether a transcript entry was produced by the user or the agent."""
    entry_type = entry.get("type")
    if entry_type in ("user", "assistant"):
        return entry_type

    payload = entry.get("payload")
    if not isinstance(payload, dict):
        return None
    if entry_type == "event_msg":
        return {"user_message": "user", "agent_message": "assistant"}.get(payload.get("type"))
    if entry_type == "response_item" and payload.get("type") == "message":
        role = payload.get("role")
        return role if role in ("user", "assistant") else None
    return None


def _read_tail(path: str, size: int = TAIL_BYTES) -> str:
    with open(path, "rb") as f:
        f.seek(0, os.SEEK_END)
        end = f.tell()
        f.seek(max(0, end - size))
        return f.read().decode("utf-8", errors="replace")


def get_last_entry_type(path: str) -> EntryType | None:
    """Classify the last meaningful entry of a transcript. Best effort."""
    try:
        lines = _read_tail(path).splitlines()
    except OSError as e:
        logger.debug(f"Cannot read transcript tail {path}: {e}")
        return None

    for line in reversed(lines):
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            # First line of the tail window is usually cut mid-entry
            continue
        if isinstance(entry, dict):
            kind = classify_entry(entry)
            if kind:
                return kind
    return None


def update_external_session_statuses(
    store: StoreData,
    index: Sequence[TranscriptEntry],
    now: datetime | None = None,
    idle_threshold: float = EXTERNAL_IDLE_THRESHOLD_SECONDS,
    grace: float = EXTERNAL_NO_TRANSCRIPT_GRACE_SECONDS,
) -> bool:
    """Infer external-agent statuses from transcript activity.

    Recent writes mean running. Once the transcript goes quiet, the last
    entry decides: a pending user message is still running, anything else
    stopped. Returns True if any session changed.
    """
    now = now or datetime.now(timezone.utc)
    changed = False

    for session in store.sessions.values():
        if session.agent != AgentKind.EXTERNAL:
            continue

        path = resolve_transcript_path(session, index)
        if path and path != session.transcript_path:
            session.transcript_path = path
            changed = True

        new_status: SessionStatus | None = None
        if path:
            try:
                mtime = os.stat(path).st_mtime
            except OSError:
                if session.status == SessionStatus.RUNNING:
                    new_status = SessionStatus.STOPPED
            else:
                if now.timestamp() - mtime <= idle_threshold:
                    new_status = SessionStatus.RUNNING
                elif get_last_entry_type(path) == "user":
                    new_status = SessionStatus.RUNNING
                else:
                    new_status = SessionStatus.STOPPED
        elif session.status == SessionStatus.RUNNING:
            created = parse_timestamp(session.created_at)
            if created and (now - created).total_seconds() > grace:
                new_status = SessionStatus.STOPPED

        if new_status is not None and new_status != session.status:
            session.status = new_status
            session.updated_at = now_iso()
            changed = True

    return changed
