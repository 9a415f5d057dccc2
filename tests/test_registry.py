"""Tests for external transcript matching."""

import json
import os
import time
from datetime import datetime, timedelta, timezone

from agent_hq.store.models import AgentKind, Session, SessionStatus, StoreData
from agent_hq.transcripts.registry import (
    TranscriptEntry,
    TranscriptIndexCache,
    build_transcript_index,
    find_closest_transcript,
    get_last_entry_type,
    parse_filename_timestamp,
    resolve_transcript_path,
    update_external_session_statuses,
)

SESSION_CREATED = datetime(2025, 1, 15, 10, 30, 45, tzinfo=timezone.utc)


def entry(name, offset):
    return TranscriptEntry(name, SESSION_CREATED.timestamp() + offset)


def write_transcript(path, entries, mtime=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(json.dumps(e) + "\n" for e in entries))
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


class TestMatching:
    """Tests for closest-time matching."""

    def test_closest_within_tolerance(self):
        """Candidates at +3s and +8s resolve to +3s."""
        index = [entry("plus8", 8), entry("plus3", 3)]
        assert find_closest_transcript(SESSION_CREATED, index).path == "plus3"

    def test_outside_tolerance(self):
        """A candidate only at +20s is no match."""
        assert find_closest_transcript(SESSION_CREATED, [entry("plus20", 20)]) is None

    def test_before_session_counts(self):
        index = [entry("minus2", -2), entry("plus5", 5)]
        assert find_closest_transcript(SESSION_CREATED, index).path == "minus2"

    def test_cached_path_preferred(self, tmp_path):
        """An existing cached path wins over a closer candidate."""
        cached = tmp_path / "cached.jsonl"
        cached.write_text("")
        session = Session(
            session_id="codex-x",
            created_at=SESSION_CREATED.isoformat(),
            transcript_path=str(cached),
        )
        assert resolve_transcript_path(session, [entry("plus1", 1)]) == str(cached)

    def test_missing_cached_path_falls_back(self, tmp_path):
        session = Session(
            session_id="codex-x",
            created_at=SESSION_CREATED.isoformat(),
            transcript_path=str(tmp_path / "gone.jsonl"),
        )
        assert resolve_transcript_path(session, [entry("plus1", 1)]) == "plus1"


class TestFilenameTimestamp:
    """Tests for filename timestamp parsing."""

    def test_parses_rollout_name(self):
        name = "rollout-2025-01-15T10-30-45-0193a4b2-aaaa-bbbb-cccc-123456789abc.jsonl"
        assert parse_filename_timestamp(name) == SESSION_CREATED.timestamp()

    def test_no_timestamp(self):
        assert parse_filename_timestamp("notes.jsonl") is None


class TestIndexCache:
    """Tests for the cached directory scan."""

    def test_scan_and_cache(self, tmp_path):
        """The scan is reused until the TTL expires."""
        write_transcript(tmp_path / "2025/01/15/rollout-2025-01-15T10-30-45-a.jsonl", [])
        cache = TranscriptIndexCache(ttl=5)

        first = build_transcript_index(tmp_path, cache, now=100.0)
        assert [e.created_at for e in first] == [SESSION_CREATED.timestamp()]

        write_transcript(tmp_path / "2025/01/15/rollout-2025-01-15T10-31-00-b.jsonl", [])
        assert build_transcript_index(tmp_path, cache, now=102.0) is first
        assert len(build_transcript_index(tmp_path, cache, now=106.0)) == 2

    def test_signature_change_invalidates(self, tmp_path):
        """A changed directory mtime forces a rescan before expiry."""
        cache = TranscriptIndexCache(ttl=60)
        assert build_transcript_index(tmp_path, cache, now=0.0) == []

        write_transcript(tmp_path / "rollout-2025-01-15T10-30-45-a.jsonl", [])
        os.utime(tmp_path, ns=(0, time.time_ns() + 5_000_000_000))
        assert len(build_transcript_index(tmp_path, cache, now=1.0)) == 1

    def test_missing_directory(self, tmp_path):
        cache = TranscriptIndexCache()
        assert build_transcript_index(tmp_path / "missing", cache) == []


class TestLastEntryType:
    """Tests for the tail classifier."""

    def test_event_messages(self, tmp_path):
        path = write_transcript(
            tmp_path / "t.jsonl",
            [
                {"type": "event_msg", "payload": {"type": "user_message", "message": "hi"}},
                {"type": "event_msg", "payload": {"type": "agent_message", "message": "hello"}},
                {"type": "event_msg", "payload": {"type": "token_count"}},
            ],
        )
        assert get_last_entry_type(str(path)) == "assistant"

    def test_response_item_user(self, tmp_path):
        path = write_transcript(
            tmp_path / "t.jsonl",
            [{"type": "response_item", "payload": {"type": "message", "role": "user"}}],
        )
        assert get_last_entry_type(str(path)) == "user"

    def test_unreadable(self, tmp_path):
        assert get_last_entry_type(str(tmp_path / "missing.jsonl")) is None


class TestStatusInference:
    """Tests for external-agent status updates."""

    def _store(self, **fields):
        session = Session(
            session_id="codex-x",
            agent=AgentKind.EXTERNAL,
            created_at=SESSION_CREATED.isoformat(),
            **fields,
        )
        return StoreData(sessions={"codex-x": session})

    def test_recent_write_is_running(self, tmp_path):
        now = datetime.now(timezone.utc)
        path = write_transcript(tmp_path / "t.jsonl", [], mtime=now.timestamp() - 5)
        store = self._store(status=SessionStatus.STOPPED, transcript_path=str(path))

        assert update_external_session_statuses(store, [], now=now) is True
        assert store.sessions["codex-x"].status == SessionStatus.RUNNING

    def test_quiet_transcript_ending_with_agent_is_stopped(self, tmp_path):
        now = datetime.now(timezone.utc)
        path = write_transcript(
            tmp_path / "t.jsonl",
            [{"type": "event_msg", "payload": {"type": "agent_message", "message": "done"}}],
            mtime=now.timestamp() - 120,
        )
        store = self._store(transcript_path=str(path))

        update_external_session_statuses(store, [], now=now)
        assert store.sessions["codex-x"].status == SessionStatus.STOPPED

    def test_quiet_transcript_ending_with_user_is_running(self, tmp_path):
        now = datetime.now(timezone.utc)
        path = write_transcript(
            tmp_path / "t.jsonl",
            [{"type": "event_msg", "payload": {"type": "user_message", "message": "go"}}],
            mtime=now.timestamp() - 120,
        )
        store = self._store(status=SessionStatus.STOPPED, transcript_path=str(path))

        update_external_session_statuses(store, [], now=now)
        assert store.sessions["codex-x"].status == SessionStatus.RUNNING

    def test_no_transcript_after_grace_is_stopped(self):
        store = self._store()
        now = SESSION_CREATED + timedelta(seconds=61)

        assert update_external_session_statuses(store, [], now=now) is True
        assert store.sessions["codex-x"].status == SessionStatus.STOPPED

    def test_no_transcript_within_grace_unchanged(self):
        store = self._store()
        now = SESSION_CREATED + timedelta(seconds=30)

        assert update_external_session_statuses(store, [], now=now) is False
        assert store.sessions["codex-x"].status == SessionStatus.RUNNING

    def test_native_sessions_ignored(self):
        store = StoreData(sessions={"n": Session(session_id="n")})
        assert update_external_session_statuses(store, [], now=SESSION_CREATED) is False
