"""Tests for the SessionStore facade."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from agent_hq.config import ERROR_LOG_FILE
from agent_hq.logging_config import StoreError
from agent_hq.store import display_order
from agent_hq.store.cleanup import evaluate_store
from agent_hq.store.file_store import SessionStore
from agent_hq.store.models import AgentKind, SessionSource, SessionStatus
from agent_hq.tmux.controller import TmuxPane
from agent_hq.tty import TtyProbe


def order_keys(store):
    return [
        getattr(item, "key", None) or f"#{item.id}" for item in store.get_display_order()
    ]


class TestUpdateSession:
    """Tests for applying hook events."""

    def test_creates_session(self, store, make_event):
        """The first event creates the session at the end of the ungrouped block."""
        session = store.update_session(make_event("SessionStart", tty="/dev/pts/1"))

        assert session.status == SessionStatus.RUNNING
        assert session.agent == AgentKind.NATIVE
        assert session.initial_cwd == "/home/user/project"
        assert order_keys(store) == ["#", "abc"]

    def test_status_and_fields_follow_events(self, store, make_event):
        store.update_session(make_event("UserPromptSubmit", prompt="do it"))
        store.update_session(make_event("PreToolUse", tool_name="Bash"))
        store.update_session(make_event("Notification", notification_type="permission_prompt"))

        session = store.get_session("abc")
        assert session.status == SessionStatus.WAITING_INPUT
        assert session.current_tool == "Bash"
        assert session.last_prompt == "do it"

        store.update_session(make_event("Stop"))
        session = store.get_session("abc")
        assert session.status == SessionStatus.STOPPED
        assert session.current_tool is None

    def test_external_prefix(self, store, make_event):
        session = store.update_session(make_event("SessionStart", session_id="codex-1"))
        assert session.agent == AgentKind.EXTERNAL

    def test_session_end_removes(self, store, make_event):
        store.update_session(make_event("SessionStart"))
        store.update_session(make_event("SessionEnd", reason="logout"))

        assert store.get_session("abc") is None
        assert order_keys(store) == ["#"]

    def test_session_end_clear_keeps(self, store, make_event):
        """/clear continues the conversation under the same id."""
        store.update_session(make_event("SessionStart"))
        store.update_session(make_event("SessionEnd", reason="clear"))
        assert store.get_session("abc") is not None

    def test_new_session_replaces_tty_and_inherits_project(self, store, make_event):
        store.update_session(make_event("SessionStart", session_id="old", tty="/dev/pts/3"))
        project = store.create_project("Work")
        store.assign_session_to_project("old", project.id)

        store.update_session(make_event("SessionStart", session_id="new", tty="/dev/pts/3"))

        assert store.get_session("old") is None
        assert store.get_session_project("new") == project.id

    def test_tmux_pane_lookup(self, store, make_event):
        """A session on a tmux pane's TTY is marked as tmux-sourced."""
        tmux = MagicMock()
        tmux.find_pane_by_tty.return_value = TmuxPane("/dev/pts/4", "main:0.1")
        store.tmux = tmux

        session = store.update_session(make_event("SessionStart", tty="/dev/pts/4"))

        assert session.source == SessionSource.TMUX
        assert session.tmux_target == "main:0.1"


class TestPersistence:
    """Tests for reading and writing the store file."""

    def test_side_logs_live_beside_store(self, tmp_path, tty_probe, make_event):
        """The default write cache logs failures next to the store file."""
        store_file = tmp_path / "elsewhere" / "sessions.json"
        store = SessionStore(
            store_file=store_file,
            tty_probe=tty_probe,
            config_file=tmp_path / "config.json",
        )
        store.update_session(make_event("SessionStart"))

        with patch.object(store.cache, "_write", side_effect=StoreError("disk full")):
            assert store.flush() is False

        entries = (store_file.parent / ERROR_LOG_FILE.name).read_text().splitlines()
        assert len(entries) == store.cache.max_retries

    def test_reads_pending_before_flush(self, store, make_event, store_file):
        """Mutations are visible immediately and on disk after flush."""
        store.update_session(make_event("SessionStart"))
        assert not store_file.exists()
        assert store.get_session("abc") is not None

        assert store.flush() is True
        saved = json.loads(store_file.read_text())
        assert list(saved["sessions"]) == ["abc"]
        assert saved["displayOrder"][0] == {"type": "project", "id": ""}

    def test_fresh_instance_reads_disk(self, store, make_event, store_file, write_cache):
        store.update_session(make_event("SessionStart"))
        store.flush()

        other = SessionStore(store_file=store_file, tty_probe=TtyProbe(check=lambda t: True))
        assert other.get_session("abc") is not None

    def test_malformed_file_is_empty_store(self, store, store_file):
        store_file.parent.mkdir(parents=True, exist_ok=True)
        store_file.write_text("{not json")
        assert store.get_sessions() == []

    def test_legacy_file_is_migrated(self, store, store_file):
        """Old shapes load with a repaired display order."""
        store_file.parent.mkdir(parents=True, exist_ok=True)
        store_file.write_text(
            json.dumps(
                {
                    "sessions": {
                        "abc:/dev/pts/1": {"session_id": "abc", "project": "p1"},
                        "bad": {"status": "not-a-status"},
                    },
                    "projects": {"p1": {"id": "p1", "name": "Work", "order": 0}},
                }
            )
        )

        assert [s.session_id for s in store.get_sessions()] == ["abc"]
        assert store.get_session_project("abc") == "p1"
        assert order_keys(store) == ["#", "#p1", "abc"]


class TestProjects:
    """Tests for project operations."""

    def test_create_and_list(self, store):
        b = store.create_project("B")
        a = store.create_project("A")
        assert [p.id for p in store.get_projects()] == [b.id, a.id]
        assert len(b.id) == 8

    def test_rename(self, store):
        project = store.create_project("Old")
        assert store.rename_project(project.id, "New") is True
        assert store.get_projects()[0].name == "New"
        assert store.rename_project("missing", "x") is False

    def test_delete_ungroups_members(self, store, make_event):
        store.update_session(make_event("SessionStart"))
        project = store.create_project("P")
        store.assign_session_to_project("abc", project.id)

        assert store.delete_project(project.id) is True
        assert store.get_session_project("abc") is None
        assert order_keys(store) == ["#", "abc"]

    def test_assign_unknown_project_rejected(self, store, make_event):
        store.update_session(make_event("SessionStart"))
        assert store.assign_session_to_project("abc", "nope") is False

    def test_move_and_reorder(self, store, make_event):
        for sid in ("s1", "s2"):
            store.update_session(make_event("SessionStart", session_id=sid))
        assert store.move_session("s1", "down") is True
        assert [s.session_id for s in store.get_sessions()] == ["s2", "s1"]
        assert store.move_session("s1", "down") is False

        p1 = store.create_project("P1")
        p2 = store.create_project("P2")
        assert store.reorder_project(p2.id, "up") is True
        assert [p.id for p in store.get_projects()] == [p2.id, p1.id]

    def test_display_order_changes_are_audited(self, store, make_event, store_file):
        store.update_session(make_event("SessionStart"))
        store.create_project("P")

        log = store_file.parent / "display-order-changes.log"
        reasons = [json.loads(line)["reason"] for line in log.read_text().splitlines()]
        assert reasons == ["add_session", "create_project"]


class TestClearing:
    """Tests for bulk removal."""

    def test_clear_sessions_keeps_projects(self, store, make_event):
        store.update_session(make_event("SessionStart"))
        project = store.create_project("P")
        store.clear_sessions()
        assert store.get_sessions() == []
        assert order_keys(store) == ["#", f"#{project.id}"]

    def test_clear_projects_keeps_sessions(self, store, make_event):
        store.update_session(make_event("SessionStart"))
        project = store.create_project("P")
        store.assign_session_to_project("abc", project.id)
        store.clear_projects()
        assert store.get_projects() == []
        assert order_keys(store) == ["#", "abc"]

    def test_clear_all(self, store, make_event):
        store.update_session(make_event("SessionStart"))
        store.create_project("P")
        store.clear_all()
        assert store.get_sessions() == []
        assert store.get_projects() == []
        assert order_keys(store) == ["#"]


class TestBackgroundPasses:
    """Tests for cleanup, tmux sync and data refresh."""

    def test_cleanup_removes_dead_tty(self, store, make_event, store_file):
        store.update_session(make_event("SessionStart", session_id="dead", tty="/dev/pts/8"))
        store.update_session(make_event("SessionStart", session_id="live", tty="/dev/pts/1"))
        store.tty_probe = TtyProbe(check=lambda tty: tty == "/dev/pts/1")

        removed = asyncio.run(store.cleanup_stale_sessions(timeout_seconds=0))

        assert [d.key for d in removed] == ["dead"]
        assert store.get_session("dead") is None
        assert store.get_session("live") is not None
        log = json.loads((store_file.parent / "deletion.log").read_text().splitlines()[0])
        assert log["session_id"] == "dead"
        assert log["reason"] == "tty_closed"

    def test_cleanup_uses_configured_timeout(self, store, make_event, tmp_path):
        (tmp_path / "config.json").write_text(json.dumps({"session_timeout_minutes": 1}))
        store.update_session(make_event("SessionStart"))
        stale = store.read_store()
        stale.sessions["abc"].updated_at = (
            datetime.now(timezone.utc) - timedelta(minutes=5)
        ).isoformat()
        store.cache.schedule(stale)

        removed = asyncio.run(store.cleanup_stale_sessions())

        assert [d.reason.value for d in removed] == ["timeout"]

    def test_cleanup_without_removals_does_not_write(self, store, make_event):
        """Sessions already gone on the re-read leave the document untouched."""
        store.update_session(make_event("SessionStart", session_id="dead", tty="/dev/pts/8"))
        store.tty_probe = TtyProbe(check=lambda tty: False)

        async def evaluate_then_vanish(data, timeout_seconds, probe):
            decisions = await evaluate_store(data, timeout_seconds, probe)
            current = store.read_store()
            del current.sessions["dead"]
            store.cache.schedule(current)
            return decisions

        with patch(
            "agent_hq.store.file_store.evaluate_store", new=evaluate_then_vanish
        ), patch.object(store, "_commit") as commit:
            removed = asyncio.run(store.cleanup_stale_sessions(timeout_seconds=0))

        assert [d.key for d in removed] == ["dead"]
        commit.assert_not_called()

    def test_sync_multiplexer_sessions(self, store, make_event):
        """Panes mark sessions as tmux; vanished panes remove them."""
        store.update_session(make_event("SessionStart", tty="/dev/pts/5"))

        assert store.sync_multiplexer_sessions([TmuxPane("/dev/pts/5", "dev:1.0")]) is True
        assert store.get_session("abc").source == SessionSource.TMUX

        assert store.sync_multiplexer_sessions([]) is True
        assert store.get_session("abc") is None

    def test_update_last_message_noop_when_unchanged(self, store, make_event):
        store.update_session(make_event("SessionStart"))
        assert store.update_session_last_message("abc", "hi") is True
        assert store.update_session_last_message("abc", "hi") is False
        assert store.update_session_last_message("missing", "hi") is False

    def test_update_summary(self, store, make_event):
        store.update_session(make_event("SessionStart"))
        assert store.update_session_summary("abc", "Fixing tests", 1024) is True
        session = store.get_session("abc")
        assert (session.summary, session.summary_transcript_size) == ("Fixing tests", 1024)

    def test_cleanup_display_order(self, store, make_event):
        store.update_session(make_event("SessionStart"))
        broken = store.read_store()
        broken.display_order = display_order.clear_sessions(broken.display_order)
        store.cache.schedule(broken)

        assert store.cleanup_display_order() is True
        assert order_keys(store) == ["#", "abc"]
        assert store.cleanup_display_order() is False

    @pytest.mark.parametrize("status", [SessionStatus.RUNNING, SessionStatus.STOPPED])
    def test_refresh_session_data(self, store, make_event, tmp_path, status):
        """Transcript output reaches running native sessions only."""
        store.update_session(make_event("SessionStart"))
        if status == SessionStatus.STOPPED:
            store.update_session(make_event("Stop"))
        transcript = tmp_path / "projects" / "-home-user-project" / "abc.jsonl"
        transcript.parent.mkdir(parents=True)
        transcript.write_text(
            json.dumps({"type": "assistant", "message": {"content": "Done."}}) + "\n"
        )

        changed = store.refresh_session_data()

        assert changed is (status == SessionStatus.RUNNING)
        expected = "Done." if status == SessionStatus.RUNNING else None
        assert store.get_session("abc").last_message == expected
