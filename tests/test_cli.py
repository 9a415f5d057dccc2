"""Tests for the command-line entry point."""

import asyncio
import io
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agent_hq.__main__ import build_parser, main, run_daemon
from agent_hq.config import CLEANUP_INTERVAL_SECONDS


class TestParser:
    """Tests for argument parsing."""

    def test_default_is_watch(self):
        args = build_parser().parse_args([])
        assert args.func.__name__ == "cmd_watch"

    def test_hook_rejects_unknown_event(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["hook", "Explode"])

    def test_clear_flags_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["clear", "--all", "--projects"])


class TestCommands:
    """Tests for command behaviour."""

    def test_hook_reads_stdin(self):
        payload = {"session_id": "abc", "cwd": "/w"}
        with patch("sys.stdin", io.StringIO(json.dumps(payload))):
            with patch("agent_hq.__main__.handle_hook_event") as handle:
                assert main(["hook", "Stop"]) == 0
        handle.assert_called_once_with("Stop", payload)

    def test_hook_invalid_json(self, capsys):
        with patch("sys.stdin", io.StringIO("{oops")):
            assert main(["hook", "Stop"]) == 1
        assert "Invalid JSON" in capsys.readouterr().err

    @pytest.mark.parametrize(
        "argv,request_type",
        [
            (["clear"], "clearSessions"),
            (["clear", "--all"], "clearAll"),
            (["clear", "--projects"], "clearProjects"),
        ],
    )
    def test_clear_dispatches(self, argv, request_type):
        with patch("agent_hq.__main__.dispatch") as dispatch:
            assert main(argv) == 0
        dispatch.assert_called_once_with({"type": request_type})

    def test_config_timeout(self, capsys):
        with patch("agent_hq.__main__.set_session_timeout") as set_timeout:
            assert main(["config", "timeout", "30"]) == 0
        set_timeout.assert_called_once_with(30)
        assert "30 minute" in capsys.readouterr().out

    def test_config_timeout_negative(self):
        with patch("agent_hq.__main__.set_session_timeout") as set_timeout:
            assert main(["config", "timeout", "-1"]) == 1
        set_timeout.assert_not_called()


class TestDaemon:
    """Tests for the daemon process wiring."""

    def test_daemon_store_gets_tmux(self):
        """The daemon's store can classify sessions on tmux panes."""
        with patch("agent_hq.__main__.ensure_dirs"), patch(
            "agent_hq.__main__.TmuxController"
        ) as tmux_cls, patch("agent_hq.__main__.SessionStore") as store_cls, patch(
            "agent_hq.__main__.run_daemon", new=MagicMock()
        ) as run, patch("agent_hq.__main__.asyncio.run"):
            assert main(["daemon"]) == 0

        store_cls.assert_called_once_with(tmux=tmux_cls.return_value)
        run.assert_called_once_with(store_cls.return_value)

    def test_runs_refresh_and_cleanup_loops(self):
        """Stale-session cleanup runs in the daemon alongside the refresh loop."""
        store = MagicMock()
        store.cleanup_stale_sessions = AsyncMock(return_value=[])
        tasks = {}

        def make_task(name, func, interval):
            task = MagicMock()
            task.func = func
            task.interval = interval
            tasks[name] = task
            return task

        async def scenario():
            stop = asyncio.Event()
            stop.set()
            await run_daemon(store, stop)
            await tasks["daemon-cleanup"].func()

        with patch("agent_hq.__main__.DaemonServer") as server_cls, patch(
            "agent_hq.__main__.PeriodicTask", side_effect=make_task
        ), patch("agent_hq.__main__.ExternalTranscriptIngester"), patch(
            "agent_hq.__main__.active_window_seconds", return_value=None
        ):
            server_cls.return_value.start = AsyncMock()
            server_cls.return_value.stop = AsyncMock()
            asyncio.run(scenario())

        assert sorted(tasks) == ["daemon-cleanup", "daemon-refresh"]
        cleanup = tasks["daemon-cleanup"]
        assert cleanup.interval == CLEANUP_INTERVAL_SECONDS
        cleanup.start.assert_called_once_with()
        cleanup.stop.assert_called_once_with()
        tasks["daemon-refresh"].stop.assert_called_once_with()
        store.cleanup_stale_sessions.assert_awaited_once_with()
        store.flush.assert_called_once_with()
        server_cls.return_value.stop.assert_awaited_once_with()
