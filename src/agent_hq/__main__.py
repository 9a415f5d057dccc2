"""Command-line entry point for agent-hq."""

import argparse
import asyncio
import json
import signal
import sys

from .config import (
    CLEANUP_INTERVAL_SECONDS,
    REFRESH_INTERVAL_SECONDS,
    ensure_dirs,
    read_config,
    set_session_timeout,
)
from .daemon.client import dispatch
from .daemon.server import DaemonServer
from .hook import InvalidHookEvent, handle_hook_event
from .logging_config import get_logger
from .store.file_store import SessionStore
from .store.loops import PeriodicTask
from .store.models import HOOK_EVENTS
from .tmux import TmuxController
from .transcripts.ingest import ExternalTranscriptIngester, active_window_seconds

logger = get_logger(__name__)


def cmd_hook(args: argparse.Namespace) -> int:
    """Record a hook event read as JSON from stdin."""
    try:
        payload = json.loads(sys.stdin.read() or "{}")
    except json.JSONDecodeError:
        print("Invalid JSON input", file=sys.stderr)
        return 1
    try:
        handle_hook_event(args.event, payload)
    except InvalidHookEvent as e:
        print(str(e), file=sys.stderr)
        return 1
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    store = SessionStore()
    sessions = store.get_sessions()
    if not sessions:
        print("No sessions.")
        return 0
    for i, session in enumerate(sessions, 1):
        print(f"[{i}] {session.status.value:<14} {session.display_name:<24} {session.cwd}")
    return 0


def cmd_clear(args: argparse.Namespace) -> int:
    if args.all:
        request_type, message = "clearAll", "Cleared all sessions and projects."
    elif args.projects:
        request_type, message = "clearProjects", "Cleared all projects."
    else:
        request_type, message = "clearSessions", "Cleared all sessions."
    dispatch({"type": request_type})
    print(message)
    return 0


async def run_daemon(store: SessionStore, stop: asyncio.Event | None = None) -> None:
    """Serve store mutations, ingest external transcripts and drop stale sessions.

    Runs until SIGINT/SIGTERM or until ``stop`` is set.
    """
    server = DaemonServer(store)
    ingester = ExternalTranscriptIngester(
        store, store.external_sessions_dir, active_window_seconds()
    )

    async def refresh() -> None:
        ingester.sync_once()
        store.refresh_session_data()
        store.flush()

    async def cleanup() -> None:
        await store.cleanup_stale_sessions()
        store.flush()

    refresh_task = PeriodicTask("daemon-refresh", refresh, REFRESH_INTERVAL_SECONDS)
    cleanup_task = PeriodicTask("daemon-cleanup", cleanup, CLEANUP_INTERVAL_SECONDS)
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await server.start()
    refresh_task.start()
    cleanup_task.start()
    try:
        await stop.wait()
    finally:
        cleanup_task.stop()
        refresh_task.stop()
        await server.stop()


def cmd_daemon(args: argparse.Namespace) -> int:
    ensure_dirs()
    asyncio.run(run_daemon(SessionStore(tmux=TmuxController())))
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    """Run the dashboard."""
    from .tui import AgentHQApp

    ensure_dirs()
    AgentHQApp().run()
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    if args.value is None:
        minutes = read_config().session_timeout_minutes
        print(f"Session timeout: {minutes} minute(s)" if minutes else "Session timeout: disabled")
        return 0
    if args.value < 0:
        print("Timeout must be zero or a positive number of minutes", file=sys.stderr)
        return 1
    set_session_timeout(args.value)
    if args.value:
        print(f"Session timeout set to {args.value} minute(s)")
    else:
        print("Session timeout disabled")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-hq", description="Monitor coding-agent sessions from one dashboard"
    )
    parser.set_defaults(func=cmd_watch)
    sub = parser.add_subparsers(dest="command")

    hook = sub.add_parser("hook", help="Record a hook event (payload JSON on stdin)")
    hook.add_argument("event", choices=HOOK_EVENTS)
    hook.set_defaults(func=cmd_hook)

    sub.add_parser("list", help="List sessions").set_defaults(func=cmd_list)

    clear = sub.add_parser("clear", help="Remove sessions")
    group = clear.add_mutually_exclusive_group()
    group.add_argument("--all", action="store_true", help="Also remove projects")
    group.add_argument("--projects", action="store_true", help="Remove projects only")
    clear.set_defaults(func=cmd_clear)

    sub.add_parser("daemon", help="Run the single-writer store daemon").set_defaults(
        func=cmd_daemon
    )
    sub.add_parser("watch", help="Open the dashboard (default)").set_defaults(func=cmd_watch)

    config = sub.add_parser("config", help="Show or change settings")
    config.add_argument("key", choices=["timeout"])
    config.add_argument("value", nargs="?", type=int, help="Session timeout in minutes, 0 disables")
    config.set_defaults(func=cmd_config)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the agent-hq command."""
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
