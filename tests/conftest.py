"""Shared fixtures."""

import os
import tempfile

# Keep logs and default paths out of the real home directory
os.environ["AGENT_HQ_HOME"] = tempfile.mkdtemp(prefix="agent-hq-test-")

import pytest  # noqa: E402

from agent_hq.store.file_store import SessionStore  # noqa: E402
from agent_hq.store.models import HookEvent  # noqa: E402
from agent_hq.store.write_cache import WriteCache  # noqa: E402
from agent_hq.tty import TtyProbe  # noqa: E402


class FakeTimer:
    """Stands in for a debounce timer; fired manually by the test."""

    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.callback()


class FakeScheduler:
    """Records call_later requests instead of scheduling them."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def store_file(tmp_path):
    return tmp_path / "data" / "sessions.json"


@pytest.fixture
def write_cache(store_file, scheduler):
    return WriteCache(
        store_file,
        error_log=store_file.parent / "error.log",
        call_later=scheduler,
        sleep=lambda _seconds: None,
    )


@pytest.fixture
def tty_probe():
    """A probe that treats every TTY as alive."""
    return TtyProbe(check=lambda tty: True)


@pytest.fixture
def store(tmp_path, store_file, write_cache, tty_probe):
    """A SessionStore rooted in a temporary directory."""
    return SessionStore(
        store_file=store_file,
        write_cache=write_cache,
        tty_probe=tty_probe,
        config_file=tmp_path / "config.json",
        external_sessions_dir=tmp_path / "external",
        transcripts_dir=tmp_path / "projects",
    )


@pytest.fixture
def make_event():
    """Factory for HookEvents with sensible defaults."""

    def _make(name, session_id="abc", **fields):
        fields.setdefault("cwd", "/home/user/project")
        return HookEvent(session_id=session_id, hook_event_name=name, **fields)

    return _make
