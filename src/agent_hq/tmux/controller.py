"""Tmux pane discovery using libtmux."""

import time
from typing import Callable, NamedTuple

import libtmux

from ..config import TMUX_CACHE_TTL_SECONDS
from ..logging_config import TmuxError, get_logger

logger = get_logger(__name__)


class TmuxPane(NamedTuple):
    tty: str
    target: str  # session_name:window_index.pane_index


class TmuxController:
    """Reports live tmux panes and their TTYs.

    Pane listings are cached briefly since several sessions are resolved
    against the same snapshot during one refresh pass.
    """

    def __init__(
        self,
        cache_ttl: float = TMUX_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._server: libtmux.Server | None = None
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: tuple[list[TmuxPane], list[str], float] | None = None

    @property
    def server(self) -> libtmux.Server:
        """Get or create the tmux server connection."""
        if self._server is None:
            try:
                self._server = libtmux.Server()
            except Exception as e:
                logger.error(f"Failed to connect to tmux server: {e}")
                raise TmuxError(f"Cannot connect to tmux server: {e}") from e
        return self._server

    def _list_panes_raw(self) -> list[TmuxPane]:
        try:
            panes = []
            for pane in self.server.panes:
                if not pane.pane_tty:
                    continue
                target = f"{pane.session_name}:{pane.window_index}.{pane.pane_index}"
                panes.append(TmuxPane(tty=pane.pane_tty, target=target))
            return panes
        except Exception as e:
            # No server running is the common case here
            logger.debug(f"Error listing tmux panes: {e}")
            return []

    def _attached_sessions_raw(self) -> list[str]:
        try:
            return [
                s.name
                for s in self.server.sessions
                if s.name and s.session_attached not in (None, "0")
            ]
        except Exception as e:
            logger.debug(f"Error listing attached tmux sessions: {e}")
            return []

    def _snapshot(self) -> tuple[list[TmuxPane], list[str]]:
        now = self._clock()
        if self._cache and now - self._cache[2] < self.cache_ttl:
            return self._cache[0], self._cache[1]
        panes = self._list_panes_raw()
        attached = self._attached_sessions_raw()
        self._cache = (panes, attached, now)
        return panes, attached

    def list_panes(self) -> list[TmuxPane]:
        """All tmux panes with their TTYs (cached)."""
        return self._snapshot()[0]

    def attached_sessions(self) -> list[str]:
        """Names of tmux sessions with a client attached (cached)."""
        return self._snapshot()[1]

    def clear_cache(self) -> None:
        self._cache = None

    def find_pane_by_tty(self, tty: str) -> TmuxPane | None:
        """Find the pane on ``tty``, preferring panes in attached sessions."""
        panes, attached = self._snapshot()
        matches = [pane for pane in panes if pane.tty == tty]
        for pane in matches:
            if any(pane.target.startswith(f"{name}:") for name in attached):
                return pane
        return matches[0] if matches else None

    def session_exists(self, name: str) -> bool:
        """Check if a tmux session exists."""
        try:
            session = self.server.sessions.get(session_name=name, default=None)
            return session is not None
        except Exception as e:
            logger.error(f"Error checking if session '{name}' exists: {e}")
            return False
