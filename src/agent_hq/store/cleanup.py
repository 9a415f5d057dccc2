"""Stale session detection (TTY closed or timed out)."""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple

from ..logging_config import get_logger
from ..tty import TtyProbe
from .models import AgentKind, Session, SessionSource, StoreData, parse_timestamp

logger = get_logger(__name__)


class CleanupReason(str, Enum):
    TIMEOUT = "timeout"
    TTY_CLOSED = "tty_closed"


class CleanupDecision(NamedTuple):
    key: str
    session: Session
    should_remove: bool
    reason: CleanupReason | None = None
    elapsed: float | None = None


def is_exempt(session: Session) -> bool:
    """Sessions whose lifecycle is owned by another sync pass."""
    return session.agent == AgentKind.EXTERNAL or session.source == SessionSource.TMUX


def evaluate_session(
    key: str,
    session: Session,
    timeout_seconds: float,
    tty_alive: bool,
    now: datetime,
) -> CleanupDecision:
    """Decide whether one session should be removed.

    A timeout of 0 disables the timeout check. A closed TTY removes the
    session regardless of the timeout setting.
    """
    if is_exempt(session):
        return CleanupDecision(key, session, False)

    updated = parse_timestamp(session.updated_at)
    if updated is None:
        logger.warning(f"Session {key} has unparsable updated_at {session.updated_at!r}")
        return CleanupDecision(key, session, False)

    elapsed = (now - updated).total_seconds()
    timed_out = timeout_seconds > 0 and elapsed > timeout_seconds

    if not tty_alive:
        return CleanupDecision(key, session, True, CleanupReason.TTY_CLOSED, elapsed)
    if timed_out:
        return CleanupDecision(key, session, True, CleanupReason.TIMEOUT, elapsed)
    return CleanupDecision(key, session, False, None, elapsed)


async def evaluate_store(
    store: StoreData,
    timeout_seconds: float,
    probe: TtyProbe,
    now: datetime | None = None,
) -> list[CleanupDecision]:
    """Evaluate every session, probing TTYs concurrently."""
    now = now or datetime.now(timezone.utc)
    entries = list(store.sessions.items())

    async def probe_session(session: Session) -> bool:
        if is_exempt(session):
            return True
        return await probe.is_alive_async(session.tty)

    alive = await asyncio.gather(*(probe_session(s) for _, s in entries))
    return [
        evaluate_session(key, session, timeout_seconds, tty_alive, now)
        for (key, session), tty_alive in zip(entries, alive)
    ]
