"""TTY liveness probing and controlling-TTY detection."""

import asyncio
import os
import re
import subprocess
import time
from collections import OrderedDict
from typing import Callable

from .config import MAX_TTY_CACHE_SIZE, TTY_CACHE_TTL_SECONDS
from .logging_config import get_logger

logger = get_logger(__name__)

# Maximum depth to search ancestor processes for a TTY
MAX_ANCESTOR_DEPTH = 5
TTY_PATH_PATTERN = re.compile(r"^/dev/(pts/\d+|tty\w+)$")


def _tty_exists(tty: str) -> bool:
    try:
        os.stat(tty)
        return True
    except OSError:
        return False


class TtyProbe:
    """Checks whether a TTY device still exists, caching results for a TTL.

    The cache is owned by the probe so tests can use a fresh one.
    """

    def __init__(
        self,
        ttl: float = TTY_CACHE_TTL_SECONDS,
        max_size: int = MAX_TTY_CACHE_SIZE,
        check: Callable[[str], bool] = _tty_exists,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_size = max_size
        self._check = check
        self._clock = clock
        self._cache: OrderedDict[str, tuple[bool, float]] = OrderedDict()

    def _cached(self, tty: str) -> bool | None:
        entry = self._cache.get(tty)
        if entry and self._clock() - entry[1] < self.ttl:
            return entry[0]
        return None

    def _store(self, tty: str, alive: bool) -> None:
        self._cache[tty] = (alive, self._clock())
        self._cache.move_to_end(tty)
        while len(self._cache) > self.max_size:
            self._cache.popitem(last=False)

    def is_alive(self, tty: str | None) -> bool:
        """Unknown TTYs are treated as alive."""
        if not tty:
            return True
        cached = self._cached(tty)
        if cached is not None:
            return cached
        alive = self._check(tty)
        self._store(tty, alive)
        return alive

    async def is_alive_async(self, tty: str | None) -> bool:
        """Like is_alive, with the stat call moved off the event loop."""
        if not tty:
            return True
        cached = self._cached(tty)
        if cached is not None:
            return cached
        alive = await asyncio.to_thread(self._check, tty)
        self._store(tty, alive)
        return alive

    def clear(self) -> None:
        self._cache.clear()


def _tty_from_fds() -> str | None:
    for fd in (0, 1, 2):
        try:
            target = os.readlink(f"/proc/self/fd/{fd}")
        except OSError:
            continue
        if TTY_PATH_PATTERN.match(target):
            return target
    return None


def tty_from_ancestors() -> str | None:
    """Find the controlling TTY of this process or its nearest ancestor.

    Hook processes usually have their stdio piped, so the TTY is looked up
    through the parent chain with ``ps``.
    """
    tty = _tty_from_fds()
    if tty:
        return tty

    pid = os.getppid()
    for _ in range(MAX_ANCESTOR_DEPTH):
        try:
            result = subprocess.run(
                ["ps", "-o", "tty=,ppid=", "-p", str(pid)],
                capture_output=True,
                text=True,
                timeout=2,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"ps lookup failed for pid {pid}: {e}")
            return None

        parts = result.stdout.split()
        if not parts:
            return None
        name = parts[0]
        if name not in ("?", "??"):
            return f"/dev/{name}"
        if len(parts) < 2 or not parts[1].isdigit():
            return None
        pid = int(parts[1])
    return None
