"""Reference-counted periodic background passes."""

import asyncio
from typing import Awaitable, Callable

from ..logging_config import get_logger

logger = get_logger(__name__)

TaskFunc = Callable[[], Awaitable[object]]


class PeriodicTask:
    """Runs ``func`` every ``interval`` seconds while it has owners.

    Several consumers may share one loop: ``start`` adds an owner and
    ``stop`` removes one, cancelling the loop when none remain. A tick is
    skipped while the previous run is still in progress.
    """

    def __init__(self, name: str, func: TaskFunc, interval: float):
        self.name = name
        self.func = func
        self.interval = interval
        self._owners = 0
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def owners(self) -> int:
        return self._owners

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Add an owner; the first owner starts the loop. Needs a running loop."""
        self._owners += 1
        if self._owners == 1:
            self._task = asyncio.get_running_loop().create_task(self._loop())
            logger.debug(f"Started periodic task {self.name} every {self.interval}s")

    def stop(self) -> None:
        """Remove an owner; the last owner cancels the loop."""
        if self._owners == 0:
            return
        self._owners -= 1
        if self._owners == 0 and self._task is not None:
            self._task.cancel()
            self._task = None
            logger.debug(f"Stopped periodic task {self.name}")

    async def run_once(self) -> bool:
        """Run one pass now. Returns False if a pass was already in progress."""
        if self._running:
            return False
        self._running = True
        try:
            await self.func()
        except Exception as e:
            logger.error(f"Periodic task {self.name} failed: {e}")
        finally:
            self._running = False
        return True

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)
