"""Change notification for the store file."""

import hashlib
from pathlib import Path
from typing import Callable

from ..config import STORE_FILE
from ..logging_config import get_logger

logger = get_logger(__name__)

Signature = tuple[int, int, str]
Callback = Callable[[], None]


def file_signature(path: Path) -> Signature | None:
    """(mtime_ns, size, sha1) of a file, None when it does not exist."""
    try:
        stat = path.stat()
        digest = hashlib.sha1(path.read_bytes()).hexdigest()
    except OSError:
        return None
    return (stat.st_mtime_ns, stat.st_size, digest)


class StoreWatcher:
    """Notifies subscribers when the store file changes.

    Consumers call ``poll`` on their own timer.
    """

    def __init__(self, path: Path = STORE_FILE):
        self.path = Path(path)
        self._subscribers: list[Callback] = []
        self._signature = file_signature(self.path)

    def subscribe(self, callback: Callback) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Callback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def poll(self) -> bool:
        """Check the file and notify subscribers if it changed."""
        signature = file_signature(self.path)
        if signature == self._signature:
            return False
        self._signature = signature
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception as e:
                logger.error(f"Store watcher subscriber failed: {e}")
        return True
