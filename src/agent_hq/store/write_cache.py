"""Debounced, retrying persistence of the store document."""

import asyncio
import fcntl
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Protocol

from ..config import (
    ERROR_LOG_FILE,
    WRITE_DEBOUNCE_SECONDS,
    WRITE_MAX_RETRIES,
    WRITE_RETRY_DELAY_SECONDS,
)
from ..logging_config import StoreError, audit, get_audit_logger, get_logger
from .models import StoreData, now_iso

logger = get_logger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


def default_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    """Schedule on the running event loop, or on a daemon thread timer without one."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer
    return loop.call_later(delay, callback)


@contextmanager
def locked(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock on ``lock_path``."""
    fd = os.open(lock_path, os.O_CREAT | os.O_RDWR, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


def write_json_atomic(path: Path, payload: str) -> None:
    """Write to a temp file in the same directory, then rename over ``path``.

    mkstemp creates the file with owner-only permissions.
    """
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


class WriteCache:
    """Coalesces bursts of store mutations into one disk write.

    Holds at most one pending document. Every ``schedule`` replaces it and
    restarts the debounce timer; when the timer fires the document is written
    with bounded retries. If every attempt fails the pending write is dropped
    and the file on disk stays authoritative.
    """

    def __init__(
        self,
        store_file: Path,
        error_log: Path = ERROR_LOG_FILE,
        debounce: float = WRITE_DEBOUNCE_SECONDS,
        max_retries: int = WRITE_MAX_RETRIES,
        retry_delay: float = WRITE_RETRY_DELAY_SECONDS,
        call_later: CallLater | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store_file = Path(store_file)
        self.debounce = debounce
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._call_later = call_later or default_call_later
        self._sleep = sleep
        self._error_log = get_audit_logger("write_errors", Path(error_log))
        self._pending: StoreData | None = None
        self._timer: TimerHandle | None = None
        self._lock = threading.RLock()

    @property
    def pending(self) -> StoreData | None:
        """A copy of the not-yet-written document, if any."""
        with self._lock:
            return self._pending.model_copy(deep=True) if self._pending else None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def schedule(self, data: StoreData) -> None:
        """Replace the pending document and restart the debounce timer."""
        with self._lock:
            self._pending = data.model_copy(deep=True)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._call_later(self.debounce, self._on_timer)

    def flush(self) -> bool:
        """Cancel the timer and write the pending document now.

        Returns False only when a pending write was attempted and failed.
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            return self._write_pending()

    def reset(self) -> None:
        """Discard the pending document without writing it."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = None

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
            self._write_pending()

    def _write_pending(self) -> bool:
        data, self._pending = self._pending, None
        if data is None:
            return True
        return self._write_with_retry(data)

    def _write_with_retry(self, data: StoreData) -> bool:
        for attempt in range(1, self.max_retries + 1):
            try:
                self._write(data)
                return True
            except StoreError as e:
                logger.warning(f"Store write attempt {attempt} failed: {e}")
                audit(self._error_log, type="write_error", attempt=attempt, error=str(e))
                if attempt < self.max_retries:
                    self._sleep(self.retry_delay)

        logger.error(f"Dropping store write after {self.max_retries} failed attempts")
        return False

    def _write(self, data: StoreData) -> None:
        data.updated_at = now_iso()
        try:
            self.store_file.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            with locked(self.store_file.with_name(self.store_file.name + ".lock")):
                write_json_atomic(self.store_file, data.to_json())
        except OSError as e:
            raise StoreError(f"Writing {self.store_file} failed: {e}") from e
        logger.debug(f"Wrote store with {len(data.sessions)} session(s)")
