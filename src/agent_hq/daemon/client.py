"""Client side of the store daemon, with local fallback."""

import json
import socket
from pathlib import Path
from typing import Any, Callable

from ..config import DAEMON_TIMEOUT_SECONDS, SOCKET_PATH
from ..logging_config import DaemonError, get_logger
from ..store.file_store import SessionStore
from ..store.models import HookEvent

logger = get_logger(__name__)

Request = dict[str, Any]


def is_daemon_running(socket_path: Path = SOCKET_PATH) -> bool:
    return Path(socket_path).exists()


def send_to_daemon(
    request: Request,
    socket_path: Path = SOCKET_PATH,
    timeout: float = DAEMON_TIMEOUT_SECONDS,
) -> dict:
    """Send one request and wait for the response line.

    Raises:
        DaemonError: The socket is missing, the daemon did not answer in
            time, or the response was not valid JSON
    """
    socket_path = Path(socket_path)
    if not socket_path.exists():
        raise DaemonError("daemon socket not found")

    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            sock.connect(str(socket_path))
            sock.sendall((json.dumps(request) + "\n").encode("utf-8"))
            buffer = b""
            while b"\n" not in buffer:
                chunk = sock.recv(4096)
                if not chunk:
                    raise DaemonError("daemon connection closed")
                buffer += chunk
    except socket.timeout as e:
        raise DaemonError("daemon request timed out") from e
    except OSError as e:
        raise DaemonError(f"daemon unreachable: {e}") from e

    line = buffer.split(b"\n", 1)[0]
    try:
        response = json.loads(line)
    except json.JSONDecodeError as e:
        raise DaemonError("invalid response from daemon") from e
    if not isinstance(response, dict):
        raise DaemonError("invalid response from daemon")
    return response


def apply_locally(request: Request, store: SessionStore) -> None:
    """Perform a daemon request in this process and flush it to disk."""
    request_type = request.get("type")
    if request_type == "hookEvent":
        store.update_session(HookEvent.model_validate(request.get("payload") or {}))
    elif request_type == "clearSessions":
        store.clear_sessions()
    elif request_type == "clearAll":
        store.clear_all()
    elif request_type == "clearProjects":
        store.clear_projects()
    else:
        raise ValueError(f"unknown request type: {request_type}")
    store.flush()


Strategy = Callable[[Request, SessionStore, Path], bool]


def _via_daemon(request: Request, store: SessionStore, socket_path: Path) -> bool:
    if not is_daemon_running(socket_path):
        return False
    try:
        response = send_to_daemon(request, socket_path)
    except DaemonError as e:
        logger.warning(f"Daemon unusable, falling back to local write: {e}")
        return False
    if not response.get("ok"):
        logger.warning(f"Daemon rejected request: {response.get('error')}")
        return False
    return True


def _via_local_store(request: Request, store: SessionStore, socket_path: Path) -> bool:
    apply_locally(request, store)
    return True


STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("daemon", _via_daemon),
    ("local", _via_local_store),
)


def dispatch(
    request: Request,
    store: SessionStore | None = None,
    socket_path: Path = SOCKET_PATH,
) -> str:
    """Apply a request through the first strategy that accepts it.

    Returns:
        Name of the strategy that handled the request
    """
    store = store or SessionStore()
    for name, strategy in STRATEGIES:
        if strategy(request, store, Path(socket_path)):
            logger.debug(f"Request {request.get('type')} handled by {name}")
            return name
    raise DaemonError(f"no strategy handled request {request.get('type')}")
