"""Store daemon and its clients."""

from .client import dispatch, is_daemon_running, send_to_daemon
from .server import DaemonServer

__all__ = ["DaemonServer", "dispatch", "is_daemon_running", "send_to_daemon"]
