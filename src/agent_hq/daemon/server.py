"""Single-writer store daemon on a Unix socket.

While the daemon runs, every hook process hands its mutation to the daemon
instead of writing the store itself, so only one process ever writes.
Protocol: one JSON request line, one JSON response line, then close.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Callable, Literal

from pydantic import BaseModel, ValidationError

from ..config import SOCKET_PATH
from ..logging_config import get_logger
from ..store.file_store import SessionStore
from ..store.models import HookEvent

logger = get_logger(__name__)

RequestType = Literal["hookEvent", "clearSessions", "clearAll", "clearProjects"]
READ_TIMEOUT_SECONDS = 5.0


class DaemonRequest(BaseModel):
    type: RequestType
    payload: HookEvent | None = None


class DaemonResponse(BaseModel):
    ok: bool
    error: str | None = None

    def to_line(self) -> bytes:
        return (self.model_dump_json(exclude_none=True) + "\n").encode("utf-8")


class DaemonServer:
    """Serves store mutations for other processes."""

    def __init__(self, store: SessionStore, socket_path: Path = SOCKET_PATH):
        self.store = store
        self.socket_path = Path(socket_path)
        self._server: asyncio.AbstractServer | None = None
        self._handlers: dict[str, Callable[[DaemonRequest], None]] = {
            "hookEvent": self._hook_event,
            "clearSessions": lambda _request: self.store.clear_sessions(),
            "clearAll": lambda _request: self.store.clear_all(),
            "clearProjects": lambda _request: self.store.clear_projects(),
        }

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    def _hook_event(self, request: DaemonRequest) -> None:
        if request.payload is None:
            raise ValueError("missing payload for hookEvent")
        self.store.update_session(request.payload)

    def handle_request(self, line: str) -> DaemonResponse:
        """Parse and apply one request line."""
        try:
            raw = json.loads(line)
        except json.JSONDecodeError:
            return DaemonResponse(ok=False, error="invalid JSON")
        if not isinstance(raw, dict):
            return DaemonResponse(ok=False, error="invalid JSON")

        request_type = raw.get("type")
        if request_type not in self._handlers:
            return DaemonResponse(ok=False, error=f"unknown request type: {request_type}")

        try:
            request = DaemonRequest.model_validate(raw)
            self._handlers[request_type](request)
        except (ValidationError, ValueError) as e:
            logger.warning(f"Rejected daemon request {request_type}: {e}")
            return DaemonResponse(ok=False, error=str(e))
        except Exception as e:
            logger.error(f"Daemon request {request_type} failed: {e}")
            return DaemonResponse(ok=False, error=str(e))

        self.store.flush()
        return DaemonResponse(ok=True)

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            line = await asyncio.wait_for(reader.readline(), READ_TIMEOUT_SECONDS)
            if line:
                response = self.handle_request(line.decode("utf-8", errors="replace"))
                writer.write(response.to_line())
                await writer.drain()
        except (asyncio.TimeoutError, ConnectionError) as e:
            logger.debug(f"Daemon client went away: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    def _remove_socket(self) -> None:
        try:
            self.socket_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove socket {self.socket_path}: {e}")

    async def start(self) -> None:
        """Bind the socket, replacing a stale one left by a crashed daemon."""
        if self._server is not None:
            return
        self.socket_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        self._remove_socket()
        self._server = await asyncio.start_unix_server(
            self._handle_connection, path=str(self.socket_path)
        )
        os.chmod(self.socket_path, 0o600)
        logger.info(f"Daemon listening on {self.socket_path}")

    async def stop(self) -> None:
        """Flush pending writes, close the server and remove the socket."""
        server, self._server = self._server, None
        if server is None:
            return
        self.store.flush()
        server.close()
        await server.wait_closed()
        self._remove_socket()
        logger.info("Daemon stopped")

    async def serve_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()
