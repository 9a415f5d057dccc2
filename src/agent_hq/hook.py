"""Entry point for agent hook invocations.

Hook processes are short-lived: validate the payload, hand it to the daemon
(or apply it locally) and exit.
"""

import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .config import SOCKET_PATH
from .daemon.client import dispatch
from .logging_config import get_logger
from .store.file_store import SessionStore
from .store.models import HOOK_EVENTS, HookEvent
from .tty import tty_from_ancestors

logger = get_logger(__name__)


class InvalidHookEvent(ValueError):
    """The hook invocation named an unknown event or sent a bad payload."""


def build_event(event_name: str, payload: dict[str, Any], tty: str | None = None) -> HookEvent:
    """Validate a hook payload into a HookEvent.

    Raises:
        InvalidHookEvent: Unknown event name, missing session_id or a field
            of the wrong type
    """
    if event_name not in HOOK_EVENTS:
        raise InvalidHookEvent(f"Invalid event name: {event_name}")
    if not isinstance(payload, dict):
        raise InvalidHookEvent("Hook payload must be a JSON object")

    try:
        event = HookEvent.model_validate(
            {**payload, "hook_event_name": event_name, "tty": tty}
        )
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
        raise InvalidHookEvent(f"Invalid hook payload ({fields})") from e

    if not event.cwd:
        event.cwd = os.getcwd()
    return event


def handle_hook_event(
    event_name: str,
    payload: dict[str, Any],
    tty: str | None = None,
    store: SessionStore | None = None,
    socket_path: Path = SOCKET_PATH,
) -> str:
    """Record one hook event.

    Returns:
        Name of the strategy that applied it ("daemon" or "local")
    """
    event = build_event(event_name, payload, tty or tty_from_ancestors())
    request = {"type": "hookEvent", "payload": event.model_dump(exclude_none=True)}
    handled_by = dispatch(request, store, socket_path)
    logger.debug(f"{event_name} for {event.session_id} handled by {handled_by}")
    return handled_by
