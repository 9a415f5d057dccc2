"""Session status state machine.

Pure functions mapping a hook event to the session's next status and the
derived context fields. Callers persist the results.
"""

from typing import Callable, NamedTuple

from .models import HookEvent, SessionStatus

PERMISSION_PROMPT = "permission_prompt"
IDLE_PROMPT = "idle_prompt"


class SessionFields(NamedTuple):
    """Context fields the state machine owns."""

    last_prompt: str | None = None
    current_tool: str | None = None
    notification_type: str | None = None


def next_status(event: HookEvent, current: SessionStatus | None = None) -> SessionStatus:
    """Determine a session's status after ``event``.

    Rules are evaluated top to bottom, first match wins.
    """
    name = event.hook_event_name

    if name == "Stop":
        return SessionStatus.STOPPED

    # A new prompt always resumes, even a stopped session
    if name == "UserPromptSubmit":
        return SessionStatus.RUNNING

    if current == SessionStatus.STOPPED:
        return SessionStatus.STOPPED

    if name == "PreToolUse":
        return SessionStatus.RUNNING

    if name == "PostToolUse":
        return current or SessionStatus.RUNNING

    if name == "Notification" and event.notification_type == PERMISSION_PROMPT:
        return SessionStatus.WAITING_INPUT

    if name == "Notification" and event.notification_type == IDLE_PROMPT:
        return current or SessionStatus.RUNNING

    return SessionStatus.RUNNING


def _session_start(event: HookEvent, existing: SessionFields) -> SessionFields:
    return existing


def _user_prompt_submit(event: HookEvent, existing: SessionFields) -> SessionFields:
    return SessionFields(
        last_prompt=event.prompt if event.prompt is not None else existing.last_prompt,
        current_tool=existing.current_tool,
        notification_type=None,
    )


def _pre_tool_use(event: HookEvent, existing: SessionFields) -> SessionFields:
    return existing._replace(current_tool=event.tool_name or existing.current_tool)


def _post_tool_use(event: HookEvent, existing: SessionFields) -> SessionFields:
    return existing._replace(current_tool=None)


def _notification(event: HookEvent, existing: SessionFields) -> SessionFields:
    notification_type = event.notification_type or existing.notification_type
    if event.notification_type in (PERMISSION_PROMPT, IDLE_PROMPT):
        # The tool awaiting permission is still the current one
        return existing._replace(notification_type=notification_type)
    return existing._replace(current_tool=None, notification_type=notification_type)


def _stop(event: HookEvent, existing: SessionFields) -> SessionFields:
    return SessionFields(last_prompt=existing.last_prompt)


def _other(event: HookEvent, existing: SessionFields) -> SessionFields:
    return existing._replace(current_tool=None)


_FIELD_HANDLERS: dict[str, Callable[[HookEvent, SessionFields], SessionFields]] = {
    "SessionStart": _session_start,
    "UserPromptSubmit": _user_prompt_submit,
    "PreToolUse": _pre_tool_use,
    "PostToolUse": _post_tool_use,
    "Notification": _notification,
    "Stop": _stop,
}


def field_updates(event: HookEvent, existing: SessionFields) -> SessionFields:
    """Compute the context fields after ``event``."""
    handler = _FIELD_HANDLERS.get(event.hook_event_name, _other)
    return handler(event, existing)
