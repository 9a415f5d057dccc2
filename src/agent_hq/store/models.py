"""Session store data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config import EXTERNAL_SESSION_PREFIX

UNGROUPED_PROJECT_ID = ""

HookEventName = Literal[
    "SessionStart",
    "UserPromptSubmit",
    "PreToolUse",
    "PostToolUse",
    "Notification",
    "Stop",
    "SessionEnd",
]

HOOK_EVENTS: tuple[str, ...] = get_args(HookEventName)


class SessionStatus(str, Enum):
    """Possible states for a monitored session."""

    RUNNING = "running"
    WAITING_INPUT = "waiting_input"
    STOPPED = "stopped"


class AgentKind(str, Enum):
    """Which agent produced the session."""

    NATIVE = "native"  # Reports through hooks
    EXTERNAL = "external"  # Discovered from its transcript directory


class SessionSource(str, Enum):
    TTY = "tty"
    TMUX = "tmux"


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, returning None when unparsable.

    Naive timestamps are taken to be UTC.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_external_session_id(session_id: str) -> bool:
    return session_id.startswith(EXTERNAL_SESSION_PREFIX)


class Session(BaseModel):
    """One monitored agent conversation."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str
    cwd: str = ""
    initial_cwd: str = ""
    tty: str | None = None
    status: SessionStatus = SessionStatus.RUNNING
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)
    last_prompt: str | None = None
    current_tool: str | None = None
    notification_type: str | None = None
    last_message: str | None = Field(default=None, alias="lastMessage")
    summary: str | None = None
    summary_transcript_size: int | None = None
    agent: AgentKind = AgentKind.NATIVE
    transcript_path: str | None = None
    source: SessionSource = SessionSource.TTY
    tmux_target: str | None = None

    @field_validator("agent", mode="before")
    @classmethod
    def _legacy_agent_names(cls, value: object) -> object:
        # Older stores recorded the agent by product name
        if isinstance(value, str):
            return {"claude": "native", "codex": "external"}.get(value, value)
        return value

    @property
    def display_name(self) -> str:
        """Short display name for the session."""
        path = self.initial_cwd or self.cwd
        return path.rstrip("/").rsplit("/", 1)[-1] or path


class Project(BaseModel):
    """A user-defined named bucket of sessions."""

    id: str
    name: str
    created_at: str = Field(default_factory=now_iso)


class ProjectItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["project"] = "project"
    id: str


class SessionItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["session"] = "session"
    key: str


DisplayOrderItem = Annotated[Union[ProjectItem, SessionItem], Field(discriminator="type")]


def default_display_order() -> list[DisplayOrderItem]:
    return [ProjectItem(id=UNGROUPED_PROJECT_ID)]


class StoreData(BaseModel):
    """The whole persisted store document."""

    model_config = ConfigDict(populate_by_name=True)

    sessions: dict[str, Session] = Field(default_factory=dict)
    projects: dict[str, Project] = Field(default_factory=dict)
    display_order: list[DisplayOrderItem] = Field(
        default_factory=default_display_order, alias="displayOrder"
    )
    updated_at: str = Field(default_factory=now_iso)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class HookEvent(BaseModel):
    """An event reported by the agent's hook tooling. Never persisted."""

    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(min_length=1)
    cwd: str = ""
    tty: str | None = None
    hook_event_name: HookEventName
    notification_type: str | None = None
    prompt: str | None = None
    tool_name: str | None = None
    # SessionStart: startup | resume | clear | compact
    source: str | None = None
    # SessionEnd: clear | logout | prompt_input_exit | other
    reason: str | None = None
