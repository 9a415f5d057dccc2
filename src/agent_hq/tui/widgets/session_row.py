"""Row widgets for the dashboard."""

from textual.app import ComposeResult
from textual.containers import Horizontal
from textual.reactive import reactive
from textual.widget import Widget
from textual.widgets import Static

from ...store.models import Session, SessionStatus
from ...store.view_model import ProjectHeaderRow

STATUS_ICONS = {
    SessionStatus.RUNNING: "[bold yellow]...[/]",
    SessionStatus.WAITING_INPUT: "[bold red]?[/]",
    SessionStatus.STOPPED: "[bold green]OK[/]",
}


def _truncate(text: str | None, max_len: int) -> str:
    """Truncate text with ellipsis, flattening newlines."""
    text = " ".join((text or "").split())
    if len(text) <= max_len:
        return text
    return text[: max_len - 1] + "..."


def activity(session: Session) -> str:
    """What the session is doing right now, for the activity column."""
    if session.status == SessionStatus.WAITING_INPUT:
        return "waiting for permission"
    if session.current_tool:
        return f"tool: {session.current_tool}"
    return session.last_prompt or ""


class ProjectHeader(Static):
    """A project header line."""

    DEFAULT_CSS = """
    ProjectHeader {
        height: 1;
        padding: 0 1;
        text-style: bold;
        color: $secondary;
    }
    """

    def __init__(self, header: ProjectHeaderRow, **kwargs) -> None:
        super().__init__(f"▸ {header.name}", **kwargs)
        self.project_id = header.project_id


class SessionRow(Widget):
    """A single session in the list."""

    DEFAULT_CSS = """
    SessionRow {
        height: 3;
        padding: 0 1;
        border: solid $primary-background;
    }

    SessionRow.-selected {
        background: $accent;
        border: solid $accent;
    }

    SessionRow .session-number {
        width: 4;
        text-style: bold;
        color: $text-muted;
    }

    SessionRow .session-project {
        width: 20;
        text-style: bold;
    }

    SessionRow .session-status {
        width: 4;
        text-align: center;
    }

    SessionRow .session-activity {
        width: 1fr;
    }

    SessionRow .session-output {
        width: 40;
        color: $text-muted;
    }
    """

    selected: reactive[bool] = reactive(False)

    def __init__(self, key: str, session: Session, index: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.key = key
        self.session = session
        self.index = index

    def compose(self) -> ComposeResult:
        with Horizontal():
            yield Static(f"[{self.index + 1}]", classes="session-number")
            yield Static(_truncate(self.session.display_name, 19), classes="session-project")
            yield Static(STATUS_ICONS[self.session.status], classes="session-status")
            yield Static(_truncate(activity(self.session), 40), classes="session-activity")
            yield Static(_truncate(self.session.last_message, 38), classes="session-output")

    def watch_selected(self, selected: bool) -> None:
        self.set_class(selected, "-selected")
