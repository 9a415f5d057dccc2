"""Main Textual application for agent-hq."""

from textual.app import App
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Static

from ..store.file_store import SessionStore
from ..store.models import UNGROUPED_PROJECT_ID
from ..tmux import TmuxController
from .screens.dashboard import DashboardScreen


async def _refresh_dashboard(app: App) -> None:
    # The dashboard is an installed screen, so look it up by name
    dashboard = app.get_screen("dashboard")
    if isinstance(dashboard, DashboardScreen):
        await dashboard.refresh_session_list()


class NewProjectScreen(ModalScreen):
    """Modal for creating a project."""

    DEFAULT_CSS = """
    NewProjectScreen {
        align: center middle;
    }

    #new-project-dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        background: $surface;
        border: solid $primary;
    }

    #new-project-dialog Input {
        margin-bottom: 1;
    }

    #button-row {
        margin-top: 1;
        height: 3;
    }

    #button-row Button {
        margin-right: 1;
    }
    """

    def __init__(self, store: SessionStore) -> None:
        super().__init__()
        self.store = store

    def compose(self):
        with Vertical(id="new-project-dialog"):
            yield Label("[bold]New Project[/]")
            yield Input(placeholder="Project name", id="project-name")
            with Horizontal(id="button-row"):
                yield Button("Create", variant="primary", id="create-btn")
                yield Button("Cancel", id="cancel-btn")

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel-btn":
            self.app.pop_screen()
        elif event.button.id == "create-btn":
            name = self.query_one("#project-name", Input).value.strip()
            if not name:
                self.notify("Project name is required", severity="error")
                return
            self.store.create_project(name)
            self.app.pop_screen()
            await _refresh_dashboard(self.app)
            self.app.notify(f"Created project {name}")


class AssignProjectScreen(ModalScreen):
    """Modal for moving a session into a project."""

    DEFAULT_CSS = """
    AssignProjectScreen {
        align: center middle;
    }

    #assign-dialog {
        width: 50;
        height: auto;
        padding: 1 2;
        background: $surface;
        border: solid $primary;
    }

    #assign-dialog Button {
        width: 100%;
        margin-bottom: 1;
    }
    """

    def __init__(self, store: SessionStore, session_key: str) -> None:
        super().__init__()
        self.store = store
        self.session_key = session_key
        self.projects = store.get_projects()

    def compose(self):
        with Vertical(id="assign-dialog"):
            yield Label("[bold]Assign to Project[/]")
            yield Button("(ungrouped)", id="project-ungrouped")
            for i, project in enumerate(self.projects):
                yield Button(project.name, id=f"project-{i}")
            yield Button("Cancel", variant="error", id="cancel-btn")

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        button_id = event.button.id or ""
        if button_id == "cancel-btn":
            self.app.pop_screen()
            return

        if button_id == "project-ungrouped":
            project_id = UNGROUPED_PROJECT_ID
        else:
            project_id = self.projects[int(button_id.removeprefix("project-"))].id
        self.store.assign_session_to_project(self.session_key, project_id)
        self.app.pop_screen()
        await _refresh_dashboard(self.app)


class ConfirmRemoveScreen(ModalScreen):
    """Modal for confirming session removal."""

    DEFAULT_CSS = """
    ConfirmRemoveScreen {
        align: center middle;
    }

    #remove-dialog {
        width: 50;
        height: auto;
        padding: 1 2;
        background: $surface;
        border: solid $error;
    }

    #button-row {
        margin-top: 1;
        height: 3;
    }

    #button-row Button {
        margin-right: 1;
    }
    """

    def __init__(self, store: SessionStore, session_key: str) -> None:
        super().__init__()
        self.store = store
        self.session_key = session_key
        self.session = store.get_session(session_key)

    def compose(self):
        with Vertical(id="remove-dialog"):
            yield Label("[bold red]Remove Session?[/]")
            if self.session:
                yield Static(f"Project: {self.session.display_name}")
                yield Static(f"Directory: {self.session.cwd}")
            yield Static("\nThe agent keeps running; it reappears on its next event.")
            with Horizontal(id="button-row"):
                yield Button("Remove", variant="error", id="remove-btn")
                yield Button("Cancel", id="cancel-btn")

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel-btn":
            self.app.pop_screen()
        elif event.button.id == "remove-btn":
            self.store.remove_session(self.session_key)
            self.app.pop_screen()
            await _refresh_dashboard(self.app)
            self.app.notify("Session removed")


class AgentHQApp(App):
    """Main agent-hq application."""

    TITLE = "Agent HQ"
    CSS = """
    Screen {
        background: $surface;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit", show=False),
    ]

    def __init__(
        self, store: SessionStore | None = None, tmux: TmuxController | None = None
    ) -> None:
        super().__init__()
        self.tmux = tmux or TmuxController()
        self.store = store or SessionStore(tmux=self.tmux)

    def on_mount(self) -> None:
        """Set up the application."""
        self.install_screen(DashboardScreen(self.store, self.tmux), name="dashboard")
        self.push_screen("dashboard")

    def on_unmount(self) -> None:
        self.store.flush()

    def push_screen(self, screen, callback=None, **kwargs):
        """Override to handle screen creation with arguments."""
        if screen == "new_project":
            return super().push_screen(NewProjectScreen(self.store), callback)
        if screen == "assign_project" and kwargs.get("session_key"):
            return super().push_screen(
                AssignProjectScreen(self.store, kwargs["session_key"]), callback
            )
        if screen == "confirm_remove" and kwargs.get("session_key"):
            return super().push_screen(
                ConfirmRemoveScreen(self.store, kwargs["session_key"]), callback
            )
        return super().push_screen(screen, callback)
