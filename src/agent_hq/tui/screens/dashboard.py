"""Dashboard screen showing all sessions grouped by project."""

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.screen import Screen
from textual.widgets import Footer, Header, Static

from ...config import CLEANUP_INTERVAL_SECONDS, MAX_VISIBLE_SESSIONS, REFRESH_INTERVAL_SECONDS
from ...logging_config import get_logger
from ...store import display_order
from ...store.file_store import SessionStore
from ...store.loops import PeriodicTask
from ...store.view_model import ProjectHeaderRow, build_rows, viewport_start
from ...store.watcher import StoreWatcher
from ...tmux import TmuxController
from ...transcripts.ingest import ExternalTranscriptIngester, active_window_seconds
from ..widgets.session_row import ProjectHeader, SessionRow

logger = get_logger(__name__)

HELP_TEXT = (
    "[dim]j/k[/] navigate │ [dim]J/K[/] reorder │ [dim]p[/] project │ "
    "[dim]a[/] assign │ [dim]d[/] remove"
)


class DashboardScreen(Screen):
    """Live view of every monitored session."""

    BINDINGS = [
        Binding("j", "cursor_down", "Down", show=False),
        Binding("k", "cursor_up", "Up", show=False),
        Binding("down", "cursor_down", "Down"),
        Binding("up", "cursor_up", "Up"),
        Binding("J", "move_down", "Move down", show=False),
        Binding("K", "move_up", "Move up", show=False),
        Binding("p", "new_project", "New Project"),
        Binding("a", "assign_project", "Assign"),
        Binding("d", "remove_session", "Remove"),
        Binding("r", "refresh", "Refresh"),
        Binding("q", "quit", "Quit"),
    ]

    DEFAULT_CSS = """
    DashboardScreen {
        background: $surface;
    }

    #dashboard-header {
        height: 3;
        padding: 0 1;
        background: $primary-background;
        color: $text;
    }

    #session-list {
        height: 1fr;
        border: solid $primary-background;
        margin: 0 1 1 1;
    }

    #empty-message {
        text-align: center;
        padding: 2;
        color: $text-muted;
    }
    """

    def __init__(self, store: SessionStore, tmux: TmuxController | None = None) -> None:
        super().__init__()
        self.store = store
        self.tmux = tmux
        self.selected_index = 0
        self.watcher = StoreWatcher(store.store_file)
        self.ingester = ExternalTranscriptIngester(
            store, store.external_sessions_dir, active_window_seconds()
        )
        self.cleanup_task = PeriodicTask(
            "cleanup", self.store.cleanup_stale_sessions, CLEANUP_INTERVAL_SECONDS
        )
        self.refresh_task = PeriodicTask("refresh", self._refresh_data, REFRESH_INTERVAL_SECONDS)

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static(self._header_text(0), id="dashboard-header")
        yield VerticalScroll(id="session-list")
        yield Footer()

    def _header_text(self, count: int) -> str:
        return f"[bold green]◉ AGENT HQ[/] │ {count} session(s) │ {HELP_TEXT}"

    async def on_mount(self) -> None:
        """Start background passes and watch the store file."""
        self.watcher.subscribe(self._on_store_changed)
        self.cleanup_task.start()
        self.refresh_task.start()
        self.set_interval(1.0, self.watcher.poll)
        await self.refresh_session_list()

    def on_unmount(self) -> None:
        self.cleanup_task.stop()
        self.refresh_task.stop()
        self.watcher.unsubscribe(self._on_store_changed)

    def _on_store_changed(self) -> None:
        self.run_worker(self.refresh_session_list(), exclusive=True)

    async def _refresh_data(self) -> None:
        changed = self.ingester.sync_once() > 0
        if self.tmux is not None:
            changed = self.store.sync_multiplexer_sessions(self.tmux.list_panes()) or changed
        changed = self.store.refresh_session_data() or changed
        if changed:
            await self.refresh_session_list()

    def _session_keys(self) -> list[str]:
        store = self.store.read_store()
        return [
            key
            for key in display_order.session_keys(store.display_order)
            if key in store.sessions
        ]

    def _selected_key(self) -> str | None:
        keys = self._session_keys()
        if not keys:
            return None
        return keys[min(self.selected_index, len(keys) - 1)]

    async def refresh_session_list(self) -> None:
        """Rebuild the visible rows from the store."""
        store = self.store.read_store()
        total = len(self._session_keys())
        if total:
            self.selected_index = max(0, min(self.selected_index, total - 1))
        else:
            self.selected_index = 0

        start = viewport_start(self.selected_index, total, MAX_VISIBLE_SESSIONS)
        view = build_rows(
            store.display_order,
            store.sessions,
            store.projects,
            start,
            MAX_VISIBLE_SESSIONS,
            self.selected_index,
        )

        header = self.query_one("#dashboard-header", Static)
        header.update(self._header_text(view.total_sessions))

        container = self.query_one("#session-list", VerticalScroll)
        await container.remove_children()
        if not view.rows:
            await container.mount(
                Static("No sessions. Start an agent to see it here.", id="empty-message")
            )
            return

        widgets = []
        for row in view.rows:
            if isinstance(row, ProjectHeaderRow):
                widgets.append(ProjectHeader(row))
            else:
                session_row = SessionRow(row.key, row.session, row.index)
                session_row.selected = row.selected
                widgets.append(session_row)
        await container.mount_all(widgets)

    async def action_cursor_down(self) -> None:
        """Move selection down."""
        total = len(self._session_keys())
        if total:
            self.selected_index = min(self.selected_index + 1, total - 1)
            await self.refresh_session_list()

    async def action_cursor_up(self) -> None:
        """Move selection up."""
        if self.selected_index > 0:
            self.selected_index -= 1
            await self.refresh_session_list()

    async def _move(self, direction: display_order.Direction) -> None:
        key = self._selected_key()
        if key and self.store.move_session(key, direction):
            self.selected_index += -1 if direction == "up" else 1
            await self.refresh_session_list()

    async def action_move_up(self) -> None:
        await self._move("up")

    async def action_move_down(self) -> None:
        await self._move("down")

    def action_new_project(self) -> None:
        self.app.push_screen("new_project")

    def action_assign_project(self) -> None:
        key = self._selected_key()
        if key:
            self.app.push_screen("assign_project", session_key=key)

    def action_remove_session(self) -> None:
        key = self._selected_key()
        if key:
            self.app.push_screen("confirm_remove", session_key=key)

    async def action_refresh(self) -> None:
        """Force a data refresh and cleanup pass."""
        await self.refresh_task.run_once()
        await self.cleanup_task.run_once()
        await self.refresh_session_list()
        self.notify("Refreshed")

    def action_quit(self) -> None:
        self.app.exit()
