"""Session store facade.

The single entry point for reading and mutating the store document. Every
mutation reads the current document (the pending write if there is one),
changes it, and hands it to the write cache.
"""

import json
import secrets
from pathlib import Path
from typing import Iterable

from pydantic import TypeAdapter, ValidationError

from ..config import (
    CONFIG_FILE,
    DELETION_LOG_FILE,
    DISPLAY_ORDER_LOG_FILE,
    ERROR_LOG_FILE,
    EXTERNAL_SESSIONS_DIR,
    STORE_FILE,
    get_session_timeout_seconds,
)
from ..logging_config import audit, get_audit_logger, get_logger
from ..tmux.controller import TmuxController, TmuxPane
from ..transcripts import native, registry
from ..tty import TtyProbe
from . import display_order
from .cleanup import CleanupDecision, evaluate_store
from .migrations import migrate_document
from .models import (
    UNGROUPED_PROJECT_ID,
    AgentKind,
    DisplayOrderItem,
    HookEvent,
    Project,
    Session,
    SessionSource,
    StoreData,
    default_display_order,
    is_external_session_id,
    now_iso,
    parse_timestamp,
)
from .status import SessionFields, field_updates, next_status
from .write_cache import WriteCache

logger = get_logger(__name__)

_display_order_item = TypeAdapter(DisplayOrderItem)


class SessionStore:
    """Reads, mutates and persists the session store document."""

    def __init__(
        self,
        store_file: Path = STORE_FILE,
        write_cache: WriteCache | None = None,
        tty_probe: TtyProbe | None = None,
        config_file: Path = CONFIG_FILE,
        external_sessions_dir: Path = EXTERNAL_SESSIONS_DIR,
        transcripts_dir: Path | None = None,
        tmux: TmuxController | None = None,
    ):
        self.store_file = Path(store_file)
        data_dir = self.store_file.parent
        self.cache = write_cache or WriteCache(
            self.store_file, error_log=data_dir / ERROR_LOG_FILE.name
        )
        self.tty_probe = tty_probe or TtyProbe()
        self.config_file = Path(config_file)
        self.external_sessions_dir = Path(external_sessions_dir)
        self.transcripts_dir = transcripts_dir
        self.tmux = tmux
        self.transcript_cache = registry.TranscriptIndexCache()
        self._deletion_log = get_audit_logger("deletions", data_dir / DELETION_LOG_FILE.name)
        self._order_log = get_audit_logger(
            "display_order", data_dir / DISPLAY_ORDER_LOG_FILE.name
        )

    # -- loading and saving ------------------------------------------------

    def read_store(self) -> StoreData:
        """The current document: the pending write if any, else the file on disk."""
        pending = self.cache.pending
        if pending is not None:
            return pending

        if not self.store_file.exists():
            return StoreData()

        try:
            raw = json.loads(self.store_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable store file {self.store_file}, starting empty: {e}")
            return StoreData()
        if not isinstance(raw, dict) or not isinstance(raw.get("sessions"), dict):
            logger.warning(f"Store file {self.store_file} has an unexpected shape, starting empty")
            return StoreData()

        migrate_document(raw, self._order_log)
        return self._validate(raw)

    def _validate(self, raw: dict) -> StoreData:
        """Build a StoreData, skipping entries that fail validation."""
        data = StoreData()
        for key, value in raw["sessions"].items():
            try:
                data.sessions[key] = Session.model_validate(value)
            except ValidationError as e:
                logger.warning(f"Skipping invalid session {key!r}: {e.error_count()} error(s)")
        for key, value in (raw.get("projects") or {}).items():
            try:
                data.projects[key] = Project.model_validate(value)
            except ValidationError as e:
                logger.warning(f"Skipping invalid project {key!r}: {e.error_count()} error(s)")

        items = []
        for value in raw.get("displayOrder") or []:
            try:
                items.append(_display_order_item.validate_python(value))
            except ValidationError:
                logger.warning(f"Skipping invalid display order item {value!r}")
        data.display_order = display_order.repair(items, data.sessions, data.projects)
        if isinstance(raw.get("updated_at"), str):
            data.updated_at = raw["updated_at"]
        return data

    def _commit(self, store: StoreData) -> None:
        self.cache.schedule(store)

    def flush(self) -> bool:
        """Write any pending change to disk now."""
        return self.cache.flush()

    def _set_order(
        self,
        store: StoreData,
        order: list[DisplayOrderItem],
        reason: str,
        **details: object,
    ) -> bool:
        before = store.display_order
        store.display_order = order
        if order == before:
            return False
        audit(
            self._order_log,
            reason=reason,
            before=[item.model_dump() for item in before],
            after=[item.model_dump() for item in order],
            **details,
        )
        return True

    # -- sessions ----------------------------------------------------------

    def _remove_other_sessions_on_tty(
        self, store: StoreData, session_id: str, tty: str
    ) -> str | None:
        """Drop stale sessions on ``tty``; returns the first one's project."""
        inherited: str | None = None
        for key, session in list(store.sessions.items()):
            if session.session_id == session_id or session.tty != tty:
                continue
            if inherited is None:
                inherited = display_order.session_project(store.display_order, key)
            del store.sessions[key]
            self._set_order(
                store,
                display_order.remove_session(store.display_order, key),
                "remove_session",
                sessionKey=key,
            )
            logger.info(f"Replaced session {key} on {tty} with {session_id}")
        return inherited

    def update_session(self, event: HookEvent) -> Session | None:
        """Apply a hook event, creating the session on first sight."""
        key = event.session_id
        store = self.read_store()
        existing = store.sessions.get(key)

        if event.hook_event_name == "SessionEnd":
            # /clear keeps the conversation under the same id
            if event.reason != "clear" and existing is not None:
                del store.sessions[key]
                self._set_order(
                    store,
                    display_order.remove_session(store.display_order, key),
                    "remove_session",
                    sessionKey=key,
                )
                self._commit(store)
                logger.info(f"Session {key} ended ({event.reason or 'unknown reason'})")
            return existing

        inherited_project = None
        if existing is None and event.tty:
            inherited_project = self._remove_other_sessions_on_tty(store, key, event.tty)

        fields = field_updates(
            event,
            SessionFields(
                last_prompt=existing.last_prompt if existing else None,
                current_tool=existing.current_tool if existing else None,
                notification_type=existing.notification_type if existing else None,
            ),
        )
        now = now_iso()

        if existing is None:
            session = Session(
                session_id=key,
                cwd=event.cwd,
                initial_cwd=event.cwd,
                tty=event.tty,
                agent=AgentKind.EXTERNAL if is_external_session_id(key) else AgentKind.NATIVE,
                created_at=now,
            )
        else:
            session = existing.model_copy()
            session.cwd = event.cwd or existing.cwd
            session.tty = event.tty or existing.tty

        if self.tmux is not None and session.tty and session.source != SessionSource.TMUX:
            pane = self.tmux.find_pane_by_tty(session.tty)
            if pane is not None:
                session.source = SessionSource.TMUX
                session.tmux_target = pane.target

        session.status = next_status(event, existing.status if existing else None)
        session.updated_at = now
        session.last_prompt = fields.last_prompt
        session.current_tool = fields.current_tool
        session.notification_type = fields.notification_type
        store.sessions[key] = session

        if existing is None:
            self._set_order(
                store,
                display_order.append_session(store.display_order, key, inherited_project),
                "add_session",
                sessionKey=key,
                projectId=inherited_project,
            )
            logger.info(f"New session {key} in {event.cwd}")

        self._commit(store)
        return session

    def get_sessions(self) -> list[Session]:
        """All sessions in display order. Pure read."""
        store = self.read_store()
        position = {
            key: i for i, key in enumerate(display_order.session_keys(store.display_order))
        }

        def sort_key(entry: tuple[str, Session]) -> tuple[int, float]:
            key, session = entry
            created = parse_timestamp(session.created_at)
            return (position.get(key, len(position)), created.timestamp() if created else 0.0)

        return [session for _, session in sorted(store.sessions.items(), key=sort_key)]

    def get_session(self, session_id: str) -> Session | None:
        return self.read_store().sessions.get(session_id)

    def remove_session(self, session_id: str) -> bool:
        store = self.read_store()
        if store.sessions.pop(session_id, None) is None:
            return False
        self._set_order(
            store,
            display_order.remove_session(store.display_order, session_id),
            "remove_session",
            sessionKey=session_id,
        )
        self._commit(store)
        return True

    def clear_sessions(self) -> None:
        """Remove every session, keeping projects."""
        store = self.read_store()
        store.sessions = {}
        store.display_order = display_order.clear_sessions(store.display_order)
        self._commit(store)
        logger.info("Cleared all sessions")

    def clear_projects(self) -> None:
        """Remove every project; their sessions become ungrouped."""
        store = self.read_store()
        if not store.projects:
            return
        store.projects = {}
        self._set_order(
            store, display_order.clear_projects(store.display_order), "clear_all_projects"
        )
        self._commit(store)
        logger.info("Cleared all projects")

    def clear_all(self) -> None:
        store = self.read_store()
        store.sessions = {}
        store.projects = {}
        store.display_order = default_display_order()
        self._commit(store)
        logger.info("Cleared all sessions and projects")

    def update_session_summary(
        self, session_id: str, summary: str, transcript_size: int | None = None
    ) -> bool:
        store = self.read_store()
        session = store.sessions.get(session_id)
        if session is None:
            return False
        session.summary = summary
        session.summary_transcript_size = transcript_size
        self._commit(store)
        return True

    def update_session_last_message(
        self, session_id: str, message: str, updated_at: str | None = None
    ) -> bool:
        """Record the latest assistant output; a no-op when unchanged."""
        store = self.read_store()
        session = store.sessions.get(session_id)
        if session is None or session.last_message == message:
            return False
        session.last_message = message
        session.updated_at = updated_at or now_iso()
        self._commit(store)
        return True

    # -- projects and ordering ---------------------------------------------

    def create_project(self, name: str) -> Project:
        store = self.read_store()
        project_id = secrets.token_hex(4)
        while project_id in store.projects:
            project_id = secrets.token_hex(4)
        project = Project(id=project_id, name=name)
        store.projects[project_id] = project
        self._set_order(
            store,
            display_order.insert_project(store.display_order, project_id),
            "create_project",
            projectId=project_id,
        )
        self._commit(store)
        logger.info(f"Created project {name!r} ({project_id})")
        return project

    def get_projects(self) -> list[Project]:
        """Named projects in display order, then by name."""
        store = self.read_store()
        position = {pid: i for i, pid in enumerate(display_order.project_ids(store.display_order))}
        return sorted(
            store.projects.values(),
            key=lambda p: (position.get(p.id, len(position)), p.name),
        )

    def rename_project(self, project_id: str, name: str) -> bool:
        store = self.read_store()
        project = store.projects.get(project_id)
        if project is None:
            return False
        project.name = name
        self._commit(store)
        return True

    def delete_project(self, project_id: str) -> bool:
        """Delete a project; its sessions move to the ungrouped block."""
        store = self.read_store()
        if store.projects.pop(project_id, None) is None:
            return False
        self._set_order(
            store,
            display_order.delete_project(store.display_order, project_id),
            "delete_project",
            projectId=project_id,
        )
        self._commit(store)
        return True

    def get_display_order(self) -> list[DisplayOrderItem]:
        return self.read_store().display_order

    def get_session_project(self, session_key: str) -> str | None:
        return display_order.session_project(self.read_store().display_order, session_key)

    def assign_session_to_project(self, session_key: str, project_id: str | None) -> bool:
        """Move a session to the end of a project's block; None means ungrouped."""
        store = self.read_store()
        if session_key not in store.sessions:
            return False
        if project_id not in (None, UNGROUPED_PROJECT_ID) and project_id not in store.projects:
            logger.warning(f"Cannot assign {session_key}: unknown project {project_id}")
            return False
        changed = self._set_order(
            store,
            display_order.assign_session(store.display_order, session_key, project_id or None),
            "assign_project",
            sessionKey=session_key,
            projectId=project_id,
        )
        if changed:
            self._commit(store)
        return changed

    def move_session(self, session_key: str, direction: display_order.Direction) -> bool:
        store = self.read_store()
        changed = self._set_order(
            store,
            display_order.move_session(store.display_order, session_key, direction),
            "move_session",
            sessionKey=session_key,
            direction=direction,
        )
        if changed:
            self._commit(store)
        return changed

    def reorder_project(self, project_id: str, direction: display_order.Direction) -> bool:
        store = self.read_store()
        if project_id not in store.projects:
            return False
        changed = self._set_order(
            store,
            display_order.reorder_project(store.display_order, project_id, direction),
            "reorder_project",
            projectId=project_id,
            direction=direction,
        )
        if changed:
            self._commit(store)
        return changed

    def cleanup_display_order(self) -> bool:
        """Drop dangling or duplicate items and append missing sessions."""
        store = self.read_store()
        changed = self._set_order(
            store,
            display_order.repair(store.display_order, store.sessions, store.projects),
            "cleanup",
        )
        if changed:
            self._commit(store)
        return changed

    # -- background passes -------------------------------------------------

    def _log_deletion(self, decision: CleanupDecision) -> None:
        session = decision.session
        details = (
            {"tty": session.tty}
            if decision.reason and decision.reason.value == "tty_closed"
            else {"elapsed": decision.elapsed}
        )
        audit(
            self._deletion_log,
            session_id=session.session_id,
            cwd=session.cwd,
            tty=session.tty,
            reason=decision.reason.value if decision.reason else None,
            details=details,
            last_updated=session.updated_at,
        )

    async def cleanup_stale_sessions(
        self, timeout_seconds: float | None = None
    ) -> list[CleanupDecision]:
        """Remove sessions whose TTY closed or that timed out.

        Returns the decisions that led to a removal.
        """
        if timeout_seconds is None:
            timeout_seconds = get_session_timeout_seconds(self.config_file)

        decisions = await evaluate_store(self.read_store(), timeout_seconds, self.tty_probe)
        removed = [d for d in decisions if d.should_remove]
        if not removed:
            return []

        # Re-read: the document may have changed while TTYs were probed
        store = self.read_store()
        popped = False
        for decision in removed:
            if store.sessions.pop(decision.key, None) is None:
                continue
            popped = True
            store.display_order = display_order.remove_session(store.display_order, decision.key)
            self._log_deletion(decision)
            logger.info(f"Removed stale session {decision.key} ({decision.reason.value})")
        if popped:
            self._commit(store)
        return removed

    def sync_multiplexer_sessions(self, panes: Iterable[TmuxPane]) -> bool:
        """Reconcile sessions with the live tmux panes.

        Sessions on a pane's TTY are marked as tmux-sourced; tmux-sourced
        sessions whose pane is gone are removed.
        """
        by_tty = {pane.tty: pane for pane in panes}
        store = self.read_store()
        changed = False
        for key, session in list(store.sessions.items()):
            pane = by_tty.get(session.tty) if session.tty else None
            if pane is not None:
                if session.source != SessionSource.TMUX or session.tmux_target != pane.target:
                    session.source = SessionSource.TMUX
                    session.tmux_target = pane.target
                    changed = True
            elif session.source == SessionSource.TMUX:
                del store.sessions[key]
                store.display_order = display_order.remove_session(store.display_order, key)
                logger.info(f"Removed session {key}: tmux pane {session.tmux_target} is gone")
                changed = True
        if changed:
            self._commit(store)
        return changed

    def refresh_session_data(self) -> bool:
        """Sync last messages from transcripts and infer external-agent statuses."""
        store = self.read_store()
        changed = native.sync_transcripts(store, self.transcripts_dir)
        if any(s.agent == AgentKind.EXTERNAL for s in store.sessions.values()):
            index = registry.build_transcript_index(
                self.external_sessions_dir, self.transcript_cache
            )
            changed = registry.update_external_session_statuses(store, index) or changed
        if changed:
            self._commit(store)
        return changed
