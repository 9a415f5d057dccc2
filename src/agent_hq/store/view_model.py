"""Visible rows derived from the display order for a scrolling viewport."""

from typing import Mapping, NamedTuple, Sequence, Union

from .models import UNGROUPED_PROJECT_ID, DisplayOrderItem, Project, ProjectItem, Session

UNGROUPED_LABEL = "(ungrouped)"


class ProjectHeaderRow(NamedTuple):
    project_id: str
    name: str


class SessionRowData(NamedTuple):
    key: str
    session: Session
    index: int
    selected: bool


DisplayRow = Union[ProjectHeaderRow, SessionRowData]


class DisplayRows(NamedTuple):
    rows: list[DisplayRow]
    total_sessions: int
    header_count_in_viewport: int


def viewport_start(selected_index: int, total_sessions: int, size: int) -> int:
    """First session number of a viewport of ``size`` centered on the selection."""
    if total_sessions <= size:
        return 0
    start = selected_index - size // 2
    start = max(0, start)
    return min(total_sessions - size, start)


def _project_name(project_id: str, projects: Mapping[str, Project]) -> str | None:
    if project_id == UNGROUPED_PROJECT_ID:
        return UNGROUPED_LABEL
    project = projects.get(project_id)
    return project.name if project else None


def build_rows(
    order: Sequence[DisplayOrderItem],
    sessions: Mapping[str, Session],
    projects: Mapping[str, Project],
    start: int,
    size: int,
    selected_index: int = -1,
) -> DisplayRows:
    """Walk the display order and emit the rows inside ``[start, start + size)``.

    Session numbering runs across the whole order regardless of visibility.
    A project header is held back until one of its sessions is visible. The
    ungrouped header is only shown when a named project exists. A named
    project without any sessions shows its header when its position falls
    inside the viewport so it stays reachable.
    """
    end = start + size
    has_named_projects = any(
        isinstance(item, ProjectItem) and item.id != UNGROUPED_PROJECT_ID for item in order
    )

    rows: list[DisplayRow] = []
    number = 0
    header_count = 0
    pending: ProjectHeaderRow | None = None
    pending_members = 0

    def flush_empty_pending() -> None:
        nonlocal header_count
        if pending and pending_members == 0 and pending.project_id != UNGROUPED_PROJECT_ID:
            if start <= number < end:
                rows.append(pending)
                header_count += 1

    for item in order:
        if isinstance(item, ProjectItem):
            flush_empty_pending()
            pending, pending_members = None, 0
            if item.id == UNGROUPED_PROJECT_ID and not has_named_projects:
                continue
            name = _project_name(item.id, projects)
            if name is not None:
                pending = ProjectHeaderRow(project_id=item.id, name=name)
            continue

        session = sessions.get(item.key)
        if session is None:
            continue
        pending_members += 1

        if start <= number < end:
            if pending is not None:
                rows.append(pending)
                header_count += 1
                pending = None
            rows.append(
                SessionRowData(
                    key=item.key,
                    session=session,
                    index=number,
                    selected=number == selected_index,
                )
            )
        number += 1

    flush_empty_pending()
    return DisplayRows(rows=rows, total_sessions=number, header_count_in_viewport=header_count)
