"""Display order: the ordered interleaving of project headers and session keys.

The display order is the single source of truth for render order and for
project membership: a session belongs to the project header that most
recently precedes it. Sessions before any header, or after the ungrouped
header, are ungrouped. The ungrouped header leads the order.

Every function here is a pure transform; the input list is never mutated.
"""

from typing import Iterable, Literal, Sequence

from .models import UNGROUPED_PROJECT_ID, DisplayOrderItem, ProjectItem, SessionItem

Direction = Literal["up", "down"]


def _find_session(order: Sequence[DisplayOrderItem], key: str) -> int:
    for i, item in enumerate(order):
        if isinstance(item, SessionItem) and item.key == key:
            return i
    return -1


def _find_project(order: Sequence[DisplayOrderItem], project_id: str) -> int:
    for i, item in enumerate(order):
        if isinstance(item, ProjectItem) and item.id == project_id:
            return i
    return -1


def _block_end(order: Sequence[DisplayOrderItem], header_index: int) -> int:
    """Index of the first item after the header's contiguous session block."""
    i = header_index + 1
    while i < len(order) and isinstance(order[i], SessionItem):
        i += 1
    return i


def _ungrouped_end(order: Sequence[DisplayOrderItem]) -> int:
    """Insertion point at the end of the leading ungrouped block."""
    header = _find_project(order, UNGROUPED_PROJECT_ID)
    if header != -1:
        return _block_end(order, header)
    # Without a header, sessions before the first project are ungrouped
    return _block_end(order, -1)


def session_keys(order: Sequence[DisplayOrderItem]) -> list[str]:
    return [item.key for item in order if isinstance(item, SessionItem)]


def project_ids(order: Sequence[DisplayOrderItem]) -> list[str]:
    """Named project ids in display order."""
    return [
        item.id
        for item in order
        if isinstance(item, ProjectItem) and item.id != UNGROUPED_PROJECT_ID
    ]


def session_project(order: Sequence[DisplayOrderItem], key: str) -> str | None:
    """Project a session belongs to, None when ungrouped or unknown."""
    index = _find_session(order, key)
    for item in reversed(order[:index] if index != -1 else []):
        if isinstance(item, ProjectItem):
            return item.id or None
    return None


def append_session(
    order: Sequence[DisplayOrderItem], key: str, project_id: str | None = None
) -> list[DisplayOrderItem]:
    """Add a session at the end of its project's block (ungrouped by default)."""
    result = list(order)
    if _find_session(result, key) != -1:
        return result

    index = -1
    if project_id:
        header = _find_project(result, project_id)
        if header != -1:
            index = _block_end(result, header)
    if index == -1:
        index = _ungrouped_end(result)
    result.insert(index, SessionItem(key=key))
    return result


def remove_session(order: Sequence[DisplayOrderItem], key: str) -> list[DisplayOrderItem]:
    return [item for item in order if not (isinstance(item, SessionItem) and item.key == key)]


def assign_session(
    order: Sequence[DisplayOrderItem], key: str, project_id: str | None
) -> list[DisplayOrderItem]:
    """Move a session to the end of another project's block."""
    return append_session(remove_session(order, key), key, project_id)


def move_session(
    order: Sequence[DisplayOrderItem], key: str, direction: Direction
) -> list[DisplayOrderItem]:
    """Swap a session with its neighbour inside the same project block.

    A no-op at either boundary of the block.
    """
    result = list(order)
    index = _find_session(result, key)
    if index == -1:
        return result

    target = index - 1 if direction == "up" else index + 1
    if target < 0 or target >= len(result) or isinstance(result[target], ProjectItem):
        return result

    result[index], result[target] = result[target], result[index]
    return result


def insert_project(order: Sequence[DisplayOrderItem], project_id: str) -> list[DisplayOrderItem]:
    """Add a project header at the end of the order."""
    result = list(order)
    if _find_project(result, project_id) == -1:
        result.append(ProjectItem(id=project_id))
    return result


def reorder_project(
    order: Sequence[DisplayOrderItem], project_id: str, direction: Direction
) -> list[DisplayOrderItem]:
    """Move a project, with its sessions, past the neighbouring project.

    The ungrouped block never moves and nothing moves above it.
    """
    result = list(order)
    if project_id == UNGROUPED_PROJECT_ID:
        return result
    start = _find_project(result, project_id)
    if start == -1:
        return result
    end = _block_end(result, start)
    block = result[start:end]

    if direction == "up":
        previous = next(
            (i for i in range(start - 1, -1, -1) if isinstance(result[i], ProjectItem)), -1
        )
        if previous == -1 or result[previous].id == UNGROUPED_PROJECT_ID:
            return result
        return result[:previous] + block + result[previous:start] + result[end:]

    if end >= len(result) or result[end].id == UNGROUPED_PROJECT_ID:
        return result
    next_end = _block_end(result, end)
    return result[:start] + result[end:next_end] + block + result[next_end:]


def delete_project(order: Sequence[DisplayOrderItem], project_id: str) -> list[DisplayOrderItem]:
    """Remove a project header; its sessions join the end of the ungrouped block."""
    result = list(order)
    if project_id == UNGROUPED_PROJECT_ID:
        return result
    start = _find_project(result, project_id)
    if start == -1:
        return result
    end = _block_end(result, start)
    members = result[start + 1 : end]
    remaining = result[:start] + result[end:]
    index = _ungrouped_end(remaining)
    return remaining[:index] + members + remaining[index:]


def clear_projects(order: Sequence[DisplayOrderItem]) -> list[DisplayOrderItem]:
    """Drop every named project; all sessions become ungrouped in their current order."""
    return [ProjectItem(id=UNGROUPED_PROJECT_ID)] + [
        item for item in order if isinstance(item, SessionItem)
    ]


def clear_sessions(order: Sequence[DisplayOrderItem]) -> list[DisplayOrderItem]:
    return [item for item in order if isinstance(item, ProjectItem)]


def repair(
    order: Sequence[DisplayOrderItem],
    valid_session_keys: Iterable[str],
    valid_project_ids: Iterable[str],
) -> list[DisplayOrderItem]:
    """Restore the display order invariants.

    Drops items pointing at missing sessions or projects, keeps the first
    occurrence of duplicates, guarantees a leading ungrouped header, and
    appends sessions missing from the order to the ungrouped block.
    """
    keys = list(dict.fromkeys(valid_session_keys))
    known_keys = set(keys)
    known_projects = set(valid_project_ids) | {UNGROUPED_PROJECT_ID}

    result: list[DisplayOrderItem] = []
    seen_keys: set[str] = set()
    seen_projects: set[str] = set()
    for item in order:
        if isinstance(item, SessionItem):
            if item.key in known_keys and item.key not in seen_keys:
                seen_keys.add(item.key)
                result.append(item)
        elif item.id in known_projects and item.id not in seen_projects:
            seen_projects.add(item.id)
            result.append(item)

    if UNGROUPED_PROJECT_ID not in seen_projects:
        result.insert(0, ProjectItem(id=UNGROUPED_PROJECT_ID))

    for key in keys:
        if key not in seen_keys:
            index = _ungrouped_end(result)
            result.insert(index, SessionItem(key=key))
    return result
