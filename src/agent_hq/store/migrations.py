"""On-load migrations from legacy store shapes.

Migrations work on the raw JSON document before it is validated into
models. Each step is idempotent and they always run in the same order.
"""

import logging
from typing import Any

from ..logging_config import audit, get_logger
from .models import UNGROUPED_PROJECT_ID, parse_timestamp

logger = get_logger(__name__)

LEGACY_SESSION_FIELDS = ("project", "order")
DEPRECATED_PROJECT_FIELDS = ("assignedCwds", "order")

Document = dict[str, Any]


def _newer(candidate: dict, existing: dict) -> bool:
    new_ts = parse_timestamp(candidate.get("updated_at"))
    old_ts = parse_timestamp(existing.get("updated_at"))
    if new_ts is None:
        return False
    return old_ts is None or new_ts > old_ts


def migrate_session_keys(doc: Document, audit_log: logging.Logger | None = None) -> bool:
    """Rewrite legacy ``session_id:tty`` keys to bare session ids.

    On collision the session with the later ``updated_at`` wins. Display order
    items are renamed and de-duplicated, keeping the first occurrence.
    """
    sessions = doc.get("sessions") or {}
    if not any(":" in key for key in sessions):
        return False

    migrated: dict[str, dict] = {}
    mapping: dict[str, str] = {}
    for old_key, session in sessions.items():
        new_key = old_key
        if ":" in old_key:
            new_key = session.get("session_id") or old_key.split(":", 1)[0]
            mapping[old_key] = new_key
        existing = migrated.get(new_key)
        if existing is None or _newer(session, existing):
            migrated[new_key] = session
    doc["sessions"] = migrated

    order = doc.get("displayOrder")
    if isinstance(order, list):
        before = list(order)
        seen: set[str] = set()
        rewritten = []
        for item in order:
            if isinstance(item, dict) and item.get("type") == "session":
                key = mapping.get(item.get("key"), item.get("key"))
                if key in seen:
                    continue
                seen.add(key)
                item = {**item, "key": key}
            rewritten.append(item)
        doc["displayOrder"] = rewritten
        if audit_log is not None:
            audit(
                audit_log,
                reason="migration_keys",
                before=before,
                after=rewritten,
                extra={
                    "keyMappingCount": len(mapping),
                    "duplicatesRemoved": len(before) - len(rewritten),
                },
            )

    logger.info(f"Migrated {len(mapping)} legacy session key(s)")
    return True


def _legacy_order(entry: tuple[str, dict]) -> float:
    order = entry[1].get("order")
    return order if isinstance(order, (int, float)) else 0


def migrate_to_display_order(doc: Document, audit_log: logging.Logger | None = None) -> bool:
    """Synthesize ``displayOrder`` from legacy per-session project/order fields."""
    if isinstance(doc.get("displayOrder"), list):
        return False

    sessions: dict[str, dict] = doc.get("sessions") or {}
    projects: dict[str, dict] = doc.get("projects") or {}

    order: list[dict] = [{"type": "project", "id": UNGROUPED_PROJECT_ID}]

    # sorted() is stable, so equal legacy orders keep insertion order
    ungrouped = sorted(
        (
            (key, s)
            for key, s in sessions.items()
            if not s.get("project") or s["project"] not in projects
        ),
        key=_legacy_order,
    )
    order.extend({"type": "session", "key": key} for key, _ in ungrouped)

    def project_sort_key(entry: tuple[str, dict]) -> tuple[float, str]:
        legacy = entry[1].get("order")
        rank = legacy if isinstance(legacy, (int, float)) else float("inf")
        return (rank, entry[1].get("name", ""))

    sorted_projects = sorted(
        ((pid, p) for pid, p in projects.items() if pid != UNGROUPED_PROJECT_ID),
        key=project_sort_key,
    )
    for project_id, _ in sorted_projects:
        order.append({"type": "project", "id": project_id})
        members = sorted(
            ((key, s) for key, s in sessions.items() if s.get("project") == project_id),
            key=_legacy_order,
        )
        order.extend({"type": "session", "key": key} for key, _ in members)

    doc["displayOrder"] = order
    for session in sessions.values():
        for field in LEGACY_SESSION_FIELDS:
            session.pop(field, None)

    if audit_log is not None:
        audit(
            audit_log,
            reason="migration",
            after=order,
            extra={
                "ungroupedSessionCount": len(ungrouped),
                "projectCount": len(sorted_projects),
            },
        )
    logger.info(f"Built display order for {len(sessions)} session(s)")
    return True


def remove_deprecated_fields(doc: Document) -> bool:
    """Strip project fields that are no longer part of the schema."""
    projects = doc.get("projects") or {}
    changed = projects.pop(UNGROUPED_PROJECT_ID, None) is not None
    for project in projects.values():
        for field in DEPRECATED_PROJECT_FIELDS:
            if project.pop(field, None) is not None:
                changed = True
    return changed


def migrate_document(doc: Document, audit_log: logging.Logger | None = None) -> bool:
    """Apply every migration in order. Returns True if the document changed."""
    _drop_malformed_entries(doc)
    changed = migrate_session_keys(doc, audit_log)
    changed = migrate_to_display_order(doc, audit_log) or changed
    changed = remove_deprecated_fields(doc) or changed
    return changed


def _drop_malformed_entries(doc: Document) -> None:
    for section in ("sessions", "projects"):
        entries = doc.get(section)
        if not isinstance(entries, dict):
            doc[section] = {}
            continue
        for key in [k for k, v in entries.items() if not isinstance(v, dict)]:
            logger.warning(f"Skipping malformed {section} entry {key!r}")
            del entries[key]
