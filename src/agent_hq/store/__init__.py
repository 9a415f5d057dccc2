"""Session store: models, ordering, persistence and the store facade."""

from .models import (
    HookEvent,
    Project,
    ProjectItem,
    Session,
    SessionItem,
    SessionStatus,
    StoreData,
)
from .file_store import SessionStore

__all__ = [
    "HookEvent",
    "Project",
    "ProjectItem",
    "Session",
    "SessionItem",
    "SessionStatus",
    "SessionStore",
    "StoreData",
]
