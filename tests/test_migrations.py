"""Tests for on-load store migrations."""

import copy
import json

from agent_hq.logging_config import get_audit_logger
from agent_hq.store.migrations import (
    migrate_document,
    migrate_session_keys,
    migrate_to_display_order,
    remove_deprecated_fields,
)


def legacy_doc():
    """A store written before display order existed."""
    return {
        "sessions": {
            "s1": {"session_id": "s1", "order": 2},
            "s2": {"session_id": "s2", "project": "p1", "order": 1},
            "s3": {"session_id": "s3", "order": 1},
            "s4": {"session_id": "s4", "project": "p1", "order": 0},
            "s5": {"session_id": "s5", "project": "deleted"},
        },
        "projects": {
            "p1": {"id": "p1", "name": "Beta", "order": 1},
            "p2": {"id": "p2", "name": "Alpha", "order": 0},
        },
    }


def keys_of(order):
    return [item.get("key") or f"#{item['id']}" for item in order]


class TestKeyMigration:
    """Tests for session_id:tty key rewriting."""

    def test_later_updated_at_wins(self):
        """On collision only the later session survives, without duplicates."""
        doc = {
            "sessions": {
                "abc:/dev/ttys001": {
                    "session_id": "abc",
                    "tty": "/dev/ttys001",
                    "updated_at": "2025-01-15T10:00:00Z",
                },
                "abc:/dev/ttys002": {
                    "session_id": "abc",
                    "tty": "/dev/ttys002",
                    "updated_at": "2025-01-15T11:00:00Z",
                },
            },
            "displayOrder": [
                {"type": "project", "id": ""},
                {"type": "session", "key": "abc:/dev/ttys001"},
                {"type": "session", "key": "abc:/dev/ttys002"},
            ],
        }

        assert migrate_session_keys(doc) is True

        assert list(doc["sessions"]) == ["abc"]
        assert doc["sessions"]["abc"]["tty"] == "/dev/ttys002"
        assert keys_of(doc["displayOrder"]) == ["#", "abc"]

    def test_noop_without_legacy_keys(self):
        doc = {"sessions": {"abc": {"session_id": "abc"}}}
        assert migrate_session_keys(doc) is False

    def test_audit_entry(self, tmp_path):
        """Display order rewrites are recorded in the audit log."""
        log_path = tmp_path / "display-order-changes.log"
        doc = {
            "sessions": {"abc:tty": {"session_id": "abc"}},
            "displayOrder": [{"type": "session", "key": "abc:tty"}],
        }
        migrate_session_keys(doc, get_audit_logger("test_keys", log_path))

        entry = json.loads(log_path.read_text().splitlines()[0])
        assert entry["reason"] == "migration_keys"
        assert entry["extra"]["keyMappingCount"] == 1


class TestDisplayOrderMigration:
    """Tests for building the display order from legacy fields."""

    def test_builds_order_from_legacy_fields(self):
        """Ungrouped first, then projects by legacy order and name."""
        doc = legacy_doc()
        assert migrate_to_display_order(doc) is True

        assert keys_of(doc["displayOrder"]) == ["#", "s5", "s3", "s1", "#p2", "#p1", "s4", "s2"]
        assert all("project" not in s and "order" not in s for s in doc["sessions"].values())

    def test_idempotent(self):
        """A second run is a no-op."""
        doc = legacy_doc()
        migrate_to_display_order(doc)
        snapshot = copy.deepcopy(doc)

        assert migrate_to_display_order(doc) is False
        assert doc == snapshot


class TestDeprecatedFields:
    """Tests for deprecated project field removal."""

    def test_strips_fields(self):
        doc = {
            "projects": {
                "": {"id": "", "name": "ungrouped"},
                "p1": {"id": "p1", "name": "A", "assignedCwds": ["/x"], "order": 3},
            }
        }
        assert remove_deprecated_fields(doc) is True
        assert doc["projects"] == {"p1": {"id": "p1", "name": "A"}}
        assert remove_deprecated_fields(doc) is False


class TestMigrateDocument:
    """Tests for the full migration pipeline."""

    def test_full_pipeline_is_idempotent(self):
        doc = legacy_doc()
        assert migrate_document(doc) is True
        snapshot = copy.deepcopy(doc)
        assert migrate_document(doc) is False
        assert doc == snapshot

    def test_malformed_entries_dropped(self):
        """Non-object entries are removed rather than crashing."""
        doc = {"sessions": {"ok": {"session_id": "ok"}, "bad": 3}, "projects": []}
        migrate_document(doc)
        assert list(doc["sessions"]) == ["ok"]
        assert doc["projects"] == {}
