"""
Tabular stores - SQLite persistence, compare-and-swap, run locks and edit events.
"""

from datetime import datetime

import pytest

from conftest import DEFAULT_CONFIG, FrozenClock, user_cells
from workspace_automation.core.db import get_db, health_check, init_db
from workspace_automation.core.errors import SheetNotFoundError
from workspace_automation.core.gateways import ConsoleMailer, InMemoryCalendarBackend
from workspace_automation.core.reader import get_config, get_user, get_users
from workspace_automation.core.registry import InMemoryRegistry, SqliteRegistry
from workspace_automation.core.runtime import build_runtime
from workspace_automation.core.schema import (
    USERS_SHEET,
    AuditEvent,
    AuditEventType,
    AuditStatus,
    Column,
)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "registry.db")


@pytest.fixture
def sqlite_clock():
    return FrozenClock(datetime(2026, 3, 10, 9, 30, 0))


@pytest.fixture
def sqlite_registry(db_path, sqlite_clock):
    return SqliteRegistry(db_path, clock=sqlite_clock)


class TestDatabase:

    def test_init_is_idempotent(self, db_path):
        """init_db can run repeatedly and leaves a healthy database."""
        init_db(db_path)
        init_db(db_path)
        assert health_check(db_path) is True

    def test_health_check_missing_tables(self, tmp_path):
        """An empty database is unhealthy."""
        empty = str(tmp_path / "empty.db")
        with get_db(empty) as conn:
            conn.execute("CREATE TABLE other (id INTEGER)")
        assert health_check(empty) is False


class TestSqliteRegistry:
    """Test the persistent store."""

    def test_user_rows_start_after_header(self, sqlite_registry):
        """The first data row is row 2."""
        first = sqlite_registry.append_user_row(user_cells("Ana", "ana@example.com", "Editor", "IT"))
        second = sqlite_registry.append_user_row(user_cells("Luis", "luis@example.com", "Viewer", "Sales"))
        assert (first, second) == (2, 3)
        assert [row for row, _ in sqlite_registry.get_user_rows()] == [2, 3]

    def test_booleans_and_dates_stored_as_cells(self, sqlite_registry, db_path):
        """Booleans are stored as TRUE/FALSE text and datetimes as ISO text."""
        stamp = datetime(2026, 3, 1, 8, 15, 0)
        row = sqlite_registry.append_user_row(user_cells("Ana", "ana@example.com", "Editor", "IT", active=False))
        sqlite_registry.set_user_field(row, Column.DATE_REGISTERED, stamp)

        with get_db(db_path) as conn:
            active, registered = conn.execute(
                "SELECT active, date_registered FROM usuarios WHERE row_num = ?", (row,)
            ).fetchone()
        assert active == "FALSE"
        assert registered == "2026-03-01 08:15:00"

        record = get_users(sqlite_registry)[0]
        assert record.active is False
        assert record.date_registered == stamp

    def test_set_user_field_creates_row(self, sqlite_registry):
        """Writing into an empty row creates it, like typing into a blank sheet row."""
        sqlite_registry.set_user_field(5, Column.NAME, "Ana")
        assert sqlite_registry.get_user_row(5)[0] == "Ana"
        assert sqlite_registry.get_user_row(4) is None

    def test_header_row_not_writable(self, sqlite_registry):
        with pytest.raises(ValueError):
            sqlite_registry.set_user_field(1, Column.NAME, "Header")

    def test_find_user_row_first_match(self, sqlite_registry):
        """Duplicate names resolve to the first row."""
        sqlite_registry.append_user_row(user_cells("Ana", "a1@example.com"))
        sqlite_registry.append_user_row(user_cells("Ana", "a2@example.com"))
        assert sqlite_registry.find_user_row("Ana") == 2
        assert sqlite_registry.find_user_row("Nobody") is None

    def test_compare_and_set(self, sqlite_registry):
        """The swap only succeeds against the normalized current value."""
        row = sqlite_registry.append_user_row(user_cells("Ana", active="TRUE"))
        stamp = datetime(2026, 3, 10, 9, 30)

        assert sqlite_registry.compare_and_set_user_field(row, Column.DATE_REGISTERED, None, stamp) is True
        assert sqlite_registry.compare_and_set_user_field(row, Column.DATE_REGISTERED, None, stamp) is False

        assert sqlite_registry.compare_and_set_user_field(row, Column.ACTIVE, True, False) is True
        assert sqlite_registry.compare_and_set_user_field(row, Column.ACTIVE, True, False) is False
        assert sqlite_registry.get_user_row(row)[Column.ACTIVE - 1] == "FALSE"

    def test_compare_and_set_missing_row(self, sqlite_registry):
        assert sqlite_registry.compare_and_set_user_field(9, Column.ACTIVE, True, False) is False

    def test_config_rows(self, sqlite_registry):
        """Configuration values round-trip through the sheet."""
        sqlite_registry.set_config_value("notifyEnabled", True)
        sqlite_registry.set_config_value("notifyEmail", "admin@example.com")
        sqlite_registry.set_config_value("notifyEmail", "it@example.com")

        config = get_config(sqlite_registry)
        assert config.notify_enabled is True
        assert config.notify_email == "it@example.com"

    def test_audit_append_and_list(self, sqlite_registry, sqlite_clock):
        """Audit entries are timestamped by the store and listed newest first."""
        sqlite_registry.append_audit(AuditEvent(type=AuditEventType.USER_ADDED, user="Ana"))
        sqlite_clock.advance(minutes=5)
        stored = sqlite_registry.append_audit(
            AuditEvent(type=AuditEventType.ROLE_CHANGED, user="Ana", details="New role: Admin",
                       status=AuditStatus.WARNING, action="notification sent")
        )
        assert stored.timestamp == sqlite_clock.now

        events = sqlite_registry.list_audit(10)
        assert [e.type for e in events] == [AuditEventType.ROLE_CHANGED, AuditEventType.USER_ADDED]
        assert events[0].status == AuditStatus.WARNING
        assert events[1].user == "Ana"
        assert events[1].action == "None"
        assert sqlite_registry.list_audit(1)[0].details == "New role: Admin"

    def test_missing_sheet(self, sqlite_registry, db_path):
        """Dropped tables surface as SheetNotFoundError."""
        with get_db(db_path) as conn:
            conn.execute("DROP TABLE configuracion")
        with pytest.raises(SheetNotFoundError):
            sqlite_registry.get_config_rows()

    def test_user_count(self, sqlite_registry):
        sqlite_registry.append_user_row(user_cells("Ana"))
        sqlite_registry.append_user_row(user_cells(""))
        assert sqlite_registry.user_count() == 1

    def test_new_user_round_trip(self, sqlite_registry, sqlite_clock):
        """A literal TRUE Active cell survives onboarding through the trigger and reads back typed."""
        for key, value in DEFAULT_CONFIG.items():
            sqlite_registry.set_config_value(key, value)
        mailer = ConsoleMailer()
        calendar_backend = InMemoryCalendarBackend()
        build_runtime(registry=sqlite_registry, mailer=mailer, calendar_backend=calendar_backend,
                      clock=sqlite_clock)
        row = sqlite_registry.append_user_row(user_cells("Ana", "ana@example.com", "Editor", "", active="TRUE"))

        result = sqlite_registry.edit_user_cell(row, Column.GROUP, "IT")[0]

        assert result.completed is True
        record = get_user(sqlite_registry, row)
        assert record.active is True
        assert record.date_registered == sqlite_clock.now
        assert record.last_access == sqlite_clock.now
        assert sqlite_registry.get_user_row(row)[Column.ACTIVE - 1] == "TRUE"
        assert [e.type for e in sqlite_registry.list_audit(10)] == [AuditEventType.USER_ADDED]
        assert [m.subject for m in mailer.outbox] == ["New user added"]
        assert len(calendar_backend.get_calendar("primary").events) == 1

        # A later edit to the same row does not onboard again
        assert sqlite_registry.edit_user_cell(row, Column.NAME, "Ana") == [None]
        assert len(mailer.outbox) == 1


class TestRunLock:
    """Test named run locks."""

    def test_sqlite_lock_exclusive(self, sqlite_registry):
        """A second holder is refused until the first releases."""
        with sqlite_registry.run_lock("sweep") as first:
            assert first is True
            with sqlite_registry.run_lock("sweep") as second:
                assert second is False
            with sqlite_registry.run_lock("other") as other:
                assert other is True

        with sqlite_registry.run_lock("sweep") as again:
            assert again is True

    def test_sqlite_lock_shared_across_instances(self, db_path, sqlite_clock):
        """Locks live in the database, not in the process."""
        one = SqliteRegistry(db_path, clock=sqlite_clock)
        two = SqliteRegistry(db_path, clock=sqlite_clock)
        with one.run_lock("sweep") as first:
            with two.run_lock("sweep") as second:
                assert first is True
                assert second is False

    def test_sqlite_lock_expires(self, db_path, sqlite_clock):
        """A lock older than the TTL is taken over."""
        store = SqliteRegistry(db_path, clock=sqlite_clock, lock_ttl_sec=60)
        with store.run_lock("sweep") as first:
            assert first is True
            sqlite_clock.advance(minutes=5)
            with store.run_lock("sweep") as second:
                assert second is True

    def test_in_memory_lock(self):
        registry = InMemoryRegistry()
        with registry.run_lock("sweep") as first:
            with registry.run_lock("sweep") as second:
                assert (first, second) == (True, False)
        with registry.run_lock("sweep") as again:
            assert again is True


class TestEditEvents:
    """Test change-capable store behaviour."""

    @pytest.mark.parametrize("store_factory", ["memory", "sqlite"])
    def test_edit_emits_event(self, store_factory, tmp_path):
        """edit_user_cell writes the cell and reports old and new values."""
        if store_factory == "memory":
            store = InMemoryRegistry()
        else:
            store = SqliteRegistry(str(tmp_path / "edits.db"))
        row = store.append_user_row(user_cells("Ana", "ana@example.com", "Editor", "IT"))

        seen = []
        store.on_edit(seen.append)
        store.edit_user_cell(row, Column.ROLE, "Admin")

        assert len(seen) == 1
        event = seen[0]
        assert (event.sheet, event.row, event.column) == (USERS_SHEET, row, Column.ROLE)
        assert (event.old_value, event.new_value) == ("Editor", "Admin")
        assert store.get_user_row(row)[Column.ROLE - 1] == "Admin"

    def test_direct_writes_do_not_emit(self):
        """Processor writes go through set_user_field and fire no handlers."""
        store = InMemoryRegistry()
        row = store.append_user_row(user_cells("Ana"))
        seen = []
        store.on_edit(seen.append)
        store.set_user_field(row, Column.LAST_ACCESS, datetime(2026, 3, 1))
        store.compare_and_set_user_field(row, Column.DATE_REGISTERED, None, datetime(2026, 3, 1))
        assert seen == []

    def test_failing_handler_keeps_edit(self):
        """A raising handler neither blocks other handlers nor reverts the cell."""
        store = InMemoryRegistry()
        row = store.append_user_row(user_cells("Ana"))

        def broken(event):
            raise RuntimeError("boom")

        seen = []
        store.on_edit(broken)
        store.on_edit(seen.append)

        results = store.edit_user_cell(row, Column.GROUP, "IT")
        assert results[0] is None
        assert len(seen) == 1
        assert store.get_user_row(row)[Column.GROUP - 1] == "IT"

    def test_handler_must_be_callable(self):
        with pytest.raises(ValueError, match="must be callable"):
            InMemoryRegistry().on_edit("not callable")
