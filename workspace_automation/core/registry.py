"""
Tabular registry stores - raw row/column access to the Usuarios,
Configuración and RegistroDeEventos sheets.

Stores return raw, loosely typed cells. Turning them into typed records is the
reader's job (core.reader); the only normalization done here is the comparison
inside compare_and_set_user_field.
"""

import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Optional, Protocol, Tuple

from util.logging import logger

from .cells import cell_matches, pad_row, to_text
from .config import RUN_LOCK_TTL_SEC, get_db_path
from .db import AUDIT_TABLE, CONFIG_TABLE, USERS_TABLE, get_db, init_db, table_exists
from .errors import SheetNotFoundError
from .schema import (
    AUDIT_HEADERS,
    AUDIT_SHEET,
    CONFIG_HEADERS,
    CONFIG_SHEET,
    FIRST_DATA_ROW,
    USER_HEADERS,
    USERS_SHEET,
    AuditEvent,
    AuditEventType,
    AuditStatus,
    Column,
    EditEvent,
)

EditHandler = Callable[[EditEvent], Any]


class Registry(Protocol):
    """Repository interface injected into the reader, gateways, dispatcher and sweep."""

    def get_config_rows(self) -> List[Tuple[str, Any]]: ...

    def get_user_rows(self) -> List[Tuple[int, List[Any]]]: ...

    def get_user_row(self, row: int) -> Optional[List[Any]]: ...

    def find_user_row(self, name: str) -> Optional[int]: ...

    def set_user_field(self, row: int, column: int, value: Any) -> None: ...

    def compare_and_set_user_field(self, row: int, column: int, expected: Any, value: Any) -> bool: ...

    def append_audit(self, event: AuditEvent) -> AuditEvent: ...

    def list_audit(self, limit: int = 100) -> List[AuditEvent]: ...

    def run_lock(self, name: str) -> ContextManager[bool]: ...

    def on_edit(self, handler: EditHandler) -> None: ...

    def edit_user_cell(self, row: int, column: int, value: Any) -> List[Any]: ...


class _EditNotifier:
    """Change-capable store behaviour: edit handlers registered by callers."""

    def __init__(self):
        self._edit_handlers: List[EditHandler] = []

    def on_edit(self, handler: EditHandler) -> None:
        if not callable(handler):
            raise ValueError(f"Edit handler must be callable: {handler}")
        self._edit_handlers.append(handler)

    def edit_user_cell(self, row: int, column: int, value: Any) -> List[Any]:
        """Write a Usuarios cell the way a person would and notify edit handlers.

        Returns whatever the handlers returned, in registration order.
        """
        current = self.get_user_row(row)
        old_value = current[column - 1] if current else None
        self.set_user_field(row, column, value)
        return self._emit(EditEvent(sheet=USERS_SHEET, row=row, column=column, new_value=value, old_value=old_value))

    def _emit(self, event: EditEvent) -> List[Any]:
        results = []
        for handler in self._edit_handlers:
            try:
                results.append(handler(event))
            except Exception as e:
                # A failing handler never reverts or blocks the edit itself
                logger.log_trigger_error("edit", e, {"row": event.row, "column": event.column})
                results.append(None)
        return results

    # Implemented by concrete stores
    def get_user_row(self, row: int) -> Optional[List[Any]]:
        raise NotImplementedError

    def set_user_field(self, row: int, column: int, value: Any) -> None:
        raise NotImplementedError


class InMemoryRegistry(_EditNotifier):
    """Grid-of-lists registry. Row 1 of every sheet is its header row.

    Used by tests and local development; mirrors SqliteRegistry semantics.
    """

    def __init__(self, config: Dict[str, Any] = None, users: List[List[Any]] = None,
                 clock: Callable[[], datetime] = datetime.now):
        super().__init__()
        self._clock = clock
        self._lock = threading.RLock()
        self._held_locks: Dict[str, str] = {}
        self.sheets: Dict[str, Optional[List[List[Any]]]] = {
            USERS_SHEET: [list(USER_HEADERS)],
            CONFIG_SHEET: [list(CONFIG_HEADERS)],
            AUDIT_SHEET: [list(AUDIT_HEADERS)],
        }
        for parameter, value in (config or {}).items():
            self.set_config_value(parameter, value)
        for cells in users or []:
            self.append_user_row(cells)

    def drop_sheet(self, sheet: str) -> None:
        """Remove a sheet entirely (simulates a workbook without it)."""
        with self._lock:
            self.sheets[sheet] = None

    def _sheet(self, sheet: str) -> List[List[Any]]:
        grid = self.sheets.get(sheet)
        if grid is None:
            raise SheetNotFoundError(sheet)
        return grid

    def set_config_value(self, parameter: str, value: Any) -> None:
        with self._lock:
            grid = self._sheet(CONFIG_SHEET)
            for line in grid[1:]:
                if line[0] == parameter:
                    line[1] = value
                    return
            grid.append([parameter, value])

    def append_user_row(self, cells: List[Any]) -> int:
        with self._lock:
            grid = self._sheet(USERS_SHEET)
            grid.append(pad_row(cells))
            return len(grid)

    def get_config_rows(self) -> List[Tuple[str, Any]]:
        with self._lock:
            return [(line[0], line[1]) for line in self._sheet(CONFIG_SHEET)[1:]]

    def get_user_rows(self) -> List[Tuple[int, List[Any]]]:
        with self._lock:
            grid = self._sheet(USERS_SHEET)
            return [(index + 1, list(cells)) for index, cells in enumerate(grid) if index + 1 >= FIRST_DATA_ROW]

    def get_user_row(self, row: int) -> Optional[List[Any]]:
        with self._lock:
            grid = self._sheet(USERS_SHEET)
            if row < FIRST_DATA_ROW or row > len(grid):
                return None
            return list(grid[row - 1])

    def find_user_row(self, name: str) -> Optional[int]:
        with self._lock:
            for row, cells in self.get_user_rows():
                if to_text(cells[Column.NAME - 1]) == name:
                    return row
            return None

    def set_user_field(self, row: int, column: int, value: Any) -> None:
        if row < FIRST_DATA_ROW:
            raise ValueError(f"Row {row} is not a data row")
        with self._lock:
            grid = self._sheet(USERS_SHEET)
            while len(grid) < row:
                grid.append(pad_row([]))
            grid[row - 1][column - 1] = value

    def compare_and_set_user_field(self, row: int, column: int, expected: Any, value: Any) -> bool:
        with self._lock:
            cells = self.get_user_row(row)
            if cells is None or not cell_matches(column, cells[column - 1], expected):
                return False
            self.set_user_field(row, column, value)
            return True

    def append_audit(self, event: AuditEvent) -> AuditEvent:
        with self._lock:
            grid = self._sheet(AUDIT_SHEET)
            stored = replace(event, timestamp=self._clock())
            grid.append(stored.to_row())
            return stored

    def list_audit(self, limit: int = 100) -> List[AuditEvent]:
        with self._lock:
            lines = self._sheet(AUDIT_SHEET)[1:]
            events = [
                AuditEvent(type=AuditEventType(t), user=u, details=d, status=AuditStatus(s), action=a, timestamp=ts)
                for ts, t, u, d, s, a in lines
            ]
            return list(reversed(events))[:limit]

    @contextmanager
    def run_lock(self, name: str) -> Iterator[bool]:
        owner = str(uuid.uuid4())
        with self._lock:
            acquired = name not in self._held_locks
            if acquired:
                self._held_locks[name] = owner
        try:
            yield acquired
        finally:
            if acquired:
                with self._lock:
                    self._held_locks.pop(name, None)


# Usuarios column -> SQLite column
_USER_FIELDS = {
    Column.NAME: "name",
    Column.EMAIL: "email",
    Column.ROLE: "role",
    Column.GROUP: "grp",
    Column.ACTIVE: "active",
    Column.DATE_REGISTERED: "date_registered",
    Column.LAST_ACCESS: "last_access",
}
_USER_SELECT = ", ".join(_USER_FIELDS[column] for column in Column)


def _to_cell(value: Any) -> Any:
    """Render a Python value the way a spreadsheet cell would hold it."""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, datetime):
        return value.isoformat(sep=" ", timespec="seconds")
    return value


class SqliteRegistry(_EditNotifier):
    """Persistent registry backed by SQLite (see core.db for the layout)."""

    def __init__(self, db_path: str = None, clock: Callable[[], datetime] = datetime.now,
                 lock_ttl_sec: int = RUN_LOCK_TTL_SEC, initialize: bool = True):
        super().__init__()
        self.db_path = db_path or get_db_path()
        self._clock = clock
        self.lock_ttl_sec = lock_ttl_sec
        if initialize:
            init_db(self.db_path)

    @staticmethod
    def _column_field(column: int) -> str:
        try:
            return _USER_FIELDS[Column(column)]
        except ValueError:
            raise ValueError(f"Column {column} is outside the Usuarios sheet")

    def _require_table(self, conn, table: str, sheet: str) -> None:
        if not table_exists(conn, table):
            raise SheetNotFoundError(sheet)

    def set_config_value(self, parameter: str, value: Any) -> None:
        with get_db(self.db_path) as conn:
            self._require_table(conn, CONFIG_TABLE, CONFIG_SHEET)
            conn.execute(
                f"INSERT INTO {CONFIG_TABLE} (parameter, value) VALUES (?, ?) "
                f"ON CONFLICT(parameter) DO UPDATE SET value = excluded.value",
                (parameter, _to_cell(value))
            )

    def append_user_row(self, cells: List[Any]) -> int:
        cells = [_to_cell(value) for value in pad_row(cells)]
        with get_db(self.db_path) as conn:
            self._require_table(conn, USERS_TABLE, USERS_SHEET)
            conn.execute("BEGIN IMMEDIATE")
            (last_row,) = conn.execute(f"SELECT COALESCE(MAX(row_num), 1) FROM {USERS_TABLE}").fetchone()
            row = last_row + 1
            conn.execute(
                f"INSERT INTO {USERS_TABLE} (row_num, {_USER_SELECT}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (row, *cells)
            )
            conn.execute("COMMIT")
            return row

    def get_config_rows(self) -> List[Tuple[str, Any]]:
        with get_db(self.db_path) as conn:
            self._require_table(conn, CONFIG_TABLE, CONFIG_SHEET)
            rows = conn.execute(f"SELECT parameter, value FROM {CONFIG_TABLE} ORDER BY row_num").fetchall()
            return [(parameter, value) for parameter, value in rows]

    def get_user_rows(self) -> List[Tuple[int, List[Any]]]:
        with get_db(self.db_path) as conn:
            self._require_table(conn, USERS_TABLE, USERS_SHEET)
            rows = conn.execute(f"SELECT row_num, {_USER_SELECT} FROM {USERS_TABLE} ORDER BY row_num").fetchall()
            return [(row[0], list(row[1:])) for row in rows]

    def get_user_row(self, row: int) -> Optional[List[Any]]:
        with get_db(self.db_path) as conn:
            self._require_table(conn, USERS_TABLE, USERS_SHEET)
            found = conn.execute(
                f"SELECT {_USER_SELECT} FROM {USERS_TABLE} WHERE row_num = ?", (row,)
            ).fetchone()
            return list(found) if found else None

    def find_user_row(self, name: str) -> Optional[int]:
        with get_db(self.db_path) as conn:
            self._require_table(conn, USERS_TABLE, USERS_SHEET)
            # Trimmed comparison matches how the reader normalizes names
            found = conn.execute(
                f"SELECT row_num FROM {USERS_TABLE} WHERE TRIM(name) = ? ORDER BY row_num LIMIT 1", (name,)
            ).fetchone()
            return found[0] if found else None

    def set_user_field(self, row: int, column: int, value: Any) -> None:
        if row < FIRST_DATA_ROW:
            raise ValueError(f"Row {row} is not a data row")
        field_name = self._column_field(column)
        with get_db(self.db_path) as conn:
            self._require_table(conn, USERS_TABLE, USERS_SHEET)
            conn.execute(
                f"INSERT INTO {USERS_TABLE} (row_num, {field_name}) VALUES (?, ?) "
                f"ON CONFLICT(row_num) DO UPDATE SET {field_name} = excluded.{field_name}",
                (row, _to_cell(value))
            )

    def compare_and_set_user_field(self, row: int, column: int, expected: Any, value: Any) -> bool:
        field_name = self._column_field(column)
        with get_db(self.db_path) as conn:
            self._require_table(conn, USERS_TABLE, USERS_SHEET)
            # IMMEDIATE takes the write lock before reading, so the check and
            # the write are atomic across processes
            conn.execute("BEGIN IMMEDIATE")
            try:
                found = conn.execute(
                    f"SELECT {field_name} FROM {USERS_TABLE} WHERE row_num = ?", (row,)
                ).fetchone()
                if found is None or not cell_matches(column, found[0], expected):
                    conn.execute("ROLLBACK")
                    return False
                conn.execute(
                    f"UPDATE {USERS_TABLE} SET {field_name} = ? WHERE row_num = ?", (_to_cell(value), row)
                )
                conn.execute("COMMIT")
                return True
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def append_audit(self, event: AuditEvent) -> AuditEvent:
        stored = replace(event, timestamp=self._clock())
        with get_db(self.db_path) as conn:
            self._require_table(conn, AUDIT_TABLE, AUDIT_SHEET)
            conn.execute(
                f"INSERT INTO {AUDIT_TABLE} (ts, type, user_name, details, status, action) VALUES (?, ?, ?, ?, ?, ?)",
                (stored.timestamp.isoformat(sep=" ", timespec="seconds"), stored.type.value, stored.user,
                 stored.details, stored.status.value, stored.action)
            )
        return stored

    def list_audit(self, limit: int = 100) -> List[AuditEvent]:
        if limit <= 0:
            return []
        with get_db(self.db_path) as conn:
            self._require_table(conn, AUDIT_TABLE, AUDIT_SHEET)
            rows = conn.execute(
                f"SELECT ts, type, user_name, details, status, action FROM {AUDIT_TABLE} ORDER BY id DESC LIMIT ?",
                (limit,)
            ).fetchall()
        return [
            AuditEvent(
                type=AuditEventType(event_type),
                user=user,
                details=details or "",
                status=AuditStatus(status),
                action=action or "None",
                timestamp=datetime.fromisoformat(ts),
            )
            for ts, event_type, user, details, status, action in rows
        ]

    def _acquire_lock(self, name: str, owner: str) -> bool:
        now = self._clock()
        expired_before = now - timedelta(seconds=self.lock_ttl_sec)
        with get_db(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                # A crashed run must not hold the lock forever
                conn.execute(
                    "DELETE FROM run_locks WHERE name = ? AND acquired_at < ?",
                    (name, expired_before.isoformat(sep=" "))
                )
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO run_locks (name, owner, acquired_at) VALUES (?, ?, ?)",
                    (name, owner, now.isoformat(sep=" "))
                )
                conn.execute("COMMIT")
                return cursor.rowcount == 1
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _release_lock(self, name: str, owner: str) -> None:
        with get_db(self.db_path) as conn:
            conn.execute("DELETE FROM run_locks WHERE name = ? AND owner = ?", (name, owner))

    @contextmanager
    def run_lock(self, name: str) -> Iterator[bool]:
        owner = str(uuid.uuid4())
        acquired = self._acquire_lock(name, owner)
        try:
            yield acquired
        finally:
            if acquired:
                self._release_lock(name, owner)

    def user_count(self) -> int:
        with get_db(self.db_path) as conn:
            if not table_exists(conn, USERS_TABLE):
                return 0
            (count,) = conn.execute(
                f"SELECT COUNT(*) FROM {USERS_TABLE} WHERE TRIM(COALESCE(name, '')) != ''"
            ).fetchone()
            return count
