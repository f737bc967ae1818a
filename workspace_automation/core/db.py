"""
SQLite backing for the tabular registry: connections and table layout.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import get_db_path, ensure_db_directory

# Sheet -> table
USERS_TABLE = "usuarios"
CONFIG_TABLE = "configuracion"
AUDIT_TABLE = "registro_de_eventos"

REQUIRED_TABLES = [USERS_TABLE, CONFIG_TABLE, AUDIT_TABLE, "run_locks", "calendars", "calendar_events"]


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or get_db_path(), timeout=10, isolation_level=None)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with the registry sheets and auxiliary tables."""
    db_path = db_path or get_db_path()
    ensure_db_directory(db_path)

    with get_db(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("BEGIN")

        # Usuarios sheet: row_num mirrors the 1-based sheet row (data starts at 2).
        # Cells are untyped on purpose; the reader normalizes them.
        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS {USERS_TABLE} (
                row_num INTEGER PRIMARY KEY CHECK (row_num >= 2),
                name,
                email,
                role,
                grp,
                active,
                date_registered,
                last_access
            )
        ''')

        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS {CONFIG_TABLE} (
                row_num INTEGER PRIMARY KEY AUTOINCREMENT,
                parameter TEXT NOT NULL UNIQUE,
                value
            )
        ''')

        # Append-only audit trail
        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS {AUDIT_TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts TIMESTAMP NOT NULL,
                type TEXT NOT NULL,
                user_name TEXT NOT NULL,
                details TEXT,
                status TEXT NOT NULL,
                action TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS run_locks (
                name TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                acquired_at TIMESTAMP NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS calendars (
                calendar_id TEXT PRIMARY KEY,
                name TEXT
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS calendar_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                calendar_id TEXT NOT NULL REFERENCES calendars(calendar_id),
                title TEXT NOT NULL,
                description TEXT,
                start_time TIMESTAMP NOT NULL,
                end_time TIMESTAMP NOT NULL,
                send_invites BOOLEAN DEFAULT FALSE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        cursor.execute("INSERT OR IGNORE INTO calendars (calendar_id, name) VALUES ('primary', 'Primary')")

        cursor.execute(f'CREATE INDEX IF NOT EXISTS idx_usuarios_name ON {USERS_TABLE}(name)')
        cursor.execute(f'CREATE INDEX IF NOT EXISTS idx_audit_ts ON {AUDIT_TABLE}(ts DESC)')

        cursor.execute("COMMIT")


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name = ?", (table,)
    ).fetchone()
    return row is not None


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            tables = cursor.fetchall()

            # Check if required tables exist
            table_names = [table[0] for table in tables]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False
