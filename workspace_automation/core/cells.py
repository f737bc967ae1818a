"""
Cell normalization - loosely typed spreadsheet values into Python types.

Spreadsheets hand back booleans as native values or as "TRUE"/"true" text and
dates as native timestamps or rendered strings. Every raw cell passes through
these functions before any decision logic sees it.
"""

from datetime import date, datetime
from typing import Any, List, Optional

from util.logging import logger

from .schema import Column, USER_COLUMN_COUNT, UserRecord

# Renderings seen in exported sheets besides ISO-8601
_DATE_FORMATS = [
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%Y-%m-%d %H:%M:%S",
]


def to_text(raw: Any) -> str:
    if raw is None:
        return ""
    return str(raw).strip()


def to_bool(raw: Any) -> bool:
    """True only for boolean True or the literal 'true' in any case."""
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw.strip().lower() == "true"
    return False


def to_timestamp(raw: Any) -> Optional[datetime]:
    """Parse a date cell. None when the cell is empty or not a readable date."""
    if raw is None or raw == "":
        return None

    if isinstance(raw, datetime):
        if raw.tzinfo is not None:
            # Compare everything in local naive time
            return raw.astimezone().replace(tzinfo=None)
        return raw

    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day)

    text = str(raw).strip()
    if not text:
        return None

    try:
        # fromisoformat only accepts a trailing Z from Python 3.11
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_timestamp(datetime.fromisoformat(text))
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    logger.warning(f"Unparseable date cell: {text[:40]!r}")
    return None


def is_blank_cell(raw: Any) -> bool:
    """Empty or whitespace-only. A filled cell that fails to parse is not blank."""
    return raw is None or (isinstance(raw, str) and not raw.strip())


def normalize_cell(column: int, raw: Any) -> Any:
    """Normalize one Usuarios cell according to its column."""
    if column == Column.ACTIVE:
        return to_bool(raw)
    if column in (Column.DATE_REGISTERED, Column.LAST_ACCESS):
        return to_timestamp(raw)
    return to_text(raw)


def cell_matches(column: int, raw: Any, expected: Any) -> bool:
    """Compare a raw cell with an expected normalized value.

    Expecting None on a date column means the cell must be blank, so an
    unreadable date never matches an empty one.
    """
    if expected is None and column in (Column.DATE_REGISTERED, Column.LAST_ACCESS):
        return is_blank_cell(raw)
    return normalize_cell(column, raw) == expected


def pad_row(cells: List[Any]) -> List[Any]:
    """Pad or trim a raw row to the Usuarios width."""
    cells = list(cells[:USER_COLUMN_COUNT])
    return cells + [None] * (USER_COLUMN_COUNT - len(cells))


def record_from_cells(cells: List[Any], row: Optional[int] = None) -> UserRecord:
    """Build a typed UserRecord from a raw Usuarios row."""
    cells = pad_row(cells)
    registered_cell = cells[Column.DATE_REGISTERED - 1]
    date_registered = to_timestamp(registered_cell)
    return UserRecord(
        name=to_text(cells[Column.NAME - 1]),
        email=to_text(cells[Column.EMAIL - 1]),
        role=to_text(cells[Column.ROLE - 1]),
        group=to_text(cells[Column.GROUP - 1]),
        active=to_bool(cells[Column.ACTIVE - 1]),
        date_registered=date_registered,
        last_access=to_timestamp(cells[Column.LAST_ACCESS - 1]),
        row=row,
        date_registered_text=(
            to_text(registered_cell) if date_registered is None and not is_blank_cell(registered_cell) else ""
        ),
    )
