"""
Edit classifier - maps a single-cell edit on the Usuarios sheet to a lifecycle event.

Pure function of (row, column, snapshot); no I/O, safe to call speculatively.
"""

from typing import Optional

from .schema import (
    BASIC_COLUMNS,
    FIRST_DATA_ROW,
    Column,
    DeactivationEvent,
    LifecycleEvent,
    NewUserEvent,
    RoleChangeEvent,
    UserRecord,
)


def classify(row_index: int, column_index: int, snapshot: Optional[UserRecord]) -> Optional[LifecycleEvent]:
    """Classify an edit. First matching rule wins; None when nothing applies."""
    if row_index < FIRST_DATA_ROW or snapshot is None:
        return None

    if column_index in BASIC_COLUMNS and snapshot.is_new:
        return NewUserEvent(record=snapshot, row=row_index)

    if column_index == Column.ACTIVE and not snapshot.active and snapshot.is_registered:
        return DeactivationEvent(record=snapshot)

    if column_index == Column.ROLE and snapshot.is_registered:
        return RoleChangeEvent(record=snapshot)

    return None
