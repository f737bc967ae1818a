"""
Registry reader - the single boundary where raw sheet cells become typed records.
"""

from typing import Any, Dict, List, Optional

from util.logging import logger

from .cells import record_from_cells, to_bool, to_text
from .config import get_stale_days
from .errors import ConfigurationError, SheetNotFoundError
from .schema import FIRST_DATA_ROW, RegistryConfig, UserRecord

# Field -> accepted parameter names, first present wins
CONFIG_KEYS = {
    "notify_enabled": ["notifyEnabled", "notificarAdmins"],
    "notify_email": ["notifyEmail", "emailNotificacion"],
    "scheduling_enabled": ["schedulingEnabled", "crearEventoCalendar"],
    "calendar_id": ["calendarId", "calendarioId"],
    "stale_days": ["staleDays"],
}
_KNOWN_KEYS = {key for keys in CONFIG_KEYS.values() for key in keys}


def _first_present(values: Dict[str, Any], keys: List[str]) -> Any:
    for key in keys:
        if key in values:
            return values[key]
    return None


def _to_days(raw: Any) -> int:
    if raw is None or to_text(raw) == "":
        return get_stale_days()
    try:
        days = int(float(to_text(raw)))
    except ValueError:
        logger.warning(f"Invalid staleDays value {raw!r}, using {get_stale_days()}")
        return get_stale_days()
    return max(days, 0)


def get_config(registry) -> RegistryConfig:
    """Load RegistryConfig fresh from the configuration sheet.

    Raises:
        ConfigurationError: the configuration sheet does not exist.
    """
    try:
        rows = registry.get_config_rows()
    except SheetNotFoundError as e:
        raise ConfigurationError(f"Configuration unavailable: {e}") from e

    values = {}
    for parameter, value in rows:
        key = to_text(parameter)
        if key and key not in values:
            values[key] = value

    return RegistryConfig(
        notify_enabled=to_bool(_first_present(values, CONFIG_KEYS["notify_enabled"])),
        notify_email=to_text(_first_present(values, CONFIG_KEYS["notify_email"])),
        scheduling_enabled=to_bool(_first_present(values, CONFIG_KEYS["scheduling_enabled"])),
        calendar_id=to_text(_first_present(values, CONFIG_KEYS["calendar_id"])),
        stale_days=_to_days(_first_present(values, CONFIG_KEYS["stale_days"])),
        extra={key: value for key, value in values.items() if key not in _KNOWN_KEYS},
    )


def get_users(registry) -> List[UserRecord]:
    """All user records with a name. A missing users sheet yields an empty list."""
    try:
        rows = registry.get_user_rows()
    except SheetNotFoundError as e:
        logger.warning(f"{e}; treating registry as empty")
        return []

    users = []
    for row, cells in rows:
        record = record_from_cells(cells, row=row)
        if record.name:
            users.append(record)
    return users


def get_user(registry, row: int) -> Optional[UserRecord]:
    """Snapshot of a single Usuarios row, or None for the header or an unknown row."""
    if row < FIRST_DATA_ROW:
        return None
    cells = registry.get_user_row(row)
    if cells is None:
        return None
    return record_from_cells(cells, row=row)
