"""
Typed records for the user registry, the audit trail and lifecycle events.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Union


# Sheet names as they appear in the registry workbook
USERS_SHEET = "Usuarios"
CONFIG_SHEET = "Configuración"
AUDIT_SHEET = "RegistroDeEventos"

HEADER_ROW = 1
FIRST_DATA_ROW = 2


class Column(IntEnum):
    """1-based column positions of the Usuarios sheet."""
    NAME = 1
    EMAIL = 2
    ROLE = 3
    GROUP = 4
    ACTIVE = 5
    DATE_REGISTERED = 6
    LAST_ACCESS = 7


USER_HEADERS = ["Name", "Email", "Role", "Group", "Active", "DateRegistered", "LastAccess"]
CONFIG_HEADERS = ["Parameter", "Value"]
AUDIT_HEADERS = ["Timestamp", "Type", "User", "Details", "Status", "Action"]

BASIC_COLUMNS = frozenset({Column.NAME, Column.EMAIL, Column.ROLE, Column.GROUP, Column.ACTIVE})
USER_COLUMN_COUNT = len(Column)


class Role(str, Enum):
    ADMIN = "Admin"
    EDITOR = "Editor"
    VIEWER = "Viewer"


class AuditEventType(str, Enum):
    USER_ADDED = "UserAdded"
    USER_INACTIVE = "UserInactive"
    ROLE_CHANGED = "RoleChanged"
    ERROR = "Error"
    EVENT = "Event"


class AuditStatus(str, Enum):
    OK = "OK"
    ALERT = "Alert"
    WARNING = "Warning"
    ERROR = "Error"


class EventKind(str, Enum):
    NEW_USER = "new_user"
    DEACTIVATION = "deactivation"
    ROLE_CHANGE = "role_change"


class DeactivationSource(str, Enum):
    EDIT = "edit"
    SWEEP = "sweep"


@dataclass
class UserRecord:
    name: str
    email: str
    role: str
    group: str
    active: bool = True
    date_registered: Optional[datetime] = None
    last_access: Optional[datetime] = None
    row: Optional[int] = None
    # Raw DateRegistered text when the cell is filled but not a readable date
    date_registered_text: str = ""

    @property
    def is_complete(self) -> bool:
        """All four required fields are filled. Active is not required."""
        return bool(self.name and self.email and self.role and self.group)

    @property
    def is_registered(self) -> bool:
        """Any non-blank DateRegistered cell counts, readable or not."""
        return self.date_registered is not None or bool(self.date_registered_text)

    @property
    def is_new(self) -> bool:
        return self.is_complete and not self.is_registered

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['date_registered'] = self.date_registered.isoformat() if self.date_registered else None
        data['last_access'] = self.last_access.isoformat() if self.last_access else None
        return data


@dataclass
class RegistryConfig:
    notify_enabled: bool = False
    notify_email: str = ""
    scheduling_enabled: bool = False
    calendar_id: str = ""
    stale_days: int = 7
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AuditEvent:
    type: AuditEventType = AuditEventType.EVENT
    user: str = "System"
    details: str = ""
    status: AuditStatus = AuditStatus.OK
    action: str = "None"
    timestamp: Optional[datetime] = None

    def to_row(self) -> List[Any]:
        """Cells in AUDIT_HEADERS order."""
        return [self.timestamp, self.type.value, self.user, self.details, self.status.value, self.action]


@dataclass
class NewUserEvent:
    record: UserRecord
    row: int
    kind: EventKind = field(default=EventKind.NEW_USER, init=False)


@dataclass
class DeactivationEvent:
    record: UserRecord
    kind: EventKind = field(default=EventKind.DEACTIVATION, init=False)


@dataclass
class RoleChangeEvent:
    record: UserRecord
    kind: EventKind = field(default=EventKind.ROLE_CHANGE, init=False)


LifecycleEvent = Union[NewUserEvent, DeactivationEvent, RoleChangeEvent]


@dataclass
class EditEvent:
    """Single-cell change emitted by a change-capable store."""
    sheet: str
    row: int
    column: int
    new_value: Any = None
    old_value: Any = None


@dataclass
class InactiveEntry:
    name: str
    group: str
    days_inactive: int


@dataclass
class ProcessResult:
    processor: str
    user: str
    steps: Dict[str, bool] = field(default_factory=dict)
    skipped_reason: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.skipped_reason is None and all(self.steps.values())


@dataclass
class SweepReport:
    started_at: datetime
    completed_at: Optional[datetime] = None
    checked: int = 0
    deactivated: List[InactiveEntry] = field(default_factory=list)
    digest_sent: bool = False
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "started_at": self.started_at.isoformat(),
            "checked": self.checked,
            "deactivated": [asdict(entry) for entry in self.deactivated],
            "digest_sent": self.digest_sent,
            "skipped": self.skipped,
        }
        if self.completed_at:
            data["completed_at"] = self.completed_at.isoformat()
        return data
