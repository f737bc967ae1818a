"""
Request and response models for the registry automation API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from ..core.schema import FIRST_DATA_ROW, USER_COLUMN_COUNT, USERS_SHEET


class EditRequest(BaseModel):
    sheet: str = USERS_SHEET
    row: int
    column: int
    new_value: Any = None
    old_value: Any = None

    @field_validator('sheet')
    @classmethod
    def sheet_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('sheet cannot be empty')
        return v

    @field_validator('row', 'column')
    @classmethod
    def position_must_be_positive(cls, v):
        if v < 1:
            raise ValueError('row and column are 1-based')
        return v


class CellUpdateRequest(BaseModel):
    value: Any = None


class ProcessResultResponse(BaseModel):
    processor: str
    user: str
    steps: Dict[str, bool]
    completed: bool
    skipped_reason: Optional[str] = None


class EditResponse(BaseModel):
    handled: bool
    event: Optional[str] = None
    result: Optional[ProcessResultResponse] = None


class UserResponse(BaseModel):
    row: Optional[int] = None
    name: str
    email: str
    role: str
    group: str
    active: bool
    date_registered: Optional[datetime] = None
    last_access: Optional[datetime] = None


class UserListResponse(BaseModel):
    users: List[UserResponse]
    count: int


class AuditEventResponse(BaseModel):
    timestamp: Optional[datetime] = None
    type: str
    user: str
    details: str
    status: str
    action: str


class AuditListResponse(BaseModel):
    events: List[AuditEventResponse]


class InactiveEntryResponse(BaseModel):
    name: str
    group: str
    days_inactive: int


class SweepResponse(BaseModel):
    started_at: datetime
    completed_at: Optional[datetime] = None
    checked: int
    deactivated: List[InactiveEntryResponse]
    digest_sent: bool
    skipped: bool


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    user_count: int


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: datetime = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        super().__init__(timestamp=datetime.now(), **data)


def validate_cell_position(row: int, column: int) -> Optional[str]:
    """Problem with a Usuarios cell position, or None when it is writable."""
    if row < FIRST_DATA_ROW:
        return f"row must be >= {FIRST_DATA_ROW}; row 1 is the header"
    if not 1 <= column <= USER_COLUMN_COUNT:
        return f"column must be between 1 and {USER_COLUMN_COUNT}"
    return None
