"""
HTTP surface for the registry automation: edit notifications, user and audit
views, and on-demand sweeps.
"""

from fastapi import FastAPI, APIRouter, HTTPException, Depends, Body, Query
from fastapi.responses import JSONResponse
from typing import Any, Optional
import logging

from .schemas import (
    EditRequest,
    EditResponse,
    CellUpdateRequest,
    ProcessResultResponse,
    UserResponse,
    UserListResponse,
    AuditEventResponse,
    AuditListResponse,
    InactiveEntryResponse,
    SweepResponse,
    HealthResponse,
    ErrorResponse,
    validate_cell_position,
)
from ..core.config import VERSION, debug_enabled, EDIT_API_ENABLED
from ..core.db import health_check
from ..core.errors import ConfigurationError
from ..core.reader import get_users
from ..core.runtime import Runtime, build_runtime
from ..core.schema import EditEvent, ProcessResult

# Initialize the FastAPI application
app = FastAPI(
    title="Workspace Automation API",
    version=VERSION,
    description="User registry lifecycle automation: edit triggers, notifications and inactivity sweeps",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    """Lazily built process-wide runtime. Tests override this dependency."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


def _result_response(result: ProcessResult) -> ProcessResultResponse:
    return ProcessResultResponse(
        processor=result.processor,
        user=result.user,
        steps=result.steps,
        completed=result.completed,
        skipped_reason=result.skipped_reason
    )


def _edit_response(results: Any) -> EditResponse:
    result = next((r for r in results if isinstance(r, ProcessResult)), None)
    if result is None:
        return EditResponse(handled=False)
    return EditResponse(handled=True, event=result.processor, result=_result_response(result))


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(runtime: Runtime = Depends(get_runtime)):
    """Check system health."""
    db_path = getattr(runtime.registry, "db_path", None)
    db_health = health_check(db_path) if db_path else True
    user_count = len(get_users(runtime.registry))

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        user_count=user_count
    )


@app.get("/users", response_model=UserListResponse)
def list_users_endpoint(runtime: Runtime = Depends(get_runtime)):
    """List normalized user records."""
    users = [UserResponse(**record.to_dict()) for record in get_users(runtime.registry)]
    return UserListResponse(users=users, count=len(users))


@app.get("/audit", response_model=AuditListResponse)
def list_audit_endpoint(limit: int = Query(100, ge=1, le=1000), runtime: Runtime = Depends(get_runtime)):
    """Most recent audit events first."""
    events = runtime.registry.list_audit(limit)
    return AuditListResponse(
        events=[
            AuditEventResponse(
                timestamp=event.timestamp,
                type=event.type.value,
                user=event.user,
                details=event.details,
                status=event.status.value,
                action=event.action
            )
            for event in events
        ]
    )


edit_router = APIRouter()


@edit_router.post("/edits", response_model=EditResponse)
def edit_notification_endpoint(request: EditRequest, runtime: Runtime = Depends(get_runtime)):
    """Host notification that a registry cell was edited; runs the edit trigger."""
    result = runtime.trigger(EditEvent(
        sheet=request.sheet,
        row=request.row,
        column=request.column,
        new_value=request.new_value,
        old_value=request.old_value
    ))
    return _edit_response([result])


@edit_router.put("/users/{row}/cells/{column}", response_model=EditResponse)
def update_cell_endpoint(row: int, column: int, request: CellUpdateRequest = Body(...),
                         runtime: Runtime = Depends(get_runtime)):
    """Write a Usuarios cell as an edit; registered edit handlers run."""
    problem = validate_cell_position(row, column)
    if problem:
        raise HTTPException(status_code=422, detail=problem)

    results = runtime.registry.edit_user_cell(row, column, request.value)
    return _edit_response(results)


@edit_router.post("/sweep", response_model=SweepResponse)
def run_sweep_endpoint(runtime: Runtime = Depends(get_runtime)):
    """Run the inactivity sweep now."""
    report = runtime.sweep.run()
    return SweepResponse(
        started_at=report.started_at,
        completed_at=report.completed_at,
        checked=report.checked,
        deactivated=[
            InactiveEntryResponse(name=entry.name, group=entry.group, days_inactive=entry.days_inactive)
            for entry in report.deactivated
        ],
        digest_sent=report.digest_sent,
        skipped=report.skipped
    )


if EDIT_API_ENABLED:
    app.include_router(edit_router, tags=["edits"])


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request, exc):
    """Missing or invalid registry configuration."""
    logging.error(f"Configuration error: {exc}")
    error = ErrorResponse(error_type="ConfigurationError", message=str(exc))
    return JSONResponse(status_code=503, content=error.model_dump(mode="json"))


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logging.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(
        status_code=500,
        content=content,
    )
