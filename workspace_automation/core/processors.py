"""
Event dispatcher - runs the processor matching each lifecycle event.

Every processor is a fixed sequence of independent steps. A failing step is
logged and recorded as False in the ProcessResult; it never rolls back earlier
steps and never prevents later ones.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

from util.logging import audit_event, logger

from . import messages
from .config import ONBOARDING_END_HOUR, ONBOARDING_START_HOUR
from .schema import (
    AuditEvent,
    AuditEventType,
    AuditStatus,
    Column,
    DeactivationEvent,
    DeactivationSource,
    EventKind,
    InactiveEntry,
    LifecycleEvent,
    NewUserEvent,
    ProcessResult,
    RoleChangeEvent,
    UserRecord,
)

ALREADY_REGISTERED = "already registered"

DEACTIVATION_ACTIONS = {
    DeactivationSource.EDIT: "notified",
    DeactivationSource.SWEEP: "auto-deactivated",
}


class Dispatcher:
    """Routes lifecycle events to processors that talk to the injected gateways."""

    def __init__(self, registry, notifier, scheduler, clock: Callable[[], datetime] = datetime.now):
        self.registry = registry
        self.notifier = notifier
        self.scheduler = scheduler
        self.clock = clock

    def dispatch(self, event: LifecycleEvent) -> ProcessResult:
        if isinstance(event, NewUserEvent):
            result = self.process_new_user(event.record, event.row)
        elif isinstance(event, DeactivationEvent):
            result = self.process_deactivation(event.record)
        elif isinstance(event, RoleChangeEvent):
            result = self.process_role_change(event.record)
        else:
            raise ValueError(f"Unsupported lifecycle event: {event!r}")

        status = "skipped" if result.skipped_reason else ("processed" if result.completed else "partial")
        logger.log_lifecycle_event(event.kind.value, event.record.name, status, {"steps": result.steps})
        return result

    def process_new_user(self, record: UserRecord, row: int) -> ProcessResult:
        result = ProcessResult(processor=EventKind.NEW_USER.value, user=record.name)
        now = self.clock()

        # Only the invocation that wins the DateRegistered swap onboards the user
        try:
            won = self.registry.compare_and_set_user_field(row, Column.DATE_REGISTERED, None, now)
        except Exception as e:
            self._step_failed("new_user.stamp_date_registered", record, e)
            won = None

        if won is False:
            result.skipped_reason = ALREADY_REGISTERED
            logger.info(f"User {record.name} at row {row} already registered; skipping onboarding")
            return result

        last_access_stamped = self._guard(
            "new_user.stamp_last_access", record, self.registry.set_user_field, row, Column.LAST_ACCESS, now
        )
        result.steps["stamped"] = bool(won) and last_access_stamped

        result.steps["audited"] = self._audit(AuditEvent(
            type=AuditEventType.USER_ADDED,
            user=record.name,
            details=f"Role: {record.role}, Group: {record.group}",
            status=AuditStatus.OK,
            action="Welcome email and onboarding event created",
        ))

        result.steps["notified"] = self._guard(
            "new_user.notify", record, self.notifier.send_rich,
            messages.NEW_USER_SUBJECT, messages.welcome_html(record, now)
        )

        start, end = onboarding_slot(now)
        result.steps["scheduled"] = self._guard(
            "new_user.schedule", record, self.scheduler.schedule_event,
            messages.onboarding_title(record), messages.onboarding_description(record), start, end
        )
        return result

    def process_deactivation(self, record: UserRecord, source: DeactivationSource = DeactivationSource.EDIT,
                             days_inactive: Optional[int] = None) -> ProcessResult:
        result = ProcessResult(processor=EventKind.DEACTIVATION.value, user=record.name)
        now = self.clock()

        details = "User deactivated" if days_inactive is None else f"{days_inactive} days without activity"
        result.steps["audited"] = self._audit(AuditEvent(
            type=AuditEventType.USER_INACTIVE,
            user=record.name,
            details=details,
            status=AuditStatus.ALERT,
            action=DEACTIVATION_ACTIONS[DeactivationSource(source)],
        ))

        result.steps["notified"] = self._guard(
            "deactivation.notify", record, self.notifier.send_plain,
            messages.INACTIVE_USER_SUBJECT, messages.inactive_user_text(record, now)
        )
        return result

    def process_role_change(self, record: UserRecord) -> ProcessResult:
        result = ProcessResult(processor=EventKind.ROLE_CHANGE.value, user=record.name)
        promoted = record.is_admin

        result.steps["audited"] = self._audit(AuditEvent(
            type=AuditEventType.ROLE_CHANGED,
            user=record.name,
            details=f"New role: {record.role}",
            status=AuditStatus.WARNING if promoted else AuditStatus.OK,
            action="notification sent" if promoted else "log only",
        ))

        if promoted:
            result.steps["notified"] = self._guard(
                "role_change.notify", record, self.notifier.send_plain,
                messages.NEW_ADMIN_SUBJECT, messages.new_admin_text(record, self.clock())
            )
        return result

    def send_digest(self, entries: List[InactiveEntry]) -> bool:
        """Send one report listing every inactive user. Nothing is sent for an empty batch."""
        if not entries:
            return False
        now = self.clock()
        try:
            return bool(self.notifier.send_rich(messages.digest_subject(now), messages.digest_html(entries, now)))
        except Exception as e:
            logger.log_operation("digest.notify", "failed", {"error": str(e), "entries": len(entries)},
                                 level=logging.ERROR)
            return False

    def record_error(self, details: str) -> bool:
        """Audit a trigger failure. Best effort, like every audit append."""
        return self._audit(AuditEvent(
            type=AuditEventType.ERROR,
            details=details,
            status=AuditStatus.ERROR,
        ))

    def _audit(self, event: AuditEvent) -> bool:
        try:
            self.registry.append_audit(event)
        except Exception as e:
            logger.log_operation("audit.append", "failed", {
                "type": event.type.value,
                "user": event.user,
                "error": str(e)
            }, level=logging.ERROR)
            return False

        audit_event(f"audit.{event.type.value}", {"user": event.user}, {
            "details": event.details,
            "status": event.status.value,
            "action": event.action
        })
        return True

    def _guard(self, step: str, record: UserRecord, func: Callable[..., Any], *args) -> bool:
        """Run one side-effecting step; exceptions count as failure."""
        try:
            outcome = func(*args)
        except Exception as e:
            self._step_failed(step, record, e)
            return False
        # Store writes return None on success
        return True if outcome is None else bool(outcome)

    def _step_failed(self, step: str, record: UserRecord, error: Exception) -> None:
        logger.log_operation(f"processor.{step}", "failed", {
            "user": record.name,
            "error_type": type(error).__name__,
            "error": str(error)
        }, level=logging.ERROR)


def onboarding_slot(now: datetime):
    """Next calendar day, ONBOARDING_START_HOUR to ONBOARDING_END_HOUR local."""
    next_day = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return next_day + timedelta(hours=ONBOARDING_START_HOUR), next_day + timedelta(hours=ONBOARDING_END_HOUR)
