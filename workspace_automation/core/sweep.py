"""
Inactivity sweep - deactivates users whose last access is older than the
configured threshold and sends one digest for the whole batch.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Optional

from util.logging import logger

from .cells import to_text
from .config import MISSING_ACCESS_SENTINEL_DAYS, SWEEP_LOCK_NAME
from .reader import get_config, get_users
from .schema import Column, DeactivationSource, InactiveEntry, SweepReport, UserRecord

SECONDS_PER_DAY = 86400


def days_inactive(record: UserRecord, now: datetime) -> int:
    """Whole days since last access; the sentinel when it was never recorded."""
    if record.last_access is None:
        return MISSING_ACCESS_SENTINEL_DAYS
    return int(abs((now - record.last_access).total_seconds()) // SECONDS_PER_DAY)


class SweepJob:
    """One sweep run per call to run(); overlapping runs are serialized by a run lock."""

    def __init__(self, registry, dispatcher, clock: Callable[[], datetime] = datetime.now,
                 lock_name: str = SWEEP_LOCK_NAME):
        self.registry = registry
        self.dispatcher = dispatcher
        self.clock = clock
        self.lock_name = lock_name

    def run(self) -> SweepReport:
        started = time.time()
        report = SweepReport(started_at=self.clock())

        with self.registry.run_lock(self.lock_name) as acquired:
            if not acquired:
                report.skipped = True
                report.completed_at = self.clock()
                logger.log_sweep_run(0, 0, False, status="skipped")
                return report

            self._scan(report)

        report.completed_at = self.clock()
        logger.log_sweep_run(report.checked, len(report.deactivated), report.digest_sent,
                             duration_ms=(time.time() - started) * 1000)
        return report

    def _scan(self, report: SweepReport) -> None:
        stale_days = get_config(self.registry).stale_days
        now = self.clock()

        for record in get_users(self.registry):
            if not record.active:
                continue
            report.checked += 1

            days = days_inactive(record, now)
            if days <= stale_days:
                continue

            # A failed write skips only this user
            try:
                row = self._locate_row(record)
                if row is None:
                    logger.warning(f"User {record.name} not found in registry; deactivation not written")
                elif not self.registry.compare_and_set_user_field(row, Column.ACTIVE, True, False):
                    logger.info(f"User {record.name} at row {row} already deactivated; skipping")
                    continue
            except Exception as e:
                logger.log_operation("sweep.deactivate", "failed", {
                    "user": record.name,
                    "error_type": type(e).__name__,
                    "error": str(e)
                }, level=logging.ERROR)
                continue

            self.dispatcher.process_deactivation(record, source=DeactivationSource.SWEEP, days_inactive=days)
            report.deactivated.append(InactiveEntry(name=record.name, group=record.group, days_inactive=days))

        if report.deactivated:
            report.digest_sent = self.dispatcher.send_digest(report.deactivated)

    def _locate_row(self, record: UserRecord) -> Optional[int]:
        # Prefer the row the record came from; fall back to the first row with that name
        if record.row is not None:
            cells = self.registry.get_user_row(record.row)
            if cells is not None and to_text(cells[Column.NAME - 1]) == record.name:
                return record.row
        return self.registry.find_user_row(record.name)


def run_sweep(registry, dispatcher, clock: Callable[[], datetime] = datetime.now) -> SweepReport:
    return SweepJob(registry, dispatcher, clock=clock).run()
