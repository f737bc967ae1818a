"""
Runtime wiring - builds the store, gateways, dispatcher, sweep and edit trigger.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .gateways import (
    CalendarBackend,
    Mailer,
    NotificationGateway,
    InMemoryCalendarBackend,
    SchedulingGateway,
    build_calendar_backend,
    build_mailer,
)
from .processors import Dispatcher
from .registry import SqliteRegistry
from .sweep import SweepJob
from .triggers import EditTrigger, install_edit_trigger


@dataclass
class Runtime:
    registry: object
    mailer: Mailer
    calendar_backend: CalendarBackend
    notifier: NotificationGateway
    scheduler: SchedulingGateway
    dispatcher: Dispatcher
    sweep: SweepJob
    trigger: EditTrigger


def build_runtime(registry=None, mailer: Mailer = None, calendar_backend: CalendarBackend = None,
                  db_path: str = None, clock: Callable[[], datetime] = datetime.now) -> Runtime:
    """Wire a Runtime. Unspecified parts come from the environment configuration."""
    if registry is None:
        registry = SqliteRegistry(db_path, clock=clock)
    if mailer is None:
        mailer = build_mailer()
    if calendar_backend is None:
        if isinstance(registry, SqliteRegistry):
            calendar_backend = build_calendar_backend(db_path=registry.db_path)
        else:
            calendar_backend = InMemoryCalendarBackend()

    notifier = NotificationGateway(registry, mailer)
    scheduler = SchedulingGateway(registry, calendar_backend)
    dispatcher = Dispatcher(registry, notifier, scheduler, clock=clock)
    sweep = SweepJob(registry, dispatcher, clock=clock)
    trigger = install_edit_trigger(registry, dispatcher)

    return Runtime(
        registry=registry,
        mailer=mailer,
        calendar_backend=calendar_backend,
        notifier=notifier,
        scheduler=scheduler,
        dispatcher=dispatcher,
        sweep=sweep,
        trigger=trigger,
    )
