"""
Shared fixtures: a frozen clock, an in-memory registry seeded with a valid
configuration sheet, and a runtime wired with in-process transports.
"""

from datetime import datetime, timedelta

import pytest

from workspace_automation.core.gateways import ConsoleMailer, InMemoryCalendarBackend
from workspace_automation.core.registry import InMemoryRegistry
from workspace_automation.core.runtime import build_runtime

FIXED_NOW = datetime(2026, 3, 10, 9, 30, 0)

DEFAULT_CONFIG = {
    "notifyEnabled": "TRUE",
    "notifyEmail": "admin@example.com",
    "schedulingEnabled": True,
    "calendarId": "primary",
    "staleDays": 7,
}


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def user_cells(name, email="", role="", group="", active=True, date_registered=None, last_access=None):
    return [name, email, role, group, active, date_registered, last_access]


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def registry(clock):
    return InMemoryRegistry(config=dict(DEFAULT_CONFIG), clock=clock)


@pytest.fixture
def mailer():
    return ConsoleMailer()


@pytest.fixture
def calendar_backend():
    return InMemoryCalendarBackend()


@pytest.fixture
def runtime(registry, mailer, calendar_backend, clock):
    return build_runtime(registry=registry, mailer=mailer, calendar_backend=calendar_backend, clock=clock)
