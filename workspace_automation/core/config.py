"""
Runtime configuration - environment settings for the registry automation.

Values that belong to the registry itself (notification address, calendar id,
feature switches) live in the Configuración sheet and are read through
core.reader.get_config on every operation. Everything here is process-level.
"""

import os
import re
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/registry.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Inactivity policy
STALE_DAYS = int(os.getenv("STALE_DAYS", "7"))
MISSING_ACCESS_SENTINEL_DAYS = 999

# Daily sweep scheduling
SWEEP_ENABLED = os.getenv("SWEEP_ENABLED", "true").lower() == "true"
SWEEP_TIME = os.getenv("SWEEP_TIME", "08:00")  # HH:MM local time
SWEEP_LOCK_NAME = "inactive-user-sweep"
RUN_LOCK_TTL_SEC = int(os.getenv("RUN_LOCK_TTL_SEC", "3600"))

# Onboarding meeting slot (next calendar day)
ONBOARDING_START_HOUR = int(os.getenv("ONBOARDING_START_HOUR", "10"))
ONBOARDING_END_HOUR = int(os.getenv("ONBOARDING_END_HOUR", "11"))

# Notification transport
MAIL_TRANSPORT = os.getenv("MAIL_TRANSPORT", "console")  # console|smtp
SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_USE_SSL = os.getenv("SMTP_USE_SSL", "false").lower() == "true"
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
SMTP_FROM = os.getenv("SMTP_FROM", "workspace-automation@localhost")

# Scheduling transport
CALENDAR_BACKEND = os.getenv("CALENDAR_BACKEND", "sqlite")  # sqlite|memory

# HTTP surface
EDIT_API_ENABLED = os.getenv("EDIT_API_ENABLED", "true").lower() == "true"

# Version string
VERSION = "1.0.0"

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def get_db_path() -> str:
    """Database path, re-read from the environment so tests can redirect it."""
    return os.getenv("DB_PATH", DB_PATH)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def get_stale_days() -> int:
    """Fallback inactivity threshold when the config sheet does not set one."""
    return int(os.getenv("STALE_DAYS", str(STALE_DAYS)))


def get_sweep_time() -> str:
    """Daily sweep time as HH:MM."""
    return os.getenv("SWEEP_TIME", SWEEP_TIME)


def is_sweep_enabled() -> bool:
    """Check if the daily sweep should be registered with the scheduler."""
    return os.getenv("SWEEP_ENABLED", "true").lower() == "true"


def get_mail_transport() -> str:
    """Mail transport name (console|smtp)."""
    return os.getenv("MAIL_TRANSPORT", MAIL_TRANSPORT)


def get_calendar_backend() -> str:
    """Calendar backend name (sqlite|memory)."""
    return os.getenv("CALENDAR_BACKEND", CALENDAR_BACKEND)


def validate_config():
    """Validate process configuration and return any issues."""
    issues = []

    if not _TIME_PATTERN.match(get_sweep_time()):
        issues.append(f"SWEEP_TIME must be HH:MM, got {get_sweep_time()!r}")

    if get_mail_transport() not in ["console", "smtp"]:
        issues.append(f"MAIL_TRANSPORT must be console or smtp, got {get_mail_transport()!r}")

    if get_mail_transport() == "smtp" and not os.getenv("SMTP_HOST", SMTP_HOST):
        issues.append("MAIL_TRANSPORT=smtp requires SMTP_HOST")

    if get_calendar_backend() not in ["sqlite", "memory"]:
        issues.append(f"CALENDAR_BACKEND must be sqlite or memory, got {get_calendar_backend()!r}")

    if not 0 <= ONBOARDING_START_HOUR < ONBOARDING_END_HOUR <= 24:
        issues.append("ONBOARDING_START_HOUR must be before ONBOARDING_END_HOUR")

    if get_stale_days() < 0:
        issues.append("STALE_DAYS must be >= 0")

    return issues
