"""
Notification and scheduling gateways plus their swappable transports.

Gateways read the registry configuration fresh on every call and report the
outcome as a boolean. They never raise: refusals and transport failures are
logged and turned into False so that a processor can carry on with its
remaining steps.
"""

import re
import smtplib
import ssl
import threading
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, List, Optional, Protocol, runtime_checkable

from util.logging import logger

from . import config
from .db import get_db, init_db
from .errors import ConfigurationError, GatewayError
from .reader import get_config

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(address: str) -> bool:
    return bool(address) and EMAIL_PATTERN.match(address) is not None


# --- Mail transports ---------------------------------------------------------

@runtime_checkable
class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> None: ...


@dataclass
class OutgoingMessage:
    to: str
    subject: str
    body: str
    html_body: Optional[str] = None
    sent_at: datetime = field(default_factory=datetime.now)


class ConsoleMailer:
    """Development transport: logs each message and keeps it in `outbox`."""

    def __init__(self):
        self.outbox: List[OutgoingMessage] = []
        self._lock = threading.Lock()

    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> None:
        message = OutgoingMessage(to=to, subject=subject, body=body, html_body=html_body)
        with self._lock:
            self.outbox.append(message)
        logger.log_operation("mail.console", "delivered", {"subject": subject, "html": html_body is not None})


class SmtpMailer:
    """SMTP transport (implicit SSL or STARTTLS, optional login)."""

    def __init__(self, host: str, port: int = 587, username: str = "", password: str = "",
                 use_ssl: bool = False, use_tls: bool = True, from_address: str = "", timeout: int = 30):
        if not host:
            raise ConfigurationError("SMTP host is required for the smtp mail transport")
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.use_tls = use_tls
        self.from_address = from_address
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "SmtpMailer":
        return cls(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USERNAME,
            password=config.SMTP_PASSWORD,
            use_ssl=config.SMTP_USE_SSL,
            use_tls=config.SMTP_USE_TLS,
            from_address=config.SMTP_FROM,
        )

    def _build_message(self, to: str, subject: str, body: str, html_body: Optional[str]) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.from_address
        msg["To"] = to
        msg["Subject"] = subject
        if body:
            msg.attach(MIMEText(body, "plain", "utf-8"))
        if html_body:
            msg.attach(MIMEText(html_body, "html", "utf-8"))
        return msg

    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> None:
        msg = self._build_message(to, subject, body, html_body)
        context = ssl.create_default_context()
        try:
            if self.use_ssl:
                server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
                if self.use_tls:
                    server.starttls(context=context)

            try:
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            raise GatewayError(f"Email delivery failed: {e}") from e


def build_mailer(transport: str = None) -> Mailer:
    transport = transport or config.get_mail_transport()
    if transport == "smtp":
        return SmtpMailer.from_env()
    if transport == "console":
        return ConsoleMailer()
    raise ConfigurationError(f"Unknown mail transport: {transport}")


# --- Calendar backends -------------------------------------------------------

@dataclass
class CalendarEvent:
    calendar_id: str
    title: str
    start: datetime
    end: datetime
    description: str = ""
    send_invites: bool = False
    id: Optional[int] = None


class Calendar(Protocol):
    calendar_id: str

    def create_event(self, title: str, start: datetime, end: datetime, description: str = "",
                     send_invites: bool = False) -> CalendarEvent: ...


@runtime_checkable
class CalendarBackend(Protocol):
    def get_calendar(self, calendar_id: str) -> Optional[Calendar]: ...


class InMemoryCalendar:
    def __init__(self, calendar_id: str):
        self.calendar_id = calendar_id
        self.events: List[CalendarEvent] = []

    def create_event(self, title: str, start: datetime, end: datetime, description: str = "",
                     send_invites: bool = False) -> CalendarEvent:
        event = CalendarEvent(
            calendar_id=self.calendar_id, title=title, start=start, end=end,
            description=description, send_invites=send_invites, id=len(self.events) + 1
        )
        self.events.append(event)
        return event


class InMemoryCalendarBackend:
    def __init__(self, calendar_ids: List[str] = None):
        self.calendars: Dict[str, InMemoryCalendar] = {}
        for calendar_id in calendar_ids or ["primary"]:
            self.add_calendar(calendar_id)

    def add_calendar(self, calendar_id: str) -> InMemoryCalendar:
        calendar = self.calendars.setdefault(calendar_id, InMemoryCalendar(calendar_id))
        return calendar

    def get_calendar(self, calendar_id: str) -> Optional[InMemoryCalendar]:
        return self.calendars.get(calendar_id)


class SqliteCalendar:
    def __init__(self, db_path: str, calendar_id: str, name: str = None):
        self.db_path = db_path
        self.calendar_id = calendar_id
        self.name = name

    def create_event(self, title: str, start: datetime, end: datetime, description: str = "",
                     send_invites: bool = False) -> CalendarEvent:
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO calendar_events (calendar_id, title, description, start_time, end_time, send_invites)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (self.calendar_id, title, description, start.isoformat(sep=" "), end.isoformat(sep=" "),
                 send_invites)
            )
            event_id = cursor.lastrowid
        return CalendarEvent(
            calendar_id=self.calendar_id, title=title, start=start, end=end,
            description=description, send_invites=send_invites, id=event_id
        )

    def list_events(self) -> List[CalendarEvent]:
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT id, title, description, start_time, end_time, send_invites
                FROM calendar_events WHERE calendar_id = ? ORDER BY id
                """,
                (self.calendar_id,)
            ).fetchall()
        return [
            CalendarEvent(
                calendar_id=self.calendar_id, title=title, description=description or "",
                start=datetime.fromisoformat(start), end=datetime.fromisoformat(end),
                send_invites=bool(send_invites), id=event_id
            )
            for event_id, title, description, start, end, send_invites in rows
        ]


class SqliteCalendarBackend:
    """Calendars stored next to the registry tables."""

    def __init__(self, db_path: str = None, initialize: bool = True):
        self.db_path = db_path or config.get_db_path()
        if initialize:
            init_db(self.db_path)

    def add_calendar(self, calendar_id: str, name: str = None) -> SqliteCalendar:
        with get_db(self.db_path) as conn:
            conn.execute(
                "INSERT OR IGNORE INTO calendars (calendar_id, name) VALUES (?, ?)", (calendar_id, name)
            )
        return SqliteCalendar(self.db_path, calendar_id, name)

    def get_calendar(self, calendar_id: str) -> Optional[SqliteCalendar]:
        if not calendar_id:
            return None
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT calendar_id, name FROM calendars WHERE calendar_id = ?", (calendar_id,)
            ).fetchone()
        if row is None:
            return None
        return SqliteCalendar(self.db_path, row[0], row[1])


def build_calendar_backend(backend: str = None, db_path: str = None) -> CalendarBackend:
    backend = backend or config.get_calendar_backend()
    if backend == "sqlite":
        return SqliteCalendarBackend(db_path)
    if backend == "memory":
        return InMemoryCalendarBackend()
    raise ConfigurationError(f"Unknown calendar backend: {backend}")


# --- Gateways ----------------------------------------------------------------

class NotificationGateway:
    """Sends administrator notifications to the address in the registry config."""

    def __init__(self, registry, mailer: Mailer):
        self.registry = registry
        self.mailer = mailer

    def send_plain(self, subject: str, body: str) -> bool:
        """Plain-text alert. Refused unless enabled and the address is well formed."""
        return self._send("send_plain", subject, body=body, check_address=True)

    def send_rich(self, subject: str, html_body: str) -> bool:
        """HTML report. Only the enabled flag is checked."""
        return self._send("send_rich", subject, html_body=html_body, check_address=False)

    def _send(self, operation: str, subject: str, body: str = "", html_body: Optional[str] = None,
              check_address: bool = True) -> bool:
        try:
            registry_config = get_config(self.registry)
            if not registry_config.notify_enabled:
                logger.log_gateway_call("notification", operation, False, {"reason": "notifications disabled"})
                return False

            to = registry_config.notify_email
            if check_address and not is_valid_email(to):
                logger.log_gateway_call("notification", operation, False,
                                        {"reason": "invalid notification address", "to": to})
                return False

            self.mailer.send(to, subject, body, html_body=html_body)
            logger.log_gateway_call("notification", operation, True, {"to": to, "subject": subject})
            return True
        except Exception as e:
            logger.log_gateway_call("notification", operation, False,
                                    {"error_type": type(e).__name__, "error": str(e)})
            return False


class SchedulingGateway:
    """Creates calendar events on the calendar named in the registry config."""

    def __init__(self, registry, backend: CalendarBackend):
        self.registry = registry
        self.backend = backend

    def schedule_event(self, title: str, description: str, start: datetime, end: datetime) -> bool:
        try:
            registry_config = get_config(self.registry)
            if not registry_config.scheduling_enabled:
                logger.log_gateway_call("scheduling", "schedule_event", False, {"reason": "scheduling disabled"})
                return False

            calendar = self.backend.get_calendar(registry_config.calendar_id)
            if calendar is None:
                logger.log_gateway_call("scheduling", "schedule_event", False,
                                        {"reason": "calendar not found", "calendar_id": registry_config.calendar_id})
                return False

            event = calendar.create_event(title, start, end, description=description, send_invites=False)
            logger.log_gateway_call("scheduling", "schedule_event", True,
                                    {"calendar_id": calendar.calendar_id, "title": title, "event_id": event.id})
            return True
        except Exception as e:
            logger.log_gateway_call("scheduling", "schedule_event", False,
                                    {"error_type": type(e).__name__, "error": str(e)})
            return False
