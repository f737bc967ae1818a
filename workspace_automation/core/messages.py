"""
Notification and calendar message templates.
"""

from datetime import datetime
from html import escape
from typing import List

from .schema import InactiveEntry, UserRecord

SIGNATURE = "Workspace Management System"

TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M:%S"
DATE_FORMAT = "%d/%m/%Y"

NEW_USER_SUBJECT = "New user added"
INACTIVE_USER_SUBJECT = "Inactive user detected"
NEW_ADMIN_SUBJECT = "Critical change: new administrator"

ONBOARDING_AGENDA = [
    "Welcome to the team",
    "Roles and permissions",
    "Tools tour",
    "Task assignment",
]


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


def digest_subject(moment: datetime) -> str:
    return f"Daily report - {moment.strftime(DATE_FORMAT)}"


def welcome_html(record: UserRecord, moment: datetime) -> str:
    rows = [
        ("Name", record.name),
        ("Email", record.email),
        ("Role", record.role),
        ("Group", record.group),
        ("Date", format_timestamp(moment)),
    ]
    cells = "\n".join(
        f"      <tr><td><strong>{label}:</strong></td><td>{escape(value)}</td></tr>" for label, value in rows
    )
    return (
        "<h2>New User Registered</h2>\n"
        '<table border="1" cellpadding="8" style="border-collapse: collapse;">\n'
        f"{cells}\n"
        "</table>\n"
        f'<p style="color: #666; margin-top: 20px;">{SIGNATURE}</p>\n'
    )


def inactive_user_text(record: UserRecord, moment: datetime) -> str:
    return (
        f"User {record.name} ({record.email}) from group {record.group} was marked as inactive.\n"
        "\n"
        f"Date: {format_timestamp(moment)}\n"
        "\n"
        f"{SIGNATURE}"
    )


def new_admin_text(record: UserRecord, moment: datetime) -> str:
    return (
        f"ATTENTION: {record.name} was promoted to Admin.\n"
        "\n"
        f"Email: {record.email}\n"
        f"Group: {record.group}\n"
        f"Date: {format_timestamp(moment)}\n"
        "\n"
        "Please verify that this change was authorized.\n"
        "\n"
        f"{SIGNATURE}"
    )


def onboarding_title(record: UserRecord) -> str:
    return f"Onboarding: {record.name}"


def onboarding_description(record: UserRecord) -> str:
    agenda = "\n".join(f"{number}. {item}" for number, item in enumerate(ONBOARDING_AGENDA, start=1))
    return (
        f"Onboarding session for {record.name} ({record.email}).\n"
        f"Role: {record.role}\n"
        f"Group: {record.group}\n"
        "\n"
        "Agenda:\n"
        f"{agenda}"
    )


def digest_html(entries: List[InactiveEntry], moment: datetime) -> str:
    cell_style = "padding: 8px; border: 1px solid #ddd;"
    rows = "".join(
        "\n      <tr>"
        f'<td style="{cell_style}">{escape(entry.name)}</td>'
        f'<td style="{cell_style}">{escape(entry.group)}</td>'
        f'<td style="{cell_style}">{entry.days_inactive} days</td>'
        "</tr>"
        for entry in entries
    )
    return (
        "<h2>Daily Report - Inactive Users</h2>\n"
        f"<p>Detected <strong>{len(entries)}</strong> users without activity:</p>\n"
        '<table border="1" cellpadding="8" style="border-collapse: collapse; width: 100%;">\n'
        "  <thead>\n"
        '    <tr style="background-color: #4285f4; color: white;">\n'
        "      <th>User</th><th>Group</th><th>Days Inactive</th>\n"
        "    </tr>\n"
        "  </thead>\n"
        f"  <tbody>{rows}\n  </tbody>\n"
        "</table>\n"
        f'<p style="margin-top: 20px; color: #666;">Date: {moment.strftime(DATE_FORMAT)}<br>{SIGNATURE}</p>\n'
    )
