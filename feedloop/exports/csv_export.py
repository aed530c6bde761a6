# feedloop/exports/csv_export.py
"""
Reports -> CSV text for the three export layouts (default / Jira / Azure DevOps).

Everything here is pure and total: any row shape produces a line, unknown
enum values fall back to the documented defaults.
"""

from __future__ import annotations

import json
from datetime import datetime, date, timezone
from typing import Any, Iterable

TEMPLATES = ("default", "jira", "azure")

BASE_COLUMNS = {
    "default": ["ID", "Type", "Title", "Description", "Status", "Priority", "Created At", "User Name", "User Email"],
    "jira": ["Issue Type", "Summary", "Description", "Priority", "Status", "Reporter"],
    "azure": ["Work Item Type", "Title", "Description", "State", "Priority", "Created By"],
}
ATTACHMENT_COLUMNS = ["Attachments"]
DIAGNOSTIC_COLUMNS = ["Browser", "OS", "Page URL", "Console Errors"]

CONSOLE_PREVIEW_CHARS = 100

_JIRA_TYPES = {"bug": "Bug", "initiative": "Story", "feedback": "Task"}
_AZURE_TYPES = {"bug": "Bug", "initiative": "Feature", "feedback": "Task"}
_JIRA_STATUSES = {"active": "To Do", "archived": "Done"}
_AZURE_STATUSES = {"active": "New", "archived": "Closed"}

# first match wins
_BROWSERS = [("Chrome", "Chrome"), ("Firefox", "Firefox"), ("Safari", "Safari"), ("Edge", "Edge")]
_OPERATING_SYSTEMS = [
    ("Windows", "Windows"),
    ("Mac OS", "macOS"),
    ("Linux", "Linux"),
    ("Android", "Android"),
    ("iOS", "iOS"),
]


# ---------------- field helpers ----------------

def escape_csv_field(field: Any) -> str:
    if not field:
        return ""
    s = str(field)
    if "," in s or '"' in s or "\n" in s:
        return '"' + s.replace('"', '""') + '"'
    return s


def capitalize_first(s: Any) -> str:
    s = str(s or "")
    return s[:1].upper() + s[1:]


def _lookup(table: dict, key: Any, default: str) -> str:
    if not isinstance(key, str):
        return default
    return table.get(key, default)


def map_type_to_jira(report_type: Any) -> str:
    return _lookup(_JIRA_TYPES, report_type, "Task")


def map_type_to_azure(report_type: Any) -> str:
    return _lookup(_AZURE_TYPES, report_type, "Task")


def map_status_to_jira(status: Any) -> str:
    return _lookup(_JIRA_STATUSES, status, "To Do")


def map_status_to_azure(status: Any) -> str:
    return _lookup(_AZURE_STATUSES, status, "New")


def _first_match(user_agent: str | None, table: list[tuple[str, str]]) -> str:
    if not user_agent:
        return ""
    user_agent = str(user_agent)
    for needle, name in table:
        if needle in user_agent:
            return name
    return "Unknown"


def extract_browser(user_agent: str | None) -> str:
    return _first_match(user_agent, _BROWSERS)


def extract_os(user_agent: str | None) -> str:
    return _first_match(user_agent, _OPERATING_SYSTEMS)


def console_errors_preview(console_logs: Any) -> str:
    if not console_logs:
        return ""
    try:
        dumped = json.dumps(console_logs, separators=(",", ":"), ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        dumped = str(console_logs)
    return dumped[:CONSOLE_PREVIEW_CHARS] + "..."


def format_timestamp(value: Any) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value)


def _get(row: Any, key: str, default: Any = None) -> Any:
    if isinstance(row, dict):
        return row.get(key, default)
    return getattr(row, key, default)


def _attachment_names(report: Any) -> str:
    attachments = _get(report, "attachments")
    if attachments is None:
        attachments = _get(report, "fl_attachments")
    if not isinstance(attachments, (list, tuple)):
        return ""
    names = []
    for att in attachments:
        name = _get(att, "filename")
        if name:
            names.append(str(name))
    return "; ".join(names)


# ---------------- layout ----------------

def normalize_template(template: Any) -> str:
    return template if isinstance(template, str) and template in TEMPLATES else "default"


def csv_headers(template: str, include_attachments: bool = False, include_diagnostic: bool = False) -> list[str]:
    headers = list(BASE_COLUMNS[normalize_template(template)])
    if include_attachments:
        headers += ATTACHMENT_COLUMNS
    if include_diagnostic:
        headers += DIAGNOSTIC_COLUMNS
    return headers


def _base_values(report: Any, template: str) -> list[Any]:
    reporter = _get(report, "reporter_name") or _get(report, "reporter_email") or ""
    priority = capitalize_first(_get(report, "priority"))

    if template == "jira":
        return [
            map_type_to_jira(_get(report, "type")),
            _get(report, "title"),
            _get(report, "description"),
            priority,
            map_status_to_jira(_get(report, "status")),
            reporter,
        ]

    if template == "azure":
        return [
            map_type_to_azure(_get(report, "type")),
            _get(report, "title"),
            _get(report, "description"),
            map_status_to_azure(_get(report, "status")),
            priority,
            reporter,
        ]

    return [
        _get(report, "id"),
        capitalize_first(_get(report, "type")),
        _get(report, "title"),
        _get(report, "description"),
        capitalize_first(_get(report, "status")),
        priority,
        format_timestamp(_get(report, "created_at")),
        _get(report, "reporter_name") or "",
        _get(report, "reporter_email") or "",
    ]


def report_row(report: Any, template: str, include_attachments: bool = False, include_diagnostic: bool = False) -> str:
    template = normalize_template(template)
    values = _base_values(report, template)

    if include_attachments:
        values.append(_attachment_names(report))

    if include_diagnostic:
        user_agent = _get(report, "user_agent") or ""
        values += [
            extract_browser(user_agent),
            extract_os(user_agent),
            _get(report, "url") or "",
            console_errors_preview(_get(report, "console_logs")),
        ]

    return ",".join(escape_csv_field(v) for v in values)


def generate_csv(
    reports: Iterable[Any],
    template: str = "default",
    include_attachments: bool = False,
    include_diagnostic: bool = False,
) -> str:
    lines = [",".join(csv_headers(template, include_attachments, include_diagnostic))]
    for report in reports or []:
        lines.append(report_row(report, template, include_attachments, include_diagnostic))
    return "\n".join(lines)


def export_filename(project_or_id: Any, template: str = "default", today: date | None = None) -> str:
    """feedloop-export-<project>[-<template>]-<YYYY-MM-DD>.csv"""
    today = today or datetime.now(timezone.utc).date()
    template = normalize_template(template)
    suffix = f"-{template}" if template != "default" else ""
    return f"feedloop-export-{project_or_id}{suffix}-{today.isoformat()}.csv"
