# feedloop/reports/queries.py

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, date, time, timezone
from typing import Optional

from pydantic_core import PydanticCustomError
from sqlalchemy import asc, desc, func, or_
from sqlalchemy.orm import Session, selectinload

from feedloop.reports.models import Report, REPORT_TYPES, REPORT_STATUSES, REPORT_PRIORITIES

SORTABLE_COLUMNS = {
    "title": Report.title,
    "type": Report.type,
    "priority": Report.priority,
    "status": Report.status,
    "created_at": Report.created_at,
    "reporter_name": Report.reporter_name,
}

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class ReportFilters:
    type: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    title: Optional[str] = None
    reporter: Optional[str] = None


def parse_date(value: str | None, *, end_of_day: bool = False) -> datetime | None:
    """
    Parse an ISO date or datetime into an aware UTC datetime.
    A bare date is expanded to the start (or end) of that day.
    Raises ValueError on garbage.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    if len(value) == 10:
        d = date.fromisoformat(value)
        t = time.max if end_of_day else time.min
        return datetime.combine(d, t, tzinfo=timezone.utc)

    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def checked_date(value: str | None, name: str) -> str | None:
    """Validator helper: keep the raw value, fail with a field message on garbage."""
    if value in (None, ""):
        return None
    try:
        parse_date(value)
    except ValueError:
        raise PydanticCustomError("date_format", 'Invalid date format for "{name}" parameter', {"name": name})
    return value


def lenient_date(value: str | None, *, end_of_day: bool = False) -> datetime | None:
    try:
        return parse_date(value, end_of_day=end_of_day)
    except ValueError:
        return None


def _like(column, needle: str):
    return func.lower(column).contains(needle.lower(), autoescape=True)


def filtered_reports(db: Session, project_id: str, filters: ReportFilters | None = None):
    f = filters or ReportFilters()
    q = db.query(Report).filter(Report.project_id == project_id)

    if f.type in REPORT_TYPES:
        q = q.filter(Report.type == f.type)
    if f.status in REPORT_STATUSES:
        q = q.filter(Report.status == f.status)
    if f.priority in REPORT_PRIORITIES:
        q = q.filter(Report.priority == f.priority)
    if f.date_from is not None:
        q = q.filter(Report.created_at >= f.date_from)
    if f.date_to is not None:
        q = q.filter(Report.created_at <= f.date_to)
    if f.title:
        q = q.filter(or_(_like(Report.title, f.title), _like(Report.description, f.title)))
    if f.reporter:
        q = q.filter(or_(_like(Report.reporter_name, f.reporter), _like(Report.reporter_email, f.reporter)))

    return q


def list_reports_page(
    db: Session,
    project_id: str,
    filters: ReportFilters | None = None,
    *,
    sort_column: str = "created_at",
    sort_direction: str = "desc",
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    with_attachments: bool = False,
) -> tuple[list[Report], dict]:
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE))

    col = SORTABLE_COLUMNS.get(sort_column, Report.created_at)
    order = asc(col) if sort_direction == "asc" else desc(col)

    base = filtered_reports(db, project_id, filters)
    total = base.count()

    q = base.order_by(order, Report.id)
    if with_attachments:
        q = q.options(selectinload(Report.attachments))
    rows = q.offset((page - 1) * limit).limit(limit).all()

    return rows, pagination_info(page, limit, total)


def pagination_info(page: int, limit: int, total: int) -> dict:
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def report_metadata(db: Session, project_id: str) -> dict:
    rows = db.query(Report.type, Report.priority).filter(Report.project_id == project_id).all()

    by_type = {t: 0 for t in REPORT_TYPES}
    by_priority = {p: 0 for p in REPORT_PRIORITIES}
    by_priority["null"] = 0

    for rtype, prio in rows:
        if rtype in by_type:
            by_type[rtype] += 1
        if not prio:
            by_priority["null"] += 1
        elif prio in by_priority:
            by_priority[prio] += 1

    return {"total_by_type": by_type, "total_by_priority": by_priority}


def reports_for_export(db: Session, project_id: str, filters: ReportFilters | None = None) -> list[Report]:
    return (
        filtered_reports(db, project_id, filters)
        .options(selectinload(Report.attachments))
        .order_by(desc(Report.created_at), Report.id)
        .all()
    )


def reports_by_ids(db: Session, project_id: str, report_ids: list[str]) -> list[Report]:
    if not report_ids:
        return []
    return (
        db.query(Report)
        .filter(Report.project_id == project_id, Report.id.in_(report_ids))
        .options(selectinload(Report.attachments))
        .order_by(desc(Report.created_at), Report.id)
        .all()
    )


def get_project_report(db: Session, project_id: str, report_id: str) -> Report | None:
    return (
        db.query(Report)
        .filter(Report.id == report_id, Report.project_id == project_id)
        .options(selectinload(Report.attachments))
        .first()
    )


def reports_for_analysis(
    db: Session,
    project_id: str,
    filters: ReportFilters | None = None,
    report_id: str | None = None,
) -> list[Report]:
    q = filtered_reports(db, project_id, filters)
    if report_id:
        q = q.filter(Report.id == report_id)
    return q.order_by(desc(Report.created_at), Report.id).all()
