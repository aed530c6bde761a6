# feedloop/reports/routes.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError
from sqlalchemy.orm import Session

from feedloop.db.session import get_db
from feedloop.auth.deps import get_current_user
from feedloop.users.models import User
from feedloop.core.errors import validation_failed
from feedloop.projects.permissions import check_uuid, require_project_access
from feedloop.reports.models import Report, Attachment
from feedloop.reports.queries import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    ReportFilters,
    checked_date,
    get_project_report,
    lenient_date,
    list_reports_page,
    pagination_info,
    parse_date,
    report_metadata,
    reports_for_analysis,
)
from feedloop.reports.correlations import (
    CORRELATION_TYPES,
    analyze_correlations,
    correlation_insights,
    correlation_summary,
    url_error_patterns,
)
from feedloop.reports.performance import (
    VITALS,
    categorize_performance,
    performance_analysis,
    performance_statistics,
    web_vitals,
)
from feedloop.invitations.lifecycle import as_utc
from feedloop.reports.waterfall import build_diagnostics_pdf
from feedloop.uploads.files import attachment_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects/{project_id}/reports", tags=["reports"])

INCLUDE_COUNTS = ("console_logs_count", "network_requests_count", "attachments_count")

ReportType = Literal["bug", "initiative", "feedback"]
ReportStatus = Literal["active", "archived"]
ReportPriority = Literal["low", "medium", "high", "critical"]


# ---------------- schemas ----------------

def _required_text(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Field is required")
    return v


class ReportCreateBody(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=10000)
    type: ReportType
    priority: ReportPriority = "medium"
    reporter_email: Optional[EmailStr] = None
    reporter_name: Optional[str] = Field(default=None, max_length=100)
    attachment_ids: list[str] = Field(default_factory=list, max_length=5)

    @field_validator("title", "description")
    @classmethod
    def _strip(cls, v: str) -> str:
        return _required_text(v)


class ReportUpdateBody(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1, max_length=10000)
    type: Optional[ReportType] = None
    status: Optional[ReportStatus] = None
    priority: Optional[ReportPriority] = None

    @field_validator("title", "description")
    @classmethod
    def _strip(cls, v):
        return None if v is None else _required_text(v)


class PerformanceQuery(BaseModel):
    lcp_max: Optional[float] = None
    fcp_max: Optional[float] = None
    cls_max: Optional[float] = None
    fid_max: Optional[float] = None
    tti_max: Optional[float] = None
    ttfb_max: Optional[float] = None
    category: Optional[Literal["critical", "high", "medium", "low"]] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)
    sort_by: Literal["lcp", "fcp", "cls", "fid", "tti", "ttfb", "created_at"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"

    @field_validator("date_from", "date_to")
    @classmethod
    def _check_date(cls, v, info):
        return checked_date(v, info.field_name)

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, v: int) -> int:
        return min(v, MAX_PAGE_SIZE)

    def to_filters(self) -> ReportFilters:
        return ReportFilters(date_from=parse_date(self.date_from), date_to=parse_date(self.date_to, end_of_day=True))

    def max_values(self) -> dict[str, float]:
        limits = {name: getattr(self, f"{name}_max") for name in VITALS}
        return {name: v for name, v in limits.items() if v is not None}


class CorrelationQuery(BaseModel):
    report_id: Optional[str] = None
    types: Optional[list[str]] = None
    min_confidence: int = Field(default=50, ge=0, le=100)
    time_window: int = Field(default=24, ge=1, le=720)  # hours
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)

    @field_validator("types", mode="before")
    @classmethod
    def _split_types(cls, v):
        if v is None:
            return None
        names = [t.strip() for t in str(v).split(",") if t.strip()]
        for name in names:
            if name not in CORRELATION_TYPES:
                raise PydanticCustomError("correlation_type", 'Unknown correlation type "{name}"', {"name": name})
        return names or None

    @field_validator("date_from", "date_to")
    @classmethod
    def _check_date(cls, v, info):
        return checked_date(v, info.field_name)

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, v: int) -> int:
        return min(v, MAX_PAGE_SIZE)

    def to_filters(self) -> ReportFilters:
        date_from = parse_date(self.date_from)
        date_to = parse_date(self.date_to, end_of_day=True)
        if date_to is None and not self.report_id:
            # no explicit end: look back time_window hours from now
            window_start = datetime.now(timezone.utc) - timedelta(hours=self.time_window)
            date_from = max(date_from, window_start) if date_from else window_start
        return ReportFilters(date_from=date_from, date_to=date_to)



# ---------------- serializers ----------------

def report_summary(r: Report) -> dict:
    return {
        "id": r.id,
        "project_id": r.project_id,
        "title": r.title,
        "description": r.description,
        "type": r.type,
        "status": r.status,
        "priority": r.priority,
        "reporter_email": r.reporter_email,
        "reporter_name": r.reporter_name,
        "url": r.url,
        "created_by": r.created_by,
        "created_at": r.created_at,
        "updated_at": r.updated_at,
    }


def report_detail(r: Report) -> dict:
    out = report_summary(r)
    out.update({
        "user_agent": r.user_agent,
        "console_logs": r.console_logs,
        "network_requests": r.network_requests,
        "performance_metrics": r.performance_metrics,
        "attachments": [attachment_out(a) for a in r.attachments],
        "creator": None,
    })
    if r.creator:
        out["creator"] = {
            "id": r.creator.id,
            "email": r.creator.email,
            "name": r.creator.display_name,
        }
    return out


def _count(value) -> int:
    return len(value) if isinstance(value, list) else 0


def _list_filters(params) -> ReportFilters:
    # bad enum values and unparsable dates are dropped, not rejected
    return ReportFilters(
        type=params.get("filter[type]") or None,
        status=params.get("filter[status]") or None,
        priority=params.get("filter[priority]") or None,
        date_from=lenient_date(params.get("filter[dateFrom]")),
        date_to=lenient_date(params.get("filter[dateTo]"), end_of_day=True),
        title=(params.get("filter[title]") or "").strip() or None,
        reporter=(params.get("filter[reporter]") or "").strip() or None,
    )


def _int_param(params, name: str, default: int) -> int:
    try:
        return int(params.get(name) or default)
    except ValueError:
        return default


def _load_report(db: Session, project_id: str, report_id: str) -> Report:
    report_id = check_uuid(report_id, "report ID")
    report = get_project_report(db, project_id, report_id)
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    return report


def _query_model(model, request: Request):
    # blank query values count as absent
    params = {k: v for k, v in request.query_params.items() if v.strip()}
    try:
        return model.model_validate(params)
    except ValidationError as e:
        raise validation_failed(e.errors())


def _vital_sort_key(name: str, descending: bool):
    def key(item):
        value = item[1].get(name)
        # reports missing the metric sort last either way
        if value is None:
            return (1, 0.0)
        return (0, -value if descending else value)
    return key



# ---------------- routes ----------------

@router.get("")
def list_reports(
    project_id: str,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    params = request.query_params

    include = [p.strip() for p in (params.get("include") or "").split(",") if p.strip() in INCLUDE_COUNTS]
    direction = params.get("sort[direction]")

    rows, pagination = list_reports_page(
        db,
        project.id,
        _list_filters(params),
        sort_column=params.get("sort[column]") or "created_at",
        sort_direction="asc" if direction == "asc" else "desc",
        page=_int_param(params, "page", 1),
        limit=_int_param(params, "limit", DEFAULT_PAGE_SIZE),
        with_attachments="attachments_count" in include,
    )

    reports = []
    for r in rows:
        item = report_summary(r)
        if "console_logs_count" in include:
            item["console_logs_count"] = _count(r.console_logs)
        if "network_requests_count" in include:
            item["network_requests_count"] = _count(r.network_requests)
        if "attachments_count" in include:
            item["attachments_count"] = len(r.attachments)
        reports.append(item)

    return {
        "reports": reports,
        "pagination": pagination,
        "metadata": report_metadata(db, project.id),
    }


@router.post("", status_code=201)
def create_report(
    project_id: str,
    body: ReportCreateBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)

    ids = list(dict.fromkeys(check_uuid(a, "attachment ID") for a in body.attachment_ids))
    attachments: list[Attachment] = []
    if ids:
        attachments = db.query(Attachment).filter(Attachment.id.in_(ids)).all()
        if any(a.report_id is not None for a in attachments):
            raise HTTPException(status_code=400, detail="Some attachments are already linked to other reports")
        if len(attachments) != len(ids) or any(a.project_id != project.id for a in attachments):
            raise HTTPException(status_code=400, detail="Some attachment IDs are invalid")

    report = Report(
        project_id=project.id,
        type=body.type,
        status="active",
        priority=body.priority,
        title=body.title,
        description=body.description,
        reporter_email=body.reporter_email or user.email,
        reporter_name=(body.reporter_name or "").strip() or user.display_name or None,
        created_by=user.id,
    )
    db.add(report)
    db.flush()

    for a in attachments:
        a.report_id = report.id

    db.commit()
    db.refresh(report)

    logger.info("Report %s created in project %s (%d attachment(s))", report.id, project.id, len(attachments))
    return report_detail(report)


@router.get("/performance")
def report_performance(
    project_id: str,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    q = _query_model(PerformanceQuery, request)

    candidates = [
        (r, web_vitals(r.performance_metrics))
        for r in reports_for_analysis(db, project.id, q.to_filters())
        if isinstance(r.performance_metrics, dict) and r.performance_metrics
    ]

    limits = q.max_values()
    matching = [
        (r, vitals) for r, vitals in candidates
        if all(name in vitals and vitals[name] <= limit for name, limit in limits.items())
        and (q.category is None or (vitals and categorize_performance(vitals)["overall"] == q.category))
    ]

    descending = q.sort_order == "desc"
    if q.sort_by == "created_at":
        matching.sort(key=lambda item: as_utc(item[0].created_at), reverse=descending)
    else:
        matching.sort(key=_vital_sort_key(q.sort_by, descending))

    offset = (q.page - 1) * q.limit
    reports = []
    for r, vitals in matching[offset:offset + q.limit]:
        item = report_summary(r)
        item["web_vitals"] = vitals or None
        item["performance_analysis"] = performance_analysis(vitals)
        reports.append(item)

    return {
        "reports": reports,
        "pagination": pagination_info(q.page, q.limit, len(matching)),
        "statistics": performance_statistics(vitals for _, vitals in candidates),
        "filters": q.model_dump(exclude_none=True),
    }


@router.get("/correlations")
def report_correlations(
    project_id: str,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    q = _query_model(CorrelationQuery, request)
    report_id = check_uuid(q.report_id, "report ID") if q.report_id else None

    reports = reports_for_analysis(db, project.id, q.to_filters(), report_id=report_id)
    correlations = analyze_correlations(reports, types=q.types, min_confidence=q.min_confidence)

    offset = (q.page - 1) * q.limit
    return {
        "correlations": correlations[offset:offset + q.limit],
        "summary": correlation_summary(correlations, q.time_window),
        "patterns": url_error_patterns(reports),
        "insights": correlation_insights(correlations),
        "pagination": pagination_info(q.page, q.limit, len(correlations)),
    }


@router.get("/{report_id}")

def get_report(
    project_id: str,
    report_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    return report_detail(_load_report(db, project.id, report_id))


@router.put("/{report_id}")
def update_report(
    project_id: str,
    report_id: str,
    body: ReportUpdateBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    report = _load_report(db, project.id, report_id)

    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")

    for k, v in changes.items():
        setattr(report, k, v)
    db.commit()
    db.refresh(report)
    return report_detail(report)


@router.get("/{report_id}/diagnostics.pdf")
def report_diagnostics_pdf(
    project_id: str,
    report_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    report = _load_report(db, project.id, report_id)

    pdf = build_diagnostics_pdf(report)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="report-{report.id}.pdf"'},
    )
