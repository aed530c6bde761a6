# feedloop/exports/routes.py

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.orm import Session

from feedloop.db.session import get_db
from feedloop.auth.deps import get_current_user
from feedloop.users.models import User
from feedloop.core.errors import validation_failed
from feedloop.projects.permissions import require_project_access
from feedloop.reports.queries import ReportFilters, checked_date, parse_date
from feedloop.exports.service import (
    ExportOptions,
    ExportResult,
    export_project_reports,
    export_reports_by_ids,
    export_stats,
)
from feedloop.exports.templates import get_project_template, template_query

router = APIRouter(prefix="/projects/{project_id}/export", tags=["export"])


# ---------------- schemas ----------------

class ExportFilterQuery(BaseModel):
    type: Optional[Literal["bug", "initiative", "feedback"]] = None
    status: Optional[Literal["active", "archived"]] = None
    priority: Optional[Literal["low", "medium", "high", "critical"]] = None
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None

    @field_validator("from_", "to")
    @classmethod
    def _check_date(cls, v, info):
        return checked_date(v, "from" if info.field_name == "from_" else info.field_name)

    def to_filters(self) -> ReportFilters:
        return ReportFilters(
            type=self.type,
            status=self.status,
            priority=self.priority,
            date_from=parse_date(self.from_),
            date_to=parse_date(self.to, end_of_day=True),
        )


class ExportQuery(ExportFilterQuery):
    format: Literal["csv"] = "csv"
    template: Literal["default", "jira", "azure"] = "default"
    include_attachments: Literal["true", "false"] = "false"
    include_diagnostic: Literal["true", "false"] = "false"

    def to_options(self) -> ExportOptions:
        return ExportOptions(
            template=self.template,
            include_attachments=self.include_attachments == "true",
            include_diagnostic=self.include_diagnostic == "true",
        )


class SelectionExportBody(BaseModel):
    report_ids: list[str] = Field(min_length=1, max_length=1000)
    template: Literal["default", "jira", "azure"] = "default"
    include_attachments: bool = False
    include_diagnostic: bool = False


def _parse_query(model, params: dict):
    try:
        return model.model_validate(params)
    except ValidationError as e:
        raise validation_failed(e.errors())


def _csv_response(result: ExportResult) -> Response:
    return Response(
        content=result.content,
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0",
            "X-Record-Count": str(result.record_count),
        },
    )


# ---------------- routes ----------------

@router.get("")
def export_reports(
    project_id: str,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    params = dict(request.query_params)

    saved_id = params.pop("saved_template", None)
    if saved_id:
        # explicit query parameters win over the saved ones
        saved = get_project_template(db, project.id, saved_id)
        params = {**template_query(saved), **params}

    q = _parse_query(ExportQuery, params)

    result = export_project_reports(db, project.id, q.to_filters(), q.to_options())
    return _csv_response(result)


@router.get("/stats")
def export_reports_stats(
    project_id: str,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    q = _parse_query(ExportFilterQuery, dict(request.query_params))
    return export_stats(db, project.id, q.to_filters())


@router.post("")
def export_selected_reports(
    project_id: str,
    body: SelectionExportBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    options = ExportOptions(
        template=body.template,
        include_attachments=body.include_attachments,
        include_diagnostic=body.include_diagnostic,
    )
    result = export_reports_by_ids(db, project.id, body.report_ids, options)
    return _csv_response(result)
