# feedloop/exports/templates.py

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from feedloop.db.session import get_db
from feedloop.auth.deps import get_current_user
from feedloop.users.models import User
from feedloop.projects.permissions import check_uuid, require_project_access
from feedloop.reports.queries import checked_date
from feedloop.exports.models import ExportTemplate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects/{project_id}/export/templates", tags=["export"])

CsvTemplate = Literal["default", "jira", "azure"]


# ---------------- schemas ----------------

class TemplateFilters(BaseModel):
    type: Optional[Literal["bug", "initiative", "feedback"]] = None
    status: Optional[Literal["active", "archived"]] = None
    priority: Optional[Literal["low", "medium", "high", "critical"]] = None
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None

    model_config = {"populate_by_name": True}

    @field_validator("from_", "to")
    @classmethod
    def _check_date(cls, v, info):
        return checked_date(v, "from" if info.field_name == "from_" else info.field_name)


class TemplateBody(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    template_type: CsvTemplate = "default"
    include_attachments: bool = False
    include_diagnostic: bool = False
    filters: Optional[TemplateFilters] = None
    is_default: bool = False

    @field_validator("name")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Template name is required")
        return v


class TemplateUpdateBody(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    template_type: Optional[CsvTemplate] = None
    include_attachments: Optional[bool] = None
    include_diagnostic: Optional[bool] = None
    filters: Optional[TemplateFilters] = None
    is_default: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def _strip(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Template name is required")
        return v


# ---------------- helpers ----------------

def template_out(t: ExportTemplate) -> dict:
    return {
        "id": t.id,
        "project_id": t.project_id,
        "name": t.name,
        "description": t.description,
        "format": "csv",
        "template_type": t.template_type,
        "include_attachments": t.include_attachments,
        "include_diagnostic": t.include_diagnostic,
        "filters": t.filters or {},
        "is_default": t.is_default,
        "created_by": t.created_by,
        "created_at": t.created_at,
        "updated_at": t.updated_at,
    }


def template_query(t: ExportTemplate) -> dict:
    """The export query parameters a saved template stands for."""
    params = {k: v for k, v in (t.filters or {}).items() if v}
    params.update({
        "template": t.template_type,
        "include_attachments": "true" if t.include_attachments else "false",
        "include_diagnostic": "true" if t.include_diagnostic else "false",
    })
    return params


def get_project_template(db: Session, project_id: str, template_id: str) -> ExportTemplate:
    template_id = check_uuid(template_id, "template ID")
    t = (
        db.query(ExportTemplate)
        .filter(ExportTemplate.id == template_id, ExportTemplate.project_id == project_id)
        .first()
    )
    if not t:
        raise HTTPException(status_code=404, detail="Template not found")
    return t


def _clear_default(db: Session, project_id: str) -> None:
    (
        db.query(ExportTemplate)
        .filter(ExportTemplate.project_id == project_id, ExportTemplate.is_default.is_(True))
        .update({ExportTemplate.is_default: False}, synchronize_session="fetch")
    )


def _filters_json(filters: Optional[TemplateFilters]) -> dict | None:
    if filters is None:
        return None
    return filters.model_dump(by_alias=True, exclude_none=True) or None


# ---------------- routes ----------------

@router.get("")
def list_templates(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = require_project_access(db, project_id, user)
    rows = (
        db.query(ExportTemplate)
        .filter(ExportTemplate.project_id == project.id)
        .order_by(ExportTemplate.created_at.desc(), ExportTemplate.id)
        .all()
    )
    return {"templates": [template_out(t) for t in rows], "total": len(rows)}


@router.post("", status_code=201)
def create_template(
    project_id: str,
    body: TemplateBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)

    if body.is_default:
        _clear_default(db, project.id)

    t = ExportTemplate(
        project_id=project.id,
        name=body.name,
        description=body.description,
        template_type=body.template_type,
        include_attachments=body.include_attachments,
        include_diagnostic=body.include_diagnostic,
        filters=_filters_json(body.filters),
        is_default=body.is_default,
        created_by=user.id,
    )
    db.add(t)
    db.commit()
    db.refresh(t)

    logger.info("Export template %s created in project %s by %s", t.id, project.id, user.id)
    return {"template": template_out(t), "message": "Export template created successfully"}


@router.get("/{template_id}")
def get_template(
    project_id: str,
    template_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    return {"template": template_out(get_project_template(db, project.id, template_id))}


@router.put("/{template_id}")
def update_template(
    project_id: str,
    template_id: str,
    body: TemplateUpdateBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    t = get_project_template(db, project.id, template_id)

    changes = body.model_dump(exclude_unset=True, exclude={"filters"})
    if "filters" in body.model_fields_set:
        changes["filters"] = _filters_json(body.filters)
    changes = {k: v for k, v in changes.items() if v is not None or k in ("description", "filters")}
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")

    if changes.get("is_default"):
        _clear_default(db, project.id)

    for k, v in changes.items():
        setattr(t, k, v)
    db.commit()
    db.refresh(t)
    return {"template": template_out(t), "message": "Template updated successfully"}


@router.delete("/{template_id}")
def delete_template(
    project_id: str,
    template_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = require_project_access(db, project_id, user)
    t = get_project_template(db, project.id, template_id)

    if t.is_default:
        remaining = db.query(ExportTemplate).filter(ExportTemplate.project_id == project.id).count()
        if remaining <= 1:
            raise HTTPException(status_code=400, detail="Cannot delete the only remaining template")

    db.delete(t)
    db.commit()
    logger.info("Export template %s deleted from project %s by %s", template_id, project.id, user.id)
    return {"message": "Template deleted successfully"}
