# feedloop/uploads/routes.py

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from feedloop.core import config
from feedloop.core.errors import validation_failed
from feedloop.core.ratelimit import UPLOAD_LIMIT, limiter
from feedloop.auth.deps import bearer, bearer_token, user_for_token
from feedloop.db.session import get_db
from feedloop.projects.models import Project
from feedloop.projects.permissions import check_uuid, project_role
from feedloop.reports.models import Report
from feedloop.uploads.files import (
    UploadRejected,
    attachment_out,
    decode_base64,
    request_body_cap,
    store_attachment,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/uploads", tags=["uploads"])


class Base64Attachment(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    content_type: str
    size: int = Field(gt=0)
    base64_data: str = Field(min_length=1)


class JsonUploadBody(BaseModel):
    project_id: str
    report_id: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=500)
    project_key: Optional[str] = None
    attachments: list[Any] = Field(default_factory=list)


# ---------------- helpers ----------------

def _enforce_body_cap(request: Request, body_len: int | None = None):
    cap = request_body_cap()
    declared = request.headers.get("content-length")
    try:
        size = int(declared) if declared else body_len
    except ValueError:
        size = body_len
    if size is not None and size > cap:
        raise HTTPException(status_code=413, detail="Request body too large")


def _authorize(
    db: Session,
    creds: HTTPAuthorizationCredentials | None,
    project_id: str | None,
    project_key: str | None,
) -> Project:
    """
    A dashboard user needs access to the project; the widget proves itself
    with the project's integration key instead.
    """
    if not project_id:
        raise HTTPException(status_code=400, detail="project_id is required")
    project_id = check_uuid(project_id)

    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=400, detail="Invalid project ID")

    token = bearer_token(creds)
    if token:
        user = user_for_token(db, token)
        if project_role(db, project, user) is None:
            raise HTTPException(status_code=404, detail="Project not found or access denied")
        return project

    if project_key and project_key.strip() == project.integration_key:
        return project

    raise HTTPException(status_code=401, detail="Authentication required")


def _check_report(db: Session, project: Project, report_id: str | None) -> str | None:
    if not report_id:
        return None
    report_id = check_uuid(report_id, "report ID")
    exists = db.query(Report.id).filter(Report.id == report_id, Report.project_id == project.id).first()
    if not exists:
        raise HTTPException(status_code=400, detail="Invalid report ID")
    return report_id


def _check_count(n: int):
    if n == 0:
        raise HTTPException(status_code=400, detail="No files provided")
    if n > config.MAX_UPLOAD_FILES:
        raise HTTPException(status_code=400, detail=f"Maximum {config.MAX_UPLOAD_FILES} files allowed per upload")


def _result(uploaded: list[dict], errors: list[dict], total: int):
    body = {
        "success": True,
        "uploaded": uploaded,
        "message": f"Successfully uploaded {len(uploaded)} of {total} files",
    }
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=201, content=body)


# ---------------- handlers ----------------

async def _multipart_upload(request: Request, db: Session, creds):
    form = await request.form()

    project = _authorize(db, creds, form.get("project_id"), form.get("project_key"))
    report_id = _check_report(db, project, form.get("report_id") or None)
    description = form.get("description") or None

    files = [f for f in form.getlist("files") if isinstance(f, UploadFile)]
    _check_count(len(files))

    uploaded, errors = [], []
    for f in files:
        name = f.filename or ""
        try:
            data = await f.read()
            att = store_attachment(
                db,
                project_id=project.id,
                report_id=report_id,
                filename=name,
                content_type=(f.content_type or "").split(";")[0].strip(),
                data=data,
                description=description,
            )
            uploaded.append(attachment_out(att))
        except UploadRejected as e:
            errors.append({"file": name, "error": str(e)})

    return _result(uploaded, errors, len(files))


async def _json_upload(request: Request, db: Session, creds):
    raw = await request.body()
    _enforce_body_cap(request, len(raw))

    try:
        payload = json.loads(raw or b"{}")
        body = JsonUploadBody.model_validate(payload)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    except ValidationError as e:
        raise validation_failed(e.errors())

    project = _authorize(db, creds, body.project_id, body.project_key)
    report_id = _check_report(db, project, body.report_id)
    _check_count(len(body.attachments))

    uploaded, errors = [], []
    for i, item in enumerate(body.attachments):
        label = item.get("filename") if isinstance(item, dict) else None
        label = label or f"file_{i}"
        try:
            att_in = Base64Attachment.model_validate(item)
        except ValidationError as e:
            errors.append({"file": label, "error": e.errors()[0].get("msg", "Invalid attachment")})
            continue

        try:
            data = decode_base64(att_in.base64_data)
            att = store_attachment(
                db,
                project_id=project.id,
                report_id=report_id,
                filename=att_in.filename,
                content_type=att_in.content_type,
                data=data,
                description=body.description,
            )
            uploaded.append(attachment_out(att))
        except UploadRejected as e:
            errors.append({"file": label, "error": str(e)})

    return _result(uploaded, errors, len(body.attachments))


# ---------------- routes ----------------

@router.post("")
@limiter.limit(UPLOAD_LIMIT)
async def upload_files(
    request: Request,
    db: Session = Depends(get_db),
    creds: HTTPAuthorizationCredentials = Depends(bearer),
):
    _enforce_body_cap(request)

    content_type = request.headers.get("content-type") or ""
    if "multipart/form-data" in content_type:
        return await _multipart_upload(request, db, creds)
    if "application/json" in content_type:
        return await _json_upload(request, db, creds)

    raise HTTPException(status_code=400, detail="Unsupported content type")
