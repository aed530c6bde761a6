# feedloop/widget/routes.py

import base64
import binascii
import json
import logging
import zlib
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile

from feedloop.core import config
from feedloop.core.errors import validation_failed
from feedloop.core.ratelimit import WIDGET_LIMIT, limiter
from feedloop.db.session import get_db
from feedloop.projects.models import Project
from feedloop.reports.models import Report
from feedloop.uploads.files import UploadRejected, attachment_out, store_attachment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/widget", tags=["widget"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

MAX_DIAGNOSTIC_BYTES = 10 * 1024 * 1024
MAX_CONSOLE_ENTRIES = 500
MAX_NETWORK_ENTRIES = 500


class WidgetReport(BaseModel):
    type: Literal["bug", "initiative", "feedback"]
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=10000)
    reporter_name: Optional[str] = Field(default=None, max_length=100)
    reporter_email: Optional[EmailStr] = None
    url: Optional[str] = Field(default=None, max_length=2048)
    user_agent: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("title", "description")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field is required")
        return v

    @field_validator("reporter_name", "reporter_email", "url", "user_agent", mode="before")
    @classmethod
    def _blank_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


# ---------------- diagnostics ----------------

def _json_field(raw: Any, label: str):
    """Parse a JSON form field; unparsable input is dropped with a warning."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Dropping unparsable %s from widget submission", label)
        return None


def decompress_diagnostics(data: str) -> Any:
    """base64(gzip(json)) -> python object; None when any step fails."""
    try:
        compressed = base64.b64decode(data, validate=True)
        d = zlib.decompressobj(wbits=16 + zlib.MAX_WBITS)
        raw = d.decompress(compressed, MAX_DIAGNOSTIC_BYTES)
        if d.unconsumed_tail:
            logger.warning("Compressed diagnostics exceed %d bytes; dropped", MAX_DIAGNOSTIC_BYTES)
            return None
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, zlib.error, UnicodeDecodeError, ValueError) as e:
        logger.warning("Failed to decompress diagnostic data: %s", e)
        return None


def collect_diagnostics(form) -> dict:
    diag = None
    compressed = form.get("diagnostic_data_compressed")
    if isinstance(compressed, str) and compressed and form.get("compression_type") == "gzip":
        diag = decompress_diagnostics(compressed)
    elif form.get("diagnostic_data"):
        diag = _json_field(form.get("diagnostic_data"), "diagnostic_data")

    console_logs = network_requests = performance = None
    if isinstance(diag, dict):
        console_logs = diag.get("consoleLogs") or diag.get("console_logs")
        network_requests = diag.get("networkRequests") or diag.get("network_requests")
        performance = diag.get("performanceMetrics") or diag.get("performance_metrics")

    # explicit fields win over the bundled payload
    console_logs = _json_field(form.get("console_logs"), "console_logs") or console_logs
    network_requests = _json_field(form.get("network_requests"), "network_requests") or network_requests
    performance = _json_field(form.get("performance_metrics"), "performance_metrics") or performance

    return {
        "console_logs": console_logs[:MAX_CONSOLE_ENTRIES] if isinstance(console_logs, list) else None,
        "network_requests": network_requests[:MAX_NETWORK_ENTRIES] if isinstance(network_requests, list) else None,
        "performance_metrics": performance if isinstance(performance, dict) else None,
    }


# ---------------- routes ----------------

@router.options("/submit")
def widget_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post("/submit")
@limiter.limit(WIDGET_LIMIT)
async def widget_submit(request: Request, db: Session = Depends(get_db)):
    form = await request.form()

    project_key = form.get("project_key")
    if not isinstance(project_key, str) or not project_key.strip():
        raise HTTPException(status_code=400, detail="project_key is required")

    project = db.query(Project).filter(Project.integration_key == project_key.strip()).first()
    if not project:
        raise HTTPException(status_code=400, detail="Invalid project key")

    fields = {k: form.get(k) for k in WidgetReport.model_fields if isinstance(form.get(k), str)}
    try:
        data = WidgetReport.model_validate(fields)
    except ValidationError as e:
        raise validation_failed(e.errors())

    files = [f for f in form.getlist("attachments") if isinstance(f, UploadFile) and f.filename]
    if len(files) > config.MAX_UPLOAD_FILES:
        raise HTTPException(status_code=400, detail=f"Maximum {config.MAX_UPLOAD_FILES} files allowed per upload")

    report = Report(
        project_id=project.id,
        type=data.type,
        status="active",
        priority="medium",
        title=data.title,
        description=data.description,
        reporter_name=data.reporter_name,
        reporter_email=data.reporter_email,
        url=data.url,
        user_agent=data.user_agent,
        **collect_diagnostics(form),
    )
    db.add(report)
    db.commit()
    db.refresh(report)

    uploaded, errors = [], []
    for f in files:
        try:
            att = store_attachment(
                db,
                project_id=project.id,
                report_id=report.id,
                filename=f.filename,
                content_type=(f.content_type or "").split(";")[0].strip(),
                data=await f.read(),
            )
            uploaded.append(attachment_out(att))
        except UploadRejected as e:
            errors.append({"file": f.filename, "error": str(e)})

    logger.info("Widget report %s submitted to project %s", report.id, project.id)

    body = {
        "success": True,
        "report_id": report.id,
        "attachments": uploaded,
        "message": "Feedback submitted successfully",
    }
    if errors:
        body["attachment_errors"] = errors
    return JSONResponse(status_code=201, content=body, headers=CORS_HEADERS)
