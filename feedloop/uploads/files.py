# feedloop/uploads/files.py

from __future__ import annotations

import base64
import binascii
import logging
import re
import secrets
import time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from feedloop.core import config
from feedloop.reports.models import Attachment
from feedloop.storage.backends import StorageError, get_storage

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "application/pdf",
    "text/plain",
    "text/csv",
    "application/json",
    "video/mp4",
    "video/webm",
    "video/quicktime",
}

MAX_FILENAME = 255
MAX_DESCRIPTION = 500

_FILENAME_OK = re.compile(r'^[^<>:"/\\|?*\x00-\x1f]+\.[a-zA-Z0-9]+$')
_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_PATH_CHARS = re.compile(r"[^a-zA-Z0-9.-]")
_BASE64_OK = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")


class UploadRejected(ValueError):
    """A single file failed validation; the rest of the batch goes on."""


def request_body_cap() -> int:
    # every file at the per-file cap, base64 inflated, plus room for form fields
    return (config.MAX_UPLOAD_FILES * config.MAX_UPLOAD_BYTES * 4) // 3 + 64 * 1024


def sanitize_filename(filename: str) -> str:
    name = _UNSAFE_CHARS.sub("_", filename or "")
    name = name.lstrip(".").rstrip(".")
    return name[:MAX_FILENAME]


def attachment_path(project_id: str, report_id: str | None, filename: str) -> str:
    """projects/<pid>/(reports/<rid>|uploads)/<ms>_<rand>_<name>"""
    safe = _PATH_CHARS.sub("_", filename)
    stamp = int(time.time() * 1000)
    suffix = secrets.token_hex(3)
    if report_id:
        return f"projects/{project_id}/reports/{report_id}/{stamp}_{suffix}_{safe}"
    return f"projects/{project_id}/uploads/{stamp}_{suffix}_{safe}"


def check_file(filename: str, content_type: str, size: int) -> None:
    if not filename:
        raise UploadRejected("Filename is required")
    if len(filename) > MAX_FILENAME:
        raise UploadRejected("Filename must be less than 255 characters")
    if not _FILENAME_OK.match(filename):
        raise UploadRejected("Invalid filename format")
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise UploadRejected(f"Unsupported file type: {content_type or 'unknown'}")
    if size <= 0:
        raise UploadRejected("File is empty")
    if size > config.MAX_UPLOAD_BYTES:
        raise UploadRejected(f"File size must be less than {config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB")


def decode_base64(data: str) -> bytes:
    data = (data or "").strip()
    if not data:
        raise UploadRejected("File data is required")
    if not _BASE64_OK.match(data):
        raise UploadRejected("Invalid base64 data format")
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise UploadRejected("Invalid base64 data format")


def store_attachment(
    db: Session,
    *,
    project_id: str,
    report_id: str | None,
    filename: str,
    content_type: str,
    data: bytes,
    description: str | None = None,
) -> Attachment:
    """Validate, write the bytes to storage and record the attachment row."""
    check_file(filename, content_type, len(data))

    safe_name = sanitize_filename(filename)
    path = attachment_path(project_id, report_id, safe_name)
    storage = get_storage()

    try:
        url = storage.put(path, data, content_type)
    except StorageError as e:
        logger.error("Storage write failed for %s: %s", path, e)
        raise UploadRejected("Failed to store file")

    att = Attachment(
        project_id=project_id,
        report_id=report_id,
        filename=safe_name,
        original_filename=filename,
        content_type=content_type,
        size=len(data),
        storage_path=path,
        url=url,
        description=(description or None) and description[:MAX_DESCRIPTION],
    )
    try:
        db.add(att)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        storage.delete([path])
        raise
    db.refresh(att)
    return att


def attachment_out(att: Attachment) -> dict:
    return {
        "id": att.id,
        "filename": att.filename,
        "original_filename": att.original_filename,
        "url": att.url,
        "size": att.size,
        "content_type": att.content_type,
        "report_id": att.report_id,
    }
