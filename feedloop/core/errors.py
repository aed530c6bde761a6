"""JSON error envelope shared by every route.

Handlers raise ``fastapi.HTTPException``; the handlers registered here turn
those (and validation / database failures) into::

    {"error": "...", "details": [{"field": "...", "message": "..."}]}
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


def _message(err: dict) -> str:
    # plain ValueError text, without pydantic's "Value error, " prefix
    if err.get("type") == "value_error" and err.get("ctx", {}).get("error") is not None:
        return str(err["ctx"]["error"])
    return err.get("msg", "Invalid value")


def field_details(errors: Iterable[dict]) -> list[dict]:
    """Flatten pydantic error dicts into ``[{field, message}]``."""
    out = []
    for err in errors:
        # drop the "body"/"query" prefix FastAPI adds to the location
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
        out.append({"field": ".".join(loc), "message": _message(err)})
    return out


def validation_failed(errors: Iterable[dict]) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"error": "Validation failed", "details": field_details(errors)},
    )


def error_body(detail: Any) -> dict:
    if isinstance(detail, dict) and "error" in detail:
        return detail
    return {"error": str(detail) if detail is not None else "Error"}


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": field_details(exc.errors())},
    )


async def pydantic_validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": field_details(exc.errors())},
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Database error"})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ValidationError, pydantic_validation_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
