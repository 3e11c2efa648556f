"""
Map service errors to HTTP responses.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import core.config as config
from core.errors import MemoryServiceError, ValidationIssue

STATUS_BY_KIND = {
    "validation_error": 400,
    "unauthorized": 401,
    "not_found": 404,
    "empty_content": 422,
    "quota_exceeded": 429,
    "upstream_unavailable": 503,
    "internal_error": 500,
}


def error_body(error_kind: str, message: str, field: str | None = None, data: dict | None = None) -> dict:
    body = {"status": "error", "error_type": error_kind, "message": message}
    if field:
        body["field"] = field
    if data:
        body["data"] = data
    return body


async def _service_error_handler(request: Request, exc: MemoryServiceError) -> JSONResponse:
    field = exc.field if isinstance(exc, ValidationIssue) else None
    status_code = STATUS_BY_KIND.get(exc.error_kind, 500)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.error_kind, exc.message, field=field, data=exc.data),
        headers=headers,
    )


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    field = None
    message = "Invalid request"
    if errors:
        loc = [str(part) for part in errors[0].get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or None
        message = errors[0].get("msg", message)
    return JSONResponse(
        status_code=400,
        content=error_body("validation_error", message, field=field),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    config.logger.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content=error_body("internal_error", "Internal server error"),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MemoryServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
