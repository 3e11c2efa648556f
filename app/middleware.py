"""
Middleware configuration for the FastAPI app.
"""

from __future__ import annotations

import uuid

from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

import core.config as config
from core.context import RequestContext, reset_current_request_context, set_current_request_context

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach a request id to the request-scoped context and the response."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = set_current_request_context(RequestContext(request_id=request_id, source="http"))
        try:
            response = await call_next(request)
        finally:
            reset_current_request_context(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def configure_middleware(app) -> None:
    """Configure request context, host allowlist, and CORS middleware for the FastAPI app."""
    app.add_middleware(RequestContextMiddleware)

    # Optional host allowlist for production deployments
    if config.TRUSTED_HOSTS:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=config.TRUSTED_HOSTS,
        )

    # Keep CORS outermost so error responses carry its headers too
    if config.CORS_ALLOWED_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.CORS_ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
