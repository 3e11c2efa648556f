"""
Dependency helpers for the FastAPI app.
"""

from __future__ import annotations

from typing import Generator, Optional

from fastapi import Depends, Request

import core.config as config
from core.access import Credentials, access_guard, require_operator
from core.context import AccessGrant
from core.db import DB


def get_db_session() -> Generator:
    if DB.SessionLocal is None:
        raise RuntimeError("Database not initialized - SessionLocal is None")
    db = DB.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def get_credentials(request: Request) -> Credentials:
    session_token = (
        request.cookies.get(config.SESSION_COOKIE_NAME)
        or request.headers.get(config.SESSION_HEADER_NAME)
    )
    return Credentials(
        session_token=session_token or None,
        bearer_token=_bearer_token(request),
        query_key=request.query_params.get("key") or None,
        method=request.method,
    )


def require_access(
    instance_id: str,
    db=Depends(get_db_session),
    credentials: Credentials = Depends(get_credentials),
) -> AccessGrant:
    return access_guard.authorize_with_session(db, instance_id, credentials)


def require_operator_access(grant: AccessGrant = Depends(require_access)) -> AccessGrant:
    return require_operator(grant)
