"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator

import jwt
from fastapi import Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker

from portal.core.security import decode_session_token
from portal.db.enums import Role
from portal.db.session import SessionLocal
from portal.schemas.auth import TokenPayload, UserSession
from portal.services.crm_bridge import CrmMessageBridge, get_default_highlevel_client


# Cookie and header names
COOKIE_NAME = "portal_session"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """
    Session factory dependency for async handlers.

    Handlers that fan out to worker threads open one session per unit of work
    instead of sharing the request session across threads.
    """
    return SessionLocal


def _extract_token(request: Request) -> str | None:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_session(request: Request) -> UserSession:
    """
    Get session context: user_id, role, client_id.

    Identity is issued by the external auth provider; this only verifies the
    signed session token.

    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: Unknown role
    """
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = TokenPayload.model_validate(decode_session_token(token))
    except (jwt.InvalidTokenError, ValidationError):
        raise HTTPException(status_code=401, detail="Invalid session")

    # Validate role is a known enum value - return 403 not 500
    if not Role.has_value(payload.role):
        raise HTTPException(
            status_code=403,
            detail=f"Unknown role '{payload.role}'. Contact administrator.",
        )

    return UserSession(
        user_id=payload.sub,
        role=Role(payload.role),
        client_id=payload.client_id,
    )


def require_admin(session: UserSession = Depends(get_current_session)) -> UserSession:
    """Allow agency staff only (admin, super_admin)."""
    if not session.is_admin:
        raise HTTPException(
            status_code=403,
            detail=f"Role '{session.role.value}' not authorized for this action",
        )
    return session


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on mutations.

    Apply to state-changing endpoints (POST, PATCH, DELETE).

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'"
        )


def get_crm_bridge(
    session_factory: sessionmaker = Depends(get_session_factory),
) -> CrmMessageBridge:
    """HighLevel message bridge (tests override this with a fake-backed bridge)."""
    return CrmMessageBridge(get_default_highlevel_client(), session_factory=session_factory)
