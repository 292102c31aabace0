"""Session token signing and verification (PyJWT, HS256)."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from portal.core.config import settings

ALGORITHM = "HS256"
REQUIRED_CLAIMS = ["sub", "role", "exp"]


def create_session_token(
    user_id: str | UUID,
    role: str,
    client_id: UUID | None = None,
    *,
    expires_in: timedelta | None = None,
) -> str:
    """
    Sign a session token for the portal.

    Tokens are minted by the auth layer (and by the CLI for local testing);
    client users carry the client they belong to, staff carry none.
    """
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "client_id": str(client_id) if client_id else None,
        "iat": issued_at,
        "exp": issued_at + (expires_in or timedelta(hours=settings.JWT_EXPIRES_HOURS)),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=ALGORITHM)


def decode_session_token(token: str) -> dict:
    """
    Verify a session token against the current and previous secrets.

    Raises:
        jwt.InvalidTokenError: bad signature under every secret, expired, or
            missing required claims
    """
    error: jwt.InvalidTokenError | None = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[ALGORITHM],
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.InvalidSignatureError as exc:
            error = exc
    raise error or jwt.InvalidTokenError("No signing secret configured")
