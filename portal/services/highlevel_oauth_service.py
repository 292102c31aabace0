"""HighLevel OAuth token storage and refresh.

The V2 (conversations) API needs an OAuth access token. Tokens are stored
encrypted in highlevel_oauth, cached in-process for a minute, and refreshed
when they expire within five minutes.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

import anyio
import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from portal.core.config import settings
from portal.core.encryption import decrypt_token, encrypt_token
from portal.core.structured_logging import build_log_context
from portal.db.models import HighLevelOAuth
from portal.utils.datetime_parsing import ensure_utc

logger = logging.getLogger(__name__)

TOKEN_URL = "https://services.leadconnectorhq.com/oauth/token"
TOKEN_CACHE_TTL_SECONDS = 60.0
REFRESH_BUFFER = timedelta(minutes=5)
HTTPX_TIMEOUT = httpx.Timeout(10.0, connect=5.0)

_LOG_EXTRA = build_log_context(integration="highlevel")


def _now_utc() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OAuthTokens:
    access_token: str
    refresh_token: str
    expires_at: datetime

    def expires_soon(self, now: datetime | None = None) -> bool:
        """True when the token is expired or inside the refresh buffer."""
        now = now or _now_utc()
        return ensure_utc(self.expires_at) - now < REFRESH_BUFFER


class TokenRefreshError(Exception):
    """HighLevel rejected the refresh request."""


# ============================================================================
# Storage
# ============================================================================


def load_tokens(db: Session, location_id: str) -> OAuthTokens | None:
    """Read and decrypt the stored tokens for a location."""
    row = (
        db.query(HighLevelOAuth)
        .filter(HighLevelOAuth.location_id == location_id)
        .first()
    )
    if not row:
        return None
    return OAuthTokens(
        access_token=decrypt_token(row.access_token_encrypted),
        refresh_token=decrypt_token(row.refresh_token_encrypted),
        expires_at=ensure_utc(row.expires_at),
    )


def save_tokens(db: Session, location_id: str, tokens: OAuthTokens) -> HighLevelOAuth:
    """Insert or overwrite the tokens for a location (encrypted at rest)."""
    row = (
        db.query(HighLevelOAuth)
        .filter(HighLevelOAuth.location_id == location_id)
        .first()
    )
    if not row:
        row = HighLevelOAuth(location_id=location_id)
        db.add(row)
    row.access_token_encrypted = encrypt_token(tokens.access_token)
    row.refresh_token_encrypted = encrypt_token(tokens.refresh_token)
    row.expires_at = tokens.expires_at
    row.updated_at = _now_utc()
    db.commit()
    db.refresh(row)
    return row


def _load_in_new_session(session_factory: sessionmaker, location_id: str) -> OAuthTokens | None:
    db = session_factory()
    try:
        return load_tokens(db, location_id)
    finally:
        db.close()


def _save_in_new_session(
    session_factory: sessionmaker, location_id: str, tokens: OAuthTokens
) -> None:
    db = session_factory()
    try:
        save_tokens(db, location_id, tokens)
    finally:
        db.close()


# ============================================================================
# Refresh
# ============================================================================


async def request_token_refresh(
    refresh_token: str,
    *,
    client_id: str,
    client_secret: str,
    http_client: httpx.AsyncClient | None = None,
) -> OAuthTokens:
    """
    Exchange a refresh token for a new token pair.

    Raises:
        TokenRefreshError: non-2xx response or malformed payload
        httpx.RequestError: transport failure
    """
    data = {
        "grant_type": "refresh_token",
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
    }
    headers = {"Accept": "application/json"}

    if http_client is not None:
        response = await http_client.post(TOKEN_URL, data=data, headers=headers)
    else:
        async with httpx.AsyncClient(timeout=HTTPX_TIMEOUT) as client:
            response = await client.post(TOKEN_URL, data=data, headers=headers)

    if response.status_code >= 400:
        raise TokenRefreshError(f"Token refresh failed: {response.status_code}")

    payload = response.json()
    try:
        return OAuthTokens(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_at=_now_utc() + timedelta(seconds=int(payload["expires_in"])),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenRefreshError("Token refresh response missing fields") from exc


class HighLevelTokenProvider:
    """
    Supplies a valid V2 access token, or None when OAuth is unavailable.

    None covers: no location configured, no stored tokens, storage errors and
    refresh failures. Callers treat None as "conversations API unavailable".
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        location_id: str,
        client_id: str = "",
        client_secret: str = "",
        http_client: httpx.AsyncClient | None = None,
        cache_ttl: float = TOKEN_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self.location_id = location_id
        self.client_id = client_id
        self.client_secret = client_secret
        self._http_client = http_client
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._cached: OAuthTokens | None = None
        self._cached_at: float = 0.0

    def invalidate(self) -> None:
        self._cached = None
        self._cached_at = 0.0

    def _remember(self, tokens: OAuthTokens) -> None:
        self._cached = tokens
        self._cached_at = self._clock()

    async def get_tokens(self) -> OAuthTokens | None:
        """Stored tokens, served from the in-process cache when fresh."""
        if self._cached and self._clock() - self._cached_at < self._cache_ttl:
            return self._cached
        if not self.location_id:
            return None

        try:
            tokens = await anyio.to_thread.run_sync(
                _load_in_new_session, self._session_factory, self.location_id
            )
        except (SQLAlchemyError, ValueError, RuntimeError):
            logger.exception("Error fetching HighLevel OAuth tokens", extra=_LOG_EXTRA)
            return None

        if tokens:
            self._remember(tokens)
        return tokens

    async def refresh(self, refresh_token: str) -> OAuthTokens | None:
        """Refresh and persist a new token pair. Returns None on failure."""
        if not self.client_id or not self.client_secret or not self.location_id:
            logger.error("Missing OAuth configuration for token refresh", extra=_LOG_EXTRA)
            return None

        try:
            tokens = await request_token_refresh(
                refresh_token,
                client_id=self.client_id,
                client_secret=self.client_secret,
                http_client=self._http_client,
            )
            await anyio.to_thread.run_sync(
                _save_in_new_session, self._session_factory, self.location_id, tokens
            )
        except (TokenRefreshError, httpx.HTTPError, SQLAlchemyError, RuntimeError) as exc:
            logger.error(
                "Error refreshing HighLevel OAuth tokens: %s",
                exc.__class__.__name__,
                exc_info=exc,
                extra=_LOG_EXTRA,
            )
            return None

        self._remember(tokens)
        logger.info("HighLevel OAuth tokens refreshed", extra=_LOG_EXTRA)
        return tokens

    async def get_access_token(self) -> str | None:
        """Valid access token, refreshing when it expires within the buffer."""
        tokens = await self.get_tokens()
        if not tokens:
            return None

        if tokens.expires_soon():
            logger.info("HighLevel OAuth token expired or expiring soon, refreshing", extra=_LOG_EXTRA)
            tokens = await self.refresh(tokens.refresh_token)
            if not tokens:
                return None

        return tokens.access_token


def build_token_provider(session_factory: sessionmaker) -> HighLevelTokenProvider:
    """Token provider wired from application settings."""
    return HighLevelTokenProvider(
        session_factory,
        location_id=settings.HIGHLEVEL_LOCATION_ID,
        client_id=settings.HIGHLEVEL_CLIENT_ID,
        client_secret=settings.HIGHLEVEL_CLIENT_SECRET,
    )
