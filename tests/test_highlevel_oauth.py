"""Tests for HighLevel OAuth token storage, caching, and refresh."""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from portal.db.models import HighLevelOAuth
from portal.services.highlevel_oauth_service import (
    TOKEN_URL,
    HighLevelTokenProvider,
    OAuthTokens,
    load_tokens,
    save_tokens,
)

LOCATION_ID = "loc_123"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def tokens(access: str, *, expires_in: timedelta = timedelta(hours=1)) -> OAuthTokens:
    return OAuthTokens(
        access_token=access,
        refresh_token=f"{access}-refresh",
        expires_at=datetime.now(timezone.utc) + expires_in,
    )


@pytest.fixture
def token_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
async def oauth_http(token_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        token_requests.append(request)
        form = parse_qs(request.content.decode())
        if form.get("refresh_token") == ["revoked-refresh"]:
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(
            200,
            json={"access_token": "fresh", "refresh_token": "fresh-refresh", "expires_in": 86399},
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        yield http


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider(session_factory, oauth_http, clock) -> HighLevelTokenProvider:
    return HighLevelTokenProvider(
        session_factory,
        location_id=LOCATION_ID,
        client_id="hl-client",
        client_secret="hl-secret",
        http_client=oauth_http,
        clock=clock,
    )


def test_tokens_are_encrypted_at_rest(db):
    save_tokens(db, LOCATION_ID, tokens("plain-access"))

    row = db.query(HighLevelOAuth).one()
    assert "plain-access" not in row.access_token_encrypted
    assert load_tokens(db, LOCATION_ID).access_token == "plain-access"


def test_save_tokens_overwrites_existing_row(db):
    save_tokens(db, LOCATION_ID, tokens("first"))
    save_tokens(db, LOCATION_ID, tokens("second"))

    assert db.query(HighLevelOAuth).count() == 1
    assert load_tokens(db, LOCATION_ID).access_token == "second"


@pytest.mark.parametrize(
    ("expires_in", "expected"),
    [(timedelta(hours=1), False), (timedelta(minutes=4), True), (timedelta(minutes=-1), True)],
)
def test_expires_soon_uses_refresh_buffer(expires_in, expected):
    assert tokens("t", expires_in=expires_in).expires_soon() is expected


async def test_no_stored_tokens_means_no_access_token(provider, token_requests):
    assert await provider.get_access_token() is None
    assert token_requests == []


async def test_tokens_are_cached_for_ttl(provider, db, clock):
    save_tokens(db, LOCATION_ID, tokens("first"))
    assert await provider.get_access_token() == "first"

    save_tokens(db, LOCATION_ID, tokens("second"))
    clock.now += 30
    assert await provider.get_access_token() == "first"

    clock.now += 31
    assert await provider.get_access_token() == "second"


async def test_invalidate_drops_cache(provider, db):
    save_tokens(db, LOCATION_ID, tokens("first"))
    assert await provider.get_access_token() == "first"

    save_tokens(db, LOCATION_ID, tokens("second"))
    provider.invalidate()

    assert await provider.get_access_token() == "second"


async def test_expiring_token_is_refreshed_and_persisted(provider, db, token_requests):
    save_tokens(db, LOCATION_ID, tokens("stale", expires_in=timedelta(minutes=2)))

    assert await provider.get_access_token() == "fresh"

    assert len(token_requests) == 1
    request = token_requests[0]
    assert str(request.url) == TOKEN_URL
    form = parse_qs(request.content.decode())
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["stale-refresh"]
    assert form["client_id"] == ["hl-client"]

    db.expire_all()
    stored = load_tokens(db, LOCATION_ID)
    assert stored.access_token == "fresh"
    assert stored.refresh_token == "fresh-refresh"
    assert not stored.expires_soon()


async def test_refresh_failure_returns_none(provider, db):
    save_tokens(
        db,
        LOCATION_ID,
        OAuthTokens(
            access_token="old",
            refresh_token="revoked-refresh",
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        ),
    )

    assert await provider.get_access_token() is None

    db.expire_all()
    assert load_tokens(db, LOCATION_ID).access_token == "old"


async def test_refresh_without_client_credentials_returns_none(session_factory, oauth_http, token_requests):
    provider = HighLevelTokenProvider(session_factory, location_id=LOCATION_ID, http_client=oauth_http)

    assert await provider.refresh("any-refresh") is None
    assert token_requests == []


async def test_missing_location_disables_oauth(session_factory, oauth_http):
    provider = HighLevelTokenProvider(session_factory, location_id="", http_client=oauth_http)

    assert await provider.get_access_token() is None
