"""
Test configuration and fixtures.

Provides:
- Per-test SQLite database (tables created from metadata)
- Session token minting for admin and client sessions
- HTTPX AsyncClient against the app with dependency overrides
- A fake HighLevel API (httpx.MockTransport) for bridge tests
"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable, Generator

from cryptography.fernet import Fernet

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode())

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from portal.core.async_utils import wait_for_detached
from portal.core.deps import COOKIE_NAME, get_crm_bridge, get_db, get_session_factory
from portal.core.security import create_session_token
from portal.db.base import Base
from portal.db.enums import Role
from portal.db.models import Client, ClientCommunication
from portal.main import app
from portal.services.crm_bridge import CrmMessageBridge
from portal.services.highlevel_client import HighLevelClient, HighLevelConfig


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """
    Session factory bound to a fresh SQLite file.

    A file (not :memory:) so worker threads opening their own sessions see the
    same data.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'portal.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def make_client(db: Session) -> Callable[..., Client]:
    def _make(**overrides: Any) -> Client:
        values = {
            "name": "Acme Plumbing",
            "contact_name": "Dana Reyes",
            "contact_email": f"owner-{uuid.uuid4().hex[:8]}@acme.test",
        }
        values.update(overrides)
        client = Client(**values)
        db.add(client)
        db.commit()
        db.refresh(client)
        return client

    return _make


@pytest.fixture(scope="function")
def make_communication(db: Session) -> Callable[..., ClientCommunication]:
    def _make(client: Client, **overrides: Any) -> ClientCommunication:
        values = {
            "client_id": client.id,
            "comm_type": "email_general",
            "title": "Monthly check-in",
            "status": "delivered",
            "sent_at": datetime.now(timezone.utc),
        }
        values.update(overrides)
        record = ClientCommunication(**values)
        db.add(record)
        db.commit()
        db.refresh(record)
        return record

    return _make


@pytest.fixture(scope="function")
def test_client(make_client) -> Client:
    return make_client()


# =============================================================================
# Fake HighLevel
# =============================================================================

class StaticTokenProvider:
    """Stands in for the OAuth token provider."""

    def __init__(self, token: str | None = "hl-access-token"):
        self.token = token

    async def get_access_token(self) -> str | None:
        return self.token


@dataclass
class FakeHighLevel:
    """
    In-memory HighLevel API served through httpx.MockTransport.

    contacts: V1 contact records; conversations: contact id -> conversations;
    messages: conversation id -> messages. Set fail_with to force a status.
    """
    contacts: list[dict] = field(default_factory=list)
    conversations: dict[str, list[dict]] = field(default_factory=dict)
    messages: dict[str, list[dict]] = field(default_factory=dict)
    fail_with: int | None = None
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with, json={"message": "boom"})

        path = request.url.path
        if path == "/v1/contacts/":
            return httpx.Response(200, json={"contacts": self.contacts})
        if path == "/conversations/search":
            contact_id = request.url.params.get("contactId")
            return httpx.Response(200, json={"conversations": self.conversations.get(contact_id, [])})
        if path.startswith("/conversations/") and path.endswith("/messages"):
            conversation_id = path.split("/")[2]
            limit = int(request.url.params.get("limit", 50))
            batch = self.messages.get(conversation_id, [])[:limit]
            return httpx.Response(200, json={"messages": {"messages": batch, "nextPage": False}})
        return httpx.Response(404, json={"message": "not found"})

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


HL_CONFIG = HighLevelConfig(
    api_key="hl-api-key",
    location_id="loc_123",
    timeout_seconds=2.0,
    v1_base_url="https://hl.test/v1",
    v2_base_url="https://hl.test",
)


@pytest.fixture(scope="function")
def fake_highlevel() -> FakeHighLevel:
    return FakeHighLevel()


@pytest.fixture(scope="function")
async def highlevel_client(fake_highlevel: FakeHighLevel) -> AsyncGenerator[HighLevelClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_highlevel.handler)) as http:
        yield HighLevelClient(HL_CONFIG, token_provider=StaticTokenProvider(), http_client=http)


@pytest.fixture(scope="function")
def bridge(highlevel_client: HighLevelClient, session_factory: sessionmaker) -> CrmMessageBridge:
    return CrmMessageBridge(highlevel_client, session_factory=session_factory)


@pytest.fixture(scope="function")
def unconfigured_bridge(session_factory: sessionmaker) -> CrmMessageBridge:
    return CrmMessageBridge(HighLevelClient(HighLevelConfig()), session_factory=session_factory)


@pytest.fixture(scope="function")
async def make_bridge(session_factory: sessionmaker) -> AsyncGenerator[Callable[..., CrmMessageBridge], None]:
    """Bridge over a custom HighLevel handler (e.g. a slow upstream)."""
    http_clients: list[httpx.AsyncClient] = []

    def _make(handler: Callable, *, token: str | None = "hl-access-token", **kwargs: Any) -> CrmMessageBridge:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        http_clients.append(http)
        client = HighLevelClient(HL_CONFIG, token_provider=StaticTokenProvider(token), http_client=http)
        return CrmMessageBridge(client, session_factory=session_factory, **kwargs)

    yield _make
    for http in http_clients:
        await http.aclose()


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user_id: str
    role: Role
    token: str
    client_id: uuid.UUID | None = None
    cookie_name: str = COOKIE_NAME


@pytest.fixture(scope="function")
def admin_auth() -> TestAuth:
    user_id = f"admin-{uuid.uuid4().hex[:8]}"
    return TestAuth(
        user_id=user_id,
        role=Role.ADMIN,
        token=create_session_token(user_id, Role.ADMIN.value),
    )


@pytest.fixture(scope="function")
def client_auth(test_client: Client) -> TestAuth:
    user_id = f"user-{uuid.uuid4().hex[:8]}"
    return TestAuth(
        user_id=user_id,
        role=Role.CLIENT,
        token=create_session_token(user_id, Role.CLIENT.value, test_client.id),
        client_id=test_client.id,
    )


# =============================================================================
# HTTP Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def crm_bridge_override(unconfigured_bridge: CrmMessageBridge) -> dict:
    """Bridge served to routes; tests swap in a configured one via ["bridge"]."""
    return {"bridge": unconfigured_bridge}


@pytest.fixture(scope="function")
async def api(
    session_factory: sessionmaker,
    crm_bridge_override: dict,
) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient with the test database wired in."""
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_crm_bridge] = lambda: crm_bridge_override["bridge"]

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    await wait_for_detached()
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def admin_headers(admin_auth: TestAuth) -> dict[str, str]:
    return {"Authorization": f"Bearer {admin_auth.token}", "X-Requested-With": "XMLHttpRequest"}


@pytest.fixture(scope="function")
def client_headers(client_auth: TestAuth) -> dict[str, str]:
    return {"Authorization": f"Bearer {client_auth.token}", "X-Requested-With": "XMLHttpRequest"}
