"""Tests for per-request timeline assembly (records, client lookup, CRM bridge)."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import SQLAlchemyError

from portal.core.async_utils import wait_for_detached
from portal.db.enums import CommunicationSource
from portal.db.models import Client
from portal.services import communication_service, timeline_service
from portal.services.communication_service import ClientNotFoundError, CommunicationFetchError

NOW = datetime.now(timezone.utc).replace(microsecond=0)


def hl_message(message_id: str, minutes_ago: int) -> dict:
    return {
        "id": message_id,
        "conversationId": "conv_1",
        "messageType": "TYPE_SMS",
        "direction": "inbound",
        "body": "hello",
        "dateAdded": (NOW - timedelta(minutes=minutes_ago)).isoformat().replace("+00:00", "Z"),
    }


async def test_repeated_timeline_resolves_contact_once(
    bridge, fake_highlevel, make_client, make_communication, session_factory
):
    client = make_client(contact_email="owner@acmeplumbing.com")
    make_communication(client, title="Welcome", sent_at=NOW - timedelta(hours=2))
    fake_highlevel.contacts = [{"id": "contact_1", "email": "owner@acmeplumbing.com"}]
    fake_highlevel.conversations = {"contact_1": [{"id": "conv_1"}]}
    fake_highlevel.messages = {"conv_1": [hl_message("m1", 30)]}

    first = await timeline_service.get_client_timeline(session_factory, client.id, bridge=bridge)
    await wait_for_detached()
    second = await timeline_service.get_client_timeline(session_factory, client.id, bridge=bridge)

    assert [i.id for i in first] == [i.id for i in second]
    assert [i.source for i in first] == [CommunicationSource.EXTERNAL_CRM, CommunicationSource.DATABASE]
    assert fake_highlevel.paths().count("/v1/contacts/") == 1
    with session_factory() as session:
        assert session.get(Client, client.id).highlevel_id == "contact_1"


async def test_unknown_client_raises_before_crm_call(bridge, fake_highlevel, session_factory):
    with pytest.raises(ClientNotFoundError):
        await timeline_service.get_client_timeline(session_factory, uuid.uuid4(), bridge=bridge)

    assert fake_highlevel.requests == []


async def test_client_lookup_storage_error_raises_fetch_error(
    bridge, fake_highlevel, test_client, session_factory, monkeypatch
):
    def broken_get_client(db, client_id):
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(communication_service, "get_client", broken_get_client)

    with pytest.raises(CommunicationFetchError, match="Failed to fetch communications"):
        await timeline_service.get_client_timeline(session_factory, test_client.id, bridge=bridge)

    assert fake_highlevel.requests == []
