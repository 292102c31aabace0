"""Tests for the HighLevel message bridge: normalization, contact resolution, degradation."""

import anyio
import httpx
import pytest

from portal.core.async_utils import wait_for_detached
from portal.db.enums import AlertCategory, CommunicationSource, MessageDirection
from portal.db.models import Client, SystemAlert
from portal.services.crm_bridge import CrmContactRef, normalize_highlevel_message


def hl_message(message_id: str, *, message_type: str = "TYPE_SMS", direction: str = "inbound", **extra) -> dict:
    message = {
        "id": message_id,
        "conversationId": "conv_1",
        "messageType": message_type,
        "direction": direction,
        "body": f"body {message_id}",
        "dateAdded": "2026-04-01T10:00:00.000Z",
    }
    message.update(extra)
    return message


# =============================================================================
# Normalization
# =============================================================================

@pytest.mark.parametrize(
    ("message_type", "direction", "expected_type", "expected_title"),
    [
        ("TYPE_SMS", "inbound", "sms", "SMS Received"),
        ("SMS", "outbound", "sms", "SMS Sent"),
        ("TYPE_EMAIL", "inbound", "email_highlevel", "Email Received"),
        ("Email", "outbound", "email_highlevel", "Email Sent"),
        ("TYPE_WEBCHAT", "inbound", "chat", "Chat Message"),
        ("Live_Chat", "outbound", "chat", "Chat Reply"),
        ("TYPE_FB", "inbound", "chat_facebook", "Facebook Message"),
        ("IG", "outbound", "chat_instagram", "Instagram Message"),
        ("TYPE_WHATSAPP", "inbound", "chat_whatsapp", "WhatsApp Message"),
        ("TYPE_CALL", "inbound", "chat", "Message Received"),
        ("TYPE_CALL", "outbound", "chat", "Message Sent"),
    ],
)
def test_normalize_maps_channel_and_title(message_type, direction, expected_type, expected_title):
    item = normalize_highlevel_message(hl_message("m1", message_type=message_type, direction=direction))

    assert item.type == expected_type
    assert item.title == expected_title
    assert item.source == CommunicationSource.EXTERNAL_CRM


def test_normalize_sets_prefixed_id_and_metadata():
    item = normalize_highlevel_message(
        hl_message(
            "abc",
            message_type="TYPE_EMAIL",
            meta={"email": {"subject": "Quote follow-up"}},
            attachments=["https://files.test/a.pdf"],
        )
    )

    assert item.id == "hl_abc"
    assert item.subject == "Quote follow-up"
    assert item.body == "body abc"
    assert item.status == "delivered"
    assert item.sent_at is not None and item.sent_at.tzinfo is not None
    assert item.metadata["highlevelMessageId"] == "abc"
    assert item.metadata["highlevelConversationId"] == "conv_1"
    assert item.metadata["messageType"] == "TYPE_EMAIL"
    assert item.metadata["attachments"] == ["https://files.test/a.pdf"]


def test_normalize_falls_back_to_legacy_type_and_email_direction():
    message = {
        "id": "legacy",
        "type": "Email",
        "meta": {"email": {"direction": "inbound"}},
        "dateAdded": "2026-04-01T10:00:00Z",
    }

    item = normalize_highlevel_message(message)

    assert item.type == "email_highlevel"
    assert item.direction == MessageDirection.INBOUND
    assert item.title == "Email Received"


def test_normalize_treats_missing_direction_as_outbound():
    message = hl_message("m1")
    del message["direction"]

    item = normalize_highlevel_message(message)

    assert item.direction == MessageDirection.OUTBOUND
    assert item.title == "SMS Sent"


def test_normalize_keeps_upstream_status_and_tolerates_bad_dates():
    item = normalize_highlevel_message(hl_message("m1", status="failed", dateAdded="not-a-date"))

    assert item.status == "failed"
    assert item.sent_at is None


# =============================================================================
# Bridge
# =============================================================================

async def test_unconfigured_bridge_returns_nothing(unconfigured_bridge, test_client):
    contact = CrmContactRef.from_client(test_client)

    assert unconfigured_bridge.is_enabled() is False
    assert await unconfigured_bridge.fetch_messages(contact, limit=10) == []


async def test_stored_contact_id_skips_email_lookup(bridge, fake_highlevel, make_client):
    client = make_client(highlevel_id="contact_1")
    fake_highlevel.conversations = {"contact_1": [{"id": "conv_1"}]}
    fake_highlevel.messages = {"conv_1": [hl_message("m1"), hl_message("m2", direction="outbound")]}

    items = await bridge.fetch_messages(CrmContactRef.from_client(client), limit=10)

    assert [i.id for i in items] == ["hl_m1", "hl_m2"]
    assert "/v1/contacts/" not in fake_highlevel.paths()


async def test_email_lookup_resolves_and_caches_contact_id(bridge, fake_highlevel, make_client, session_factory):
    client = make_client(contact_email="Owner@Acme.test")
    fake_highlevel.contacts = [
        {"id": "near_miss", "email": "owner@acme.test.example"},
        {"id": "contact_9", "email": "OWNER@acme.test"},
    ]
    fake_highlevel.conversations = {"contact_9": [{"id": "conv_9"}]}
    fake_highlevel.messages = {"conv_9": [hl_message("m9")]}

    items = await bridge.fetch_messages(CrmContactRef.from_client(client), limit=10)
    await wait_for_detached()

    assert [i.id for i in items] == ["hl_m9"]
    with session_factory() as session:
        assert session.get(Client, client.id).highlevel_id == "contact_9"


async def test_unknown_contact_returns_nothing(bridge, fake_highlevel, make_client):
    client = make_client()
    fake_highlevel.contacts = [{"id": "other", "email": "someone@else.test"}]

    items = await bridge.fetch_messages(CrmContactRef.from_client(client), limit=10)

    assert items == []
    assert not any(p.startswith("/conversations") for p in fake_highlevel.paths())


async def test_client_without_email_or_id_returns_nothing(bridge, fake_highlevel, make_client):
    client = make_client(contact_email=None)

    assert await bridge.fetch_messages(CrmContactRef.from_client(client), limit=10) == []
    assert fake_highlevel.requests == []


async def test_messages_without_id_are_dropped(bridge, fake_highlevel, make_client):
    client = make_client(highlevel_id="contact_1")
    fake_highlevel.conversations = {"contact_1": [{"id": "conv_1"}]}
    nameless = [hl_message("x"), hl_message("y")]
    for message in nameless:
        del message["id"]
    fake_highlevel.messages = {"conv_1": [*nameless, hl_message("m1")]}

    items = await bridge.fetch_messages(CrmContactRef.from_client(client), limit=10)

    assert [i.id for i in items] == ["hl_m1"]


async def test_upstream_failure_degrades_and_records_alert(bridge, fake_highlevel, make_client, session_factory):
    client = make_client(highlevel_id="contact_1")
    fake_highlevel.fail_with = 500

    items = await bridge.fetch_messages(CrmContactRef.from_client(client), limit=10)
    await wait_for_detached()

    assert items == []
    with session_factory() as session:
        alerts = session.query(SystemAlert).all()
    assert len(alerts) == 1
    assert alerts[0].category == AlertCategory.CRM_ERROR.value
    assert alerts[0].client_id == client.id
    assert alerts[0].alert_metadata["step"] == "fetch_messages"


async def test_slow_upstream_times_out_to_empty(make_bridge, make_client):
    async def slow_handler(request: httpx.Request) -> httpx.Response:
        await anyio.sleep(1)
        return httpx.Response(200, json={"conversations": []})

    client = make_client(highlevel_id="contact_1")
    slow_bridge = make_bridge(slow_handler, timeout_seconds=0.05)

    items = await slow_bridge.fetch_messages(CrmContactRef.from_client(client), limit=10)
    await wait_for_detached()

    assert items == []
