"""
HighLevel -> communications timeline bridge.

Resolves a client's HighLevel contact (stored id, else email lookup), fetches
its recent messages, and normalizes them into timeline items. The bridge never
raises: an unconfigured integration, an unknown contact, and any lookup or
fetch failure all produce an empty list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from uuid import UUID

import anyio
from sqlalchemy.orm import sessionmaker

from portal.core.async_utils import spawn_detached
from portal.core.structured_logging import build_log_context
from portal.db.enums import AlertCategory, AlertSeverity, CommunicationSource, CrmMessageType, MessageDirection
from portal.db.models import Client
from portal.schemas.communication import CommunicationRead
from portal.services import alert_service, communication_service
from portal.services.highlevel_client import HighLevelClient, HighLevelConfig
from portal.services.highlevel_oauth_service import build_token_provider
from portal.utils.datetime_parsing import parse_iso_datetime

logger = logging.getLogger(__name__)

CRM_ID_PREFIX = "hl_"
DEFAULT_STATUS = "delivered"

# HighLevel message type (legacy and TYPE_* names) -> (type, inbound title, outbound title)
_SMS = (CrmMessageType.SMS.value, "SMS Received", "SMS Sent")
_EMAIL = (CrmMessageType.EMAIL_HIGHLEVEL.value, "Email Received", "Email Sent")
_CHAT = (CrmMessageType.CHAT.value, "Chat Message", "Chat Reply")
_FACEBOOK = (CrmMessageType.CHAT_FACEBOOK.value, "Facebook Message", "Facebook Message")
_INSTAGRAM = (CrmMessageType.CHAT_INSTAGRAM.value, "Instagram Message", "Instagram Message")
_WHATSAPP = (CrmMessageType.CHAT_WHATSAPP.value, "WhatsApp Message", "WhatsApp Message")

_CHANNELS: dict[str, tuple[str, str, str]] = {
    "SMS": _SMS,
    "TYPE_SMS": _SMS,
    "Email": _EMAIL,
    "TYPE_EMAIL": _EMAIL,
    "Live_Chat": _CHAT,
    "Custom": _CHAT,
    "TYPE_WEBCHAT": _CHAT,
    "TYPE_LIVE_CHAT": _CHAT,
    "FB": _FACEBOOK,
    "TYPE_FB": _FACEBOOK,
    "IG": _INSTAGRAM,
    "TYPE_IG": _INSTAGRAM,
    "WhatsApp": _WHATSAPP,
    "TYPE_WHATSAPP": _WHATSAPP,
}

_FALLBACK_CHANNEL = (CrmMessageType.CHAT.value, "Message Received", "Message Sent")


def normalize_highlevel_message(message: dict[str, Any]) -> CommunicationRead:
    """Map a HighLevel conversation message onto the timeline item shape."""
    msg_type = message.get("messageType") or message.get("type")
    email_meta = (message.get("meta") or {}).get("email")
    raw_direction = message.get("direction") or (email_meta or {}).get("direction") or "outbound"
    direction = (
        MessageDirection.INBOUND
        if str(raw_direction).lower() == MessageDirection.INBOUND.value
        else MessageDirection.OUTBOUND
    )

    comm_type, inbound_title, outbound_title = _CHANNELS.get(msg_type or "", _FALLBACK_CHANNEL)

    return CommunicationRead(
        id=f"{CRM_ID_PREFIX}{message.get('id')}",
        type=comm_type,
        title=inbound_title if direction is MessageDirection.INBOUND else outbound_title,
        subject=(email_meta or {}).get("subject") or None,
        body=message.get("body") or None,
        status=message.get("status") or DEFAULT_STATUS,
        metadata={
            "highlevelMessageId": message.get("id"),
            "highlevelConversationId": message.get("conversationId"),
            "messageType": msg_type,
            "direction": direction.value,
            "attachments": message.get("attachments"),
            "emailMeta": email_meta,
        },
        highlight_type=None,
        sent_at=parse_iso_datetime(message.get("dateAdded")),
        source=CommunicationSource.EXTERNAL_CRM,
        direction=direction,
    )


@dataclass(frozen=True)
class CrmContactRef:
    """The client fields contact resolution needs (safe to pass across threads)."""

    client_id: UUID
    contact_email: str | None
    highlevel_id: str | None

    @classmethod
    def from_client(cls, client: Client) -> "CrmContactRef":
        return cls(
            client_id=client.id,
            contact_email=client.contact_email,
            highlevel_id=client.highlevel_id,
        )


def _write_highlevel_id(session_factory: sessionmaker, client_id: UUID, highlevel_id: str) -> None:
    db = session_factory()
    try:
        communication_service.set_client_highlevel_id(db, client_id, highlevel_id)
    finally:
        db.close()


class CrmMessageBridge:
    """Fetches a client's HighLevel messages as timeline items."""

    def __init__(
        self,
        client: HighLevelClient,
        *,
        session_factory: sessionmaker,
        timeout_seconds: float | None = None,
    ) -> None:
        self.client = client
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds or client.config.timeout_seconds

    def is_enabled(self) -> bool:
        return self.client.is_configured()

    def _cache_contact_id(self, client_id: UUID, highlevel_id: str) -> None:
        """Persist the resolved id without holding up the response."""

        async def _write() -> None:
            await anyio.to_thread.run_sync(
                _write_highlevel_id, self.session_factory, client_id, highlevel_id
            )

        spawn_detached(_write(), name=f"highlevel-id:{client_id}")

    async def resolve_contact_id(self, contact: CrmContactRef) -> str | None:
        if contact.highlevel_id:
            return contact.highlevel_id
        if not contact.contact_email:
            return None

        found = await self.client.get_contact_by_email(contact.contact_email)
        if not found or not found.get("id"):
            return None

        highlevel_id = str(found["id"])
        logger.info(
            "Resolved HighLevel contact by email",
            extra=build_log_context(client_id=contact.client_id, integration="highlevel"),
        )
        self._cache_contact_id(contact.client_id, highlevel_id)
        return highlevel_id

    async def fetch_messages(self, contact: CrmContactRef, *, limit: int) -> list[CommunicationRead]:
        """Normalized messages for the client, newest first; [] on any failure."""
        if not self.is_enabled():
            return []

        try:
            with anyio.fail_after(self.timeout_seconds):
                contact_id = await self.resolve_contact_id(contact)
                if not contact_id:
                    return []
                messages = await self.client.get_all_messages_for_contact(contact_id, limit)
            # Messages without an id cannot get a stable timeline id
            return [normalize_highlevel_message(m) for m in messages if m.get("id")]
        except Exception as exc:
            logger.warning(
                "Error fetching HighLevel messages: %s",
                exc.__class__.__name__,
                exc_info=exc,
                extra=build_log_context(client_id=contact.client_id, integration="highlevel"),
            )
            alert_service.report_alert_detached(
                self.session_factory,
                severity=AlertSeverity.WARNING,
                category=AlertCategory.CRM_ERROR,
                message=f"Failed to fetch HighLevel messages: {exc.__class__.__name__}",
                metadata={"step": "fetch_messages", "error": str(exc)[:500]},
                source_file="crm_bridge.fetch_messages",
                client_id=contact.client_id,
            )
            return []


@lru_cache
def get_default_highlevel_client() -> HighLevelClient:
    """Process-wide client so the OAuth token cache is shared across requests."""
    from portal.db.session import SessionLocal

    return HighLevelClient(
        HighLevelConfig.from_settings(),
        token_provider=build_token_provider(SessionLocal),
    )
