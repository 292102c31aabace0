"""Client communications store: first-party records, Mailgun tracking, summaries."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core.async_utils import run_async
from portal.core.structured_logging import build_log_context
from portal.db.enums import (
    DELIVERED_STATUSES,
    EMAIL_TYPES,
    CommunicationSource,
    CommunicationStatus,
    CommunicationType,
    CrmMessageType,
    MessageDirection,
)
from portal.db.models import Client, ClientCommunication
from portal.schemas.communication import (
    CommunicationCreate,
    CommunicationRead,
    CommunicationSummary,
)
from portal.services import alert_service, email_templates, mailgun_service
from portal.utils.datetime_parsing import ensure_utc
from portal.utils.validation import normalize_email

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAILGUN_SEND_TIMEOUT_SECONDS = 60.0

# Mailgun event -> stored status
TRACKED_EVENTS = {
    "delivered": CommunicationStatus.DELIVERED.value,
    "opened": CommunicationStatus.OPENED.value,
    "clicked": CommunicationStatus.CLICKED.value,
    "failed": CommunicationStatus.FAILED.value,
    "bounced": CommunicationStatus.BOUNCED.value,
    "complained": CommunicationStatus.COMPLAINED.value,
    "unsubscribed": CommunicationStatus.UNSUBSCRIBED.value,
}


class CommunicationFetchError(Exception):
    """Reading communication records failed (storage unavailable)."""

    def __init__(self, message: str = "Failed to fetch communications"):
        super().__init__(message)


class ClientNotFoundError(Exception):
    def __init__(self, client_id: UUID):
        super().__init__(f"Client {client_id} not found")
        self.client_id = client_id


# =============================================================================
# Clients
# =============================================================================

def get_client(db: Session, client_id: UUID) -> Client | None:
    return db.get(Client, client_id)


def set_client_highlevel_id(db: Session, client_id: UUID, highlevel_id: str) -> None:
    """Cache the resolved HighLevel contact id on the client (idempotent overwrite)."""
    db.execute(
        update(Client)
        .where(Client.id == client_id)
        .values(highlevel_id=highlevel_id, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db.commit()


# =============================================================================
# Records
# =============================================================================

def list_client_communications(
    db: Session,
    client_id: UUID,
    *,
    comm_type: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[ClientCommunication]:
    """
    A client's records, newest send first (unsent last), then newest created.

    Raises:
        CommunicationFetchError: any storage error; no partial results
    """
    query = select(ClientCommunication).where(ClientCommunication.client_id == client_id)
    if comm_type:
        query = query.where(ClientCommunication.comm_type == comm_type)
    query = (
        query.order_by(
            ClientCommunication.sent_at.desc().nulls_last(),
            ClientCommunication.created_at.desc(),
        )
        .limit(limit)
        .offset(offset)
    )
    try:
        return list(db.scalars(query).all())
    except SQLAlchemyError as exc:
        logger.exception(
            "Error fetching communications",
            extra=build_log_context(client_id=client_id),
        )
        raise CommunicationFetchError() from exc


def to_communication_read(record: ClientCommunication) -> CommunicationRead:
    """Database record -> timeline item (timestamps normalized to UTC)."""
    return CommunicationRead(
        id=str(record.id),
        client_id=record.client_id,
        type=record.comm_type,
        title=record.title,
        subject=record.subject,
        body=record.body,
        status=record.status,
        metadata=record.comm_metadata,
        highlight_type=record.highlight_type,
        recipient_email=record.recipient_email,
        opened_at=ensure_utc(record.opened_at),
        clicked_at=ensure_utc(record.clicked_at),
        sent_at=ensure_utc(record.sent_at),
        created_by=record.created_by,
        created_at=ensure_utc(record.created_at),
        source=CommunicationSource.DATABASE,
    )


def _send_result_alert(
    db: Session,
    client: Client,
    data: CommunicationCreate,
    metadata: dict[str, Any],
) -> tuple[str, str | None]:
    """Email a result alert. Returns (status, mailgun message id)."""
    first_name = (client.contact_name or "").split(" ")[0] or "there"
    content = email_templates.render_result_alert(
        first_name=first_name,
        client_name=client.name or "your business",
        subject=data.subject or data.title,
        message=data.body or "",
        alert_type=metadata.get("alertType") or "custom",
        alert_type_label=metadata.get("alertTypeLabel") or "Result Alert",
        metadata=metadata,
    )
    try:
        result = run_async(
            mailgun_service.send_email(
                str(data.recipient_email),
                content.subject,
                content.html,
                text=content.text,
                tags=["result-alert", metadata.get("alertType") or "custom"],
            ),
            timeout=MAILGUN_SEND_TIMEOUT_SECONDS,
        )
    except TimeoutError:
        logger.warning("Result alert email timed out", extra=build_log_context(client_id=client.id))
        result = mailgun_service.SendResult(success=False, error="Send timed out")

    if result.success:
        logger.info("Result alert email sent", extra=build_log_context(client_id=client.id))
        return CommunicationStatus.DELIVERED.value, result.message_id

    alert_service.log_email_error(
        db,
        f"Failed to send result alert: {result.error}",
        recipient=str(data.recipient_email),
        client_id=client.id,
        source_file="communication_service.create_communication",
    )
    return CommunicationStatus.FAILED.value, None


def create_communication(
    db: Session,
    client_id: UUID,
    data: CommunicationCreate,
    *,
    created_by: str | None = None,
) -> ClientCommunication:
    """
    Record a communication; result alerts with a recipient are also emailed.

    Must run in a worker thread (the Mailgun call is bridged with run_async).

    Raises:
        ClientNotFoundError: unknown client
    """
    client = get_client(db, client_id)
    if not client:
        raise ClientNotFoundError(client_id)

    metadata = dict(data.metadata or {})
    status = data.status.value

    if (
        data.type == CommunicationType.RESULT_ALERT.value
        and data.recipient_email
        and mailgun_service.is_configured()
    ):
        status, message_id = _send_result_alert(db, client, data, metadata)
        if message_id:
            metadata["mailgunMessageId"] = message_id

    record = ClientCommunication(
        client_id=client_id,
        comm_type=data.type,
        title=data.title,
        subject=data.subject,
        body=data.body,
        status=status,
        comm_metadata=metadata,
        highlight_type=data.highlight_type,
        recipient_email=normalize_email(data.recipient_email),
        created_by=data.created_by or created_by,
        sent_at=datetime.now(timezone.utc),
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


# =============================================================================
# Mailgun delivery tracking
# =============================================================================

def apply_delivery_event(
    db: Session,
    event_type: str | None,
    recipient: str | None,
    occurred_at: datetime | None = None,
) -> ClientCommunication | None:
    """
    Apply a Mailgun tracking event to the recipient's most recent email record.

    Unknown events and recipients without an email record are ignored (None).
    """
    new_status = TRACKED_EVENTS.get(event_type or "")
    recipient = normalize_email(recipient)
    if not new_status or not recipient:
        return None

    record = db.scalars(
        select(ClientCommunication)
        .where(
            func.lower(ClientCommunication.recipient_email) == recipient,
            ClientCommunication.comm_type.like("email%"),
        )
        .order_by(ClientCommunication.sent_at.desc().nulls_last())
        .limit(1)
    ).first()
    if not record:
        return None

    occurred_at = occurred_at or datetime.now(timezone.utc)
    record.status = new_status
    if event_type == "opened":
        record.opened_at = occurred_at
    elif event_type == "clicked":
        record.clicked_at = occurred_at
    # Reassign so the JSON column is flagged dirty
    record.comm_metadata = {
        **(record.comm_metadata or {}),
        f"{event_type}_at": occurred_at.isoformat(),
        f"{event_type}_event": True,
    }
    db.commit()
    db.refresh(record)
    return record


# =============================================================================
# Summary
# =============================================================================

def _is_chat(comm_type: str) -> bool:
    return comm_type == CrmMessageType.CHAT.value or comm_type.startswith("chat_")


def _was_opened(item: CommunicationRead) -> bool:
    return bool(item.opened_at) or item.status in (
        CommunicationStatus.OPENED.value,
        CommunicationStatus.CLICKED.value,
    )


def summarize_communications(items: Iterable[CommunicationRead]) -> CommunicationSummary:
    """Dashboard counts over a (merged) timeline."""
    items = list(items)
    emails = [c for c in items if c.type in EMAIL_TYPES]
    result_alerts = [c for c in items if c.type == CommunicationType.RESULT_ALERT.value]
    sms = [c for c in items if c.type == CrmMessageType.SMS.value]
    chats = [c for c in items if _is_chat(c.type)]

    rate_pool = emails + result_alerts
    delivered_for_rate = [c for c in rate_pool if c.status in DELIVERED_STATUSES]
    opened = [c for c in rate_pool if _was_opened(c)]
    open_rate = 0
    if delivered_for_rate:
        # Half-up rounding
        open_rate = math.floor(len(opened) * 100 / len(delivered_for_rate) + 0.5)

    return CommunicationSummary(
        emails_delivered=sum(1 for c in emails if c.status in DELIVERED_STATUSES),
        emails_failed=sum(1 for c in emails if c.status == CommunicationStatus.FAILED.value),
        emails_bounced=sum(1 for c in emails if c.status == CommunicationStatus.BOUNCED.value),
        result_alerts=len(result_alerts),
        result_alerts_viewed=sum(1 for c in result_alerts if _was_opened(c)),
        sms_inbound=sum(1 for c in sms if c.direction == MessageDirection.INBOUND),
        sms_outbound=sum(1 for c in sms if c.direction == MessageDirection.OUTBOUND),
        chat_total=len(chats),
        chat_inbound=sum(1 for c in chats if c.direction == MessageDirection.INBOUND),
        open_rate=open_rate,
    )
