"""Pydantic schemas for client communications and the merged timeline."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from portal.db.enums import CommunicationSource, CommunicationStatus, MessageDirection


class _CamelModel(BaseModel):
    """Serialized with camelCase keys; accepts either casing on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Timeline
# =============================================================================

class CommunicationRead(_CamelModel):
    """
    One timeline item (first-party record or normalized CRM message).

    ``source`` tells the two apart; ``direction`` is only set for CRM items.
    CRM ids carry an ``hl_`` prefix so they never collide with database UUIDs.
    """
    id: str
    client_id: UUID | None = None
    type: str
    title: str
    subject: str | None = None
    body: str | None = None
    status: str | None = None
    metadata: dict[str, Any] | None = None
    highlight_type: str | None = None
    recipient_email: str | None = None
    opened_at: datetime | None = None
    clicked_at: datetime | None = None
    sent_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    source: CommunicationSource = CommunicationSource.DATABASE
    direction: MessageDirection | None = None


class CommunicationCreate(_CamelModel):
    """Admin request to record (and for result alerts, send) a communication."""
    type: str = Field(..., min_length=1, max_length=50)
    title: str = Field(..., min_length=1, max_length=500)
    subject: str | None = Field(None, max_length=500)
    body: str | None = Field(None, max_length=50000)
    status: CommunicationStatus = CommunicationStatus.SENT
    metadata: dict[str, Any] | None = None
    highlight_type: str | None = Field(None, max_length=50)
    recipient_email: EmailStr | None = None
    created_by: str | None = Field(None, max_length=255)


class CommunicationSummary(_CamelModel):
    """Counts shown on the client communication dashboard."""
    emails_delivered: int = 0
    emails_failed: int = 0
    emails_bounced: int = 0
    result_alerts: int = 0
    result_alerts_viewed: int = 0
    sms_inbound: int = 0
    sms_outbound: int = 0
    chat_total: int = 0
    chat_inbound: int = 0
    open_rate: int = 0  # percent, rounded
