"""SQLAlchemy ORM models for clients, communications, alerts, and CRM credentials."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.db.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Tenants
# =============================================================================

class Client(Base):
    """
    An agency customer (tenant).

    All communications belong to exactly one client. highlevel_id links the
    client to its HighLevel CRM contact; it is discovered lazily from
    contact_email when missing.
    """
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", server_default="active")
    highlevel_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), onupdate=_now_utc, nullable=False
    )

    communications: Mapped[list["ClientCommunication"]] = relationship(
        back_populates="client", cascade="all, delete-orphan", passive_deletes=True
    )


# =============================================================================
# Communications
# =============================================================================

class ClientCommunication(Base):
    """
    First-party communication record (emails, alerts, chats, meetings...).

    comm_type and status are free text validated at the API edge, so new tags
    do not require a migration.
    """
    __tablename__ = "client_communications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    comm_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    subject: Mapped[str | None] = mapped_column(String(500), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # "metadata" is reserved on declarative classes
    comm_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    highlight_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    opened_at: Mapped[datetime | None] = mapped_column(nullable=True)
    clicked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )

    client: Mapped["Client"] = relationship(back_populates="communications")

    __table_args__ = (
        Index("ix_client_communications_client_sent", "client_id", "sent_at"),
        Index("ix_client_communications_recipient", "recipient_email"),
    )


# =============================================================================
# System Alerts
# =============================================================================

class SystemAlert(Base):
    """
    Operational alert written by services when an integration or safeguard fires.

    Alerts are append-only; admins resolve them from the alerts screen.
    """
    __tablename__ = "system_alerts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    alert_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    source_file: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )

    client: Mapped["Client | None"] = relationship()

    __table_args__ = (
        Index("ix_system_alerts_severity_category", "severity", "category"),
        Index("ix_system_alerts_created_at", "created_at"),
    )


# =============================================================================
# Integrations
# =============================================================================

class HighLevelOAuth(Base):
    """OAuth tokens for the HighLevel V2 API, one row per location (encrypted)."""
    __tablename__ = "highlevel_oauth"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    location_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    access_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), onupdate=_now_utc, nullable=False
    )
