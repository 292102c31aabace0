"""
Client communications timeline.

Merges a client's first-party records with its HighLevel message history into
one list ordered by effective timestamp (sent_at, else created_at), newest
first, capped at the requested size.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

import anyio
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from portal.core.structured_logging import build_log_context
from portal.db.enums import CommunicationSource, CrmMessageType
from portal.schemas.communication import CommunicationRead
from portal.services import communication_service
from portal.services.communication_service import ClientNotFoundError, CommunicationFetchError
from portal.services.crm_bridge import CrmContactRef, CrmMessageBridge

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 500
# Records are over-fetched so truncation after the merge still fills the page
DB_FETCH_MULTIPLIER = 2

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(limit, MAX_LIMIT))


def effective_timestamp(item: CommunicationRead) -> datetime:
    """sent_at when present, otherwise created_at; undated items sort last."""
    return item.sent_at or item.created_at or _EPOCH


def matches_crm_type_filter(comm_type: str, type_filter: str) -> bool:
    """
    Type filter for CRM items.

    sms and email_highlevel match exactly, chat matches every chat_* subtype.
    Any other filter value lets all CRM items through (database items were
    already filtered in SQL).
    """
    if type_filter == CrmMessageType.SMS.value:
        return comm_type == CrmMessageType.SMS.value
    if type_filter == CrmMessageType.CHAT.value:
        return comm_type.startswith(CrmMessageType.CHAT.value)
    if type_filter == CrmMessageType.EMAIL_HIGHLEVEL.value:
        return comm_type == CrmMessageType.EMAIL_HIGHLEVEL.value
    return True


def merge_timeline(
    db_items: Iterable[CommunicationRead],
    crm_items: Iterable[CommunicationRead],
    *,
    type_filter: str | None = None,
    limit: int = DEFAULT_LIMIT,
) -> list[CommunicationRead]:
    """
    Concatenate, sort newest first, truncate to limit, then apply the CRM type filter.

    The sort is stable, so items with equal timestamps keep database-before-CRM
    order and their order within each source.
    """
    merged = sorted([*db_items, *crm_items], key=effective_timestamp, reverse=True)
    merged = merged[:limit]

    if type_filter:
        merged = [
            item
            for item in merged
            if item.source is CommunicationSource.DATABASE
            or matches_crm_type_filter(item.type, type_filter)
        ]
    return merged


# =============================================================================
# Per-request orchestration
# =============================================================================

def _load_records(
    session_factory: sessionmaker,
    client_id: UUID,
    comm_type: str | None,
    limit: int,
    offset: int,
) -> list[CommunicationRead]:
    db = session_factory()
    try:
        records = communication_service.list_client_communications(
            db, client_id, comm_type=comm_type, limit=limit, offset=offset
        )
        return [communication_service.to_communication_read(r) for r in records]
    finally:
        db.close()


def _load_contact(session_factory: sessionmaker, client_id: UUID) -> CrmContactRef | None:
    db = session_factory()
    try:
        client = communication_service.get_client(db, client_id)
        return CrmContactRef.from_client(client) if client else None
    except SQLAlchemyError as exc:
        logger.exception("Error loading client", extra=build_log_context(client_id=client_id))
        raise CommunicationFetchError() from exc
    finally:
        db.close()


async def get_client_timeline(
    session_factory: sessionmaker,
    client_id: UUID,
    *,
    bridge: CrmMessageBridge | None = None,
    comm_type: str | None = None,
    include_external: bool = True,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[CommunicationRead]:
    """
    Merged timeline for one client.

    Records and the client row are loaded concurrently. CRM messages are added
    when requested and the integration is configured; CRM failures degrade to
    a database-only timeline.

    Raises:
        CommunicationFetchError: storage failure
        ClientNotFoundError: unknown client
    """
    limit = clamp_limit(limit)
    offset = max(0, offset)

    db_items, contact = await asyncio.gather(
        anyio.to_thread.run_sync(
            _load_records,
            session_factory,
            client_id,
            comm_type,
            limit * DB_FETCH_MULTIPLIER,
            offset,
        ),
        anyio.to_thread.run_sync(_load_contact, session_factory, client_id),
    )
    if contact is None:
        raise ClientNotFoundError(client_id)

    crm_items: list[CommunicationRead] = []
    if include_external and bridge is not None and bridge.is_enabled():
        crm_items = await bridge.fetch_messages(contact, limit=limit)

    return merge_timeline(db_items, crm_items, type_filter=comm_type, limit=limit)
