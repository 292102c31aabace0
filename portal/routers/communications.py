"""Communications router: merged client timelines, summaries, and admin sends."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, sessionmaker

from portal.core.deps import (
    get_crm_bridge,
    get_current_session,
    get_db,
    get_session_factory,
    require_admin,
    require_csrf_header,
)
from portal.core.structured_logging import build_log_context
from portal.schemas.auth import UserSession
from portal.schemas.communication import (
    CommunicationCreate,
    CommunicationRead,
    CommunicationSummary,
)
from portal.services import communication_service, timeline_service
from portal.services.communication_service import ClientNotFoundError, CommunicationFetchError
from portal.services.crm_bridge import CrmMessageBridge
from portal.utils.validation import parse_client_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Communications"])


def _require_client_id(raw: str | None) -> UUID:
    client_id = parse_client_id(raw)
    if client_id is None:
        raise HTTPException(status_code=400, detail="Invalid client ID format")
    return client_id


def _resolve_client_scope(session: UserSession, raw_client_id: str | None) -> UUID:
    """
    Client users may only read their own client; admins must name one.

    A missing clientId falls back to the session's client.
    """
    if not raw_client_id:
        if session.client_id is None:
            raise HTTPException(status_code=404, detail="No client associated with user")
        return session.client_id

    client_id = _require_client_id(raw_client_id)
    if not session.is_admin and client_id != session.client_id:
        raise HTTPException(status_code=403, detail="Not authorized for this client")
    return client_id


async def _timeline(
    session_factory: sessionmaker,
    bridge: CrmMessageBridge,
    client_id: UUID,
    *,
    comm_type: str | None,
    include_external: bool,
    limit: int,
    offset: int,
    route: str,
) -> list[CommunicationRead]:
    try:
        return await timeline_service.get_client_timeline(
            session_factory,
            client_id,
            bridge=bridge,
            comm_type=comm_type or None,
            include_external=include_external,
            limit=limit,
            offset=offset,
        )
    except ClientNotFoundError:
        raise HTTPException(status_code=404, detail="Client not found")
    except CommunicationFetchError:
        logger.error(
            "Error fetching communications",
            extra=build_log_context(client_id=client_id, route=route),
        )
        raise HTTPException(status_code=500, detail="Failed to fetch communications")


# =============================================================================
# Admin
# =============================================================================

@router.get(
    "/admin/clients/{client_id}/communications",
    response_model=list[CommunicationRead],
)
async def list_client_communications_admin(
    client_id: str,
    comm_type: str | None = Query(None, alias="type"),
    include_external: bool = Query(True, alias="includeExternal"),
    limit: int = Query(timeline_service.DEFAULT_LIMIT),
    offset: int = Query(0),
    session: UserSession = Depends(require_admin),
    session_factory: sessionmaker = Depends(get_session_factory),
    bridge: CrmMessageBridge = Depends(get_crm_bridge),
):
    """Merged timeline (database + HighLevel) for any client."""
    return await _timeline(
        session_factory,
        bridge,
        _require_client_id(client_id),
        comm_type=comm_type,
        include_external=include_external,
        limit=limit,
        offset=offset,
        route="admin.communications.list",
    )


@router.post(
    "/admin/clients/{client_id}/communications",
    response_model=CommunicationRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_client_communication(
    client_id: str,
    data: CommunicationCreate,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Record a communication; result alerts with a recipient are emailed via Mailgun."""
    parsed_id = _require_client_id(client_id)
    try:
        record = communication_service.create_communication(
            db, parsed_id, data, created_by=session.user_id
        )
    except ClientNotFoundError:
        raise HTTPException(status_code=404, detail="Client not found")
    return communication_service.to_communication_read(record)


# =============================================================================
# Client portal
# =============================================================================

@router.get("/client/communications", response_model=list[CommunicationRead])
async def list_my_communications(
    client_id: str | None = Query(None, alias="clientId"),
    comm_type: str | None = Query(None, alias="type"),
    include_external: bool = Query(True, alias="includeExternal"),
    limit: int = Query(timeline_service.DEFAULT_LIMIT),
    offset: int = Query(0),
    session: UserSession = Depends(get_current_session),
    session_factory: sessionmaker = Depends(get_session_factory),
    bridge: CrmMessageBridge = Depends(get_crm_bridge),
):
    """Merged timeline for the caller's client (admins may pass any clientId)."""
    return await _timeline(
        session_factory,
        bridge,
        _resolve_client_scope(session, client_id),
        comm_type=comm_type,
        include_external=include_external,
        limit=limit,
        offset=offset,
        route="client.communications.list",
    )


@router.get("/client/communications/summary", response_model=CommunicationSummary)
async def get_my_communication_summary(
    client_id: str | None = Query(None, alias="clientId"),
    session: UserSession = Depends(get_current_session),
    session_factory: sessionmaker = Depends(get_session_factory),
    bridge: CrmMessageBridge = Depends(get_crm_bridge),
):
    """Delivery and engagement counts over the merged timeline."""
    items = await _timeline(
        session_factory,
        bridge,
        _resolve_client_scope(session, client_id),
        comm_type=None,
        include_external=True,
        limit=timeline_service.MAX_LIMIT,
        offset=0,
        route="client.communications.summary",
    )
    return communication_service.summarize_communications(items)
