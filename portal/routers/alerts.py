"""Admin alerts router - list and resolve system alerts."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from portal.core.deps import get_db, require_admin, require_csrf_header
from portal.db.enums import AlertCategory, AlertSeverity
from portal.schemas.alert import (
    AlertListResponse,
    AlertRead,
    AlertResolveRequest,
    AlertResolveResponse,
)
from portal.schemas.auth import UserSession
from portal.services import alert_service

router = APIRouter(prefix="/admin/alerts", tags=["Admin - Alerts"])


@router.get("", response_model=AlertListResponse)
def list_alerts(
    severity: AlertSeverity | None = Query(None),
    category: AlertCategory | None = Query(None),
    unresolved: bool = Query(False),
    limit: int = Query(50),
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """List alerts newest first (limit capped at 100)."""
    alerts = alert_service.list_alerts(
        db,
        severity=severity,
        category=category,
        unresolved_only=unresolved,
        limit=limit,
    )
    return AlertListResponse(alerts=[AlertRead.model_validate(a) for a in alerts])


@router.patch(
    "",
    response_model=AlertResolveResponse,
    dependencies=[Depends(require_csrf_header)],
)
def resolve_alerts(
    data: AlertResolveRequest,
    session: UserSession = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Resolve (or reopen with resolved=false) one or more alerts."""
    updated = alert_service.set_alerts_resolved(
        db,
        data.target_ids,
        resolved=data.resolved,
        user_id=session.user_id,
    )
    return AlertResolveResponse(updated=updated)
