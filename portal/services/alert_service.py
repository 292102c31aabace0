"""
System alerts service.

Writes operational alerts (CRM failures, email failures, ...) to system_alerts
and mirrors them to the application log. Writing an alert must never break the
caller, so persistence failures are logged and swallowed.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import anyio
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from portal.core.async_utils import spawn_detached
from portal.core.structured_logging import build_log_context
from portal.db.enums import AlertCategory, AlertSeverity
from portal.db.models import SystemAlert

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100

_LOG_LEVELS = {
    AlertSeverity.CRITICAL: logging.ERROR,
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.INFO: logging.INFO,
}


def log_alert(
    db: Session,
    *,
    severity: AlertSeverity,
    category: AlertCategory,
    message: str,
    metadata: dict[str, Any] | None = None,
    source_file: str | None = None,
    client_id: UUID | None = None,
    user_id: str | None = None,
) -> SystemAlert | None:
    """Persist an alert and log it. Returns None if the write failed."""
    logger.log(
        _LOG_LEVELS.get(severity, logging.INFO),
        "[%s] %s: %s",
        severity.value.upper(),
        category.value,
        message,
        extra=build_log_context(client_id=client_id, user_id=user_id),
    )

    alert = SystemAlert(
        severity=severity.value,
        category=category.value,
        message=message,
        alert_metadata=metadata or {},
        source_file=source_file,
        client_id=client_id,
        user_id=user_id,
    )
    try:
        db.add(alert)
        db.commit()
        db.refresh(alert)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to write system alert (%s)", category.value)
        return None
    return alert


def log_crm_error(
    db: Session,
    message: str,
    *,
    client_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
    source_file: str | None = None,
) -> SystemAlert | None:
    """HighLevel lookup/fetch failure."""
    return log_alert(
        db,
        severity=AlertSeverity.WARNING,
        category=AlertCategory.CRM_ERROR,
        message=message,
        metadata=metadata,
        source_file=source_file,
        client_id=client_id,
    )


def log_email_error(
    db: Session,
    message: str,
    *,
    recipient: str | None = None,
    client_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
    source_file: str | None = None,
) -> SystemAlert | None:
    """Mailgun send failure."""
    details = dict(metadata or {})
    if recipient:
        details["recipient"] = recipient
    return log_alert(
        db,
        severity=AlertSeverity.WARNING,
        category=AlertCategory.EMAIL_ERROR,
        message=message,
        metadata=details,
        source_file=source_file,
        client_id=client_id,
    )


def _write_alert_in_new_session(session_factory: sessionmaker, kwargs: dict[str, Any]) -> None:
    db = session_factory()
    try:
        log_alert(db, **kwargs)
    finally:
        db.close()


def report_alert_detached(
    session_factory: sessionmaker,
    *,
    severity: AlertSeverity,
    category: AlertCategory,
    message: str,
    metadata: dict[str, Any] | None = None,
    source_file: str | None = None,
    client_id: UUID | None = None,
    user_id: str | None = None,
) -> asyncio.Task:
    """
    Write an alert from async code without awaiting it.

    The write runs in a worker thread on its own session; the returned task is
    only useful to tests that want to wait for it.
    """
    kwargs = {
        "severity": severity,
        "category": category,
        "message": message,
        "metadata": metadata,
        "source_file": source_file,
        "client_id": client_id,
        "user_id": user_id,
    }

    async def _write() -> None:
        await anyio.to_thread.run_sync(_write_alert_in_new_session, session_factory, kwargs)

    return spawn_detached(_write(), name=f"alert:{category.value}")


def list_alerts(
    db: Session,
    *,
    severity: AlertSeverity | None = None,
    category: AlertCategory | None = None,
    unresolved_only: bool = False,
    limit: int = 50,
) -> list[SystemAlert]:
    """List alerts newest first with optional filtering."""
    query = db.query(SystemAlert)

    if severity:
        query = query.filter(SystemAlert.severity == severity.value)
    if category:
        query = query.filter(SystemAlert.category == category.value)
    if unresolved_only:
        query = query.filter(SystemAlert.resolved_at.is_(None))

    limit = max(1, min(limit, MAX_LIST_LIMIT))
    return query.order_by(SystemAlert.created_at.desc()).limit(limit).all()


def set_alerts_resolved(
    db: Session,
    alert_ids: list[UUID],
    *,
    resolved: bool,
    user_id: str | None,
) -> int:
    """Resolve (or reopen) alerts by id. Returns the number of rows updated."""
    if not alert_ids:
        return 0
    if resolved:
        values = {"resolved_at": datetime.now(timezone.utc), "resolved_by": user_id}
    else:
        values = {"resolved_at": None, "resolved_by": None}

    result = db.execute(
        update(SystemAlert)
        .where(SystemAlert.id.in_(alert_ids))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0
