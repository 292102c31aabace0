"""Webhooks router - Mailgun delivery tracking."""

import json
import logging
from typing import Any

import anyio
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.deps import get_db
from portal.services import communication_service, mailgun_service
from portal.utils.datetime_parsing import parse_epoch

router = APIRouter(prefix="/mailgun", tags=["Webhooks"])
logger = logging.getLogger(__name__)


async def _read_event(request: Request) -> dict[str, Any]:
    """
    Parse a Mailgun webhook body.

    JSON bodies carry {"signature": {...}, "event-data": {...}}. Form posts
    carry the same as an "event-data" JSON field, or legacy flat fields.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = json.loads(await request.body())
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        return payload

    form = await request.form()
    event_data = form.get("event-data")
    if isinstance(event_data, str):
        try:
            payload = {"event-data": json.loads(event_data)}
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON")
        signature = form.get("signature")
        if isinstance(signature, str):
            try:
                payload["signature"] = json.loads(signature)
            except ValueError:
                pass
        return payload
    return {key: value for key, value in form.items() if isinstance(value, str)}


def _signature_parts(payload: dict[str, Any]) -> tuple[str, str, str] | None:
    signature = payload.get("signature")
    if isinstance(signature, dict):
        parts = (signature.get("timestamp"), signature.get("token"), signature.get("signature"))
    else:
        # Legacy flat form fields
        parts = (payload.get("timestamp"), payload.get("token"), signature)
    if all(parts):
        return tuple(str(p) for p in parts)  # type: ignore[return-value]
    return None


@router.post("/webhook")
async def receive_mailgun_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Mailgun tracking events (delivered, opened, clicked, failed, bounced, ...).

    Processing errors still return 200 so Mailgun does not retry.
    """
    payload = await _read_event(request)

    signing_key = settings.MAILGUN_WEBHOOK_SIGNING_KEY
    if signing_key:
        parts = _signature_parts(payload)
        if parts and not mailgun_service.verify_webhook_signature(signing_key, *parts):
            logger.warning("Invalid Mailgun webhook signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

    event = payload.get("event-data") if isinstance(payload.get("event-data"), dict) else payload
    event_type = event.get("event")
    recipient = event.get("recipient")
    logger.info("Mailgun webhook: %s", event_type)

    if not recipient:
        return {"received": True}

    try:
        await anyio.to_thread.run_sync(
            communication_service.apply_delivery_event,
            db,
            event_type,
            recipient,
            parse_epoch(event.get("timestamp")),
        )
    except SQLAlchemyError:
        logger.exception("Mailgun webhook processing error")
        return {"received": True, "error": "Processing error"}

    return {"received": True}


@router.get("/webhook")
def mailgun_webhook_status():
    """Mailgun may probe the endpoint with GET."""
    return {"status": "Mailgun webhook endpoint active"}
