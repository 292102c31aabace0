"""Mailgun email sending and webhook verification."""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from dataclasses import dataclass

import httpx

from portal.core.config import settings
from portal.core.structured_logging import build_log_context
from portal.services.http_service import DEFAULT_RETRY_STATUSES, request_with_retries

logger = logging.getLogger(__name__)

MAILGUN_TIMEOUT_SECONDS = 15.0
MAILGUN_MAX_ATTEMPTS = 3
MAILGUN_RETRY_BASE_DELAY = 1.0
MAILGUN_RETRY_MAX_DELAY = 8.0
DEFAULT_REPLY_TO = "support@pyrusdigitalmedia.com"

_LOG_EXTRA = build_log_context(integration="mailgun")


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


def is_configured() -> bool:
    return bool(settings.MAILGUN_API_KEY and settings.MAILGUN_DOMAIN)


def html_to_text(content: str) -> str:
    """Plain-text fallback for an HTML body."""
    text = re.sub(r"<style[^>]*>[\s\S]*?</style>", "", content, flags=re.IGNORECASE)
    text = re.sub(r"<script[^>]*>[\s\S]*?</script>", "", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\s+", " ", text).strip()


async def send_email(
    to: str,
    subject: str,
    html: str,
    *,
    text: str | None = None,
    tags: list[str] | None = None,
    reply_to: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> SendResult:
    """
    Send a tracked email through the Mailgun messages API.

    Never raises; transport and API errors come back as a failed SendResult.
    """
    if not is_configured():
        logger.warning("Mailgun not configured, skipping email send", extra=_LOG_EXTRA)
        return SendResult(success=False, error="Mailgun not configured")

    url = f"{settings.MAILGUN_API_BASE.rstrip('/')}/{settings.MAILGUN_DOMAIN}/messages"
    data: dict[str, str | list[str]] = {
        "from": settings.MAILGUN_FROM_EMAIL or f"postmaster@{settings.MAILGUN_DOMAIN}",
        "to": to,
        "subject": subject,
        "html": html,
        "text": text or html_to_text(html),
        "h:Reply-To": reply_to or DEFAULT_REPLY_TO,
        "o:tag": tags or ["transactional"],
        "o:tracking": "yes",
        "o:tracking-clicks": "htmlonly",
        "o:tracking-opens": "yes",
    }
    auth = ("api", settings.MAILGUN_API_KEY)

    async def _post(client: httpx.AsyncClient) -> httpx.Response:
        async def request_fn() -> httpx.Response:
            return await client.post(url, data=data, auth=auth)

        return await request_with_retries(
            request_fn,
            integration="mailgun",
            max_attempts=MAILGUN_MAX_ATTEMPTS,
            base_delay=MAILGUN_RETRY_BASE_DELAY,
            max_delay=MAILGUN_RETRY_MAX_DELAY,
            retry_statuses=DEFAULT_RETRY_STATUSES,
        )

    try:
        if http_client is not None:
            response = await _post(http_client)
        else:
            async with httpx.AsyncClient(timeout=MAILGUN_TIMEOUT_SECONDS) as client:
                response = await _post(client)
    except httpx.TimeoutException:
        logger.warning("Mailgun timeout", extra=_LOG_EXTRA)
        return SendResult(success=False, error="Connection timeout")
    except httpx.HTTPError as exc:
        logger.exception("Mailgun connection error", extra=_LOG_EXTRA)
        return SendResult(success=False, error=f"Connection error: {exc.__class__.__name__}")

    if 200 <= response.status_code < 300:
        message_id = None
        try:
            message_id = response.json().get("id")
        except ValueError:
            pass
        logger.info("Email sent, message_id=%s", message_id, extra=_LOG_EXTRA)
        return SendResult(success=True, message_id=message_id)

    error_detail = None
    try:
        body = response.json()
        if isinstance(body, dict):
            error_detail = body.get("message")
    except ValueError:
        pass

    error_msg = f"Mailgun API error: {response.status_code}"
    if error_detail:
        error_msg = f"{error_msg} ({error_detail})"
    logger.warning(error_msg, extra=_LOG_EXTRA)
    return SendResult(success=False, error=error_msg)


def verify_webhook_signature(signing_key: str, timestamp: str, token: str, signature: str) -> bool:
    """Mailgun signs hex(HMAC-SHA256(key, timestamp + token))."""
    expected = hmac.new(
        signing_key.encode("utf-8"),
        f"{timestamp}{token}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature)
