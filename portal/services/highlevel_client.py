"""HighLevel CRM API client.

V1 API (rest.gohighlevel.com) works with the location API key and is used for
contact lookups. V2 API (services.leadconnectorhq.com) requires OAuth and is
used for conversations and messages.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

import httpx

from portal.core.config import settings
from portal.core.structured_logging import build_log_context
from portal.services.highlevel_oauth_service import HighLevelTokenProvider
from portal.utils.datetime_parsing import parse_iso_datetime

logger = logging.getLogger(__name__)

V1_BASE_URL = "https://rest.gohighlevel.com/v1"
V2_BASE_URL = "https://services.leadconnectorhq.com"
V2_API_VERSION = "2021-07-28"
CONTACT_SEARCH_LIMIT = 10

_LOG_EXTRA = build_log_context(integration="highlevel")


# ============================================================================
# Configuration
# ============================================================================


@dataclass(frozen=True)
class HighLevelConfig:
    """Credentials and limits for the HighLevel integration."""

    api_key: str = ""
    location_id: str = ""
    timeout_seconds: float = 8.0
    v1_base_url: str = V1_BASE_URL
    v2_base_url: str = V2_BASE_URL

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.location_id)

    @classmethod
    def from_settings(cls) -> "HighLevelConfig":
        return cls(
            api_key=settings.HIGHLEVEL_API_KEY,
            location_id=settings.HIGHLEVEL_LOCATION_ID,
            timeout_seconds=settings.HIGHLEVEL_TIMEOUT_SECONDS,
        )


class HighLevelAPIError(Exception):
    """HighLevel returned a non-2xx response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _message_sort_key(message: dict[str, Any]) -> float:
    parsed = parse_iso_datetime(message.get("dateAdded"))
    return parsed.timestamp() if parsed else 0.0


# ============================================================================
# Client
# ============================================================================


class HighLevelClient:
    """
    Async HighLevel client.

    An httpx.AsyncClient may be injected (tests pass one backed by
    httpx.MockTransport); otherwise a short-lived client is opened per call.
    """

    def __init__(
        self,
        config: HighLevelConfig,
        *,
        token_provider: HighLevelTokenProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.token_provider = token_provider
        self._http_client = http_client

    def is_configured(self) -> bool:
        return self.config.is_configured

    async def _send(self, url: str, *, headers: dict[str, str], params: dict[str, Any] | None) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.get(url, headers=headers, params=params)
        timeout = httpx.Timeout(self.config.timeout_seconds, connect=min(5.0, self.config.timeout_seconds))
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.get(url, headers=headers, params=params)

    @staticmethod
    def _raise_for_status(response: httpx.Response, api: str) -> None:
        if response.status_code >= 400:
            logger.error(
                "HighLevel %s API error: %s %s",
                api,
                response.status_code,
                response.text[:500],
                extra=_LOG_EXTRA,
            )
            raise HighLevelAPIError(
                f"HighLevel {api} API error: {response.status_code}",
                status_code=response.status_code,
            )

    async def _get_v1(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self.config.is_configured:
            raise HighLevelAPIError("HighLevel API key or location id is not set")
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        response = await self._send(f"{self.config.v1_base_url}{path}", headers=headers, params=params)
        self._raise_for_status(response, "V1")
        return response.json()

    async def _get_v2(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        """V2 GET; None when no OAuth token is available."""
        access_token = await self.get_access_token()
        if not access_token:
            logger.info("HighLevel V2 API: no valid OAuth token available", extra=_LOG_EXTRA)
            return None
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Version": V2_API_VERSION,
        }
        response = await self._send(f"{self.config.v2_base_url}{path}", headers=headers, params=params)
        self._raise_for_status(response, "V2")
        return response.json()

    async def get_access_token(self) -> str | None:
        if self.token_provider is None:
            return None
        return await self.token_provider.get_access_token()

    async def has_oauth(self) -> bool:
        """True when the V2 conversations API is usable."""
        return await self.get_access_token() is not None

    # ------------------------------------------------------------------
    # Contacts (V1)
    # ------------------------------------------------------------------

    async def get_contact_by_email(self, email: str) -> dict[str, Any] | None:
        """Exact (case-insensitive) email match among the search results."""
        payload = await self._get_v1(
            "/contacts/", params={"query": email, "limit": CONTACT_SEARCH_LIMIT}
        )
        wanted = email.strip().lower()
        for contact in payload.get("contacts") or []:
            if (contact.get("email") or "").lower() == wanted:
                return contact
        return None

    async def get_contact_by_id(self, contact_id: str) -> dict[str, Any] | None:
        payload = await self._get_v1(f"/contacts/{contact_id}")
        return payload.get("contact") or None

    # ------------------------------------------------------------------
    # Conversations (V2)
    # ------------------------------------------------------------------

    async def get_conversations_by_contact_id(self, contact_id: str) -> list[dict[str, Any]]:
        payload = await self._get_v2(
            "/conversations/search",
            params={"locationId": self.config.location_id, "contactId": contact_id},
        )
        if payload is None:
            return []
        return payload.get("conversations") or []

    async def get_messages_by_conversation_id(
        self, conversation_id: str, limit: int = 50
    ) -> list[dict[str, Any]]:
        payload = await self._get_v2(
            f"/conversations/{conversation_id}/messages", params={"limit": limit}
        )
        if payload is None:
            return []
        # Either {"messages": [...]} or {"messages": {"messages": [...], "nextPage": ...}}
        messages = payload.get("messages")
        if isinstance(messages, list):
            return messages
        if isinstance(messages, dict) and isinstance(messages.get("messages"), list):
            return messages["messages"]
        return []

    async def get_all_messages_for_contact(
        self, contact_id: str, limit: int = 100
    ) -> list[dict[str, Any]]:
        """
        Most recent messages across all of a contact's conversations.

        The limit is split evenly across conversations; a conversation that
        fails to load is logged and skipped.
        """
        if not await self.has_oauth():
            logger.info("HighLevel: OAuth not configured, cannot fetch messages", extra=_LOG_EXTRA)
            return []

        conversations = await self.get_conversations_by_contact_id(contact_id)
        if not conversations:
            return []

        per_conversation = math.ceil(limit / len(conversations))
        messages: list[dict[str, Any]] = []
        for conversation in conversations:
            try:
                messages.extend(
                    await self.get_messages_by_conversation_id(conversation["id"], per_conversation)
                )
            except (HighLevelAPIError, httpx.HTTPError, KeyError, ValueError) as exc:
                logger.warning(
                    "Error fetching messages for conversation %s: %s",
                    conversation.get("id"),
                    exc.__class__.__name__,
                    extra=_LOG_EXTRA,
                )

        messages.sort(key=_message_sort_key, reverse=True)
        return messages[:limit]
