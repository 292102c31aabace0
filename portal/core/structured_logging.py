"""Structured logging helpers (PII-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    client_id: UUID | str | None = None,
    user_id: UUID | str | None = None,
    route: str | None = None,
    integration: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict for ``logger.*(..., extra=...)``."""
    context: dict[str, Any] = {}
    if client_id:
        context["client_id"] = str(client_id)
    if user_id:
        context["user_id"] = str(user_id)
    if route:
        context["route"] = route
    if integration:
        context["integration"] = integration
    return context
