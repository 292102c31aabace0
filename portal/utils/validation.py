"""Input validation helpers shared by routers."""

import re
from uuid import UUID

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_uuid(value: str | None) -> bool:
    """True when value has the canonical 8-4-4-4-12 hex UUID shape."""
    return bool(value) and UUID_PATTERN.fullmatch(value) is not None


def parse_client_id(value: str | None) -> UUID | None:
    """Return the UUID for a well-formed client id, None otherwise."""
    if not is_valid_uuid(value):
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


def normalize_email(email: str | None) -> str | None:
    """Lowercase and strip an email address; None if empty."""
    if not email:
        return None
    return email.strip().lower() or None
