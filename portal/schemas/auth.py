"""Authentication-related Pydantic schemas."""

from uuid import UUID

from pydantic import BaseModel

from portal.db.enums import Role


class TokenPayload(BaseModel):
    """Decoded JWT payload structure."""
    sub: str  # user_id (auth provider id)
    role: str
    client_id: UUID | None = None


class UserSession(BaseModel):
    """
    Session context for authenticated requests.

    Returned by the get_current_session dependency; client_id is set for
    client users and empty for agency staff.
    """
    user_id: str
    role: Role
    client_id: UUID | None = None

    @property
    def is_admin(self) -> bool:
        return self.role.is_admin
