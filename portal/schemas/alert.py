"""Pydantic schemas for system alerts."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class AlertRead(BaseModel):
    """System alert response schema."""
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: UUID
    severity: str
    category: str
    message: str
    metadata: dict[str, Any] | None = Field(None, validation_alias="alert_metadata")
    source_file: str | None = None
    client_id: UUID | None = None
    user_id: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    created_at: datetime


class AlertListResponse(BaseModel):
    alerts: list[AlertRead]


class AlertResolveRequest(BaseModel):
    """Resolve (or reopen) one alert or a batch of alerts."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    alert_id: UUID | None = None
    alert_ids: list[UUID] | None = None
    resolved: bool = True

    @model_validator(mode="after")
    def _require_target(self) -> "AlertResolveRequest":
        if not self.alert_id and not self.alert_ids:
            raise ValueError("alertId or alertIds is required")
        return self

    @property
    def target_ids(self) -> list[UUID]:
        ids = list(self.alert_ids or [])
        if self.alert_id and self.alert_id not in ids:
            ids.append(self.alert_id)
        return ids


class AlertResolveResponse(BaseModel):
    updated: int
