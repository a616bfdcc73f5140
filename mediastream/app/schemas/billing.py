"""API schemas for billing endpoints."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class WebhookAcknowledgement(BaseModel):
    received: bool = True
    event_id: Optional[str] = Field(alias="eventId", default=None)
    event_type: Optional[str] = Field(alias="eventType", default=None)
    handled: bool = True

    model_config = ConfigDict(populate_by_name=True)
