"""AckEvent — append-only audit record of one acknowledgment action."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from alertbridge.models.alert import utc_now

AckSource = Literal["slack", "pagerduty", "api"]
AckAction = Literal["ack", "resolve"]

ACK_SOURCES: tuple[str, ...] = ("slack", "pagerduty", "api")


class AckEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    alert_id: str
    source: AckSource
    action: AckAction = "ack"
    user_id: str = ""
    user_email: str = ""
    user_name: str = ""
    note: str = ""
    # Silence duration picked in the acknowledging UI, if it offered one.
    # Informational only: creating the silence is a separate call.
    duration: timedelta | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def actor(self) -> str:
        """Best available display identity for the acknowledging user."""
        return self.user_name or self.user_email or self.user_id or self.source
