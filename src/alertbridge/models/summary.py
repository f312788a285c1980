"""Aggregate view over firing alerts."""

from __future__ import annotations

from datetime import timedelta

from pydantic import BaseModel, Field


class UserAckCount(BaseModel):
    user: str
    count: int


class AlertSummary(BaseModel):
    total: int = 0
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_state: dict[str, int] = Field(default_factory=dict)
    by_instance: dict[str, int] = Field(default_factory=dict)
    top_acknowledgers: list[UserAckCount] = Field(default_factory=list)
    period: timedelta | None = None
