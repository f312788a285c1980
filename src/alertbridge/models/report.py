"""AlertReport — one inbound report from a monitoring source."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from alertbridge.models.alert import SEVERITIES, Severity

ReportStatus = Literal["firing", "resolved"]


class AlertReport(BaseModel):
    """Payload handed to the ingestor by whatever receives alert webhooks."""

    model_config = ConfigDict(populate_by_name=True)

    fingerprint: str
    name: str
    instance: str = ""
    target: str = ""
    summary: str = ""
    description: str = ""
    severity: Severity = "warning"
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    fired_at: datetime | None = None
    status: ReportStatus = "firing"

    @field_validator("severity", mode="before")
    @classmethod
    def _normalize_severity(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.strip().lower()
            if v not in SEVERITIES:
                return "warning"
        return v

    @field_validator("fingerprint")
    @classmethod
    def _require_fingerprint(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("fingerprint must not be empty")
        return v

    @property
    def is_resolved(self) -> bool:
        return self.status == "resolved"
