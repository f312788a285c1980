"""PagerDuty V3 webhook events mapped onto the ack synchronizer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, field_validator

from alertbridge.errors import InvalidTransitionError
from alertbridge.models import Alert
from alertbridge.repositories import AlertRepository
from alertbridge.services.ack_sync import AckSynchronizer

logger = logging.getLogger(__name__)

ACKNOWLEDGED = "incident.acknowledged"
RESOLVED = "incident.resolved"

# Recorded in the log only; they carry no state change for the alert.
INFORMATIONAL_EVENTS = frozenset(
    {
        "incident.unacknowledged",
        "incident.escalated",
        "incident.priority_updated",
        "incident.responder_added",
        "incident.status_update_published",
        "incident.triggered",
        "incident.reassigned",
        "incident.annotated",
    }
)


class PagerDutyAgent(BaseModel):
    id: str = ""
    summary: str = ""
    type: str = ""
    email: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _none_as_empty(cls, v: object) -> object:
        return "" if v is None else v


class PagerDutyIncident(BaseModel):
    id: str = ""
    incident_key: str = ""
    title: str = ""
    status: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _none_as_empty(cls, v: object) -> object:
        return "" if v is None else v


class PagerDutyEvent(BaseModel):
    id: str = ""
    event_type: str
    resource_type: str = "incident"
    occurred_at: str = ""
    agent: PagerDutyAgent | None = None
    data: PagerDutyIncident = Field(default_factory=PagerDutyIncident)


@dataclass
class WebhookResult:
    event_type: str
    handled: bool
    alert_id: str | None = None
    detail: str = ""


class PagerDutyWebhookProcessor:
    def __init__(
        self,
        alerts: AlertRepository,
        synchronizer: AckSynchronizer,
        *,
        logger: logging.Logger = logger,
    ) -> None:
        self._alerts = alerts
        self._sync = synchronizer
        self._logger = logger

    async def process(self, payload: dict[str, Any]) -> WebhookResult:
        """Handle one webhook body (``{"event": {...}}`` or the bare event)."""
        event = PagerDutyEvent.model_validate(payload.get("event", payload))
        event_type = event.event_type

        if event_type not in (ACKNOWLEDGED, RESOLVED):
            if event_type in INFORMATIONAL_EVENTS:
                self._logger.info(
                    "pagerduty %s for incident %s", event_type, event.data.id
                )
                return WebhookResult(event_type, handled=False, detail="informational")
            self._logger.debug("ignoring pagerduty event type %s", event_type)
            return WebhookResult(event_type, handled=False, detail="unsupported event type")

        alert = await self.find_alert(event.data)
        if alert is None:
            self._logger.warning(
                "pagerduty %s: no alert for incident %s (key %s)",
                event_type,
                event.data.id,
                event.data.incident_key,
            )
            return WebhookResult(event_type, handled=False, detail="alert not found")

        agent = event.agent or PagerDutyAgent()
        action = "ack" if event_type == ACKNOWLEDGED else "resolve"
        try:
            result = await self._sync.sync_ack(
                alert.id,
                "pagerduty",
                action=action,
                user_id=agent.id,
                user_email=agent.email,
                user_name=agent.summary,
            )
        except InvalidTransitionError as exc:
            self._logger.info("pagerduty %s ignored: %s", event_type, exc)
            return WebhookResult(event_type, handled=False, alert_id=alert.id, detail=str(exc))

        detail = "" if result.changed else f"already {result.alert.state}"
        return WebhookResult(event_type, handled=result.changed, alert_id=alert.id, detail=detail)

    async def find_alert(self, incident: PagerDutyIncident) -> Alert | None:
        """PagerDuty reference first, then fingerprint (preferring a firing alert)."""
        for ref in (incident.incident_key, incident.id):
            if ref:
                alert = await self._alerts.find_by_external_reference("pagerduty", ref)
                if alert is not None:
                    return alert
        if not incident.incident_key:
            return None
        alert = await self._alerts.find_firing_by_fingerprint(incident.incident_key)
        if alert is not None:
            return alert
        matches = await self._alerts.find_by_fingerprint(incident.incident_key)
        return matches[0] if matches else None
