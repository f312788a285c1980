"""PagerDuty destination — Events API v2 over httpx.

The incident reference is the event ``dedup_key``; it defaults to the alert
fingerprint so re-fires of one condition land on the same incident.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

import httpx

from alertbridge.models import AckEvent, Alert
from alertbridge.notifiers import http
from alertbridge.notifiers.base import Notifier

logger = logging.getLogger(__name__)

PAGERDUTY_EVENTS_URL = "https://events.pagerduty.com"

EventAction = Literal["trigger", "acknowledge", "resolve"]

_SEVERITY_MAP = {
    "critical": "critical",
    "warning": "warning",
    "info": "info",
}


def dedup_key(alert: Alert) -> str:
    return alert.get_external_reference("pagerduty") or alert.fingerprint or alert.id


def format_summary(alert: Alert) -> str:
    summary = f"[{alert.severity.upper()}] {alert.name}"
    if alert.instance:
        summary += f" on {alert.instance}"
    if alert.summary:
        summary += f" - {alert.summary}"
    return summary[:1024]


class PagerDutyNotifier(Notifier):
    name = "pagerduty"
    supports_ack = True

    def __init__(
        self,
        routing_key: str,
        *,
        events_url: str = PAGERDUTY_EVENTS_URL,
        default_severity: str = "warning",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._routing_key = routing_key
        self._events_url = events_url.rstrip("/")
        self._default_severity = default_severity
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _payload(self, action: EventAction, key: str, alert: Alert) -> dict[str, Any]:
        body: dict[str, Any] = {
            "routing_key": self._routing_key,
            "event_action": action,
            "dedup_key": key,
        }
        if action == "trigger":
            details = {
                "alert_id": alert.id,
                "fingerprint": alert.fingerprint,
                "description": alert.description,
                **{f"label_{k}": v for k, v in alert.labels.items()},
            }
            body["payload"] = {
                "summary": format_summary(alert),
                "source": alert.instance or alert.target or "alertbridge",
                "severity": _SEVERITY_MAP.get(alert.severity, self._default_severity),
                "timestamp": alert.fired_at.isoformat(),
                "custom_details": details,
            }
            if alert.target:
                body["payload"]["component"] = alert.target
        return body

    async def _enqueue(self, action: EventAction, key: str, alert: Alert) -> str:
        response = await http.send(
            lambda: self._client.post(
                f"{self._events_url}/v2/enqueue", json=self._payload(action, key, alert)
            ),
            f"pagerduty {action}",
        )
        data = response.json() if response.content else {}
        returned = data.get("dedup_key") or key
        logger.info("pagerduty %s for alert %s (dedup_key=%s)", action, alert.id, returned)
        return returned

    async def notify(self, alert: Alert) -> str:
        return await self._enqueue("trigger", dedup_key(alert), alert)

    async def update_message(self, reference: str, alert: Alert) -> None:
        if alert.is_resolved:
            action: EventAction = "resolve"
        elif alert.is_acked:
            action = "acknowledge"
        else:
            action = "trigger"
        await self._enqueue(action, reference, alert)

    async def acknowledge(self, alert: Alert, event: AckEvent) -> None:
        await self._enqueue("acknowledge", dedup_key(alert), alert)

    async def resolve(self, alert: Alert) -> None:
        await self._enqueue("resolve", dedup_key(alert), alert)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
