"""Slack destination — Web API over httpx.

Message references have the form ``"<channel>:<ts>"``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from alertbridge.errors import PermanentError, TransientError
from alertbridge.models import AckEvent, Alert
from alertbridge.notifiers import http
from alertbridge.notifiers.base import Notifier

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"

# Slack reports these with HTTP 200 and ok=false.
_TRANSIENT_API_ERRORS = frozenset(
    {"ratelimited", "service_unavailable", "internal_error", "fatal_error", "request_timeout"}
)

_SEVERITY_EMOJI = {
    "critical": ":rotating_light:",
    "warning": ":warning:",
    "info": ":information_source:",
}

SILENCE_CHOICES = (
    ("15 minutes", "15m"),
    ("1 hour", "1h"),
    ("4 hours", "4h"),
    ("24 hours", "24h"),
)

_STATE_LABEL = {
    "active": "FIRING",
    "acked": "ACKNOWLEDGED",
    "resolved": "RESOLVED",
}


def split_reference(reference: str) -> tuple[str, str]:
    channel, sep, ts = reference.partition(":")
    if not sep or not channel or not ts:
        raise PermanentError(f"invalid slack message reference: {reference!r}")
    return channel, ts


def format_alert_blocks(alert: Alert) -> list[dict[str, Any]]:
    """Block Kit layout for one alert, with action buttons while it is firing."""
    if alert.is_resolved:
        emoji = ":white_check_mark:"
    else:
        emoji = _SEVERITY_EMOJI.get(alert.severity, ":bell:")
    fields = [
        {"type": "mrkdwn", "text": f"*Severity:*\n{alert.severity}"},
        {"type": "mrkdwn", "text": f"*State:*\n{_STATE_LABEL[alert.state]}"},
        {"type": "mrkdwn", "text": f"*Instance:*\n{alert.instance or '-'}"},
        {"type": "mrkdwn", "text": f"*Fingerprint:*\n`{alert.fingerprint}`"},
    ]
    if alert.acked_by:
        fields.append({"type": "mrkdwn", "text": f"*Acknowledged by:*\n{alert.acked_by}"})

    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"{emoji} {_STATE_LABEL[alert.state]}: {alert.name}",
            },
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"*{alert.summary or alert.name}*\n{alert.description}",
            },
        },
        {"type": "section", "fields": fields},
    ]

    if alert.is_firing:
        elements = []
        if alert.is_active:
            elements.append(_button("Acknowledge", f"ack_{alert.id}", style="primary"))
        elements.append(_button("Resolve", f"resolve_{alert.id}"))
        elements.append(
            {
                "type": "static_select",
                "action_id": f"silence_{alert.id}",
                "placeholder": {"type": "plain_text", "text": "Silence for..."},
                "options": [
                    {"text": {"type": "plain_text", "text": label}, "value": value}
                    for label, value in SILENCE_CHOICES
                ],
            }
        )
        blocks.append({"type": "actions", "elements": elements})
    return blocks


def _button(text: str, action_id: str, style: str | None = None) -> dict[str, Any]:
    button: dict[str, Any] = {
        "type": "button",
        "text": {"type": "plain_text", "text": text},
        "action_id": action_id,
        "value": action_id,
    }
    if style:
        button["style"] = style
    return button


def _fallback_text(alert: Alert) -> str:
    return f"[{alert.severity.upper()}] {alert.name}: {_STATE_LABEL[alert.state]}"


class SlackNotifier(Notifier):
    name = "slack"
    supports_ack = True

    def __init__(
        self,
        bot_token: str,
        channel_id: str,
        *,
        api_url: str = SLACK_API_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.channel_id = channel_id
        self._api_url = api_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {bot_token}"}

    async def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await http.send(
            lambda: self._client.post(
                f"{self._api_url}/{method}", json=payload, headers=self._headers
            ),
            f"slack {method}",
        )
        data = response.json()
        if not data.get("ok"):
            error = data.get("error", "unknown_error")
            message = f"slack {method} failed: {error}"
            if error in _TRANSIENT_API_ERRORS:
                raise TransientError(message)
            raise PermanentError(message)
        return data

    async def notify(self, alert: Alert) -> str:
        data = await self._call(
            "chat.postMessage",
            {
                "channel": self.channel_id,
                "text": _fallback_text(alert),
                "blocks": format_alert_blocks(alert),
            },
        )
        channel = data.get("channel", self.channel_id)
        ts = data["ts"]
        logger.info("posted alert %s to slack %s:%s", alert.id, channel, ts)
        return f"{channel}:{ts}"

    async def update_message(self, reference: str, alert: Alert) -> None:
        channel, ts = split_reference(reference)
        await self._call(
            "chat.update",
            {
                "channel": channel,
                "ts": ts,
                "text": _fallback_text(alert),
                "blocks": format_alert_blocks(alert),
            },
        )

    async def post_thread_reply(self, reference: str, text: str) -> None:
        channel, ts = split_reference(reference)
        await self._call("chat.postMessage", {"channel": channel, "thread_ts": ts, "text": text})

    async def acknowledge(self, alert: Alert, event: AckEvent) -> None:
        reference = alert.get_external_reference(self.name)
        if not reference:
            logger.warning("alert %s has no slack message, skipping ack update", alert.id)
            return
        await self.update_message(reference, alert)
        text = f":eyes: Acknowledged by {event.actor} via {event.source}"
        if event.note:
            text += f"\n> {event.note}"
        await self.post_thread_reply(reference, text)

    async def resolve(self, alert: Alert) -> None:
        reference = alert.get_external_reference(self.name)
        if not reference:
            logger.warning("alert %s has no slack message, skipping resolve update", alert.id)
            return
        await self.update_message(reference, alert)
        await self.post_thread_reply(reference, ":white_check_mark: Resolved")

    async def get_user_email(self, user_id: str) -> str:
        data = await self._call("users.info", {"user": user_id})
        return data.get("user", {}).get("profile", {}).get("email", "")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
