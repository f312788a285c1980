"""Slack button/select interactions mapped onto the ack synchronizer.

Action IDs have the form ``<action>_<alertID>`` where action is ``ack``,
``resolve`` or ``silence``.  A silence request creates a fingerprint silence
for the chosen duration and then acknowledges the alert with that duration
recorded on the ack event.  Resolved alerts are never silenced.

Slack API calls made here go through ``guard`` when one is given, normally
the retry and breaker wrapper of the Slack destination.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, Field, TypeAdapter

from alertbridge.config import Duration
from alertbridge.errors import AlertBridgeError, InvalidTransitionError, NotFoundError
from alertbridge.repositories import AlertRepository
from alertbridge.services.ack_sync import AckSynchronizer
from alertbridge.services.silences import SilenceService

if TYPE_CHECKING:
    from alertbridge.notifiers.slack import SlackNotifier

logger = logging.getLogger(__name__)

T = TypeVar("T")
Guard = Callable[[Callable[[], Awaitable[Any]], str], Awaitable[Any]]

_duration = TypeAdapter(Duration)

ACTIONS = ("ack", "resolve", "silence")


class SlackUser(BaseModel):
    id: str = ""
    username: str = ""
    name: str = ""


class SlackSelectedOption(BaseModel):
    value: str = ""


class SlackAction(BaseModel):
    action_id: str
    value: str = ""
    selected_option: SlackSelectedOption | None = None


class SlackInteraction(BaseModel):
    type: str = "block_actions"
    user: SlackUser = Field(default_factory=SlackUser)
    actions: list[SlackAction] = Field(default_factory=list)
    channel: dict[str, Any] = Field(default_factory=dict)
    message: dict[str, Any] = Field(default_factory=dict)


@dataclass
class InteractionResult:
    action: str
    alert_id: str
    handled: bool
    detail: str = ""


def parse_action_id(action_id: str) -> tuple[str, str] | None:
    action, sep, alert_id = action_id.partition("_")
    if not sep or action not in ACTIONS or not alert_id:
        return None
    return action, alert_id


class SlackInteractionProcessor:
    def __init__(
        self,
        alerts: AlertRepository,
        synchronizer: AckSynchronizer,
        silences: SilenceService,
        *,
        slack: SlackNotifier | None = None,
        guard: Guard | None = None,
        logger: logging.Logger = logger,
    ) -> None:
        self._alerts = alerts
        self._sync = synchronizer
        self._silences = silences
        self.slack = slack
        self.guard = guard
        self._logger = logger

    async def process(self, payload: dict[str, Any]) -> list[InteractionResult]:
        interaction = SlackInteraction.model_validate(payload)
        user = interaction.user
        email = await self._lookup_email(user.id)
        results = []
        for action in interaction.actions:
            parsed = parse_action_id(action.action_id)
            if parsed is None:
                self._logger.debug("ignoring slack action %s", action.action_id)
                continue
            verb, alert_id = parsed
            try:
                result = await self._handle(verb, alert_id, action, user, email)
            except (InvalidTransitionError, NotFoundError) as exc:
                self._logger.info("slack %s ignored: %s", verb, exc)
                result = InteractionResult(verb, alert_id, handled=False, detail=str(exc))
            results.append(result)
            await self._refresh_message(alert_id, interaction)
        return results

    async def _handle(
        self,
        verb: str,
        alert_id: str,
        action: SlackAction,
        user: SlackUser,
        email: str,
    ) -> InteractionResult:
        identity = {"user_id": user.id, "user_email": email, "user_name": user.name or user.username}

        if verb == "silence":
            alert = await self._sync.find_alert(alert_id, "slack")
            if alert is None:
                return InteractionResult(verb, alert_id, handled=False, detail="alert not found")
            if alert.is_resolved:
                return InteractionResult(
                    verb, alert.id, handled=False, detail=f"alert {alert.id} is resolved"
                )
            duration = self._silence_duration(action)
            silence = await self._silences.create(
                duration,
                fingerprint=alert.fingerprint,
                created_by=identity["user_name"] or user.id,
                created_by_email=email,
                source="slack",
                reason=f"silenced from slack for alert {alert.id}",
            )
            await self._sync.sync_ack(
                alert.id,
                "slack",
                action="ack",
                note=f"silenced for {duration}",
                duration=duration,
                **identity,
            )
            return InteractionResult(verb, alert.id, handled=True, detail=silence.id)

        sync_action = "ack" if verb == "ack" else "resolve"
        result = await self._sync.sync_ack(alert_id, "slack", action=sync_action, **identity)
        return InteractionResult(
            verb,
            result.alert.id,
            handled=result.changed,
            detail="" if result.changed else f"already {result.alert.state}",
        )

    def _silence_duration(self, action: SlackAction) -> timedelta:
        raw = action.selected_option.value if action.selected_option else action.value
        if not raw:
            return self._silences.default_duration
        return _duration.validate_python(raw)

    async def _lookup_email(self, user_id: str) -> str:
        if self.slack is None or not user_id:
            return ""
        try:
            return await self._call(lambda: self.slack.get_user_email(user_id), "get_user_email")
        except AlertBridgeError as exc:
            self._logger.warning("slack user lookup failed for %s: %s", user_id, exc)
            return ""

    async def _refresh_message(self, alert_id: str, interaction: SlackInteraction) -> None:
        """Redraw the message the user clicked; it is not part of ack fan-out."""
        if self.slack is None:
            return
        alert = await self._sync.find_alert(alert_id, "slack")
        if alert is None:
            return
        reference = alert.get_external_reference("slack")
        channel = interaction.channel.get("id")
        ts = interaction.message.get("ts")
        if channel and ts:
            reference = f"{channel}:{ts}"
        if not reference:
            return
        try:
            await self._call(
                lambda: self.slack.update_message(reference, alert), "update_message"
            )
        except AlertBridgeError as exc:
            self._logger.error(
                "refreshing slack message failed for alert %s on slack: %s", alert.id, exc
            )

    async def _call(self, op: Callable[[], Awaitable[T]], description: str) -> T:
        if self.guard is None:
            return await op()
        return await self.guard(op, description)
