"""Tests for the PagerDuty webhook and Slack interaction processors."""

from __future__ import annotations

from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from alertbridge.notifiers import ResilientNotifier, SlackNotifier
from alertbridge.resilience import RetryPolicy
from alertbridge.services import PagerDutyWebhookProcessor, SlackInteractionProcessor
from alertbridge.services.slack_interaction import parse_action_id
from conftest import T0, make_alert


def pd_event(event_type: str, incident_key: str = "fp-1", incident_id: str = "Q1", **agent):
    return {
        "event": {
            "id": "01EVT",
            "event_type": event_type,
            "resource_type": "incident",
            "occurred_at": "2026-03-02T09:05:00Z",
            "agent": agent or {"id": "PUSER", "summary": "Bob Oncall", "type": "user_reference"},
            "data": {
                "id": incident_id,
                "type": "incident",
                "incident_key": incident_key,
                "title": "HighCPU",
                "status": "acknowledged",
            },
        }
    }


@pytest_asyncio.fixture
async def alert(memory):
    alert = make_alert()
    alert.set_external_reference("slack", "C1:100.1")
    alert.set_external_reference("pagerduty", "fp-1")
    await memory.alerts.save(alert)
    return alert


@pytest.fixture
def pd_processor(memory, synchronizer) -> PagerDutyWebhookProcessor:
    return PagerDutyWebhookProcessor(memory.alerts, synchronizer)


class FakeSlackApi:
    """The parts of SlackNotifier the interaction processor uses."""

    def __init__(self) -> None:
        self.updated: list[tuple[str, str]] = []

    async def get_user_email(self, user_id: str) -> str:
        return f"{user_id.lower()}@example.com"

    async def update_message(self, reference: str, alert) -> None:
        self.updated.append((reference, alert.state))


@pytest.fixture
def slack_api() -> FakeSlackApi:
    return FakeSlackApi()


@pytest.fixture
def slack_processor(memory, synchronizer, silence_service, slack_api) -> SlackInteractionProcessor:
    return SlackInteractionProcessor(memory.alerts, synchronizer, silence_service, slack=slack_api)


def interaction_with(*action_ids: str) -> dict:
    payload = interaction(action_ids[0])
    payload["actions"] = [{"action_id": a, "value": a} for a in action_ids]
    return payload


def interaction(action_id: str, selected: str | None = None) -> dict:
    action: dict = {"action_id": action_id, "value": action_id}
    if selected is not None:
        action["selected_option"] = {"value": selected}
    return {
        "type": "block_actions",
        "user": {"id": "U1", "username": "alice", "name": "alice"},
        "channel": {"id": "C1"},
        "message": {"ts": "100.1"},
        "actions": [action],
    }


# ---------------------------------------------------------------------------
# PagerDuty
# ---------------------------------------------------------------------------

class TestPagerDutyWebhook:
    @pytest.mark.asyncio
    async def test_acknowledged_syncs_to_slack_only(
        self, pd_processor, memory, alert, slack, pagerduty
    ) -> None:
        """incident.acknowledged acks the alert and notifies Slack, not PagerDuty."""
        result = await pd_processor.process(pd_event("incident.acknowledged"))
        assert result.handled
        assert result.alert_id == alert.id

        stored = await memory.alerts.find_by_id(alert.id)
        assert stored.state == "acked"
        assert stored.acked_by == "Bob Oncall"
        assert len(slack.acked) == 1
        assert pagerduty.acked == []

        events = await memory.acks.find_by_alert_id(alert.id)
        assert events[0].source == "pagerduty"
        assert events[0].user_id == "PUSER"

    @pytest.mark.asyncio
    async def test_resolved(self, pd_processor, memory, alert, slack) -> None:
        """incident.resolved resolves the alert and notifies Slack."""
        result = await pd_processor.process(pd_event("incident.resolved"))
        assert result.handled
        assert (await memory.alerts.find_by_id(alert.id)).is_resolved
        assert len(slack.resolved) == 1

    @pytest.mark.asyncio
    async def test_echo_of_our_own_ack_is_noop(
        self, pd_processor, synchronizer, memory, alert, slack, pagerduty
    ) -> None:
        """The webhook for an ack we pushed changes nothing and propagates nothing."""
        await synchronizer.sync_ack(alert.id, "slack", user_name="alice")
        result = await pd_processor.process(pd_event("incident.acknowledged"))
        assert not result.handled
        assert result.detail == "already acked"
        assert len(await memory.acks.find_by_alert_id(alert.id)) == 1
        assert slack.acked == []

    @pytest.mark.asyncio
    async def test_ack_for_resolved_alert_is_ignored(self, pd_processor, synchronizer, alert) -> None:
        """An ack webhook for a resolved alert is reported as not handled."""
        await synchronizer.resolve(alert.id, "api")
        result = await pd_processor.process(pd_event("incident.acknowledged"))
        assert not result.handled

    @pytest.mark.asyncio
    async def test_falls_back_to_fingerprint(self, pd_processor, memory) -> None:
        """Without a stored reference the incident key finds the alert by fingerprint."""
        unlinked = make_alert("fp-7")
        await memory.alerts.save(unlinked)
        result = await pd_processor.process(pd_event("incident.acknowledged", incident_key="fp-7"))
        assert result.alert_id == unlinked.id
        assert result.handled

    @pytest.mark.asyncio
    async def test_fingerprint_prefers_firing_alert(self, pd_processor, memory) -> None:
        """Fingerprint lookup picks the firing alert over a resolved one."""
        old = make_alert("fp-7", fired_at=T0 + timedelta(hours=1))
        old.resolve(T0 + timedelta(hours=2))
        current = make_alert("fp-7", fired_at=T0)
        await memory.alerts.save(old)
        await memory.alerts.save(current)
        result = await pd_processor.process(pd_event("incident.acknowledged", incident_key="fp-7"))
        assert result.alert_id == current.id

    @pytest.mark.asyncio
    async def test_unknown_incident(self, pd_processor, memory) -> None:
        """An incident matching no alert is reported as not found."""
        result = await pd_processor.process(pd_event("incident.acknowledged", incident_key="none"))
        assert not result.handled
        assert result.detail == "alert not found"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event_type",
        ["incident.unacknowledged", "incident.escalated", "incident.priority_updated"],
    )
    async def test_informational_events_change_nothing(
        self, pd_processor, memory, alert, event_type
    ) -> None:
        """Escalations and similar events are noted without state changes."""
        result = await pd_processor.process(pd_event(event_type))
        assert not result.handled
        assert result.detail == "informational"
        assert (await memory.alerts.find_by_id(alert.id)).is_active

    @pytest.mark.asyncio
    async def test_null_fields_tolerated(self, pd_processor, alert) -> None:
        """Null agent and incident fields do not break validation."""
        payload = pd_event("incident.acknowledged")
        payload["event"]["agent"] = None
        payload["event"]["data"]["title"] = None
        result = await pd_processor.process(payload)
        assert result.handled


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------

class TestParseActionId:
    def test_valid(self) -> None:
        """Well-formed action IDs split into verb and alert ID."""
        assert parse_action_id("ack_abc-123") == ("ack", "abc-123")
        assert parse_action_id("silence_a_b") == ("silence", "a_b")

    @pytest.mark.parametrize("action_id", ["ack", "ack_", "snooze_1", ""])
    def test_invalid(self, action_id: str) -> None:
        """Unknown verbs and malformed IDs are rejected."""
        assert parse_action_id(action_id) is None


class TestSlackInteraction:
    @pytest.mark.asyncio
    async def test_ack_button(
        self, slack_processor, memory, alert, slack, pagerduty, slack_api
    ) -> None:
        """The ack button acks via Slack, looks up the email and redraws the message."""
        results = await slack_processor.process(interaction(f"ack_{alert.id}"))
        assert [r.handled for r in results] == [True]

        stored = await memory.alerts.find_by_id(alert.id)
        assert stored.state == "acked"
        assert stored.acked_by == "alice"
        events = await memory.acks.find_by_alert_id(alert.id)
        assert events[0].user_email == "u1@example.com"

        assert len(pagerduty.acked) == 1
        assert slack.acked == []
        assert slack_api.updated == [("C1:100.1", "acked")]

    @pytest.mark.asyncio
    async def test_resolve_button(self, slack_processor, memory, alert, pagerduty) -> None:
        """The resolve button resolves and propagates to PagerDuty."""
        await slack_processor.process(interaction(f"resolve_{alert.id}"))
        assert (await memory.alerts.find_by_id(alert.id)).is_resolved
        assert len(pagerduty.resolved) == 1

    @pytest.mark.asyncio
    async def test_silence_creates_silence_and_acks(
        self, slack_processor, memory, alert, pagerduty
    ) -> None:
        """The silence select creates a fingerprint silence and acks with its duration."""
        results = await slack_processor.process(interaction(f"silence_{alert.id}", "4h"))
        assert results[0].handled

        silences = await memory.silences.find_all()
        assert len(silences) == 1
        assert silences[0].fingerprint == alert.fingerprint
        assert silences[0].end_at - silences[0].start_at == timedelta(hours=4)
        assert silences[0].source == "slack"

        events = await memory.acks.find_by_alert_id(alert.id)
        assert events[0].duration == timedelta(hours=4)
        assert len(pagerduty.acked) == 1

    @pytest.mark.asyncio
    async def test_repeat_click_is_noop(self, slack_processor, memory, alert, pagerduty) -> None:
        """A second ack click reports the alert as already acked."""
        await slack_processor.process(interaction(f"ack_{alert.id}"))
        results = await slack_processor.process(interaction(f"ack_{alert.id}"))
        assert results[0].handled is False
        assert len(pagerduty.acked) == 1

    @pytest.mark.asyncio
    async def test_ack_on_resolved_alert_reports_not_handled(
        self, slack_processor, synchronizer, alert
    ) -> None:
        """Clicking ack on a resolved alert is reported, not raised."""
        await synchronizer.resolve(alert.id, "api")
        results = await slack_processor.process(interaction(f"ack_{alert.id}"))
        assert results[0].handled is False

    @pytest.mark.asyncio
    async def test_unrelated_actions_ignored(self, slack_processor, alert) -> None:
        """Actions that are not ours produce no results."""
        assert await slack_processor.process(interaction("open_runbook")) == []

    @pytest.mark.asyncio
    async def test_silence_on_resolved_alert_creates_nothing(
        self, slack_processor, synchronizer, memory, alert, pagerduty
    ) -> None:
        """Silencing a resolved alert is refused before any silence is stored."""
        await synchronizer.resolve(alert.id, "api")
        results = await slack_processor.process(interaction(f"silence_{alert.id}", "1h"))
        assert results[0].handled is False
        assert "resolved" in results[0].detail
        assert await memory.silences.find_all() == []
        assert pagerduty.acked == []

    @pytest.mark.asyncio
    async def test_unknown_alert_does_not_abort_remaining_actions(
        self, slack_processor, memory, alert
    ) -> None:
        """An action for a missing alert is reported and later actions still run."""
        results = await slack_processor.process(
            interaction_with("ack_missing", f"ack_{alert.id}")
        )
        assert [(r.alert_id, r.handled) for r in results] == [
            ("missing", False),
            (alert.id, True),
        ]
        assert (await memory.alerts.find_by_id(alert.id)).state == "acked"

    @pytest.mark.asyncio
    async def test_slack_api_calls_are_retried(
        self, memory, synchronizer, silence_service, alert, sleep
    ) -> None:
        """A transient users.info failure is retried through the destination wrapper."""
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            method = request.url.path.rsplit("/", 1)[-1]
            calls.append(method)
            if method == "users.info" and calls.count("users.info") == 1:
                return httpx.Response(503, text="unavailable")
            if method == "users.info":
                return httpx.Response(
                    200, json={"ok": True, "user": {"profile": {"email": "alice@example.com"}}}
                )
            return httpx.Response(200, json={"ok": True})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        api = SlackNotifier("t", "C1", client=client)
        wrapper = ResilientNotifier(api, RetryPolicy(sleep=sleep))
        processor = SlackInteractionProcessor(
            memory.alerts, synchronizer, silence_service, slack=api, guard=wrapper.run
        )

        results = await processor.process(interaction(f"ack_{alert.id}"))
        assert results[0].handled
        assert calls == ["users.info", "users.info", "chat.update"]
        assert len(sleep.delays) == 1
        events = await memory.acks.find_by_alert_id(alert.id)
        assert events[0].user_email == "alice@example.com"
