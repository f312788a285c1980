"""Explicitly constructed application container.

Everything a request handler needs hangs off one :class:`AlertBridge`
built from :class:`~alertbridge.config.Settings` at startup.  Nothing is
kept in module-level state apart from loggers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from alertbridge.config import Settings
from alertbridge.models import utc_now
from alertbridge.notifiers import Notifier, PagerDutyNotifier, ResilientNotifier, SlackNotifier
from alertbridge.resilience import CircuitBreaker, ReconnectPolicy, RetryPolicy
from alertbridge.services import (
    AckSynchronizer,
    AlertIngestor,
    PagerDutyWebhookProcessor,
    SilenceService,
    SlackInteractionProcessor,
)
from alertbridge.storage import Storage, open_storage

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def retry_policy(settings: Settings) -> RetryPolicy:
    r = settings.retry
    return RetryPolicy(
        initial_delay=r.initial_delay,
        multiplier=r.multiplier,
        max_delay=r.max_delay,
        max_retries=r.max_retries,
        jitter=r.jitter,
    )


def reconnect_policy(settings: Settings) -> ReconnectPolicy:
    r = settings.reconnect
    return ReconnectPolicy(
        initial_backoff=r.initial_backoff,
        max_backoff=r.max_backoff,
        multiplier=r.multiplier,
        max_failures=r.max_failures,
    )


def build_notifiers(settings: Settings) -> list[Notifier]:
    """Adapters for ``settings.destinations``, in that order."""
    adapters: dict[str, Notifier] = {}
    if settings.slack.enabled:
        adapters["slack"] = SlackNotifier(
            settings.slack.bot_token,
            settings.slack.channel_id,
            api_url=settings.slack.api_url,
            timeout=settings.slack.timeout_seconds,
        )
    if settings.pagerduty.enabled:
        adapters["pagerduty"] = PagerDutyNotifier(
            settings.pagerduty.routing_key,
            events_url=settings.pagerduty.events_url,
            default_severity=settings.pagerduty.default_severity,
            timeout=settings.pagerduty.timeout_seconds,
        )
    return [adapters[name] for name in settings.destinations]


def make_resilient(notifier: Notifier, settings: Settings) -> ResilientNotifier:
    """One retry policy and one breaker per destination, shared by all calls."""
    cb = settings.circuit_breaker
    breaker = CircuitBreaker(
        notifier.name,
        max_failures=cb.max_failures,
        timeout=cb.timeout,
        half_open_successes=cb.half_open_successes,
    )
    return ResilientNotifier(notifier, retry_policy(settings), breaker)


@dataclass
class AlertBridge:
    settings: Settings
    storage: Storage
    notifiers: list[Notifier]
    ingestor: AlertIngestor
    synchronizer: AckSynchronizer
    silences: SilenceService
    pagerduty_webhooks: PagerDutyWebhookProcessor
    slack_interactions: SlackInteractionProcessor
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)

    @classmethod
    async def create(
        cls,
        settings: Settings,
        *,
        storage: Storage | None = None,
        notifiers: Sequence[Notifier] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> AlertBridge:
        """Wire every component from ``settings``.

        ``storage`` and ``notifiers`` replace the configured ones; supplied
        notifiers are used as given, without the resilience wrapper.
        """
        if storage is None:
            storage = await open_storage(settings.storage, echo=settings.environment == "dev")
        if notifiers is None:
            notifiers = [make_resilient(n, settings) for n in build_notifiers(settings)]
        notifiers = list(notifiers)

        alerting = settings.alerting
        ingestor = AlertIngestor(
            storage.alerts,
            storage.silences,
            notifiers,
            deduplication_window=alerting.deduplication_window,
            resend_interval=alerting.resend_interval,
            clock=clock,
        )
        synchronizer = AckSynchronizer(storage.alerts, storage.acks, notifiers, clock=clock)
        silences = SilenceService(
            storage.silences,
            default_duration=alerting.default_silence_duration,
            clock=clock,
        )
        slack = next((n for n in notifiers if n.name == "slack"), None)
        bridge = cls(
            settings=settings,
            storage=storage,
            notifiers=notifiers,
            ingestor=ingestor,
            synchronizer=synchronizer,
            silences=silences,
            pagerduty_webhooks=PagerDutyWebhookProcessor(storage.alerts, synchronizer),
            slack_interactions=SlackInteractionProcessor(
                storage.alerts,
                synchronizer,
                silences,
                slack=_unwrap(slack),
                guard=slack.run if isinstance(slack, ResilientNotifier) else None,
            ),
            reconnect=reconnect_policy(settings),
        )
        logger.info(
            "alert bridge ready (storage=%s, destinations=%s)",
            settings.storage.type,
            [n.name for n in notifiers],
        )
        return bridge

    async def close(self) -> None:
        for notifier in self.notifiers:
            await notifier.aclose()
        await self.storage.close()


def _unwrap(notifier: Notifier | None) -> SlackNotifier | None:
    while isinstance(notifier, ResilientNotifier):
        notifier = notifier.inner
    return notifier if isinstance(notifier, SlackNotifier) else None
