"""Alert ingestion: create, deduplicate, resend or resolve.

Decision for a firing report, given the newest firing alert with the same
fingerprint:

* none: create a new alert and announce it, unless a silence matches;
* still ``active`` and the last announcement attempt is older than the
  resend interval (or never happened) and no silence matches: announce again;
* fired less than the deduplication window ago: duplicate, update in place;
* otherwise: refresh details in place without notifying.

The resend check runs first.  Configuration guarantees the resend interval
exceeds the deduplication window, and an attempt is recorded even when no
destination accepted it, so a report inside the window is never resent.
Acknowledged alerts are not resent.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from alertbridge.errors import AlertNotFoundError
from alertbridge.models import Alert, AlertReport, utc_now
from alertbridge.notifiers import Notifier
from alertbridge.repositories import AlertRepository, SilenceRepository, update_with_retry
from alertbridge.services.fanout import FanOutResult, broadcast

logger = logging.getLogger(__name__)

IngestAction = Literal[
    "created", "silenced", "duplicate", "refreshed", "resent", "resolved", "ignored"
]


@dataclass
class IngestResult:
    action: IngestAction
    alert_id: str | None = None
    notifications_sent: int = 0
    notifications_failed: int = 0


class AlertIngestor:
    def __init__(
        self,
        alerts: AlertRepository,
        silences: SilenceRepository,
        notifiers: Sequence[Notifier],
        *,
        deduplication_window: timedelta = timedelta(minutes=5),
        resend_interval: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger = logger,
    ) -> None:
        if resend_interval <= deduplication_window:
            raise ValueError("resend_interval must exceed deduplication_window")
        self._alerts = alerts
        self._silences = silences
        self._notifiers = list(notifiers)
        self.deduplication_window = deduplication_window
        self.resend_interval = resend_interval
        self._clock = clock
        self._logger = logger

    async def ingest(self, report: AlertReport) -> IngestResult:
        now = self._clock()
        if report.is_resolved:
            return await self._resolve(report, now)

        existing = await self._alerts.find_firing_by_fingerprint(report.fingerprint)
        if existing is None:
            return await self._create(report, now)
        return await self._refire(existing, report, now)

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def _create(self, report: AlertReport, now: datetime) -> IngestResult:
        alert = Alert(
            fingerprint=report.fingerprint,
            name=report.name,
            instance=report.instance,
            target=report.target,
            summary=report.summary,
            description=report.description,
            labels=dict(report.labels),
            annotations=dict(report.annotations),
            severity=report.severity,
            fired_at=report.fired_at or now,
            created_at=now,
            updated_at=now,
        )
        silenced = await self._is_silenced(alert, now)
        await self._alerts.save(alert)
        if silenced:
            self._logger.info(
                "alert %s (%s) created silenced, not notifying", alert.id, alert.fingerprint
            )
            return IngestResult("silenced", alert.id)

        self._logger.info("alert %s (%s) created", alert.id, alert.fingerprint)
        outcome = await self._announce(alert, now)
        return IngestResult("created", alert.id, outcome.sent, outcome.errors)

    async def _refire(self, alert: Alert, report: AlertReport, now: datetime) -> IngestResult:
        fired_at = report.fired_at or now

        if alert.is_active and self._resend_due(alert, now):
            if not await self._is_silenced(alert, now):
                alert, _ = await self._refresh(alert, report, fired_at, now)
                self._logger.info("alert %s still firing, resending", alert.id)
                outcome = await self._announce(alert, now)
                return IngestResult("resent", alert.id, outcome.sent, outcome.errors)

        duplicate = now - alert.fired_at < self.deduplication_window
        alert, _ = await self._refresh(alert, report, fired_at, now)
        action: IngestAction = "duplicate" if duplicate else "refreshed"
        self._logger.debug("alert %s %s, not notifying", alert.id, action)
        return IngestResult(action, alert.id)

    def _resend_due(self, alert: Alert, now: datetime) -> bool:
        if alert.last_notified_at is None:
            return True
        return now - alert.last_notified_at >= self.resend_interval

    async def _refresh(
        self, alert: Alert, report: AlertReport, fired_at: datetime, now: datetime
    ) -> tuple[Alert, bool]:
        def mutate(a: Alert) -> bool:
            if not a.is_firing:
                return False
            a.refresh_from(report, max(a.fired_at, fired_at), now)
            return True

        return await update_with_retry(
            self._alerts, alert, mutate, not_found=AlertNotFoundError
        )

    async def _is_silenced(self, alert: Alert, now: datetime) -> bool:
        matched = await self._silences.find_matching_alert(alert, now)
        if matched:
            self._logger.debug(
                "alert %s matched silences %s", alert.id, [m.id for m in matched]
            )
        return bool(matched)

    async def _announce(self, alert: Alert, now: datetime) -> FanOutResult:
        snapshot = alert.copy_detached()
        outcome = await broadcast(
            {n.name: (lambda n=n: n.notify(snapshot)) for n in self._notifiers},
            alert_id=alert.id,
            operation="notify",
            logger=self._logger,
        )
        if self._notifiers and not outcome.succeeded:
            self._logger.warning(
                "alert %s reached no destination; next announcement after %s",
                alert.id,
                self.resend_interval,
            )

        def record(a: Alert) -> bool:
            for name, reference in outcome.succeeded.items():
                if reference:
                    a.set_external_reference(name, reference)
            a.last_notified_at = now
            a.updated_at = now
            return True

        await update_with_retry(self._alerts, alert, record, not_found=AlertNotFoundError)
        return outcome

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _resolve(self, report: AlertReport, now: datetime) -> IngestResult:
        alert = await self._alerts.find_firing_by_fingerprint(report.fingerprint)
        if alert is None:
            self._logger.debug("resolved report for %s has no firing alert", report.fingerprint)
            return IngestResult("ignored")

        def mutate(a: Alert) -> bool:
            if a.is_resolved:
                return False
            a.resolve(now)
            return True

        alert, changed = await update_with_retry(
            self._alerts, alert, mutate, not_found=AlertNotFoundError
        )
        if not changed:
            return IngestResult("ignored", alert.id)

        self._logger.info("alert %s resolved by source", alert.id)
        snapshot = alert.copy_detached()
        calls = {
            n.name: (lambda n=n, ref=ref: n.update_message(ref, snapshot))
            for n in self._notifiers
            if (ref := snapshot.get_external_reference(n.name))
        }
        outcome = await broadcast(
            calls, alert_id=alert.id, operation="resolve update", logger=self._logger
        )
        return IngestResult("resolved", alert.id, outcome.sent, outcome.errors)
