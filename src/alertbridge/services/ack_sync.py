"""Cross-destination acknowledgment synchronization.

An ack or resolve arrives from one destination.  The alert is transitioned
and persisted, an :class:`AckEvent` is appended, and the change is pushed to
every other ack-capable destination.  The originating destination is
skipped so an update never echoes back to where it came from.

Repeating an action that already took effect (ack on an acked alert,
resolve on a resolved one) is a no-op: nothing is written and nothing is
propagated.  This is what stops a destination's own webhook for a change we
pushed from bouncing around again.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from alertbridge.errors import AlertNotFoundError
from alertbridge.models import AckAction, AckEvent, AckSource, Alert, utc_now
from alertbridge.notifiers import Notifier
from alertbridge.repositories import AckEventRepository, AlertRepository, update_with_retry
from alertbridge.services.fanout import broadcast

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    alert: Alert
    changed: bool
    event: AckEvent | None = None
    propagated: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def fully_propagated(self) -> bool:
        return not self.failed


class AckSynchronizer:
    def __init__(
        self,
        alerts: AlertRepository,
        acks: AckEventRepository,
        notifiers: Sequence[Notifier],
        *,
        clock: Callable[[], datetime] = utc_now,
        logger: logging.Logger = logger,
    ) -> None:
        self._alerts = alerts
        self._acks = acks
        self._notifiers = list(notifiers)
        self._clock = clock
        self._logger = logger

    async def find_alert(self, alert_ref: str, source: AckSource) -> Alert | None:
        """Resolve an internal ID or the source's own message/incident reference."""
        alert = await self._alerts.find_by_id(alert_ref)
        if alert is None:
            alert = await self._alerts.find_by_external_reference(source, alert_ref)
        return alert

    async def sync_ack(
        self,
        alert_ref: str,
        source: AckSource,
        *,
        action: AckAction = "ack",
        user_id: str = "",
        user_email: str = "",
        user_name: str = "",
        note: str = "",
        duration: timedelta | None = None,
    ) -> SyncResult:
        """Make an ack/resolve authoritative and propagate it.

        Raises :class:`AlertNotFoundError` when ``alert_ref`` resolves to
        nothing, :class:`InvalidTransitionError` for an ack on a resolved
        alert, and :class:`ConcurrentUpdateError` if the write conflicts
        twice.  Destination failures never raise; they are reported in the
        result.
        """
        alert = await self.find_alert(alert_ref, source)
        if alert is None:
            raise AlertNotFoundError(alert_ref)

        now = self._clock()
        actor = user_name or user_email or user_id or source

        def transition(a: Alert) -> bool:
            if action == "ack":
                return a.acknowledge(actor, now)
            if a.is_resolved:
                return False
            a.resolve(now)
            return True

        alert, changed = await update_with_retry(
            self._alerts, alert, transition, not_found=AlertNotFoundError
        )
        if not changed:
            self._logger.debug(
                "alert %s already %s, ignoring %s from %s", alert.id, alert.state, action, source
            )
            return SyncResult(alert=alert, changed=False)

        event = AckEvent(
            alert_id=alert.id,
            source=source,
            action=action,
            user_id=user_id,
            user_email=user_email,
            user_name=user_name,
            note=note,
            duration=duration,
            created_at=now,
        )
        await self._acks.save(event)
        self._logger.info("alert %s %s by %s via %s", alert.id, alert.state, actor, source)

        snapshot = alert.copy_detached()
        targets = [n for n in self._notifiers if n.name != source and n.supports_ack]
        if action == "ack":
            calls = {n.name: (lambda n=n: n.acknowledge(snapshot, event)) for n in targets}
        else:
            calls = {n.name: (lambda n=n: n.resolve(snapshot)) for n in targets}
        outcome = await broadcast(
            calls, alert_id=alert.id, operation=f"{action} sync", logger=self._logger
        )
        return SyncResult(
            alert=alert,
            changed=True,
            event=event,
            propagated=sorted(outcome.succeeded),
            failed=outcome.failed,
        )

    async def acknowledge(self, alert_ref: str, source: AckSource, **kwargs) -> SyncResult:
        return await self.sync_ack(alert_ref, source, action="ack", **kwargs)

    async def resolve(self, alert_ref: str, source: AckSource, **kwargs) -> SyncResult:
        return await self.sync_ack(alert_ref, source, action="resolve", **kwargs)
