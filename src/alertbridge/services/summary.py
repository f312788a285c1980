"""Aggregate statistics and status queries over firing alerts."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta

from alertbridge.models import Alert, AlertSummary, Severity, UserAckCount, utc_now
from alertbridge.repositories import AlertRepository

TOP_ACKNOWLEDGERS = 5


async def summarize_alerts(
    alerts: AlertRepository,
    period: timedelta | None = None,
    now: datetime | None = None,
) -> AlertSummary:
    """Counts by severity, state and instance, plus the top acknowledgers.

    With ``period`` only alerts fired within the last ``period`` are counted.
    """
    firing = await alerts.find_firing()
    if period is not None:
        cutoff = (now or utc_now()) - period
        firing = [a for a in firing if a.fired_at >= cutoff]

    by_severity = Counter(a.severity for a in firing)
    by_state = Counter(a.state for a in firing)
    by_instance = Counter(a.instance for a in firing if a.instance)
    acknowledgers = Counter(a.acked_by for a in firing if a.acked_by)

    return AlertSummary(
        total=len(firing),
        by_severity=dict(by_severity),
        by_state=dict(by_state),
        by_instance=dict(by_instance),
        top_acknowledgers=[
            UserAckCount(user=user, count=count)
            for user, count in acknowledgers.most_common(TOP_ACKNOWLEDGERS)
        ],
        period=period,
    )


_SEVERITY_ALIASES: dict[str, Severity] = {
    "critical": "critical",
    "crit": "critical",
    "warning": "warning",
    "warn": "warning",
    "info": "info",
    "information": "info",
}


def parse_severity(value: str | None) -> Severity | None:
    """Normalise a user-typed severity; anything unrecognised means all."""
    return _SEVERITY_ALIASES.get((value or "").strip().lower())


async def query_alert_status(
    alerts: AlertRepository, severity: str | None = None
) -> list[Alert]:
    """Firing alerts, newest first, filtered by a possibly abbreviated severity."""
    return await alerts.find_firing(parse_severity(severity))
