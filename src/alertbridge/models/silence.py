"""SilenceMark — a time-boxed suppression rule, and the matching engine.

Matching is an OR of independently tested criteria, evaluated only while the
silence is active:

1. ``alert_id`` equals the alert's ID.
2. ``fingerprint`` equals the alert's fingerprint.
3. ``instance`` equals the alert's instance; when ``labels`` are also set,
   every silence label must be present with the same value on the alert.
4. No ``alert_id``/``fingerprint``/``instance`` at all, ``labels`` set:
   label subset match.

A silence with several selectors populated matches when *any* criterion
holds, not when all of them do.  This is long-standing behaviour that
operators rely on; keep it.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from alertbridge.errors import InvalidSilenceDurationError
from alertbridge.models.ack_event import AckSource
from alertbridge.models.alert import utc_now

if TYPE_CHECKING:
    from alertbridge.models.alert import Alert


def labels_subset_match(wanted: Mapping[str, str], labels: Mapping[str, str]) -> bool:
    """True when every (key, value) in ``wanted`` is present in ``labels``."""
    for key, value in wanted.items():
        if key not in labels or labels[key] != value:
            return False
    return True


class SilenceMark(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    alert_id: str = ""
    instance: str = ""
    fingerprint: str = ""
    labels: dict[str, str] = Field(default_factory=dict)

    start_at: datetime
    end_at: datetime

    created_by: str = ""
    created_by_email: str = ""
    reason: str = ""
    source: AckSource = "api"
    version: int = 1
    created_at: datetime = Field(default_factory=utc_now)

    # ------------------------------------------------------------------
    # Time window
    # ------------------------------------------------------------------

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or utc_now()
        return self.start_at <= now < self.end_at

    def is_pending(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) < self.start_at

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.end_at

    def remaining(self, now: datetime | None = None) -> timedelta:
        left = self.end_at - (now or utc_now())
        return max(left, timedelta(0))

    @property
    def is_label_only(self) -> bool:
        return not (self.alert_id or self.fingerprint or self.instance) and bool(self.labels)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def cancel(self, now: datetime | None = None) -> None:
        """Expire the silence immediately."""
        self.end_at = now or utc_now()

    def extend(self, duration: timedelta) -> None:
        if duration <= timedelta(0):
            raise InvalidSilenceDurationError(f"silence extension must be positive, got {duration}")
        self.end_at = self.end_at + duration

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def matches_alert(self, alert: Alert, now: datetime | None = None) -> bool:
        if not self.is_active(now):
            return False

        if self.alert_id and self.alert_id == alert.id:
            return True

        if self.fingerprint and self.fingerprint == alert.fingerprint:
            return True

        if self.instance and self.instance == alert.instance:
            if self.labels:
                return labels_subset_match(self.labels, alert.labels)
            return True

        if self.is_label_only:
            return labels_subset_match(self.labels, alert.labels)

        return False

    def copy_detached(self) -> SilenceMark:
        return self.model_copy(deep=True)
