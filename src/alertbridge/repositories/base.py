"""Storage-agnostic repository contracts.

Every backend honours the same error taxonomy:

* ``update`` raises :class:`~alertbridge.errors.NotFoundError` when no record
  has the ID, and :class:`~alertbridge.errors.ConcurrentUpdateError` when the
  record exists but its stored ``version`` differs from the one on the
  entity passed in.  On success the stored version and the caller's entity
  are both incremented by exactly one.
* ``save`` raises :class:`~alertbridge.errors.AlreadyExistsError` for a
  duplicate ID.
* Entities returned are independent copies; mutating them never changes
  what is stored until ``update`` is called.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from alertbridge.models import AckEvent, Alert, AlertState, Severity, SilenceMark


class AlertRepository(ABC):
    @abstractmethod
    async def save(self, alert: Alert) -> None: ...

    @abstractmethod
    async def find_by_id(self, alert_id: str) -> Alert | None: ...

    @abstractmethod
    async def find_by_fingerprint(self, fingerprint: str) -> list[Alert]:
        """All alerts sharing ``fingerprint``, newest ``fired_at`` first."""

    @abstractmethod
    async def find_firing_by_fingerprint(self, fingerprint: str) -> Alert | None:
        """The most recently fired active or acked alert for ``fingerprint``."""

    @abstractmethod
    async def find_by_external_reference(self, system: str, reference: str) -> Alert | None:
        """Alert linked to ``reference`` in ``system``.

        References are not unique (a paging destination may reuse its key for
        re-fires of one fingerprint); a firing alert wins, then the newest.
        """

    @abstractmethod
    async def find_firing(self, severity: Severity | None = None) -> list[Alert]:
        """Active and acked alerts, newest first, optionally of one severity."""

    @abstractmethod
    async def find_all(
        self,
        *,
        state: AlertState | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        """Alerts ordered newest ``fired_at`` first, optionally filtered."""

    @abstractmethod
    async def update(self, alert: Alert) -> None: ...

    @abstractmethod
    async def delete(self, alert_id: str) -> None:
        """Delete the alert and, with it, all of its ack events."""


class AckEventRepository(ABC):
    @abstractmethod
    async def save(self, event: AckEvent) -> None:
        """Append an event.  Raises NotFoundError if its alert does not exist."""

    @abstractmethod
    async def find_by_id(self, event_id: str) -> AckEvent | None: ...

    @abstractmethod
    async def find_by_alert_id(self, alert_id: str) -> list[AckEvent]:
        """Events for one alert, oldest first."""

    @abstractmethod
    async def find_latest_by_alert_id(self, alert_id: str) -> AckEvent | None: ...

    @abstractmethod
    async def find_all(self, *, since: datetime | None = None) -> list[AckEvent]: ...


class SilenceRepository(ABC):
    @abstractmethod
    async def save(self, silence: SilenceMark) -> None: ...

    @abstractmethod
    async def find_by_id(self, silence_id: str) -> SilenceMark | None: ...

    @abstractmethod
    async def find_active(self, now: datetime | None = None) -> list[SilenceMark]: ...

    @abstractmethod
    async def find_matching_alert(
        self, alert: Alert, now: datetime | None = None
    ) -> list[SilenceMark]:
        """Active silences that suppress ``alert``, each listed once."""

    @abstractmethod
    async def find_all(self) -> list[SilenceMark]: ...

    @abstractmethod
    async def update(self, silence: SilenceMark) -> None: ...

    @abstractmethod
    async def delete(self, silence_id: str) -> None: ...

    @abstractmethod
    async def delete_expired(self, now: datetime | None = None) -> int:
        """Remove silences whose window has ended; returns how many."""
