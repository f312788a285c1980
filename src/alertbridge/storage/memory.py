"""Single-process in-memory backend.

A mutex-protected set of dicts.  There are no real races inside one
process, but ``update`` still compares versions so callers written against
the repository contracts see the same errors as with the SQL backends.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime

from alertbridge.errors import (
    AlertNotFoundError,
    AlreadyExistsError,
    ConcurrentUpdateError,
    SilenceNotFoundError,
)
from alertbridge.models import AckEvent, Alert, AlertState, Severity, SilenceMark, utc_now
from alertbridge.repositories import AckEventRepository, AlertRepository, SilenceRepository


class MemoryStore:
    """Shared state for the three in-memory repositories."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.alerts: dict[str, Alert] = {}
        self.by_fingerprint: dict[str, set[str]] = defaultdict(set)
        self.by_reference: dict[tuple[str, str], set[str]] = defaultdict(set)

        self.acks: dict[str, AckEvent] = {}
        self.acks_by_alert: dict[str, list[str]] = defaultdict(list)

        self.silences: dict[str, SilenceMark] = {}
        self.silences_by_alert: dict[str, set[str]] = defaultdict(set)
        self.silences_by_fingerprint: dict[str, set[str]] = defaultdict(set)
        self.silences_by_instance: dict[str, set[str]] = defaultdict(set)
        self.label_only_silences: set[str] = set()

    def unindex_references(self, alert_id: str) -> None:
        for ids in self.by_reference.values():
            ids.discard(alert_id)

    def index_references(self, alert: Alert) -> None:
        self.unindex_references(alert.id)
        for system, ref in alert.external_references.items():
            if ref:
                self.by_reference[(system, ref)].add(alert.id)

    def index_silence(self, silence: SilenceMark) -> None:
        if silence.alert_id:
            self.silences_by_alert[silence.alert_id].add(silence.id)
        if silence.fingerprint:
            self.silences_by_fingerprint[silence.fingerprint].add(silence.id)
        if silence.instance:
            self.silences_by_instance[silence.instance].add(silence.id)
        if silence.is_label_only:
            self.label_only_silences.add(silence.id)

    def unindex_silence(self, silence: SilenceMark) -> None:
        for index, key in (
            (self.silences_by_alert, silence.alert_id),
            (self.silences_by_fingerprint, silence.fingerprint),
            (self.silences_by_instance, silence.instance),
        ):
            ids = index.get(key)
            if ids is not None:
                ids.discard(silence.id)
                if not ids:
                    del index[key]
        self.label_only_silences.discard(silence.id)


def _newest_first(alerts: list[Alert]) -> list[Alert]:
    return sorted(alerts, key=lambda a: a.fired_at, reverse=True)


class MemoryAlertRepository(AlertRepository):
    def __init__(self, store: MemoryStore | None = None) -> None:
        self._store = store or MemoryStore()

    async def save(self, alert: Alert) -> None:
        s = self._store
        with s.lock:
            if alert.id in s.alerts:
                raise AlreadyExistsError(f"alert already exists: {alert.id}")
            s.alerts[alert.id] = alert.copy_detached()
            s.by_fingerprint[alert.fingerprint].add(alert.id)
            s.index_references(alert)

    async def find_by_id(self, alert_id: str) -> Alert | None:
        with self._store.lock:
            alert = self._store.alerts.get(alert_id)
            return alert.copy_detached() if alert else None

    async def find_by_fingerprint(self, fingerprint: str) -> list[Alert]:
        s = self._store
        with s.lock:
            found = [s.alerts[i].copy_detached() for i in s.by_fingerprint.get(fingerprint, ())]
        return _newest_first(found)

    async def find_firing_by_fingerprint(self, fingerprint: str) -> Alert | None:
        for alert in await self.find_by_fingerprint(fingerprint):
            if alert.is_firing:
                return alert
        return None

    async def find_by_external_reference(self, system: str, reference: str) -> Alert | None:
        s = self._store
        with s.lock:
            found = [
                s.alerts[i].copy_detached()
                for i in s.by_reference.get((system, reference), ())
                if i in s.alerts
            ]
        if not found:
            return None
        return max(found, key=lambda a: (a.is_firing, a.fired_at))

    async def find_firing(self, severity: Severity | None = None) -> list[Alert]:
        with self._store.lock:
            found = [
                a.copy_detached()
                for a in self._store.alerts.values()
                if a.is_firing and (severity is None or a.severity == severity)
            ]
        return _newest_first(found)

    async def find_all(
        self,
        *,
        state: AlertState | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        with self._store.lock:
            found = [
                a.copy_detached()
                for a in self._store.alerts.values()
                if (state is None or a.state == state) and (since is None or a.fired_at >= since)
            ]
        found = _newest_first(found)
        return found[:limit] if limit is not None else found

    async def update(self, alert: Alert) -> None:
        s = self._store
        with s.lock:
            stored = s.alerts.get(alert.id)
            if stored is None:
                raise AlertNotFoundError(alert.id)
            if stored.version != alert.version:
                raise ConcurrentUpdateError("alert", alert.id, alert.version)
            alert.version += 1
            if stored.fingerprint != alert.fingerprint:
                s.by_fingerprint[stored.fingerprint].discard(alert.id)
                s.by_fingerprint[alert.fingerprint].add(alert.id)
            s.alerts[alert.id] = alert.copy_detached()
            s.index_references(alert)

    async def delete(self, alert_id: str) -> None:
        s = self._store
        with s.lock:
            alert = s.alerts.pop(alert_id, None)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            s.by_fingerprint[alert.fingerprint].discard(alert_id)
            s.unindex_references(alert_id)
            for event_id in s.acks_by_alert.pop(alert_id, []):
                s.acks.pop(event_id, None)


class MemoryAckEventRepository(AckEventRepository):
    def __init__(self, store: MemoryStore | None = None) -> None:
        self._store = store or MemoryStore()

    async def save(self, event: AckEvent) -> None:
        s = self._store
        with s.lock:
            if event.alert_id not in s.alerts:
                raise AlertNotFoundError(event.alert_id)
            if event.id in s.acks:
                raise AlreadyExistsError(f"ack event already exists: {event.id}")
            s.acks[event.id] = event.model_copy(deep=True)
            s.acks_by_alert[event.alert_id].append(event.id)

    async def find_by_id(self, event_id: str) -> AckEvent | None:
        with self._store.lock:
            event = self._store.acks.get(event_id)
            return event.model_copy(deep=True) if event else None

    async def find_by_alert_id(self, alert_id: str) -> list[AckEvent]:
        s = self._store
        with s.lock:
            events = [s.acks[i].model_copy(deep=True) for i in s.acks_by_alert.get(alert_id, ())]
        return sorted(events, key=lambda e: e.created_at)

    async def find_latest_by_alert_id(self, alert_id: str) -> AckEvent | None:
        events = await self.find_by_alert_id(alert_id)
        return events[-1] if events else None

    async def find_all(self, *, since: datetime | None = None) -> list[AckEvent]:
        with self._store.lock:
            events = [
                e.model_copy(deep=True)
                for e in self._store.acks.values()
                if since is None or e.created_at >= since
            ]
        return sorted(events, key=lambda e: e.created_at)


class MemorySilenceRepository(SilenceRepository):
    """Silences with secondary indices by alert ID, fingerprint and instance.

    Label-only silences have no index key and are kept in their own set;
    matching always scans that set.
    """

    def __init__(self, store: MemoryStore | None = None) -> None:
        self._store = store or MemoryStore()

    async def save(self, silence: SilenceMark) -> None:
        s = self._store
        with s.lock:
            if silence.id in s.silences:
                raise AlreadyExistsError(f"silence already exists: {silence.id}")
            s.silences[silence.id] = silence.copy_detached()
            s.index_silence(silence)

    async def find_by_id(self, silence_id: str) -> SilenceMark | None:
        with self._store.lock:
            silence = self._store.silences.get(silence_id)
            return silence.copy_detached() if silence else None

    async def find_active(self, now: datetime | None = None) -> list[SilenceMark]:
        now = now or utc_now()
        with self._store.lock:
            found = [m.copy_detached() for m in self._store.silences.values() if m.is_active(now)]
        return sorted(found, key=lambda m: m.start_at)

    async def find_matching_alert(
        self, alert: Alert, now: datetime | None = None
    ) -> list[SilenceMark]:
        now = now or utc_now()
        s = self._store
        with s.lock:
            candidates = (
                s.silences_by_alert.get(alert.id, set())
                | s.silences_by_fingerprint.get(alert.fingerprint, set())
                | s.silences_by_instance.get(alert.instance, set())
                | s.label_only_silences
            )
            found = [
                s.silences[i].copy_detached()
                for i in candidates
                if i in s.silences and s.silences[i].matches_alert(alert, now)
            ]
        return sorted(found, key=lambda m: m.start_at)

    async def find_all(self) -> list[SilenceMark]:
        with self._store.lock:
            found = [m.copy_detached() for m in self._store.silences.values()]
        return sorted(found, key=lambda m: m.created_at)

    async def update(self, silence: SilenceMark) -> None:
        s = self._store
        with s.lock:
            stored = s.silences.get(silence.id)
            if stored is None:
                raise SilenceNotFoundError(silence.id)
            if stored.version != silence.version:
                raise ConcurrentUpdateError("silence", silence.id, silence.version)
            silence.version += 1
            s.unindex_silence(stored)
            s.silences[silence.id] = silence.copy_detached()
            s.index_silence(silence)

    async def delete(self, silence_id: str) -> None:
        s = self._store
        with s.lock:
            silence = s.silences.pop(silence_id, None)
            if silence is None:
                raise SilenceNotFoundError(silence_id)
            s.unindex_silence(silence)

    async def delete_expired(self, now: datetime | None = None) -> int:
        now = now or utc_now()
        s = self._store
        with s.lock:
            expired = [m for m in s.silences.values() if m.is_expired(now)]
            for silence in expired:
                del s.silences[silence.id]
                s.unindex_silence(silence)
        return len(expired)
