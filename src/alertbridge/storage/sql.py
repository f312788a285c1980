"""Repositories over SQLAlchemy, shared by the SQLite and Postgres backends.

``update`` is a single conditional statement::

    UPDATE ... SET ..., version = version + 1 WHERE id = :id AND version = :expected

Zero affected rows means either the record is gone or somebody else wrote
first; a follow-up existence check tells the two apart.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from alertbridge.errors import (
    AlertNotFoundError,
    ConcurrentUpdateError,
    SilenceNotFoundError,
)
from alertbridge.models import (
    FIRING_STATES,
    AckEvent,
    Alert,
    AlertState,
    Severity,
    SilenceMark,
    utc_now,
)
from alertbridge.repositories import AckEventRepository, AlertRepository, SilenceRepository
from alertbridge.storage.database import Database
from alertbridge.storage.tables import AckEventRow, AlertReferenceRow, AlertRow, SilenceRow, utc

# ---------------------------------------------------------------------------
# Row <-> entity conversion
# ---------------------------------------------------------------------------

def _alert_values(alert: Alert) -> dict[str, Any]:
    return {
        "fingerprint": alert.fingerprint,
        "name": alert.name,
        "instance": alert.instance,
        "target": alert.target,
        "summary": alert.summary,
        "description": alert.description,
        "labels": dict(alert.labels),
        "annotations": dict(alert.annotations),
        "severity": alert.severity,
        "state": alert.state,
        "fired_at": utc(alert.fired_at),
        "acked_at": utc(alert.acked_at),
        "acked_by": alert.acked_by,
        "resolved_at": utc(alert.resolved_at),
        "last_notified_at": utc(alert.last_notified_at),
        "created_at": utc(alert.created_at),
        "updated_at": utc(alert.updated_at),
    }


def _alert_from_row(row: AlertRow, references: dict[str, str]) -> Alert:
    return Alert(
        id=row.id,
        fingerprint=row.fingerprint,
        name=row.name,
        instance=row.instance,
        target=row.target,
        summary=row.summary,
        description=row.description,
        labels=dict(row.labels or {}),
        annotations=dict(row.annotations or {}),
        severity=row.severity,
        state=row.state,
        fired_at=utc(row.fired_at),
        acked_at=utc(row.acked_at),
        acked_by=row.acked_by,
        resolved_at=utc(row.resolved_at),
        last_notified_at=utc(row.last_notified_at),
        external_references=references,
        version=row.version,
        created_at=utc(row.created_at),
        updated_at=utc(row.updated_at),
    )


def _reference_rows(alert: Alert) -> list[dict[str, str]]:
    return [
        {"alert_id": alert.id, "system": system, "reference": ref}
        for system, ref in alert.external_references.items()
        if ref
    ]


def _event_from_row(row: AckEventRow) -> AckEvent:
    return AckEvent(
        id=row.id,
        alert_id=row.alert_id,
        source=row.source,
        action=row.action,
        user_id=row.user_id,
        user_email=row.user_email,
        user_name=row.user_name,
        note=row.note,
        duration=timedelta(seconds=row.duration_seconds)
        if row.duration_seconds is not None
        else None,
        created_at=utc(row.created_at),
    )


def _silence_values(silence: SilenceMark) -> dict[str, Any]:
    return {
        "alert_id": silence.alert_id,
        "instance": silence.instance,
        "fingerprint": silence.fingerprint,
        "labels": dict(silence.labels),
        "start_at": utc(silence.start_at),
        "end_at": utc(silence.end_at),
        "created_by": silence.created_by,
        "created_by_email": silence.created_by_email,
        "reason": silence.reason,
        "source": silence.source,
        "created_at": utc(silence.created_at),
    }


def _silence_from_row(row: SilenceRow) -> SilenceMark:
    return SilenceMark(
        id=row.id,
        alert_id=row.alert_id,
        instance=row.instance,
        fingerprint=row.fingerprint,
        labels=dict(row.labels or {}),
        start_at=utc(row.start_at),
        end_at=utc(row.end_at),
        created_by=row.created_by,
        created_by_email=row.created_by_email,
        reason=row.reason,
        source=row.source,
        version=row.version,
        created_at=utc(row.created_at),
    )


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class SqlAlertRepository(AlertRepository):
    def __init__(self, db: Database) -> None:
        self._db = db

    async def _hydrate(self, session: AsyncSession, rows: Sequence[AlertRow]) -> list[Alert]:
        if not rows:
            return []
        refs: dict[str, dict[str, str]] = {row.id: {} for row in rows}
        result = await session.scalars(
            select(AlertReferenceRow).where(AlertReferenceRow.alert_id.in_(list(refs)))
        )
        for ref in result:
            refs[ref.alert_id][ref.system] = ref.reference
        return [_alert_from_row(row, refs[row.id]) for row in rows]

    async def _query(self, stmt) -> list[Alert]:
        async with self._db.session() as session:
            rows = (await session.scalars(stmt)).all()
            return await self._hydrate(session, rows)

    async def save(self, alert: Alert) -> None:
        async with self._db.session() as session:
            await session.execute(
                insert(AlertRow).values(id=alert.id, version=alert.version, **_alert_values(alert))
            )
            refs = _reference_rows(alert)
            if refs:
                await session.execute(insert(AlertReferenceRow), refs)

    async def find_by_id(self, alert_id: str) -> Alert | None:
        found = await self._query(select(AlertRow).where(AlertRow.id == alert_id))
        return found[0] if found else None

    async def find_by_fingerprint(self, fingerprint: str) -> list[Alert]:
        return await self._query(
            select(AlertRow)
            .where(AlertRow.fingerprint == fingerprint)
            .order_by(AlertRow.fired_at.desc())
        )

    async def find_firing_by_fingerprint(self, fingerprint: str) -> Alert | None:
        found = await self._query(
            select(AlertRow)
            .where(AlertRow.fingerprint == fingerprint, AlertRow.state.in_(FIRING_STATES))
            .order_by(AlertRow.fired_at.desc())
            .limit(1)
        )
        return found[0] if found else None

    async def find_by_external_reference(self, system: str, reference: str) -> Alert | None:
        found = await self._query(
            select(AlertRow)
            .join(AlertReferenceRow, AlertReferenceRow.alert_id == AlertRow.id)
            .where(AlertReferenceRow.system == system, AlertReferenceRow.reference == reference)
        )
        if not found:
            return None
        return max(found, key=lambda a: (a.is_firing, a.fired_at))

    async def find_firing(self, severity: Severity | None = None) -> list[Alert]:
        stmt = (
            select(AlertRow)
            .where(AlertRow.state.in_(FIRING_STATES))
            .order_by(AlertRow.fired_at.desc())
        )
        if severity is not None:
            stmt = stmt.where(AlertRow.severity == severity)
        return await self._query(stmt)

    async def find_all(
        self,
        *,
        state: AlertState | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        stmt = select(AlertRow).order_by(AlertRow.fired_at.desc())
        if state is not None:
            stmt = stmt.where(AlertRow.state == state)
        if since is not None:
            stmt = stmt.where(AlertRow.fired_at >= utc(since))
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._query(stmt)

    async def update(self, alert: Alert) -> None:
        values = _alert_values(alert)
        async with self._db.session() as session:
            result = await session.execute(
                update(AlertRow)
                .where(AlertRow.id == alert.id, AlertRow.version == alert.version)
                .values(**values, version=AlertRow.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                exists = await session.scalar(select(AlertRow.id).where(AlertRow.id == alert.id))
                if exists is None:
                    raise AlertNotFoundError(alert.id)
                raise ConcurrentUpdateError("alert", alert.id, alert.version)
            await session.execute(
                delete(AlertReferenceRow).where(AlertReferenceRow.alert_id == alert.id)
            )
            refs = _reference_rows(alert)
            if refs:
                await session.execute(insert(AlertReferenceRow), refs)
        alert.version += 1

    async def delete(self, alert_id: str) -> None:
        async with self._db.session() as session:
            # Explicit child deletes; the foreign keys cascade as well.
            await session.execute(delete(AckEventRow).where(AckEventRow.alert_id == alert_id))
            await session.execute(
                delete(AlertReferenceRow).where(AlertReferenceRow.alert_id == alert_id)
            )
            result = await session.execute(delete(AlertRow).where(AlertRow.id == alert_id))
            if result.rowcount == 0:
                raise AlertNotFoundError(alert_id)


# ---------------------------------------------------------------------------
# Ack events
# ---------------------------------------------------------------------------

class SqlAckEventRepository(AckEventRepository):
    def __init__(self, db: Database) -> None:
        self._db = db

    async def save(self, event: AckEvent) -> None:
        async with self._db.session() as session:
            exists = await session.scalar(select(AlertRow.id).where(AlertRow.id == event.alert_id))
            if exists is None:
                raise AlertNotFoundError(event.alert_id)
            await session.execute(
                insert(AckEventRow).values(
                    id=event.id,
                    alert_id=event.alert_id,
                    source=event.source,
                    action=event.action,
                    user_id=event.user_id,
                    user_email=event.user_email,
                    user_name=event.user_name,
                    note=event.note,
                    duration_seconds=event.duration.total_seconds()
                    if event.duration is not None
                    else None,
                    created_at=utc(event.created_at),
                )
            )

    async def _query(self, stmt) -> list[AckEvent]:
        async with self._db.session() as session:
            return [_event_from_row(row) for row in await session.scalars(stmt)]

    async def find_by_id(self, event_id: str) -> AckEvent | None:
        found = await self._query(select(AckEventRow).where(AckEventRow.id == event_id))
        return found[0] if found else None

    async def find_by_alert_id(self, alert_id: str) -> list[AckEvent]:
        return await self._query(
            select(AckEventRow)
            .where(AckEventRow.alert_id == alert_id)
            .order_by(AckEventRow.created_at.asc())
        )

    async def find_latest_by_alert_id(self, alert_id: str) -> AckEvent | None:
        found = await self._query(
            select(AckEventRow)
            .where(AckEventRow.alert_id == alert_id)
            .order_by(AckEventRow.created_at.desc())
            .limit(1)
        )
        return found[0] if found else None

    async def find_all(self, *, since: datetime | None = None) -> list[AckEvent]:
        stmt = select(AckEventRow).order_by(AckEventRow.created_at.asc())
        if since is not None:
            stmt = stmt.where(AckEventRow.created_at >= utc(since))
        return await self._query(stmt)


# ---------------------------------------------------------------------------
# Silences
# ---------------------------------------------------------------------------

class SqlSilenceRepository(SilenceRepository):
    def __init__(self, db: Database) -> None:
        self._db = db

    async def _query(self, stmt) -> list[SilenceMark]:
        async with self._db.session() as session:
            return [_silence_from_row(row) for row in await session.scalars(stmt)]

    async def save(self, silence: SilenceMark) -> None:
        async with self._db.session() as session:
            await session.execute(
                insert(SilenceRow).values(
                    id=silence.id, version=silence.version, **_silence_values(silence)
                )
            )

    async def find_by_id(self, silence_id: str) -> SilenceMark | None:
        found = await self._query(select(SilenceRow).where(SilenceRow.id == silence_id))
        return found[0] if found else None

    def _active(self, now: datetime):
        now = utc(now)
        return select(SilenceRow).where(SilenceRow.start_at <= now, SilenceRow.end_at > now)

    async def find_active(self, now: datetime | None = None) -> list[SilenceMark]:
        return await self._query(
            self._active(now or utc_now()).order_by(SilenceRow.start_at.asc())
        )

    async def find_matching_alert(
        self, alert: Alert, now: datetime | None = None
    ) -> list[SilenceMark]:
        now = now or utc_now()
        selector_unset = (
            (SilenceRow.alert_id == "")
            & (SilenceRow.fingerprint == "")
            & (SilenceRow.instance == "")
        )
        candidates = await self._query(
            self._active(now)
            .where(
                or_(
                    SilenceRow.alert_id == alert.id,
                    SilenceRow.fingerprint == alert.fingerprint,
                    SilenceRow.instance == alert.instance,
                    selector_unset,
                )
            )
            .order_by(SilenceRow.start_at.asc())
        )
        return _matching(candidates, alert, now)

    async def find_all(self) -> list[SilenceMark]:
        return await self._query(select(SilenceRow).order_by(SilenceRow.created_at.asc()))

    async def update(self, silence: SilenceMark) -> None:
        async with self._db.session() as session:
            result = await session.execute(
                update(SilenceRow)
                .where(SilenceRow.id == silence.id, SilenceRow.version == silence.version)
                .values(**_silence_values(silence), version=SilenceRow.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                exists = await session.scalar(
                    select(SilenceRow.id).where(SilenceRow.id == silence.id)
                )
                if exists is None:
                    raise SilenceNotFoundError(silence.id)
                raise ConcurrentUpdateError("silence", silence.id, silence.version)
        silence.version += 1

    async def delete(self, silence_id: str) -> None:
        async with self._db.session() as session:
            result = await session.execute(delete(SilenceRow).where(SilenceRow.id == silence_id))
            if result.rowcount == 0:
                raise SilenceNotFoundError(silence_id)

    async def delete_expired(self, now: datetime | None = None) -> int:
        now = utc(now or utc_now())
        async with self._db.session() as session:
            result = await session.execute(delete(SilenceRow).where(SilenceRow.end_at <= now))
            return result.rowcount


def _matching(candidates: Iterable[SilenceMark], alert: Alert, now: datetime) -> list[SilenceMark]:
    seen: set[str] = set()
    matched = []
    for silence in candidates:
        if silence.id not in seen and silence.matches_alert(alert, now):
            seen.add(silence.id)
            matched.append(silence)
    return matched
