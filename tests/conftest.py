"""Shared test fixtures for the Alert Bridge test suite.

Repository-backed tests run against the in-memory and SQLite backends.  Set
``AB_TEST_POSTGRES_URL`` to include a Postgres database as well.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from alertbridge.errors import TransientError
from alertbridge.models import AckEvent, Alert, AlertReport
from alertbridge.notifiers import Notifier
from alertbridge.services import AckSynchronizer, AlertIngestor, SilenceService
from alertbridge.storage import (
    Storage,
    create_postgres_database,
    create_sqlite_database,
    memory_storage,
    sql_storage,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

POSTGRES_URL = os.environ.get("AB_TEST_POSTGRES_URL", "")

BACKENDS = ["memory", "sqlite"] + (["postgres"] if POSTGRES_URL else [])


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced clock; call it to read the current time."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSleep:
    """Stands in for ``asyncio.sleep`` and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


# ---------------------------------------------------------------------------
# Destinations
# ---------------------------------------------------------------------------

class FakeNotifier(Notifier):
    """Records every call.  Set ``fail_with`` to make every call raise."""

    def __init__(self, name: str, *, supports_ack: bool = True) -> None:
        self.name = name
        self.supports_ack = supports_ack
        self.fail_with: Exception | None = None
        self.notified: list[Alert] = []
        self.updated: list[tuple[str, Alert]] = []
        self.acked: list[tuple[Alert, AckEvent]] = []
        self.resolved: list[Alert] = []

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def notify(self, alert: Alert) -> str:
        self._maybe_fail()
        self.notified.append(alert)
        return f"{self.name}-msg-{len(self.notified)}"

    async def update_message(self, reference: str, alert: Alert) -> None:
        self._maybe_fail()
        self.updated.append((reference, alert))

    async def acknowledge(self, alert: Alert, event: AckEvent) -> None:
        self._maybe_fail()
        self.acked.append((alert, event))

    async def resolve(self, alert: Alert) -> None:
        self._maybe_fail()
        self.resolved.append(alert)


@pytest.fixture
def slack() -> FakeNotifier:
    return FakeNotifier("slack")


@pytest.fixture
def pagerduty() -> FakeNotifier:
    return FakeNotifier("pagerduty")


@pytest.fixture
def notifiers(slack: FakeNotifier, pagerduty: FakeNotifier) -> list[FakeNotifier]:
    return [slack, pagerduty]


def transient(message: str = "503 from upstream") -> TransientError:
    return TransientError(message, status_code=503)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

async def _open_backend(kind: str, tmp_path: Path) -> Storage:
    if kind == "memory":
        return memory_storage()
    if kind == "sqlite":
        return await sql_storage(create_sqlite_database(str(tmp_path / "alerts.db")))
    db = create_postgres_database(POSTGRES_URL)
    await db.drop_all()
    return await sql_storage(db)


@pytest_asyncio.fixture(params=BACKENDS)
async def storage(request, tmp_path: Path):
    """Each backend in turn, empty."""
    store = await _open_backend(request.param, tmp_path)
    yield store
    await store.close()


@pytest.fixture
def memory() -> Storage:
    return memory_storage()


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def ingestor(memory: Storage, notifiers: list[FakeNotifier], clock: FakeClock) -> AlertIngestor:
    return AlertIngestor(
        memory.alerts,
        memory.silences,
        notifiers,
        deduplication_window=timedelta(minutes=5),
        resend_interval=timedelta(minutes=30),
        clock=clock,
    )


@pytest.fixture
def synchronizer(
    memory: Storage, notifiers: list[FakeNotifier], clock: FakeClock
) -> AckSynchronizer:
    return AckSynchronizer(memory.alerts, memory.acks, notifiers, clock=clock)


@pytest.fixture
def silence_service(memory: Storage, clock: FakeClock) -> SilenceService:
    return SilenceService(memory.silences, clock=clock)


def make_report(fingerprint: str = "fp-1", **kwargs) -> AlertReport:
    defaults = {
        "name": "HighCPU",
        "instance": "srv-1",
        "severity": "critical",
        "summary": "CPU above 95%",
        "labels": {"env": "prod", "team": "infra"},
    }
    defaults.update(kwargs)
    return AlertReport(fingerprint=fingerprint, **defaults)


def make_alert(fingerprint: str = "fp-1", **kwargs) -> Alert:
    defaults = {
        "name": "HighCPU",
        "instance": "srv-1",
        "severity": "critical",
        "labels": {"env": "prod"},
        "fired_at": T0,
        "created_at": T0,
        "updated_at": T0,
    }
    defaults.update(kwargs)
    return Alert(fingerprint=fingerprint, **defaults)
