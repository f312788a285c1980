"""Retry + circuit breaker decorator around a destination adapter."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from alertbridge.models import AckEvent, Alert
from alertbridge.notifiers.base import Notifier
from alertbridge.resilience import CircuitBreaker, RetryPolicy

T = TypeVar("T")


class ResilientNotifier(Notifier):
    """Wraps every call of ``inner`` in the retry executor.

    Each attempt goes through the destination's breaker, so repeated
    failures open the circuit and later calls fail fast with
    :class:`~alertbridge.errors.CircuitOpenError`, which is not retried.
    """

    def __init__(
        self,
        inner: Notifier,
        policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.inner = inner
        self.name = inner.name
        self.supports_ack = inner.supports_ack
        self.policy = policy or RetryPolicy()
        self.breaker = breaker or CircuitBreaker(inner.name)

    async def run(self, op: Callable[[], Awaitable[T]], description: str) -> T:
        """Run any call against the destination under its retry policy and breaker."""
        return await self.policy.run(
            lambda: self.breaker.call(op),
            description=f"{self.name}.{description}",
        )

    async def notify(self, alert: Alert) -> str:
        return await self.run(lambda: self.inner.notify(alert), "notify")

    async def update_message(self, reference: str, alert: Alert) -> None:
        await self.run(lambda: self.inner.update_message(reference, alert), "update_message")

    async def acknowledge(self, alert: Alert, event: AckEvent) -> None:
        await self.run(lambda: self.inner.acknowledge(alert, event), "acknowledge")

    async def resolve(self, alert: Alert) -> None:
        await self.run(lambda: self.inner.resolve(alert), "resolve")

    async def aclose(self) -> None:
        await self.inner.aclose()
