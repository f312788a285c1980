"""Concurrent best-effort broadcast to destinations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass
class FanOutResult:
    succeeded: dict[str, Any] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def sent(self) -> int:
        return len(self.succeeded)

    @property
    def errors(self) -> int:
        return len(self.failed)


async def broadcast(
    calls: Mapping[str, Callable[[], Awaitable[Any]]],
    *,
    alert_id: str,
    operation: str,
    logger: logging.Logger,
) -> FanOutResult:
    """Run every call concurrently; one failure never stops the others.

    Failures are logged with the alert ID, destination and error.
    Cancellation of the caller cancels all outstanding calls.
    """
    result = FanOutResult()

    async def run(name: str, call: Callable[[], Awaitable[Any]]) -> None:
        try:
            result.succeeded[name] = await call()
        except Exception as exc:
            result.failed[name] = str(exc) or type(exc).__name__
            logger.error(
                "%s failed for alert %s on %s: %s",
                operation,
                alert_id,
                name,
                exc,
            )

    await asyncio.gather(*(run(name, call) for name, call in calls.items()))
    return result
