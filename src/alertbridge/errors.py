"""Error taxonomy shared by storage, destination adapters and services.

Errors are classified where they occur (storage backend, HTTP adapter) so
the retry executor and the ack orchestrator can decide between retry and
abort without looking at transport details.
"""

from __future__ import annotations


class AlertBridgeError(Exception):
    """Base class for all Alert Bridge errors."""


# ---------------------------------------------------------------------------
# Repository errors
# ---------------------------------------------------------------------------

class NotFoundError(AlertBridgeError):
    """The requested record does not exist."""


class AlertNotFoundError(NotFoundError):
    def __init__(self, ref: str = "") -> None:
        super().__init__(f"alert not found: {ref}" if ref else "alert not found")
        self.ref = ref


class SilenceNotFoundError(NotFoundError):
    def __init__(self, silence_id: str = "") -> None:
        super().__init__(
            f"silence not found: {silence_id}" if silence_id else "silence not found"
        )
        self.silence_id = silence_id


class AlreadyExistsError(AlertBridgeError):
    """A record with the same identifier is already stored."""


class ConcurrentUpdateError(AlertBridgeError):
    """Optimistic locking failure: the stored version moved since it was read.

    Callers may reload and retry.
    """

    retryable_by_caller = True

    def __init__(self, entity: str, entity_id: str, expected_version: int) -> None:
        super().__init__(
            f"concurrent update detected for {entity} {entity_id} "
            f"(expected version {expected_version})"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version


# ---------------------------------------------------------------------------
# Domain errors
# ---------------------------------------------------------------------------

class InvalidTransitionError(AlertBridgeError):
    """An alert state change that the lifecycle does not allow."""

    def __init__(self, alert_id: str, current: str, target: str) -> None:
        super().__init__(f"alert {alert_id}: cannot move from {current} to {target}")
        self.alert_id = alert_id
        self.current = current
        self.target = target


class InvalidSilenceDurationError(AlertBridgeError, ValueError):
    """Silence durations must be positive."""


# ---------------------------------------------------------------------------
# Outbound call errors
# ---------------------------------------------------------------------------

class TransientError(AlertBridgeError):
    """Network failure, 5xx or rate limit — safe to retry."""

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.status_code = status_code


class PermanentError(AlertBridgeError):
    """4xx, authentication or validation failure — never retried."""

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.status_code = status_code


class CircuitOpenError(TransientError):
    """The circuit breaker rejected the call without running it."""

    def __init__(self, name: str) -> None:
        super().__init__(f"circuit breaker {name!r} is open")
        self.name = name
