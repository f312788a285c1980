"""Retry, circuit breaking and reconnection shared by every outbound call."""

from alertbridge.resilience.circuit_breaker import CircuitBreaker, CircuitState
from alertbridge.resilience.reconnect import ReconnectPolicy, ReconnectSupervisor
from alertbridge.resilience.retry import RetryPolicy, backoff_delay, is_retryable, with_retry

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ReconnectPolicy",
    "ReconnectSupervisor",
    "RetryPolicy",
    "backoff_delay",
    "is_retryable",
    "with_retry",
]
