"""
Resilience primitives: circuit breaker and retry with backoff.
"""

from .circuit_breaker import (
    BREAKER_POLICIES,
    BreakerPolicy,
    BreakerStateStore,
    CircuitBreaker,
    CircuitBreakerState,
    CircuitState,
    InMemoryBreakerStore,
    SQLBreakerStore,
    get_breaker_store,
)
from .retry import backoff_delay, retry_with_backoff

__all__ = [
    "BREAKER_POLICIES",
    "BreakerPolicy",
    "BreakerStateStore",
    "CircuitBreaker",
    "CircuitBreakerState",
    "CircuitState",
    "InMemoryBreakerStore",
    "SQLBreakerStore",
    "get_breaker_store",
    "backoff_delay",
    "retry_with_backoff",
]
