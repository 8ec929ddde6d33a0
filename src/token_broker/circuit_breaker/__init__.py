"""Async circuit breaker guarding the upstream token exchange.

Key behavior notes:
  - The breaker counts request-level failures. Callers that retry should wrap
    the whole retry loop, not each attempt.
  - ``HALF_OPEN`` is entered by the first call after the reset timeout; a
    success closes the circuit and a failure reopens it.
  - Excluded exceptions and cancellations are neutral: no counters change, and
    a probe that ends that way leaves the circuit ``OPEN``.
"""

from token_broker.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from token_broker.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from token_broker.circuit_breaker.metrics import BreakerListener, LoggingBreakerListener
from token_broker.circuit_breaker.state import BreakerStats, CircuitState

__all__ = [
    "BreakerListener",
    "BreakerStats",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "LoggingBreakerListener",
]
