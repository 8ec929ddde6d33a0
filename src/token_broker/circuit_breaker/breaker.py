"""Core circuit breaker implementation."""

import threading
import time
from collections.abc import Awaitable, Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import ParamSpec, TypeVar

from token_broker.circuit_breaker.exceptions import CircuitOpenError
from token_broker.circuit_breaker.metrics import BreakerListener
from token_broker.circuit_breaker.state import BreakerStats, CircuitState

T = TypeVar("T")
P = ParamSpec("P")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _ReadWriteLock:
    """Allow many concurrent readers or a single writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True, slots=True)
class _Admission:
    """Outcome of the pre-call gate."""

    allowed: bool
    probing: bool
    retry_after: float = 0.0


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        max_failures: Consecutive failures required before opening.
        reset_timeout: Seconds to wait while ``OPEN`` before allowing a probe.
        excluded_exceptions: Exceptions that count neither as failure nor as
            success.
    """

    max_failures: int = 5
    reset_timeout: float = 60.0
    excluded_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        if self.max_failures < 1:
            raise ValueError("max_failures must be >= 1")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must be >= 0")


class CircuitBreaker:
    """Stateful proxy around a dangerous async operation.

    State is only touched under ``_lock``; the lock is released before the
    protected callable runs and re-acquired for the post-call bookkeeping.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker.

        Args:
            name: Breaker name used in errors, logs and stats.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._lock = _ReadWriteLock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: datetime | None = None

    async def _emit_state_change(self, old: CircuitState, new: CircuitState) -> None:
        for listener in self._listeners:
            try:
                await listener.on_state_change(self.name, old, new)
            except Exception:
                continue

    async def _emit_call_rejected(self) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_rejected(self.name)
            except Exception:
                continue

    async def _emit_call_succeeded(self, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_succeeded(self.name, elapsed)
            except Exception:
                continue

    async def _emit_call_failed(self, exc: Exception, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_failed(self.name, exc, elapsed)
            except Exception:
                continue

    def _seconds_since_failure(self, now: datetime) -> float | None:
        if self._last_failure_at is None:
            return None
        return max((now - self._last_failure_at).total_seconds(), 0.0)

    def _admit(self) -> _Admission:
        with self._lock.write():
            if self._state != CircuitState.OPEN:
                return _Admission(allowed=True, probing=False)
            elapsed = self._seconds_since_failure(_utcnow())
            if elapsed is not None and elapsed <= self.config.reset_timeout:
                return _Admission(
                    allowed=False,
                    probing=False,
                    retry_after=self.config.reset_timeout - elapsed,
                )
            self._state = CircuitState.HALF_OPEN
            return _Admission(allowed=True, probing=True)

    def _record_success(self) -> CircuitState:
        with self._lock.write():
            previous = self._state
            self._failures = 0
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
            return previous

    def _record_failure(self) -> tuple[CircuitState, CircuitState]:
        with self._lock.write():
            previous = self._state
            self._failures += 1
            self._last_failure_at = _utcnow()
            if self._failures >= self.config.max_failures:
                self._state = CircuitState.OPEN
            return previous, self._state

    def _abandon_probe(self, probing: bool) -> None:
        if not probing:
            return
        with self._lock.write():
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            func: Dangerous async callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when allowed and successful.

        Raises:
            CircuitOpenError: When the circuit is open and the call is rejected.
            Exception: The original exception from ``func`` when it is attempted
                and fails.
        """
        admission = self._admit()
        if not admission.allowed:
            await self._emit_call_rejected()
            raise CircuitOpenError(self.name, retry_after=admission.retry_after)
        probing = admission.probing
        if probing:
            await self._emit_state_change(CircuitState.OPEN, CircuitState.HALF_OPEN)

        start = time.monotonic()
        try:
            result = await func(*args, **kwargs)
        except self.config.excluded_exceptions:
            self._abandon_probe(probing)
            raise
        except Exception as exc:
            elapsed = max(time.monotonic() - start, 0.0)
            previous, current = self._record_failure()
            await self._emit_call_failed(exc, elapsed)
            if current != previous:
                await self._emit_state_change(previous, current)
            raise
        except BaseException:
            self._abandon_probe(probing)
            raise

        elapsed = max(time.monotonic() - start, 0.0)
        previous = self._record_success()
        if previous == CircuitState.HALF_OPEN:
            await self._emit_state_change(CircuitState.HALF_OPEN, CircuitState.CLOSED)
        await self._emit_call_succeeded(elapsed)
        return result

    async def record_failure(self, exc: Exception, elapsed: float = 0.0) -> None:
        """Count a failure for a protected call whose outcome was abandoned.

        A caller that stops waiting on ``call`` (at a deadline, say) cancels the
        operation, and cancellation is never counted by ``call`` itself.
        """
        previous, current = self._record_failure()
        await self._emit_call_failed(exc, elapsed)
        if current != previous:
            await self._emit_state_change(previous, current)

    def get_state(self) -> CircuitState:
        """Return the current breaker state."""
        with self._lock.read():
            return self._state

    def get_stats(self) -> BreakerStats:
        """Return a read-only snapshot of the breaker counters."""
        with self._lock.read():
            return BreakerStats(
                name=self.name,
                state=self._state,
                failures=self._failures,
                max_failures=self.config.max_failures,
                last_failure_at=self._last_failure_at,
                seconds_since_failure=self._seconds_since_failure(_utcnow()),
            )

    def reset(self) -> None:
        """Force the breaker back to a healthy ``CLOSED`` state."""
        with self._lock.write():
            self._failures = 0
            self._state = CircuitState.CLOSED
            self._last_failure_at = None
