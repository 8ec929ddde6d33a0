"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(frozen=True)
class BreakerStats:
    """Point-in-time view of breaker internals useful for health/metrics.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failures: Consecutive failures since the last success or reset.
        max_failures: Failures required before the breaker opens.
        last_failure_at: Timestamp of the last counted failure, if any.
        seconds_since_failure: Seconds elapsed since ``last_failure_at``.
    """

    name: str
    state: CircuitState
    failures: int
    max_failures: int
    last_failure_at: datetime | None
    seconds_since_failure: float | None

    def as_dict(self) -> dict[str, object]:
        """Render the stats mapping reported by health and metrics reads."""
        stats: dict[str, object] = {
            "state": self.state.value,
            "failures": self.failures,
            "max_failures": self.max_failures,
        }
        if self.last_failure_at is not None:
            stats["last_failure"] = self.last_failure_at.isoformat(
                timespec="seconds"
            )
        if self.seconds_since_failure is not None:
            stats["time_since_failure"] = int(self.seconds_since_failure)
        return stats
