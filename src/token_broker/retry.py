from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.retry import retry_base

MAX_RETRIES_LIMIT = 10


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Attempt budget and exponential backoff shape.

    The wait before attempt ``n + 1`` is ``base_seconds * 2 ** (n - 1)``,
    capped at ``max_seconds`` when set.
    """

    attempts: int
    base_seconds: float = 1.0
    max_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.base_seconds < 0:
            raise ValueError("base_seconds must be >= 0")
        if self.max_seconds is not None and self.max_seconds < self.base_seconds:
            raise ValueError("max_seconds must be >= base_seconds")

    def delay_before(self, attempt_number: int) -> float:
        """Return the backoff slept after failed attempt ``attempt_number``."""
        delay = self.base_seconds * 2 ** (attempt_number - 1)
        if self.max_seconds is not None:
            return min(delay, self.max_seconds)
        return delay


def policy_for_max_retries(
    max_retries: int, *, base_seconds: float = 1.0
) -> RetryBackoffPolicy:
    """Build the policy for ``max_retries`` retries after the first attempt."""
    if not 0 <= max_retries <= MAX_RETRIES_LIMIT:
        raise ValueError(f"max_retries must be between 0 and {MAX_RETRIES_LIMIT}")
    return RetryBackoffPolicy(attempts=max_retries + 1, base_seconds=base_seconds)


def build_exponential_retrying(
    *,
    retry: retry_base,
    policy: RetryBackoffPolicy,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    reraise: bool = True,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` with plain exponential backoff."""
    if policy.max_seconds is None:
        wait = wait_exponential(multiplier=policy.base_seconds, exp_base=2)
    else:
        wait = wait_exponential(
            multiplier=policy.base_seconds,
            exp_base=2,
            max=policy.max_seconds,
        )
    options: dict[str, Any] = {
        "retry": retry,
        "wait": wait,
        "stop": stop_after_attempt(policy.attempts),
        "reraise": reraise,
    }
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(**options)
