from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType

from token_broker.circuit_breaker import BreakerStats
from token_broker.config import BackendConfig

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"
REASON_NOT_CONFIGURED = "backend not configured"
REASON_CONFIG_LOAD_FAILED = "failed to load configuration"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class CheckResult:
    """Result of one health check."""

    name: str
    ok: bool
    reason: str | None = None
    detail: str = ""
    data: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Freeze check metadata mapping to keep snapshots read-only."""
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))


@dataclass(frozen=True)
class HealthSnapshot:
    """Immutable outcome of one health evaluation."""

    healthy: bool
    timestamp: datetime
    configuration_status: str | None = None
    connectivity_status: str | None = None
    response_time_ms: int | None = None
    error: str | None = None
    details: str | None = None
    circuit_breaker: BreakerStats | None = None
    check_results: tuple[CheckResult, ...] = ()

    def as_dict(self) -> dict[str, object]:
        """Render the health response; unset fields are omitted."""
        data: dict[str, object] = {
            "healthy": self.healthy,
            "timestamp": self.timestamp.isoformat(timespec="seconds"),
        }
        if self.configuration_status is not None:
            data["configuration_status"] = self.configuration_status
        if self.connectivity_status is not None:
            data["connectivity_status"] = self.connectivity_status
        if self.response_time_ms is not None:
            data["response_time_ms"] = self.response_time_ms
        if self.error is not None:
            data["error"] = self.error
        if self.details is not None:
            data["details"] = self.details
        if self.circuit_breaker is not None:
            data["circuit_breaker"] = self.circuit_breaker.as_dict()
        return data


async def evaluate_health(
    *,
    load_config: Callable[[], Awaitable[BackendConfig | None]],
    verify: Callable[[BackendConfig], Awaitable[None]],
    breaker_stats: Callable[[], BreakerStats],
    probe: bool = True,
    now_fn: Callable[[], datetime] = _utcnow,
) -> HealthSnapshot:
    """Check configuration, optionally probe the upstream, report the breaker.

    Check failures are reported in the snapshot, never raised.
    """
    try:
        config = await load_config()
    except Exception as exc:
        detail = f"{exc.__class__.__name__}: {exc}"
        return HealthSnapshot(
            healthy=False,
            timestamp=now_fn(),
            error=REASON_CONFIG_LOAD_FAILED,
            details=detail,
            check_results=(
                CheckResult(
                    name="configuration",
                    ok=False,
                    reason=REASON_CONFIG_LOAD_FAILED,
                    detail=detail,
                ),
            ),
        )
    if config is None:
        return HealthSnapshot(
            healthy=False,
            timestamp=now_fn(),
            error=REASON_NOT_CONFIGURED,
            check_results=(
                CheckResult(
                    name="configuration", ok=False, reason=REASON_NOT_CONFIGURED
                ),
            ),
        )

    configuration = CheckResult(
        name="configuration",
        ok=True,
        data={"credentials_type": config.credentials_type},
    )
    if not probe:
        return HealthSnapshot(
            healthy=True,
            timestamp=now_fn(),
            configuration_status=STATUS_OK,
            connectivity_status=STATUS_SKIPPED,
            circuit_breaker=breaker_stats(),
            check_results=(configuration,),
        )

    start = time.monotonic()
    error: str | None = None
    try:
        await verify(config)
    except Exception as exc:
        error = str(exc) or exc.__class__.__name__
    response_time_ms = int(max(time.monotonic() - start, 0.0) * 1000)
    connectivity = CheckResult(
        name="connectivity",
        ok=error is None,
        reason=None if error is None else STATUS_FAILED,
        detail=error or "",
        data={"response_time_ms": response_time_ms},
    )
    return HealthSnapshot(
        healthy=error is None,
        timestamp=now_fn(),
        configuration_status=STATUS_OK,
        connectivity_status=STATUS_OK if error is None else STATUS_FAILED,
        response_time_ms=response_time_ms,
        error=error,
        circuit_breaker=breaker_stats(),
        check_results=(configuration, connectivity),
    )
