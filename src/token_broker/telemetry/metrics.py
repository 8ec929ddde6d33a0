"""OpenTelemetry counters and histograms for broker operations."""

from __future__ import annotations

from collections.abc import Mapping

from opentelemetry.metrics import Meter
from opentelemetry.trace import INVALID_SPAN, Span
from opentelemetry.util.types import AttributeValue

from token_broker.telemetry import constants
from token_broker.telemetry.events import (
    ConfigReadEvent,
    ConfigWriteEvent,
    ErrorEvent,
    RoleReadEvent,
    RoleWriteEvent,
    TokenGenerateEvent,
    TokenRequestEvent,
    UpstreamAuthEvent,
    UpstreamAuthResultEvent,
)


def _error_type(error: BaseException | None) -> str:
    return type(error).__name__ if error is not None else "unknown"


class MetricsTelemetry:
    """Record broker operations as OpenTelemetry instruments.

    Instruments are created once at construction. ``MetricsTelemetry()``
    with no meter is disabled and records nothing.
    """

    def __init__(self, meter: Meter | None = None, *, enabled: bool | None = None):
        self._enabled = meter is not None and enabled is not False
        if meter is None or not self._enabled:
            return
        self._token_generates = meter.create_counter(
            constants.METRIC_TOKEN_GENERATES,
            unit="{generation}",
            description="Total number of token generations",
        )
        self._token_errors = meter.create_counter(
            constants.METRIC_TOKEN_ERRORS,
            unit="{error}",
            description="Total number of token generation errors",
        )
        self._upstream_auth = meter.create_counter(
            constants.METRIC_UPSTREAM_AUTH,
            unit="{attempt}",
            description="Total number of upstream exchange attempts",
        )
        self._config_writes = meter.create_counter(
            constants.METRIC_CONFIG_WRITES,
            unit="{write}",
            description="Total number of configuration writes",
        )
        self._config_reads = meter.create_counter(
            constants.METRIC_CONFIG_READS,
            unit="{read}",
            description="Total number of configuration reads",
        )
        self._role_writes = meter.create_counter(
            constants.METRIC_ROLE_WRITES,
            unit="{write}",
            description="Total number of role writes",
        )
        self._role_reads = meter.create_counter(
            constants.METRIC_ROLE_READS,
            unit="{read}",
            description="Total number of role reads",
        )
        self._errors = meter.create_counter(
            constants.METRIC_ERRORS,
            unit="{error}",
            description="Total number of operation errors",
        )
        self._token_generate_duration = meter.create_histogram(
            constants.METRIC_TOKEN_GENERATE_DURATION,
            unit="ms",
            description="Token generation latency in milliseconds",
        )
        self._upstream_auth_duration = meter.create_histogram(
            constants.METRIC_UPSTREAM_AUTH_DURATION,
            unit="ms",
            description="Upstream exchange latency in milliseconds",
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def on_token_request(self, event: TokenRequestEvent) -> Span:
        return INVALID_SPAN

    def on_token_generate(self, span: Span, event: TokenGenerateEvent) -> None:
        if not self._enabled:
            return
        attributes = {"role": event.role_name, "success": event.success}
        self._token_generates.add(1, attributes)
        self._token_generate_duration.record(float(event.duration_ms), attributes)
        if not event.success:
            self._token_errors.add(
                1,
                {"role": event.role_name, "error_type": _error_type(event.error)},
            )

    def on_upstream_auth(self, parent: Span, event: UpstreamAuthEvent) -> Span:
        return INVALID_SPAN

    def on_upstream_auth_result(
        self, span: Span, event: UpstreamAuthResultEvent
    ) -> None:
        if not self._enabled:
            return
        attributes = {"role": event.role_name, "success": event.success}
        self._upstream_auth.add(1, attributes)
        self._upstream_auth_duration.record(float(event.duration_ms), attributes)

    def on_config_write(self, event: ConfigWriteEvent) -> Span:
        if self._enabled:
            self._config_writes.add(
                1, {"operation": event.operation, "success": event.success}
            )
        return INVALID_SPAN

    def on_config_read(self, event: ConfigReadEvent) -> None:
        if self._enabled:
            self._config_reads.add(1, {"found": event.found})

    def on_role_write(self, event: RoleWriteEvent) -> Span:
        if self._enabled:
            self._role_writes.add(
                1,
                {
                    "role": event.role_name,
                    "operation": event.operation,
                    "success": event.success,
                },
            )
        return INVALID_SPAN

    def on_role_read(self, event: RoleReadEvent) -> None:
        if self._enabled:
            self._role_reads.add(1, {"role": event.role_name, "found": event.found})

    def on_operation(
        self,
        span_name: str,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> Span:
        return INVALID_SPAN

    def on_error(self, span: Span, event: ErrorEvent) -> None:
        if not self._enabled:
            return
        self._errors.add(
            1,
            {
                "operation": event.operation,
                "severity": event.severity,
                "error_type": _error_type(event.error),
            },
        )

    def end_span(self, span: Span) -> None:
        return None
