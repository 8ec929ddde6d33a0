"""Single call-site facade over the configured telemetry implementations."""

from __future__ import annotations

from collections.abc import Callable, Mapping

import structlog
from opentelemetry.trace import INVALID_SPAN, Span
from opentelemetry.util.types import AttributeValue

from token_broker.logging import StructuredLogger, log_warning
from token_broker.telemetry.base import Telemetry
from token_broker.telemetry.constants import SEVERITY_ERROR
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
from token_broker.telemetry.noop import NoOpTelemetry


class Emitter:
    """Fan broker events out to span and metrics telemetry.

    Every dispatch is guarded: an exception raised by an implementation is
    logged as ``telemetry.emit_failed`` and never reaches the caller. Start
    methods fall back to ``INVALID_SPAN`` in that case.
    """

    def __init__(
        self,
        span_telemetry: Telemetry | None = None,
        metrics_telemetry: Telemetry | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        self._spans: Telemetry = span_telemetry or NoOpTelemetry()
        self._metrics: Telemetry = metrics_telemetry or NoOpTelemetry()
        self._logger = logger or structlog.stdlib.get_logger(__name__)

    def _guard(self, method: str, call: Callable[[], object]) -> None:
        try:
            call()
        except Exception as exc:
            log_warning(
                self._logger,
                "telemetry.emit_failed",
                method=method,
                error=f"{exc.__class__.__name__}: {exc}",
            )

    def _start(
        self,
        method: str,
        start_span: Callable[[], Span],
        record: Callable[[], object] | None = None,
    ) -> Span:
        span: Span = INVALID_SPAN
        try:
            span = start_span()
        except Exception as exc:
            log_warning(
                self._logger,
                "telemetry.emit_failed",
                method=method,
                error=f"{exc.__class__.__name__}: {exc}",
            )
        if record is not None:
            self._guard(method, record)
        return span

    def emit_token_request(self, role_name: str) -> Span:
        event = TokenRequestEvent(role_name=role_name)
        return self._start(
            "emit_token_request",
            lambda: self._spans.on_token_request(event),
            lambda: self._metrics.on_token_request(event),
        )

    def emit_token_success(
        self, span: Span, role_name: str, duration_ms: float
    ) -> None:
        event = TokenGenerateEvent(
            role_name=role_name, success=True, duration_ms=duration_ms
        )
        self._guard(
            "emit_token_success", lambda: self._spans.on_token_generate(span, event)
        )
        self._guard(
            "emit_token_success", lambda: self._metrics.on_token_generate(span, event)
        )

    def emit_token_failure(
        self,
        span: Span,
        role_name: str,
        error: BaseException,
        duration_ms: float,
    ) -> None:
        event = TokenGenerateEvent(
            role_name=role_name,
            success=False,
            duration_ms=duration_ms,
            error=error,
        )
        self._guard(
            "emit_token_failure", lambda: self._spans.on_token_generate(span, event)
        )
        self._guard(
            "emit_token_failure", lambda: self._metrics.on_token_generate(span, event)
        )

    def emit_upstream_auth_start(
        self,
        parent: Span,
        *,
        role_name: str,
        credential_type: str,
        role_ids_count: int,
        attempt: int,
    ) -> Span:
        event = UpstreamAuthEvent(
            role_name=role_name,
            credential_type=credential_type,
            role_ids_count=role_ids_count,
            attempt=attempt,
        )
        return self._start(
            "emit_upstream_auth_start",
            lambda: self._spans.on_upstream_auth(parent, event),
            lambda: self._metrics.on_upstream_auth(parent, event),
        )

    def emit_upstream_auth_result(
        self,
        span: Span,
        *,
        role_name: str,
        success: bool,
        duration_ms: float,
        error: BaseException | None = None,
    ) -> None:
        event = UpstreamAuthResultEvent(
            role_name=role_name,
            success=success,
            duration_ms=duration_ms,
            error=error,
        )
        self._guard(
            "emit_upstream_auth_result",
            lambda: self._spans.on_upstream_auth_result(span, event),
        )
        self._guard(
            "emit_upstream_auth_result",
            lambda: self._metrics.on_upstream_auth_result(span, event),
        )

    def emit_config_write(self, operation: str, success: bool) -> Span:
        event = ConfigWriteEvent(operation=operation, success=success)
        return self._start(
            "emit_config_write",
            lambda: self._spans.on_config_write(event),
            lambda: self._metrics.on_config_write(event),
        )

    def emit_config_read(self, found: bool) -> None:
        event = ConfigReadEvent(found=found)
        self._guard("emit_config_read", lambda: self._spans.on_config_read(event))
        self._guard("emit_config_read", lambda: self._metrics.on_config_read(event))

    def emit_role_write(self, role_name: str, operation: str, success: bool) -> Span:
        event = RoleWriteEvent(
            role_name=role_name, operation=operation, success=success
        )
        return self._start(
            "emit_role_write",
            lambda: self._spans.on_role_write(event),
            lambda: self._metrics.on_role_write(event),
        )

    def emit_role_read(self, role_name: str, found: bool) -> None:
        event = RoleReadEvent(role_name=role_name, found=found)
        self._guard("emit_role_read", lambda: self._spans.on_role_read(event))
        self._guard("emit_role_read", lambda: self._metrics.on_role_read(event))

    def emit_operation(
        self,
        span_name: str,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> Span:
        return self._start(
            "emit_operation",
            lambda: self._spans.on_operation(span_name, attributes),
        )

    def emit_error(
        self,
        span: Span,
        operation: str,
        error: BaseException,
        severity: str = SEVERITY_ERROR,
    ) -> None:
        event = ErrorEvent(operation=operation, error=error, severity=severity)
        self._guard("emit_error", lambda: self._spans.on_error(span, event))
        self._guard("emit_error", lambda: self._metrics.on_error(span, event))

    def end_span(self, span: Span) -> None:
        self._guard("end_span", lambda: self._spans.end_span(span))
