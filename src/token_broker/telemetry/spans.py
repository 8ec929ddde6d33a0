"""OpenTelemetry tracing implementation of ``Telemetry``."""

from __future__ import annotations

from collections.abc import Mapping

from opentelemetry import trace
from opentelemetry.trace import INVALID_SPAN, Span, SpanKind, Status, StatusCode, Tracer
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


def _set_ok(span: Span) -> None:
    span.set_status(Status(StatusCode.OK))


def _set_error(span: Span, error: BaseException | None, fallback: str) -> None:
    if error is not None:
        span.record_exception(error)
        span.set_status(Status(StatusCode.ERROR, str(error) or fallback))
        return
    span.set_status(Status(StatusCode.ERROR, fallback))


class SpanTelemetry:
    """Trace broker operations as OpenTelemetry spans.

    ``SpanTelemetry()`` with no tracer is disabled and returns
    ``INVALID_SPAN`` from every start method.
    """

    def __init__(self, tracer: Tracer | None = None, *, enabled: bool | None = None):
        self._tracer = tracer
        self._enabled = tracer is not None and enabled is not False

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _start(
        self,
        name: str,
        *,
        parent: Span | None = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> Span:
        if not self.enabled or self._tracer is None:
            return INVALID_SPAN
        context = trace.set_span_in_context(parent) if parent is not None else None
        return self._tracer.start_span(
            name,
            context=context,
            kind=kind,
            attributes=dict(attributes) if attributes else None,
        )

    def on_token_request(self, event: TokenRequestEvent) -> Span:
        return self._start(
            constants.SPAN_TOKEN_GENERATE,
            attributes={constants.ATTR_ROLE: event.role_name},
        )

    def on_token_generate(self, span: Span, event: TokenGenerateEvent) -> None:
        if not span.is_recording():
            return
        span.set_attribute(constants.ATTR_DURATION_MS, float(event.duration_ms))
        if event.success:
            span.add_event(constants.EVENT_TOKEN_GENERATED)
            _set_ok(span)
            return
        span.add_event(constants.EVENT_TOKEN_FAILED)
        _set_error(span, event.error, "token generation failed")

    def on_upstream_auth(self, parent: Span, event: UpstreamAuthEvent) -> Span:
        span = self._start(
            constants.SPAN_UPSTREAM_AUTH,
            parent=parent,
            kind=SpanKind.CLIENT,
            attributes={
                constants.ATTR_ROLE: event.role_name,
                constants.ATTR_CREDENTIAL_TYPE: event.credential_type,
                constants.ATTR_ROLE_IDS_COUNT: event.role_ids_count,
                constants.ATTR_ATTEMPT: event.attempt,
            },
        )
        if span.is_recording():
            span.add_event(constants.EVENT_UPSTREAM_AUTH_START)
        return span

    def on_upstream_auth_result(
        self, span: Span, event: UpstreamAuthResultEvent
    ) -> None:
        if not span.is_recording():
            return
        span.set_attribute(
            constants.ATTR_UPSTREAM_DURATION_MS, float(event.duration_ms)
        )
        if event.success:
            span.add_event(constants.EVENT_UPSTREAM_AUTH_SUCCESS)
            _set_ok(span)
            return
        span.add_event(constants.EVENT_UPSTREAM_AUTH_FAILED)
        _set_error(span, event.error, "upstream auth failed")

    def on_config_write(self, event: ConfigWriteEvent) -> Span:
        span = self._start(
            constants.SPAN_CONFIG_WRITE,
            attributes={
                constants.ATTR_OPERATION: event.operation,
                constants.ATTR_SUCCESS: event.success,
            },
        )
        if span.is_recording():
            if event.success:
                span.add_event(constants.EVENT_CONFIG_UPDATED)
                _set_ok(span)
            else:
                span.add_event(constants.EVENT_CONFIG_FAILED)
                span.set_status(Status(StatusCode.ERROR, "config write failed"))
        return span

    def on_config_read(self, event: ConfigReadEvent) -> None:
        span = self._start(
            constants.SPAN_CONFIG_READ,
            attributes={constants.ATTR_FOUND: event.found},
        )
        if span.is_recording():
            _set_ok(span)
            span.end()

    def on_role_write(self, event: RoleWriteEvent) -> Span:
        span = self._start(
            constants.SPAN_ROLE_WRITE,
            attributes={
                constants.ATTR_ROLE: event.role_name,
                constants.ATTR_OPERATION: event.operation,
                constants.ATTR_SUCCESS: event.success,
            },
        )
        if span.is_recording():
            if event.success:
                span.add_event(constants.EVENT_ROLE_UPDATED)
                _set_ok(span)
            else:
                span.add_event(constants.EVENT_ROLE_FAILED)
                span.set_status(Status(StatusCode.ERROR, "role write failed"))
        return span

    def on_role_read(self, event: RoleReadEvent) -> None:
        span = self._start(
            constants.SPAN_ROLE_READ,
            attributes={
                constants.ATTR_ROLE: event.role_name,
                constants.ATTR_FOUND: event.found,
            },
        )
        if span.is_recording():
            _set_ok(span)
            span.end()

    def on_operation(
        self,
        span_name: str,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> Span:
        return self._start(span_name, attributes=attributes)

    def on_error(self, span: Span, event: ErrorEvent) -> None:
        if not span.is_recording():
            return
        span.add_event(
            constants.EVENT_ERROR,
            attributes={
                constants.ATTR_ERROR_OPERATION: event.operation,
                constants.ATTR_ERROR_SEVERITY: event.severity,
                constants.ATTR_ERROR_TYPE: (
                    type(event.error).__name__ if event.error is not None else "unknown"
                ),
            },
        )
        if event.error is None:
            return
        span.record_exception(event.error)
        if event.severity in (constants.SEVERITY_ERROR, constants.SEVERITY_CRITICAL):
            span.set_status(Status(StatusCode.ERROR, str(event.error)))

    def end_span(self, span: Span) -> None:
        if span.is_recording():
            span.end()
