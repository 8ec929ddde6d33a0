from __future__ import annotations

from collections.abc import Mapping

from opentelemetry.trace import INVALID_SPAN, Span
from opentelemetry.util.types import AttributeValue

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


class NoOpTelemetry:
    """Telemetry that records nothing."""

    def on_token_request(self, event: TokenRequestEvent) -> Span:
        return INVALID_SPAN

    def on_token_generate(self, span: Span, event: TokenGenerateEvent) -> None:
        return None

    def on_upstream_auth(self, parent: Span, event: UpstreamAuthEvent) -> Span:
        return INVALID_SPAN

    def on_upstream_auth_result(
        self, span: Span, event: UpstreamAuthResultEvent
    ) -> None:
        return None

    def on_config_write(self, event: ConfigWriteEvent) -> Span:
        return INVALID_SPAN

    def on_config_read(self, event: ConfigReadEvent) -> None:
        return None

    def on_role_write(self, event: RoleWriteEvent) -> Span:
        return INVALID_SPAN

    def on_role_read(self, event: RoleReadEvent) -> None:
        return None

    def on_operation(
        self,
        span_name: str,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> Span:
        return INVALID_SPAN

    def on_error(self, span: Span, event: ErrorEvent) -> None:
        return None

    def end_span(self, span: Span) -> None:
        return None
