from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from opentelemetry.trace import Span
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


class Telemetry(Protocol):
    """Instrumentation hooks called at every phase of the broker.

    Methods that open a span return it; implementations that do not trace
    return ``opentelemetry.trace.INVALID_SPAN`` so call sites never branch.
    Record methods accept any span, recording or not.
    """

    def on_token_request(self, event: TokenRequestEvent) -> Span:
        """Open the span covering one token request."""

    def on_token_generate(self, span: Span, event: TokenGenerateEvent) -> None:
        """Record the outcome of a token request."""

    def on_upstream_auth(self, parent: Span, event: UpstreamAuthEvent) -> Span:
        """Open a child span for one upstream exchange attempt."""

    def on_upstream_auth_result(
        self, span: Span, event: UpstreamAuthResultEvent
    ) -> None:
        """Record the outcome of one upstream exchange attempt."""

    def on_config_write(self, event: ConfigWriteEvent) -> Span:
        """Open the span for a config write; the caller ends it."""

    def on_config_read(self, event: ConfigReadEvent) -> None:
        """Record a config read."""

    def on_role_write(self, event: RoleWriteEvent) -> Span:
        """Open the span for a role write; the caller ends it."""

    def on_role_read(self, event: RoleReadEvent) -> None:
        """Record a role read."""

    def on_operation(
        self,
        span_name: str,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> Span:
        """Open a span for an operation without a dedicated event."""

    def on_error(self, span: Span, event: ErrorEvent) -> None:
        """Record an error against ``span``."""

    def end_span(self, span: Span) -> None:
        """End ``span`` if it is still recording."""
