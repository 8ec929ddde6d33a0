"""Tracing and metrics instrumentation for the token broker."""

from token_broker.telemetry.accumulator import TokenMetrics
from token_broker.telemetry.base import Telemetry
from token_broker.telemetry.config import (
    EndpointDefaults,
    TelemetryConfig,
    resolve_telemetry_config,
)
from token_broker.telemetry.emitter import Emitter
from token_broker.telemetry.metrics import MetricsTelemetry
from token_broker.telemetry.noop import NoOpTelemetry
from token_broker.telemetry.providers import TelemetryProviders, init_telemetry
from token_broker.telemetry.spans import SpanTelemetry

__all__ = [
    "Emitter",
    "EndpointDefaults",
    "MetricsTelemetry",
    "NoOpTelemetry",
    "SpanTelemetry",
    "Telemetry",
    "TelemetryConfig",
    "TelemetryProviders",
    "TokenMetrics",
    "init_telemetry",
    "resolve_telemetry_config",
]
