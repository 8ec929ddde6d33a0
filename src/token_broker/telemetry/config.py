"""Telemetry configuration resolved from an explicit environment mapping.

Priority for each value: explicit argument, then environment variable, then
``endpoint_defaults`` (endpoints only), then the built-in default.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

import structlog
from pydantic import BaseModel, ConfigDict, Field

from token_broker.logging import log_warning

_logger = structlog.stdlib.get_logger(__name__)

DEFAULT_SERVICE_NAME = "token-broker"
DEFAULT_SERVICE_NAMESPACE = "token-broker"
DEFAULT_ENVIRONMENT = "unknown"
DEFAULT_EXPORT_TIMEOUT_SECONDS = 30.0
DEFAULT_METRICS_EXPORT_INTERVAL_SECONDS = 60.0
PROTECTED_ENVIRONMENTS = frozenset({"cug", "prod"})

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class EndpointDefaults(BaseModel):
    """Collector endpoints used when no endpoint variable is set."""

    model_config = ConfigDict(frozen=True)

    traces: str = ""
    metrics: str = ""


class TelemetryConfig(BaseModel):
    """Resolved telemetry settings consumed by ``init_telemetry``."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    use_noop: bool = False
    service_name: str = DEFAULT_SERVICE_NAME
    service_namespace: str = DEFAULT_SERVICE_NAMESPACE
    service_version: str = "unknown"
    environment: str = DEFAULT_ENVIRONMENT
    traces_endpoint: str = ""
    traces_headers: dict[str, str] = Field(default_factory=dict)
    traces_timeout_seconds: float = DEFAULT_EXPORT_TIMEOUT_SECONDS
    metrics_endpoint: str = ""
    metrics_headers: dict[str, str] = Field(default_factory=dict)
    metrics_export_interval_seconds: float = DEFAULT_METRICS_EXPORT_INTERVAL_SECONDS
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)

    @property
    def traces_enabled(self) -> bool:
        return self.enabled and not self.use_noop and bool(self.traces_endpoint)

    @property
    def metrics_enabled(self) -> bool:
        return self.enabled and not self.use_noop and bool(self.metrics_endpoint)


def _flag(value: str) -> bool:
    return value.strip().lower() in {"true", "1"}


def _switched_off(value: str) -> bool:
    return value.strip().lower() in {"false", "0"}


def parse_headers(raw: str) -> dict[str, str]:
    """Parse ``k=v,k2=v2``; malformed pairs are skipped."""
    headers: dict[str, str] = {}
    for pair in raw.split(","):
        key, sep, value = pair.strip().partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def parse_duration(raw: str, default: float) -> float:
    """Parse ``30s``, ``500ms``, ``1m`` or bare seconds; invalid -> ``default``."""
    match = _DURATION.match(raw) if raw else None
    if match is None:
        return default
    number, unit = match.groups()
    return float(number) * _DURATION_UNITS[unit or "s"]


def _clamp_sample_rate(rate: float) -> float:
    return min(max(rate, 0.0), 1.0)


def _resolve_sample_rate(explicit: float | None, raw: str) -> float:
    if explicit is not None and explicit > 0:
        return _clamp_sample_rate(explicit)
    if raw:
        try:
            return _clamp_sample_rate(float(raw))
        except ValueError:
            return 1.0
    return 1.0


def resolve_telemetry_config(
    environ: Mapping[str, str],
    *,
    service_name: str | None = None,
    service_version: str | None = None,
    environment: str | None = None,
    sample_rate: float | None = None,
    endpoint_defaults: Mapping[str, EndpointDefaults] | None = None,
) -> TelemetryConfig:
    """Build a ``TelemetryConfig`` from ``environ`` and explicit overrides.

    ``RUNTIME_LOCAL=true`` selects the no-op path only outside the protected
    ``cug``/``prod`` environments.
    """
    env = environment or environ.get("ENV", "") or DEFAULT_ENVIRONMENT
    runtime_local = _flag(environ.get("RUNTIME_LOCAL", ""))
    use_noop = runtime_local and env not in PROTECTED_ENVIRONMENTS
    if runtime_local and not use_noop:
        log_warning(_logger, "telemetry.runtime_local_ignored", environment=env)

    enabled = True
    if raw_enabled := environ.get("TELEMETRY_ENABLED", ""):
        enabled = _flag(raw_enabled)

    defaults = (endpoint_defaults or {}).get(env, EndpointDefaults())
    traces_endpoint = (
        environ.get("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "") or defaults.traces
    )
    if _switched_off(environ.get("TELEMETRY_TRACES_ENABLED", "")):
        traces_endpoint = ""
    metrics_endpoint = (
        environ.get("OTEL_EXPORTER_OTLP_METRICS_ENDPOINT", "") or defaults.metrics
    )
    if _switched_off(environ.get("TELEMETRY_METRICS_ENABLED", "")):
        metrics_endpoint = ""

    return TelemetryConfig(
        enabled=enabled,
        use_noop=use_noop,
        service_name=(
            service_name or environ.get("OTEL_SERVICE_NAME", "") or DEFAULT_SERVICE_NAME
        ),
        service_namespace=(
            environ.get("SERVICE_NAMESPACE", "") or DEFAULT_SERVICE_NAMESPACE
        ),
        service_version=service_version or "unknown",
        environment=env,
        traces_endpoint=traces_endpoint,
        traces_headers=parse_headers(environ.get("OTEL_EXPORTER_OTLP_HEADERS", "")),
        traces_timeout_seconds=parse_duration(
            environ.get("OTEL_EXPORTER_OTLP_TIMEOUT", ""),
            DEFAULT_EXPORT_TIMEOUT_SECONDS,
        ),
        metrics_endpoint=metrics_endpoint,
        metrics_headers=parse_headers(
            environ.get("OTEL_EXPORTER_OTLP_METRICS_HEADERS", "")
        ),
        metrics_export_interval_seconds=parse_duration(
            environ.get("TELEMETRY_METRICS_EXPORT_INTERVAL", ""),
            DEFAULT_METRICS_EXPORT_INTERVAL_SECONDS,
        ),
        sample_rate=_resolve_sample_rate(
            sample_rate, environ.get("TELEMETRY_SAMPLE_RATE", "")
        ),
    )
