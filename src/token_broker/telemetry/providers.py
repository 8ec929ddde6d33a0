"""OpenTelemetry SDK provider construction.

Providers are returned to the caller and never installed as the process-wide
global, so several brokers (and tests) can run side by side.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.metrics.view import ExplicitBucketHistogramAggregation, View
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import (
    ALWAYS_OFF,
    ALWAYS_ON,
    ParentBased,
    Sampler,
    TraceIdRatioBased,
)

from token_broker.logging import StructuredLogger, log_info
from token_broker.telemetry.config import TelemetryConfig
from token_broker.telemetry.constants import (
    DURATION_BUCKETS_MS,
    INSTRUMENTATION_VERSION,
    TRACER_NAME,
)
from token_broker.telemetry.emitter import Emitter
from token_broker.telemetry.metrics import MetricsTelemetry
from token_broker.telemetry.spans import SpanTelemetry

_logger = structlog.stdlib.get_logger(__name__)


def build_resource(config: TelemetryConfig) -> Resource:
    attributes: dict[str, str] = {
        "service.name": config.service_name,
        "service.version": config.service_version,
        "environment": config.environment,
    }
    if config.service_namespace:
        attributes["service.namespace"] = config.service_namespace
    return Resource.create(attributes)


def build_sampler(sample_rate: float) -> Sampler:
    if sample_rate >= 1.0:
        return ALWAYS_ON
    if sample_rate <= 0.0:
        return ALWAYS_OFF
    return ParentBased(TraceIdRatioBased(sample_rate))


@dataclass
class TelemetryProviders:
    """SDK providers built for one broker instance."""

    config: TelemetryConfig
    tracer_provider: TracerProvider | None = None
    meter_provider: MeterProvider | None = None

    @property
    def enabled(self) -> bool:
        return self.tracer_provider is not None or self.meter_provider is not None

    def build_emitter(self, logger: StructuredLogger | None = None) -> Emitter:
        span_telemetry = None
        if self.tracer_provider is not None:
            span_telemetry = SpanTelemetry(
                self.tracer_provider.get_tracer(TRACER_NAME, INSTRUMENTATION_VERSION)
            )
        metrics_telemetry = None
        if self.meter_provider is not None:
            metrics_telemetry = MetricsTelemetry(
                self.meter_provider.get_meter(TRACER_NAME, INSTRUMENTATION_VERSION)
            )
        return Emitter(span_telemetry, metrics_telemetry, logger)

    def force_flush(self) -> None:
        if self.tracer_provider is not None:
            self.tracer_provider.force_flush()
        if self.meter_provider is not None:
            self.meter_provider.force_flush()

    def shutdown(self) -> None:
        """Shut down both providers.

        Raises:
            ExceptionGroup: When either provider fails to shut down.
        """
        errors: list[Exception] = []
        if self.tracer_provider is not None:
            try:
                self.tracer_provider.shutdown()
            except Exception as exc:
                errors.append(exc)
        if self.meter_provider is not None:
            try:
                self.meter_provider.shutdown()
            except Exception as exc:
                errors.append(exc)
        if errors:
            raise ExceptionGroup("telemetry shutdown failed", errors)


def _build_tracer_provider(
    config: TelemetryConfig, span_processor: SpanProcessor | None
) -> TracerProvider:
    provider = TracerProvider(
        resource=build_resource(config),
        sampler=build_sampler(config.sample_rate),
    )
    if span_processor is None:
        exporter = OTLPSpanExporter(
            endpoint=config.traces_endpoint,
            headers=dict(config.traces_headers) or None,
            timeout=config.traces_timeout_seconds,
        )
        span_processor = BatchSpanProcessor(exporter)
    provider.add_span_processor(span_processor)
    return provider


def _build_meter_provider(
    config: TelemetryConfig, metric_reader: MetricReader | None
) -> MeterProvider:
    if metric_reader is None:
        exporter = OTLPMetricExporter(
            endpoint=config.metrics_endpoint,
            headers=dict(config.metrics_headers) or None,
            timeout=config.traces_timeout_seconds,
        )
        metric_reader = PeriodicExportingMetricReader(
            exporter,
            export_interval_millis=config.metrics_export_interval_seconds * 1000,
        )
    return MeterProvider(
        metric_readers=[metric_reader],
        resource=build_resource(config),
        views=[
            View(
                instrument_name="*_duration_ms",
                aggregation=ExplicitBucketHistogramAggregation(
                    boundaries=DURATION_BUCKETS_MS
                ),
            )
        ],
    )


def init_telemetry(
    config: TelemetryConfig,
    *,
    span_processor: SpanProcessor | None = None,
    metric_reader: MetricReader | None = None,
) -> TelemetryProviders:
    """Build tracer and meter providers for ``config``.

    ``span_processor`` and ``metric_reader`` replace the OTLP/HTTP exporters
    and enable their signal even without a configured endpoint.
    """
    providers = TelemetryProviders(config=config)
    if config.use_noop or not config.enabled:
        log_info(
            _logger,
            "telemetry.disabled",
            environment=config.environment,
            use_noop=config.use_noop,
            enabled=config.enabled,
        )
        return providers

    if config.traces_enabled or span_processor is not None:
        providers.tracer_provider = _build_tracer_provider(config, span_processor)
    if config.metrics_enabled or metric_reader is not None:
        providers.meter_provider = _build_meter_provider(config, metric_reader)

    log_info(
        _logger,
        "telemetry.initialized",
        environment=config.environment,
        traces=config.traces_endpoint if providers.tracer_provider else "off",
        metrics=config.metrics_endpoint if providers.meter_provider else "off",
        sample_rate=config.sample_rate,
    )
    return providers
