from collections.abc import Iterator

import pytest
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
    InMemorySpanExporter,
)
from opentelemetry.trace import SpanKind, StatusCode

from tests.token_broker.support.fakes import (
    FakeLogger,
    RecordingSleep,
    ScriptedExchanger,
    failing_exchanger,
)
from token_broker.backend import TokenBrokerBackend
from token_broker.errors import IssuanceError
from token_broker.exchange import IssuedToken
from token_broker.storage import InMemoryStorage
from token_broker.telemetry import TelemetryConfig, TelemetryProviders, init_telemetry
from token_broker.telemetry import constants

pytestmark = pytest.mark.asyncio


@pytest.fixture
def exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def providers(exporter: InMemorySpanExporter) -> Iterator[TelemetryProviders]:
    built = init_telemetry(
        TelemetryConfig(service_name="token-broker-test"),
        span_processor=SimpleSpanProcessor(exporter),
    )
    yield built
    built.shutdown()


def _spans(exporter: InMemorySpanExporter, name: str) -> list[ReadableSpan]:
    return [span for span in exporter.get_finished_spans() if span.name == name]


async def _backend(
    providers: TelemetryProviders, exchanger: object
) -> TokenBrokerBackend:
    logger = FakeLogger()
    backend = TokenBrokerBackend(
        storage=InMemoryStorage(),
        exchanger=exchanger,  # type: ignore[arg-type]
        emitter=providers.build_emitter(logger),
        logger=logger,
        sleep=RecordingSleep(),
    )
    await backend.write_config(
        {"credentials_file_path": "/etc/sa.json", "max_retries": 1},
        operation="create",
        validate_credentials=False,
    )
    await backend.write_role(
        "reader", {"role_ids": ["projects/p/roles/reader"]}, operation="create"
    )
    return backend


async def test_successful_token_request_traces_root_and_upstream_child(
    providers: TelemetryProviders, exporter: InMemorySpanExporter
) -> None:
    backend = await _backend(providers, ScriptedExchanger(IssuedToken("tok")))

    await backend.read_token("reader")

    (root,) = _spans(exporter, constants.SPAN_TOKEN_GENERATE)
    (upstream,) = _spans(exporter, constants.SPAN_UPSTREAM_AUTH)
    assert root.attributes[constants.ATTR_ROLE] == "reader"
    assert root.status.status_code == StatusCode.OK
    assert [event.name for event in root.events] == [constants.EVENT_TOKEN_GENERATED]
    assert upstream.kind == SpanKind.CLIENT
    assert upstream.parent is not None
    assert upstream.parent.span_id == root.context.span_id
    assert upstream.context.trace_id == root.context.trace_id
    assert upstream.attributes[constants.ATTR_CREDENTIAL_TYPE] == "file_path"
    assert upstream.attributes[constants.ATTR_ROLE_IDS_COUNT] == 1
    assert upstream.attributes[constants.ATTR_ATTEMPT] == 1
    assert [event.name for event in upstream.events] == [
        constants.EVENT_UPSTREAM_AUTH_START,
        constants.EVENT_UPSTREAM_AUTH_SUCCESS,
    ]
    assert upstream.status.status_code == StatusCode.OK


async def test_failed_token_request_marks_spans_as_errors(
    providers: TelemetryProviders, exporter: InMemorySpanExporter
) -> None:
    backend = await _backend(providers, failing_exchanger("invalid_grant"))

    with pytest.raises(IssuanceError):
        await backend.read_token("reader")

    (root,) = _spans(exporter, constants.SPAN_TOKEN_GENERATE)
    upstream = _spans(exporter, constants.SPAN_UPSTREAM_AUTH)
    assert [span.attributes[constants.ATTR_ATTEMPT] for span in upstream] == [1, 2]
    assert all(span.status.status_code == StatusCode.ERROR for span in upstream)
    assert root.status.status_code == StatusCode.ERROR
    event_names = [event.name for event in root.events]
    assert constants.EVENT_TOKEN_FAILED in event_names
    assert "exception" in event_names
    (error_event,) = [e for e in root.events if e.name == constants.EVENT_ERROR]
    assert error_event.attributes[constants.ATTR_ERROR_OPERATION] == "token_generate"
    assert error_event.attributes[constants.ATTR_ERROR_SEVERITY] == "error"
    assert error_event.attributes[constants.ATTR_ERROR_TYPE] == "IssuanceError"


async def test_config_and_role_operations_are_traced(
    providers: TelemetryProviders, exporter: InMemorySpanExporter
) -> None:
    backend = await _backend(providers, ScriptedExchanger())

    await backend.read_config()
    await backend.read_role("reader")
    await backend.list_roles()
    await backend.delete_role("reader")
    await backend.read_health(probe=False)

    (config_write,) = _spans(exporter, constants.SPAN_CONFIG_WRITE)
    assert config_write.attributes[constants.ATTR_OPERATION] == "create"
    assert config_write.attributes[constants.ATTR_SUCCESS] is True
    (config_read,) = _spans(exporter, constants.SPAN_CONFIG_READ)
    assert config_read.attributes[constants.ATTR_FOUND] is True
    (role_read,) = _spans(exporter, constants.SPAN_ROLE_READ)
    assert role_read.attributes[constants.ATTR_ROLE] == "reader"
    assert len(_spans(exporter, constants.SPAN_ROLE_WRITE)) == 1
    assert len(_spans(exporter, constants.SPAN_ROLE_LIST)) == 1
    (role_delete,) = _spans(exporter, constants.SPAN_ROLE_DELETE)
    assert role_delete.attributes[constants.ATTR_ROLE] == "reader"
    assert len(_spans(exporter, constants.SPAN_HEALTH_CHECK)) == 1


async def test_failed_config_write_is_traced_as_error(
    providers: TelemetryProviders, exporter: InMemorySpanExporter
) -> None:
    backend = await _backend(providers, ScriptedExchanger())

    with pytest.raises(ValueError):
        await backend.write_config({"max_retries": 99}, validate_credentials=False)

    failed = [
        span
        for span in _spans(exporter, constants.SPAN_CONFIG_WRITE)
        if span.attributes[constants.ATTR_SUCCESS] is False
    ]
    assert len(failed) == 1
    assert failed[0].status.status_code == StatusCode.ERROR
    error_events = [e for e in failed[0].events if e.name == constants.EVENT_ERROR]
    assert error_events[0].attributes[constants.ATTR_ERROR_SEVERITY] == "warning"


async def test_resource_carries_service_identity(
    providers: TelemetryProviders, exporter: InMemorySpanExporter
) -> None:
    backend = await _backend(providers, ScriptedExchanger())

    await backend.read_config()

    (span,) = _spans(exporter, constants.SPAN_CONFIG_READ)
    assert span.resource.attributes["service.name"] == "token-broker-test"
    assert span.resource.attributes["service.namespace"] == "token-broker"
    assert span.resource.attributes["environment"] == "unknown"
