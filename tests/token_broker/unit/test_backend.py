import json

import pytest

from tests.token_broker.support.fakes import (
    FakeLogger,
    RecordingSleep,
    ScriptedExchanger,
    failing_exchanger,
)
from token_broker.backend import TokenBrokerBackend
from token_broker.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
)
from token_broker.errors import (
    BackendNotConfiguredError,
    BrokerValidationError,
    ExchangeCrashedError,
    IssuanceError,
    RoleNotFoundError,
)
from token_broker.exchange import IssuedToken
from token_broker.settings import BrokerSettings
from token_broker.storage import InMemoryStorage

pytestmark = pytest.mark.asyncio

_SA_JSON = json.dumps({"type": "service_account", "private_key": "secret-key"})
_ROLE = "projects/p/roles/reader"


def _backend(
    exchanger: object,
    *,
    storage: InMemoryStorage | None = None,
    logger: FakeLogger | None = None,
    sleep: RecordingSleep | None = None,
    breaker: CircuitBreaker | None = None,
) -> TokenBrokerBackend:
    return TokenBrokerBackend(
        storage=storage or InMemoryStorage(),
        exchanger=exchanger,  # type: ignore[arg-type]
        logger=logger or FakeLogger(),
        sleep=sleep or RecordingSleep(),
        breaker=breaker,
    )


async def _configure(backend: TokenBrokerBackend, **data: object) -> None:
    payload: dict[str, object] = {"credentials_file_path": "/etc/sa.json"}
    payload.update(data)
    await backend.write_config(
        payload, operation="create", validate_credentials=False
    )
    await backend.write_role("reader", {"role_ids": [_ROLE]}, operation="create")


async def test_write_config_creates_version_two_and_history() -> None:
    backend = _backend(ScriptedExchanger())

    saved = await backend.write_config(
        {"credentials_json": _SA_JSON, "description": "initial"},
        operation="create",
        validate_credentials=False,
    )

    assert saved.version == 2
    history = await backend.config_history()
    assert [(entry["version"], entry["description"]) for entry in history] == [
        (2, "initial")
    ]


async def test_read_config_is_redacted() -> None:
    backend = _backend(ScriptedExchanger())
    assert await backend.read_config() is None

    await backend.write_config(
        {"credentials_json": _SA_JSON},
        operation="create",
        validate_credentials=False,
    )
    view = await backend.read_config()

    assert view is not None
    assert view["credentials_configured"] is True
    assert view["credentials_type"] == "json"
    assert "secret-key" not in json.dumps(view)


async def test_write_config_validates_credentials_by_default() -> None:
    exchanger = ScriptedExchanger(IssuedToken("tok"))
    logger = FakeLogger()
    backend = _backend(exchanger, logger=logger)

    await backend.write_config({"credentials_file_path": "/etc/sa.json"})

    assert len(exchanger.calls) == 1
    assert "config.credentials_validated" in logger.events


async def test_write_config_rejects_failing_credentials() -> None:
    logger = FakeLogger()
    backend = _backend(failing_exchanger("invalid_grant"), logger=logger)

    with pytest.raises(BrokerValidationError) as excinfo:
        await backend.write_config(
            {"credentials_file_path": "/etc/sa.json"}, operation="create"
        )

    assert str(excinfo.value) == "credential validation failed: invalid_grant"
    assert await backend.read_config() is None
    assert logger.find("config.failed")[0][0] == "warning"


async def test_write_config_rejects_invalid_configuration() -> None:
    backend = _backend(ScriptedExchanger())

    with pytest.raises(BrokerValidationError) as excinfo:
        await backend.write_config({"max_retries": 2}, operation="create")

    assert str(excinfo.value) == (
        "invalid configuration: either credentials_file_path or credentials_json "
        "must be provided"
    )


async def test_update_merges_and_switches_credential_source() -> None:
    backend = _backend(ScriptedExchanger())
    await backend.write_config(
        {"credentials_file_path": "/etc/sa.json", "max_retries": 5},
        operation="create",
        validate_credentials=False,
    )

    saved = await backend.write_config(
        {"credentials_json": _SA_JSON}, validate_credentials=False
    )

    assert saved.credentials_file_path == ""
    assert saved.credentials_json == _SA_JSON
    assert saved.max_retries == 5
    assert saved.version == 3


async def test_both_credentials_in_one_request_keeps_inline_json() -> None:
    backend = _backend(ScriptedExchanger())

    saved = await backend.write_config(
        {"credentials_file_path": "/etc/sa.json", "credentials_json": _SA_JSON},
        operation="create",
        validate_credentials=False,
    )

    assert saved.credentials_type == "json"


async def test_read_token_returns_bearer_token_and_audits() -> None:
    logger = FakeLogger()
    backend = _backend(ScriptedExchanger(IssuedToken("ya29.token")), logger=logger)
    await _configure(backend)

    result = await backend.read_token("reader", client_ip="10.0.0.7")

    assert result == {"access_token": "ya29.token", "token_type": "Bearer"}
    (level, audit), = logger.find("audit")
    assert level == "info"
    assert audit["success"] is True
    assert audit["role"] == "reader"
    assert audit["client_ip"] == "10.0.0.7"
    assert "error" not in audit
    assert all("ya29.token" not in repr(fields) for _, _, fields in logger.calls)
    stats = backend.read_metrics()
    assert stats["total_requests"] == 1
    assert stats["token_generations"] == 1
    assert stats["error_rate"] == 0.0


async def test_invalid_credentials_end_to_end_yield_error_and_no_token() -> None:
    logger = FakeLogger()
    sleep = RecordingSleep()
    exchanger = failing_exchanger("invalid_grant")
    backend = _backend(exchanger, logger=logger, sleep=sleep)
    await _configure(backend)

    with pytest.raises(IssuanceError) as excinfo:
        await backend.read_token("reader")

    assert excinfo.value.attempts == 4
    assert len(exchanger.calls) == 4
    assert sleep.delays == [1, 2, 4]
    (level, audit), = logger.find("audit")
    assert audit["success"] is False
    assert "invalid_grant" in str(audit["error"])
    assert logger.find("token_generate")[0][0] == "error"
    stats = backend.read_metrics()
    assert stats["token_errors"] == 1
    assert stats["error_rate"] == 1.0
    breaker_stats = stats["circuit_breaker"]
    assert isinstance(breaker_stats, dict)
    assert breaker_stats["state"] == "closed"
    assert breaker_stats["failures"] == 1
    assert "last_failure" in breaker_stats


async def test_read_token_unknown_role() -> None:
    backend = _backend(ScriptedExchanger())
    await _configure(backend)

    with pytest.raises(RoleNotFoundError, match='role "writer" not found'):
        await backend.read_token("writer")

    assert backend.read_metrics()["token_errors"] == 1


async def test_read_token_without_config() -> None:
    backend = _backend(ScriptedExchanger())
    await backend.write_role("reader", {"role_ids": [_ROLE]}, operation="create")

    with pytest.raises(BackendNotConfiguredError, match="backend not configured"):
        await backend.read_token("reader")


async def test_config_write_resets_open_breaker() -> None:
    breaker = CircuitBreaker(
        "token-exchange",
        config=CircuitBreakerConfig(
            max_failures=1,
            reset_timeout=3600.0,
            excluded_exceptions=(ExchangeCrashedError,),
        ),
    )
    backend = _backend(failing_exchanger(), breaker=breaker)
    await _configure(backend, max_retries=0)

    with pytest.raises(IssuanceError):
        await backend.read_token("reader")
    with pytest.raises(CircuitOpenError):
        await backend.read_token("reader")
    assert breaker.get_state() == CircuitState.OPEN

    await backend.write_config({"max_retries": 1}, validate_credentials=False)

    assert breaker.get_state() == CircuitState.CLOSED
    assert breaker.get_stats().failures == 0


async def test_write_role_validation_errors() -> None:
    logger = FakeLogger()
    backend = _backend(ScriptedExchanger(), logger=logger)

    with pytest.raises(BrokerValidationError, match="role name is required"):
        await backend.write_role("  ", {"role_ids": [_ROLE]})
    with pytest.raises(BrokerValidationError) as excinfo:
        await backend.write_role("reader", {"role_ids": ["a", "b"]})

    assert str(excinfo.value) == (
        "invalid role: only one role_id is supported. for multiple roles please "
        "contact plugin admin"
    )
    assert len(logger.find("role.failed")) == 2


async def test_role_update_merges_and_reads_redacted() -> None:
    backend = _backend(ScriptedExchanger())
    await backend.write_role(
        "reader",
        {"role_ids": [_ROLE], "credentials_json": _SA_JSON},
        operation="create",
    )

    await backend.write_role("reader", {"description": "read only"})
    view = await backend.read_role("reader")

    assert view is not None
    assert view["description"] == "read only"
    assert view["role_ids"] == [_ROLE]
    assert view["has_credentials_override"] is True
    assert "secret-key" not in json.dumps(view)
    assert await backend.read_role("missing") is None


async def test_list_and_delete_roles() -> None:
    logger = FakeLogger()
    backend = _backend(ScriptedExchanger(), logger=logger)
    for name in ("writer", "reader"):
        await backend.write_role(name, {"role_ids": [_ROLE]}, operation="create")

    assert await backend.list_roles() == ["reader", "writer"]

    await backend.delete_role("writer")

    assert await backend.list_roles() == ["reader"]
    assert "role.deleted" in logger.events


async def test_delete_config() -> None:
    backend = _backend(ScriptedExchanger())
    await _configure(backend)

    await backend.delete_config()

    assert await backend.read_config() is None


async def test_read_health_reports_configuration_and_connectivity() -> None:
    logger = FakeLogger()
    backend = _backend(ScriptedExchanger(IssuedToken("tok")), logger=logger)

    unconfigured = await backend.read_health()
    assert unconfigured.healthy is False
    assert unconfigured.error == "backend not configured"
    assert "health.unhealthy" in logger.events

    await _configure(backend)
    healthy = await backend.read_health()
    skipped = await backend.read_health(probe=False)

    assert healthy.healthy is True
    assert healthy.connectivity_status == "ok"
    assert healthy.as_dict()["circuit_breaker"] == {
        "state": "closed",
        "failures": 0,
        "max_failures": 5,
    }
    assert skipped.connectivity_status == "skipped"


async def test_read_health_reports_failed_upstream() -> None:
    backend = _backend(failing_exchanger("invalid_grant"))
    await _configure(backend)

    snapshot = await backend.read_health()

    assert snapshot.healthy is False
    assert snapshot.connectivity_status == "failed"
    assert snapshot.error == "invalid_grant"


async def test_from_settings_builds_configured_breaker() -> None:
    settings = BrokerSettings(
        breaker_name="exchange", breaker_max_failures=2, log_level="INFO"
    )

    backend = TokenBrokerBackend.from_settings(
        settings,
        storage=InMemoryStorage(),
        exchanger=ScriptedExchanger(),
        logger=FakeLogger(),
    )

    assert backend.breaker.name == "exchange"
    assert backend.breaker.config.max_failures == 2
    assert backend.breaker.config.excluded_exceptions == (ExchangeCrashedError,)


async def test_invalidate_and_cleanup_log() -> None:
    logger = FakeLogger()
    backend = _backend(ScriptedExchanger(), logger=logger)

    backend.invalidate("role/reader")
    backend.cleanup()

    assert logger.find("backend.key_invalidated") == [
        ("info", {"key": "role/reader"})
    ]
    assert "backend.cleanup_complete" in logger.events
