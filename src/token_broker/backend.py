"""Host-facing facade: config, roles, tokens, health and metrics."""

from __future__ import annotations

import time
from collections.abc import Mapping
from datetime import UTC, datetime

import structlog
from opentelemetry.trace import Span
from pydantic import ValidationError

from token_broker.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    LoggingBreakerListener,
)
from token_broker.config import BackendConfig, Role
from token_broker.errors import (
    BackendNotConfiguredError,
    BrokerValidationError,
    ExchangeCrashedError,
    RoleNotFoundError,
)
from token_broker.exchange import CredentialExchanger
from token_broker.health import HealthSnapshot, evaluate_health
from token_broker.issuer import Sleep, TokenIssuer
from token_broker.logging import (
    AuditEvent,
    StructuredLogger,
    audit_log,
    log_error,
    log_info,
    log_warning,
)
from token_broker.settings import BrokerSettings
from token_broker.storage import AbstractStorage, ConfigStore, RoleStore
from token_broker.telemetry import constants
from token_broker.telemetry.accumulator import TokenMetrics
from token_broker.telemetry.emitter import Emitter

OPERATION_CREATE = "create"
OPERATION_UPDATE = "update"
OPERATION_TOKEN_GENERATE = "token_generate"

_CONFIG_FIELDS = ("max_retries", "request_timeout", "description", "tags")
_ROLE_FIELDS = ("description", "role_ids", "context", "tags")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _elapsed_ms(start: float) -> float:
    return max(time.monotonic() - start, 0.0) * 1000


def _validation_message(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        message = str(error.get("msg", ""))
        messages.append(message.removeprefix("Value error, "))
    return "; ".join(messages)


def _merge_credentials(merged: dict[str, object], data: Mapping[str, object]) -> None:
    # Setting one credential source clears the other.
    if "credentials_file_path" in data:
        merged["credentials_file_path"] = data["credentials_file_path"]
        merged["credentials_json"] = ""
    if "credentials_json" in data:
        merged["credentials_json"] = data["credentials_json"]
        merged["credentials_file_path"] = ""


def _error_severity(exc: BaseException) -> str:
    if isinstance(exc, ExchangeCrashedError):
        return constants.SEVERITY_CRITICAL
    if isinstance(exc, CircuitOpenError | BrokerValidationError | RoleNotFoundError):
        return constants.SEVERITY_WARNING
    return constants.SEVERITY_ERROR


def default_breaker(
    logger: StructuredLogger, *, config: CircuitBreakerConfig | None = None
) -> CircuitBreaker:
    """Build the breaker guarding the upstream exchange."""
    return CircuitBreaker(
        "token-exchange",
        config=config
        or CircuitBreakerConfig(excluded_exceptions=(ExchangeCrashedError,)),
        listeners=[LoggingBreakerListener(logger)],
    )


class TokenBrokerBackend:
    """One mounted token broker.

    Storage and the upstream exchanger are host collaborators. The breaker,
    the in-process metrics and the emitter are shared by every request made
    through this instance.
    """

    def __init__(
        self,
        *,
        storage: AbstractStorage,
        exchanger: CredentialExchanger,
        breaker: CircuitBreaker | None = None,
        emitter: Emitter | None = None,
        logger: StructuredLogger | None = None,
        metrics: TokenMetrics | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._logger = logger or structlog.stdlib.get_logger(__name__)
        self._breaker = breaker or default_breaker(self._logger)
        self._emitter = emitter or Emitter(logger=self._logger)
        self._metrics = metrics or TokenMetrics()
        self._configs = ConfigStore(storage, logger=self._logger)
        self._roles = RoleStore(storage)
        self._issuer = TokenIssuer(
            exchanger=exchanger,
            breaker=self._breaker,
            emitter=self._emitter,
            logger=self._logger,
            sleep=sleep,
        )

    @classmethod
    def from_settings(
        cls,
        settings: BrokerSettings,
        *,
        storage: AbstractStorage,
        exchanger: CredentialExchanger,
        emitter: Emitter | None = None,
        logger: StructuredLogger | None = None,
    ) -> TokenBrokerBackend:
        resolved_logger = logger or structlog.stdlib.get_logger(__name__)
        breaker = CircuitBreaker(
            settings.breaker_name,
            config=settings.breaker_config(),
            listeners=[LoggingBreakerListener(resolved_logger)],
        )
        return cls(
            storage=storage,
            exchanger=exchanger,
            breaker=breaker,
            emitter=emitter,
            logger=resolved_logger,
        )

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def metrics(self) -> TokenMetrics:
        return self._metrics

    @property
    def issuer(self) -> TokenIssuer:
        return self._issuer

    def _fail_write(
        self,
        span: Span,
        error_operation: str,
        exc: BaseException,
        event: str,
        **fields: object,
    ) -> None:
        self._emitter.emit_error(span, error_operation, exc, _error_severity(exc))
        self._emitter.end_span(span)
        log_warning(self._logger, event, error=str(exc), **fields)

    async def write_config(
        self,
        data: Mapping[str, object],
        *,
        operation: str = OPERATION_UPDATE,
        validate_credentials: bool = True,
    ) -> BackendConfig:
        """Create or update the backend configuration.

        On update the request is merged over the stored config. A successful
        write resets the circuit breaker.

        Raises:
            BrokerValidationError: When the merged config is invalid or the
                credentials fail verification.
        """
        existing = await self._configs.get() if operation == OPERATION_UPDATE else None
        merged: dict[str, object] = existing.model_dump() if existing else {}
        _merge_credentials(merged, data)
        for key in _CONFIG_FIELDS:
            if key in data:
                merged[key] = data[key]

        try:
            try:
                config = BackendConfig.model_validate(merged)
            except ValidationError as exc:
                raise BrokerValidationError(
                    f"invalid configuration: {_validation_message(exc)}"
                ) from exc
            if validate_credentials:
                log_info(self._logger, "config.validating_credentials")
                try:
                    await self._issuer.verify_credentials(config)
                except Exception as exc:
                    raise BrokerValidationError(
                        f"credential validation failed: {exc}"
                    ) from exc
                log_info(self._logger, "config.credentials_validated")
        except BrokerValidationError as exc:
            span = self._emitter.emit_config_write(operation, False)
            self._fail_write(
                span, "config_write", exc, "config.failed", operation=operation
            )
            raise

        saved = await self._configs.put_with_history(config)
        self._breaker.reset()
        span = self._emitter.emit_config_write(operation, True)
        self._emitter.end_span(span)
        log_info(
            self._logger,
            "config.updated",
            operation=operation,
            version=saved.version,
        )
        return saved

    async def read_config(self) -> dict[str, object] | None:
        """Return the redacted configuration, or ``None`` when unset."""
        config = await self._configs.get()
        self._emitter.emit_config_read(config is not None)
        if config is None:
            return None
        return config.redacted()

    async def delete_config(self) -> None:
        await self._configs.delete()
        log_info(self._logger, "config.deleted")

    async def config_history(self) -> list[dict[str, object]]:
        return await self._configs.history()

    async def write_role(
        self,
        name: str,
        data: Mapping[str, object],
        *,
        operation: str = OPERATION_UPDATE,
    ) -> Role:
        """Create or update a role; updates merge over the stored role.

        Raises:
            BrokerValidationError: When the name is empty or the role invalid.
        """
        name = name.strip()
        try:
            if not name:
                raise BrokerValidationError("role name is required")
            existing = (
                await self._roles.get(name) if operation == OPERATION_UPDATE else None
            )
            merged: dict[str, object] = existing.model_dump() if existing else {}
            merged["name"] = name
            _merge_credentials(merged, data)
            for key in _ROLE_FIELDS:
                if key in data:
                    merged[key] = data[key]
            try:
                role = Role.model_validate(merged)
            except ValidationError as exc:
                raise BrokerValidationError(
                    f"invalid role: {_validation_message(exc)}"
                ) from exc
        except BrokerValidationError as exc:
            span = self._emitter.emit_role_write(name, operation, False)
            self._fail_write(
                span, "role_write", exc, "role.failed", name=name, operation=operation
            )
            raise

        saved = await self._roles.put(role)
        span = self._emitter.emit_role_write(name, operation, True)
        self._emitter.end_span(span)
        log_info(self._logger, "role.saved", name=name, operation=operation)
        return saved

    async def read_role(self, name: str) -> dict[str, object] | None:
        """Return the redacted role, or ``None`` when it does not exist."""
        role = await self._roles.get(name)
        self._emitter.emit_role_read(name, role is not None)
        if role is None:
            return None
        return role.redacted()

    async def delete_role(self, name: str) -> None:
        span = self._emitter.emit_operation(
            constants.SPAN_ROLE_DELETE, {constants.ATTR_ROLE: name}
        )
        try:
            await self._roles.delete(name)
        finally:
            self._emitter.end_span(span)
        log_info(self._logger, "role.deleted", name=name)

    async def list_roles(self) -> list[str]:
        span = self._emitter.emit_operation(constants.SPAN_ROLE_LIST)
        try:
            return await self._roles.list()
        finally:
            self._emitter.end_span(span)

    async def read_token(
        self,
        role_name: str,
        *,
        context: str | None = None,
        client_ip: str | None = None,
    ) -> dict[str, str]:
        """Issue a bearer token for ``role_name``.

        Every outcome is recorded in the in-process metrics, the emitter and
        the audit log.

        Returns:
            ``{"access_token": ..., "token_type": ...}``.

        Raises:
            RoleNotFoundError: When the role does not exist.
            BackendNotConfiguredError: When no config is stored.
            TokenBrokerError: Any issuance failure, see ``TokenIssuer``.
        """
        start = time.monotonic()
        span = self._emitter.emit_token_request(role_name)
        try:
            role = await self._roles.get(role_name)
            if role is None:
                raise RoleNotFoundError(role_name)
            config = await self._configs.get()
            if config is None:
                raise BackendNotConfiguredError()
            token = await self._issuer.generate_token_with_timeout(
                config, role, context, parent_span=span
            )
        except Exception as exc:
            duration_ms = _elapsed_ms(start)
            self._metrics.record_token_generation(duration_ms, exc)
            self._emitter.emit_token_failure(span, role_name, exc, duration_ms)
            self._emitter.emit_error(
                span, OPERATION_TOKEN_GENERATE, exc, _error_severity(exc)
            )
            log_error(
                self._logger,
                OPERATION_TOKEN_GENERATE,
                role=role_name,
                success=False,
                duration_ms=int(duration_ms),
                error=str(exc),
            )
            self._audit(role_name, duration_ms, client_ip=client_ip, error=exc)
            raise
        else:
            duration_ms = _elapsed_ms(start)
            self._metrics.record_token_generation(duration_ms)
            self._emitter.emit_token_success(span, role_name, duration_ms)
            log_info(
                self._logger,
                OPERATION_TOKEN_GENERATE,
                role=role_name,
                success=True,
                duration_ms=int(duration_ms),
            )
            self._audit(role_name, duration_ms, client_ip=client_ip)
        finally:
            self._emitter.end_span(span)
        return {"access_token": token.access_token, "token_type": token.token_type}

    def _audit(
        self,
        role_name: str,
        duration_ms: float,
        *,
        client_ip: str | None,
        error: BaseException | None = None,
    ) -> None:
        audit_log(
            self._logger,
            AuditEvent(
                timestamp=_utcnow(),
                operation=OPERATION_TOKEN_GENERATE,
                role=role_name,
                success=error is None,
                duration_ms=int(duration_ms),
                client_ip=client_ip,
                error=str(error) if error is not None else None,
            ),
        )

    async def read_health(self, *, probe: bool = True) -> HealthSnapshot:
        """Evaluate configuration, upstream connectivity and breaker state."""
        span = self._emitter.emit_operation(constants.SPAN_HEALTH_CHECK)
        try:
            snapshot = await evaluate_health(
                load_config=self._configs.get,
                verify=self._issuer.verify_credentials,
                breaker_stats=self._breaker.get_stats,
                probe=probe,
            )
        finally:
            self._emitter.end_span(span)
        if not snapshot.healthy:
            log_warning(self._logger, "health.unhealthy", error=snapshot.error)
        return snapshot

    def read_metrics(self) -> dict[str, object]:
        """Return accumulated token statistics plus the breaker stats."""
        stats = self._metrics.get_stats()
        stats["circuit_breaker"] = self._breaker.get_stats().as_dict()
        return stats

    def invalidate(self, key: str) -> None:
        log_info(self._logger, "backend.key_invalidated", key=key)

    def cleanup(self) -> None:
        log_info(self._logger, "backend.cleanup_complete")
