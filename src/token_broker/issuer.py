"""Token issuance: breaker-gated retry loop around the upstream exchange."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog
from opentelemetry.trace import INVALID_SPAN, Span
from tenacity import retry_if_exception_type

from token_broker.circuit_breaker import CircuitBreaker
from token_broker.config import BackendConfig, Role, validate_role_ids
from token_broker.errors import (
    ExchangeCrashedError,
    ExchangeError,
    IssuanceError,
    IssuanceTimeoutError,
    NoCredentialsError,
)
from token_broker.exchange import (
    CredentialExchanger,
    CredentialSource,
    IssuedToken,
    call_exchanger,
    resolve_credential_source,
)
from token_broker.logging import StructuredLogger, log_exception, log_warning
from token_broker.retry import build_exponential_retrying, policy_for_max_retries
from token_broker.telemetry.emitter import Emitter
from token_broker.timeout import run_with_deadline

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (ExchangeError, OSError)


def _elapsed_ms(start: float) -> float:
    return max(time.monotonic() - start, 0.0) * 1000


class TokenIssuer:
    """Issue bearer tokens for roles through an injected exchanger.

    One ``generate_token`` call is one circuit breaker operation: the breaker
    counts a failure only when every retry is exhausted. Exceptions outside
    ``retryable_exceptions`` are converted to ``ExchangeCrashedError`` and are
    neither retried nor, when the breaker excludes that type, counted.
    """

    def __init__(
        self,
        *,
        exchanger: CredentialExchanger,
        breaker: CircuitBreaker,
        emitter: Emitter | None = None,
        logger: StructuredLogger | None = None,
        sleep: Sleep | None = None,
        retryable_exceptions: tuple[type[Exception], ...] = (
            DEFAULT_RETRYABLE_EXCEPTIONS
        ),
    ) -> None:
        """Build an issuer.

        Args:
            exchanger: Upstream credential exchange collaborator.
            breaker: Circuit breaker gating each issuance request.
            emitter: Telemetry facade. Defaults to a no-op emitter.
            logger: Structured logger for attempt and crash events.
            sleep: Backoff sleep. Defaults to ``asyncio.sleep``.
            retryable_exceptions: Exchange failures that consume a retry.
        """
        self._exchanger = exchanger
        self._breaker = breaker
        self._logger = logger or structlog.stdlib.get_logger(__name__)
        self._emitter = emitter or Emitter(logger=self._logger)
        self._sleep: Sleep = sleep or asyncio.sleep
        self._retryable = retryable_exceptions

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def _exchange_once(
        self,
        source: CredentialSource,
        scoped_ids: list[str],
        context: str | None,
    ) -> IssuedToken:
        try:
            token = await call_exchanger(self._exchanger, source, scoped_ids, context)
        except self._retryable:
            raise
        except Exception as exc:
            log_exception(
                self._logger,
                "token_generation.exchange_crashed",
                credentials_type=source.kind.value,
                error=f"{exc.__class__.__name__}: {exc}",
            )
            raise ExchangeCrashedError(
                f"credential exchange crashed: {exc.__class__.__name__}: {exc}"
            ) from exc
        if token is None or not token.access_token:
            raise ExchangeError("no token returned")
        return token

    async def _attempt(
        self,
        *,
        attempt: int,
        max_retries: int,
        role: Role,
        source: CredentialSource,
        context: str | None,
        parent_span: Span,
    ) -> IssuedToken:
        span = self._emitter.emit_upstream_auth_start(
            parent_span,
            role_name=role.name,
            credential_type=source.kind.value,
            role_ids_count=len(role.role_ids),
            attempt=attempt,
        )
        start = time.monotonic()
        try:
            token = await self._exchange_once(source, role.role_ids, context)
        except Exception as exc:
            self._emitter.emit_upstream_auth_result(
                span,
                role_name=role.name,
                success=False,
                duration_ms=_elapsed_ms(start),
                error=exc,
            )
            if isinstance(exc, self._retryable):
                log_warning(
                    self._logger,
                    "token_generation.attempt_failed",
                    role=role.name,
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(exc),
                )
            raise
        else:
            self._emitter.emit_upstream_auth_result(
                span,
                role_name=role.name,
                success=True,
                duration_ms=_elapsed_ms(start),
            )
        finally:
            self._emitter.end_span(span)
        return token

    async def _retry_loop(
        self,
        config: BackendConfig,
        role: Role,
        source: CredentialSource,
        context: str | None,
        parent_span: Span,
    ) -> IssuedToken:
        policy = policy_for_max_retries(config.max_retries)
        retrying = build_exponential_retrying(
            retry=retry_if_exception_type(self._retryable),
            policy=policy,
            sleep=self._sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._attempt(
                        attempt=attempt.retry_state.attempt_number,
                        max_retries=config.max_retries,
                        role=role,
                        source=source,
                        context=context,
                        parent_span=parent_span,
                    )
        except self._retryable as exc:
            raise IssuanceError(
                f"failed to generate bearer token after {policy.attempts} "
                f"attempts: {exc}",
                attempts=policy.attempts,
            ) from exc
        raise RuntimeError("token generation retry loop exited unexpectedly.")

    async def generate_token(
        self,
        config: BackendConfig,
        role: Role,
        context_data: str | None = None,
        *,
        parent_span: Span = INVALID_SPAN,
    ) -> IssuedToken:
        """Issue a token for ``role``.

        Raises:
            BrokerValidationError: When the role does not name exactly one
                scoped identifier.
            NoCredentialsError: When neither role nor config has credentials.
            CircuitOpenError: When the breaker is shedding load.
            IssuanceError: When every attempt failed.
            ExchangeCrashedError: When the exchanger failed unexpectedly.
        """
        validate_role_ids(role.role_ids)
        source = resolve_credential_source(config, role)
        if source is None:
            raise NoCredentialsError()
        context = context_data if context_data is not None else role.context or None
        return await self._breaker.call(
            self._retry_loop, config, role, source, context, parent_span
        )

    async def generate_token_with_timeout(
        self,
        config: BackendConfig,
        role: Role,
        context_data: str | None = None,
        *,
        parent_span: Span = INVALID_SPAN,
    ) -> IssuedToken:
        """Issue a token within ``config.request_timeout`` seconds.

        A deadline expiry counts as one breaker failure, so an upstream that
        always hangs opens the circuit.

        Raises:
            IssuanceTimeoutError: When the deadline elapses first.
        """

        async def _generate() -> IssuedToken:
            return await self.generate_token(
                config, role, context_data, parent_span=parent_span
            )

        try:
            return await run_with_deadline(
                _generate,
                timeout_seconds=config.request_timeout,
                name=f"token-generate:{role.name}",
            )
        except IssuanceTimeoutError as exc:
            log_warning(
                self._logger,
                "token_generation.deadline_exceeded",
                role=role.name,
                timeout_seconds=config.request_timeout,
            )
            await self._breaker.record_failure(
                exc, elapsed=float(config.request_timeout)
            )
            raise

    async def verify_credentials(
        self, config: BackendConfig, role: Role | None = None
    ) -> None:
        """Run one exchange with the config credentials, without retries.

        Raises:
            NoCredentialsError: When ``config`` has no credential.
            IssuanceTimeoutError: When the exchange exceeds the request timeout.
            ExchangeCrashedError: When the exchanger failed unexpectedly.
            Exception: The retryable exchange error, unchanged.
        """
        probe_role = role or Role.model_construct(
            name="credential-check", role_ids=[], context=""
        )
        source = resolve_credential_source(config, probe_role)
        if source is None:
            raise NoCredentialsError()

        async def _exchange() -> IssuedToken:
            return await self._exchange_once(
                source, list(probe_role.role_ids), probe_role.context or None
            )

        await run_with_deadline(
            _exchange,
            timeout_seconds=config.request_timeout,
            name="credential-check",
        )
