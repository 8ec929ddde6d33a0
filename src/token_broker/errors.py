"""Shared error types for token_broker.

Callers can distinguish between:
  - A malformed role or configuration (``BrokerValidationError``).
  - A call shed by the circuit breaker (``CircuitOpenError``, see
    ``token_broker.circuit_breaker``).
  - Upstream refusing every attempt (``IssuanceError``).
  - Upstream being too slow (``IssuanceTimeoutError``).
  - The exchange dependency misbehaving (``ExchangeCrashedError``).
  - A request against a missing role or config (``RoleNotFoundError``,
    ``BackendNotConfiguredError``).
"""

from __future__ import annotations


class TokenBrokerError(RuntimeError):
    """Base exception for the token_broker package."""


class BrokerValidationError(TokenBrokerError, ValueError):
    """Raised when a role or configuration fails validation."""


class ExchangeError(TokenBrokerError):
    """Raised by exchange collaborators when one attempt is refused."""


class IssuanceError(TokenBrokerError):
    """Raised when every issuance attempt failed.

    Attributes:
        attempts: Number of exchange attempts performed.
    """

    def __init__(self, message: str, *, attempts: int) -> None:
        """Initialize issuance-error metadata.

        Args:
            message: Human-readable error message.
            attempts: Number of exchange attempts performed.
        """
        super().__init__(message)
        self.attempts = attempts


class NoCredentialsError(IssuanceError):
    """Raised when neither the role nor the config supplies a credential."""

    def __init__(self) -> None:
        super().__init__("no credentials configured", attempts=0)


class IssuanceTimeoutError(TokenBrokerError, TimeoutError):
    """Raised when token issuance exceeds the configured request timeout.

    Attributes:
        timeout_seconds: Deadline applied to the issuance call.
    """

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"token generation timeout after {timeout_seconds:g}s")


class ExchangeCrashedError(TokenBrokerError):
    """Raised when the exchange collaborator fails with an unexpected error."""


class RoleNotFoundError(TokenBrokerError, LookupError):
    """Raised when a token is requested for a role that does not exist."""

    def __init__(self, role_name: str) -> None:
        self.role_name = role_name
        super().__init__(f'role "{role_name}" not found')


class BackendNotConfiguredError(TokenBrokerError):
    """Raised when a token is requested before the backend is configured."""

    def __init__(self) -> None:
        super().__init__("backend not configured")
