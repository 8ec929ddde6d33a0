from __future__ import annotations

from pydantic import ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from token_broker.circuit_breaker import CircuitBreakerConfig
from token_broker.errors import ExchangeCrashedError
from token_broker.logging import get_log_level_value

ENV_PREFIX = "TOKEN_BROKER_"


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BrokerSettings(BaseSettings):
    """Process-level settings for an embedded token broker."""

    model_config = prefixed_settings_config(ENV_PREFIX)

    log_level: str = "INFO"
    breaker_name: str = "token-exchange"
    breaker_max_failures: int = 5
    breaker_reset_timeout_seconds: float = 60.0
    service_name: str = "token-broker"
    service_version: str = "unknown"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip().upper()
            get_log_level_value(normalized)
            return normalized
        return value

    @field_validator("breaker_name", "service_name", mode="before")
    @classmethod
    def _validate_required_string(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be non-empty")
        return normalized

    @model_validator(mode="after")
    def _validate_breaker(self) -> BrokerSettings:
        if self.breaker_max_failures < 1:
            raise ValueError("breaker_max_failures must be >= 1")
        if self.breaker_reset_timeout_seconds < 0:
            raise ValueError("breaker_reset_timeout_seconds must be >= 0")
        return self

    def breaker_config(self) -> CircuitBreakerConfig:
        """Build the breaker configuration; exchange crashes are not counted."""
        return CircuitBreakerConfig(
            max_failures=self.breaker_max_failures,
            reset_timeout=self.breaker_reset_timeout_seconds,
            excluded_exceptions=(ExchangeCrashedError,),
        )
