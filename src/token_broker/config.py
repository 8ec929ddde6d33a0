"""Backend configuration and role models.

Both models validate on construction and raise ``pydantic.ValidationError``;
the backend converts those into ``BrokerValidationError`` for callers.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from token_broker.errors import BrokerValidationError

CredentialsType = Literal["file_path", "json"]

DEFAULT_MAX_RETRIES = 3
DEFAULT_REQUEST_TIMEOUT = 30
MAX_RETRIES_RANGE = (0, 10)
REQUEST_TIMEOUT_RANGE = (1, 300)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def validate_role_ids(role_ids: Sequence[str]) -> None:
    """Require exactly one scoped role identifier."""
    if not role_ids:
        raise BrokerValidationError("role_ids is required")
    if len(role_ids) > 1:
        raise BrokerValidationError(
            "only one role_id is supported. for multiple roles please contact "
            "plugin admin"
        )


def _credentials_type(file_path: str, credentials_json: str) -> CredentialsType | None:
    if file_path:
        return "file_path"
    if credentials_json:
        return "json"
    return None


def _check_credentials_json(value: str) -> str:
    if not value:
        return value
    try:
        json.loads(value)
    except json.JSONDecodeError as exc:
        raise ValueError(f"credentials_json must be valid JSON: {exc}") from exc
    return value


class BackendConfig(BaseModel):
    """Backend-wide credential source and issuance budget."""

    model_config = ConfigDict(extra="ignore")

    credentials_file_path: str = ""
    credentials_json: str = ""
    max_retries: int = DEFAULT_MAX_RETRIES
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    version: int = 1
    last_updated: datetime = Field(default_factory=_utcnow)

    @field_validator("credentials_file_path", "credentials_json", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("credentials_json")
    @classmethod
    def _validate_json(cls, value: str) -> str:
        return _check_credentials_json(value)

    @model_validator(mode="after")
    def _validate_config(self) -> BackendConfig:
        if not self.credentials_file_path and not self.credentials_json:
            raise ValueError(
                "either credentials_file_path or credentials_json must be provided"
            )
        if self.credentials_file_path and self.credentials_json:
            raise ValueError(
                "only one of credentials_file_path or credentials_json can be provided"
            )
        low, high = MAX_RETRIES_RANGE
        if not low <= self.max_retries <= high:
            raise ValueError(f"max_retries must be between {low} and {high}")
        low, high = REQUEST_TIMEOUT_RANGE
        if not low <= self.request_timeout <= high:
            raise ValueError(
                f"request_timeout must be between {low} and {high} seconds"
            )
        return self

    @property
    def credentials_type(self) -> CredentialsType | None:
        return _credentials_type(self.credentials_file_path, self.credentials_json)

    def redacted(self) -> dict[str, object]:
        """Return the read view of the config without inline credentials."""
        data: dict[str, object] = {
            "credentials_configured": True,
            "credentials_type": self.credentials_type,
            "max_retries": self.max_retries,
            "request_timeout": self.request_timeout,
            "description": self.description,
            "tags": list(self.tags),
            "version": self.version,
            "last_updated": self.last_updated.isoformat(timespec="seconds"),
        }
        if self.credentials_file_path:
            data["credentials_file_path"] = self.credentials_file_path
        return data


class Role(BaseModel):
    """Named token-generation role bound to one scoped role identifier."""

    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""
    role_ids: list[str] = Field(default_factory=list)
    context: str = ""
    credentials_file_path: str = ""
    credentials_json: str = ""
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("name", mode="before")
    @classmethod
    def _validate_name(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("role name is required")
        return value

    @field_validator("role_ids", mode="before")
    @classmethod
    def _normalize_role_ids(cls, value: object) -> object:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("credentials_json")
    @classmethod
    def _validate_json(cls, value: str) -> str:
        return _check_credentials_json(value)

    @model_validator(mode="after")
    def _validate_role(self) -> Role:
        try:
            validate_role_ids(self.role_ids)
        except BrokerValidationError as exc:
            raise ValueError(str(exc)) from exc
        if self.credentials_file_path and self.credentials_json:
            raise ValueError(
                "only one of credentials_file_path or credentials_json can be provided"
            )
        return self

    @property
    def credentials_type(self) -> CredentialsType | None:
        return _credentials_type(self.credentials_file_path, self.credentials_json)

    def redacted(self) -> dict[str, object]:
        """Return the read view of the role without credential values."""
        data: dict[str, object] = {
            "name": self.name,
            "description": self.description,
            "role_ids": list(self.role_ids),
            "context": self.context,
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
            "has_credentials_override": self.credentials_type is not None,
        }
        if self.credentials_type is not None:
            data["credentials_type"] = self.credentials_type
        return data
