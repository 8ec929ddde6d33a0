"""Telemetry event payloads.

Every field has a default so a bare ``TokenRequestEvent()`` is valid; the
implementations must cope with empty names and missing errors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TokenRequestEvent:
    role_name: str = ""
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class TokenGenerateEvent:
    role_name: str = ""
    success: bool = False
    duration_ms: float = 0.0
    error: BaseException | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class UpstreamAuthEvent:
    """Start of one upstream exchange attempt."""

    role_name: str = ""
    credential_type: str = ""
    role_ids_count: int = 0
    attempt: int = 0
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class UpstreamAuthResultEvent:
    role_name: str = ""
    success: bool = False
    duration_ms: float = 0.0
    error: BaseException | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ConfigWriteEvent:
    operation: str = ""
    success: bool = False
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ConfigReadEvent:
    found: bool = False
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class RoleWriteEvent:
    role_name: str = ""
    operation: str = ""
    success: bool = False
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class RoleReadEvent:
    role_name: str = ""
    found: bool = False
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ErrorEvent:
    """Failure of an operation, with ``warning``/``error``/``critical`` severity."""

    operation: str = ""
    error: BaseException | None = None
    severity: str = "error"
    timestamp: datetime = field(default_factory=_utcnow)
