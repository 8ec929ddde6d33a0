"""Persistent state for the broker.

The host owns persistence; the broker only sees the key-value surface of
``AbstractStorage``. Values are JSON documents. ``InMemoryStorage`` backs
tests and single-process embedding.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import UTC, datetime

import structlog

from token_broker.config import BackendConfig, Role
from token_broker.errors import BrokerValidationError
from token_broker.logging import StructuredLogger, log_warning

CONFIG_KEY = "config"
CONFIG_HISTORY_PREFIX = "config_history/"
ROLE_PREFIX = "role/"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AbstractStorage(ABC):
    """Abstract key-value storage interface."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the value stored at ``key`` or ``None``."""

    @abstractmethod
    async def put(self, key: str, value: bytes) -> None:
        """Store ``value`` at ``key``, replacing any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""

    @abstractmethod
    async def list(self, prefix: str) -> list[str]:
        """Return the keys under ``prefix`` with the prefix stripped."""


class InMemoryStorage(AbstractStorage):
    """Dictionary-backed storage guarded by one cooperative lock."""

    def __init__(self) -> None:
        self._entries: dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            return self._entries.get(key)

    async def put(self, key: str, value: bytes) -> None:
        async with self._lock:
            self._entries[key] = value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def list(self, prefix: str) -> list[str]:
        async with self._lock:
            return sorted(
                key[len(prefix) :] for key in self._entries if key.startswith(prefix)
            )


class ConfigStore:
    """Load and save the single backend configuration document."""

    def __init__(
        self,
        storage: AbstractStorage,
        *,
        logger: StructuredLogger | None = None,
    ) -> None:
        self._storage = storage
        self._logger = logger or structlog.stdlib.get_logger(__name__)

    async def get(self) -> BackendConfig | None:
        raw = await self._storage.get(CONFIG_KEY)
        if raw is None:
            return None
        return BackendConfig.model_validate_json(raw)

    async def put(self, config: BackendConfig) -> None:
        await self._storage.put(CONFIG_KEY, config.model_dump_json().encode())

    async def put_with_history(self, config: BackendConfig) -> BackendConfig:
        """Bump the version, save the config and append a history entry.

        A failed history write is logged; the config itself is already saved.
        """
        saved = config.model_copy(
            update={"version": config.version + 1, "last_updated": _utcnow()}
        )
        await self.put(saved)
        entry = {
            "version": saved.version,
            "timestamp": saved.last_updated.isoformat(timespec="seconds"),
            "description": saved.description,
        }
        try:
            await self._storage.put(
                f"{CONFIG_HISTORY_PREFIX}{saved.version}",
                json.dumps(entry).encode(),
            )
        except Exception as exc:
            log_warning(
                self._logger,
                "config.history_write_failed",
                version=saved.version,
                error=str(exc),
            )
        return saved

    async def history(self) -> list[dict[str, object]]:
        """Return history entries ordered by version."""
        versions = await self._storage.list(CONFIG_HISTORY_PREFIX)
        entries: list[dict[str, object]] = []
        for version in sorted(versions, key=int):
            raw = await self._storage.get(f"{CONFIG_HISTORY_PREFIX}{version}")
            if raw is not None:
                entries.append(json.loads(raw))
        return entries

    async def delete(self) -> None:
        await self._storage.delete(CONFIG_KEY)


def _require_name(name: str) -> str:
    normalized = name.strip()
    if not normalized:
        raise BrokerValidationError("role name is required")
    return normalized


class RoleStore:
    """Load and save named roles under ``role/<name>``."""

    def __init__(self, storage: AbstractStorage) -> None:
        self._storage = storage

    async def get(self, name: str) -> Role | None:
        raw = await self._storage.get(ROLE_PREFIX + _require_name(name))
        if raw is None:
            return None
        return Role.model_validate_json(raw)

    async def put(self, role: Role) -> Role:
        """Stamp ``updated_at`` and store the role."""
        name = _require_name(role.name)
        saved = role.model_copy(update={"updated_at": _utcnow()})
        await self._storage.put(ROLE_PREFIX + name, saved.model_dump_json().encode())
        return saved

    async def delete(self, name: str) -> None:
        await self._storage.delete(ROLE_PREFIX + _require_name(name))

    async def list(self) -> list[str]:
        return await self._storage.list(ROLE_PREFIX)
