"""Upstream credential-exchange contract.

The exchange itself (signing a service-account assertion and calling the
token endpoint) belongs to the host's provider SDK. The broker only needs
the contract below and treats every call as fallible, slow and untrusted.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Literal, Protocol, cast

from token_broker.config import BackendConfig, Role


class CredentialKind(StrEnum):
    """How a service-account credential is supplied."""

    FILE_PATH = "file_path"
    JSON = "json"


@dataclass(frozen=True)
class CredentialSource:
    """Exactly one credential selected for an exchange attempt."""

    kind: CredentialKind
    value: str
    origin: Literal["role", "config"]

    def __repr__(self) -> str:
        shown = self.value if self.kind == CredentialKind.FILE_PATH else "***"
        return (
            f"CredentialSource(kind={self.kind.value!r}, value={shown!r}, "
            f"origin={self.origin!r})"
        )


@dataclass(frozen=True)
class IssuedToken:
    """Bearer token returned by the upstream exchange."""

    access_token: str
    token_type: str = "Bearer"

    def __repr__(self) -> str:
        return f"IssuedToken(access_token='***', token_type={self.token_type!r})"


class CredentialExchanger(Protocol):
    """Exchange a service-account credential for a bearer token.

    Implementations raise ``token_broker.errors.ExchangeError`` (or an
    ``OSError``) when the upstream refuses or cannot be reached. Any other
    exception is treated as a defect in the exchange dependency.
    """

    def exchange(
        self,
        source: CredentialSource,
        scoped_ids: Sequence[str],
        context: str | None,
    ) -> IssuedToken | None | Awaitable[IssuedToken | None]:
        """Return a token for ``scoped_ids`` using ``source``."""


def resolve_credential_source(
    config: BackendConfig, role: Role
) -> CredentialSource | None:
    """Pick the credential for a role.

    Precedence: role file path, role inline JSON, config file path, config
    inline JSON.
    """
    if role.credentials_file_path:
        return CredentialSource(
            CredentialKind.FILE_PATH, role.credentials_file_path, "role"
        )
    if role.credentials_json:
        return CredentialSource(CredentialKind.JSON, role.credentials_json, "role")
    if config.credentials_file_path:
        return CredentialSource(
            CredentialKind.FILE_PATH, config.credentials_file_path, "config"
        )
    if config.credentials_json:
        return CredentialSource(CredentialKind.JSON, config.credentials_json, "config")
    return None


async def _run_in_daemon_thread_and_wait(
    func: Callable[..., object],
    /,
    *args: object,
) -> object:
    """Run a blocking callable in a daemon thread and await completion.

    Cancelling the awaiting task abandons the thread; its result is dropped.
    """
    done = threading.Event()
    error: BaseException | None = None
    result: object | None = None

    def _run() -> None:
        nonlocal error, result
        try:
            result = func(*args)
        except BaseException as exc:
            error = exc
        finally:
            done.set()

    thread = threading.Thread(target=_run, name="token-exchange", daemon=True)
    thread.start()
    while not done.is_set():
        await asyncio.sleep(0.005)
    if error is not None:
        raise error
    return result


async def call_exchanger(
    exchanger: CredentialExchanger,
    source: CredentialSource,
    scoped_ids: Sequence[str],
    context: str | None,
) -> IssuedToken | None:
    """Invoke a sync or async exchanger without blocking the event loop."""
    exchange = exchanger.exchange
    if inspect.iscoroutinefunction(exchange):
        return cast(IssuedToken | None, await exchange(source, scoped_ids, context))
    result = await _run_in_daemon_thread_and_wait(
        exchange, source, tuple(scoped_ids), context
    )
    if inspect.isawaitable(result):
        return cast(IssuedToken | None, await cast(Awaitable[object], result))
    return cast(IssuedToken | None, result)
