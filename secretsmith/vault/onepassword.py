"""
1Password service-account backend, using the official onepassword-sdk.

The SDK is async; this client owns a private event loop and drives each call
to completion so the pipeline stays synchronous.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from secretsmith import __version__
from secretsmith.errors import (
    VaultAuthError,
    VaultError,
    VaultNetworkError,
    VaultNotFoundError,
    VaultRateLimitError,
    vault_error,
)
from secretsmith.vault.reference import VaultReference

logger = logging.getLogger(__name__)

INTEGRATION_NAME = "secretsmith deployment"

# Substrings of SDK error messages, checked in order
_CLASSIFIERS: list[tuple[tuple[str, ...], type[VaultError]]] = [
    (("rate limit", "ratelimit", "too many requests", "429"), VaultRateLimitError),
    (
        ("unauthorized", "authentication", "invalid token", "invalid service account",
         "expired", "forbidden", "401", "403"),
        VaultAuthError,
    ),
    (("not found", "no item", "no vault", "no field", "isn't a", "does not exist", "404"),
     VaultNotFoundError),
    (("network", "connection", "timed out", "timeout", "dns", "unreachable", "tls"),
     VaultNetworkError),
]


def classify(exc: BaseException) -> type[VaultError]:
    """Map an SDK exception onto the vault error taxonomy."""
    message = str(exc).lower()
    for needles, cls in _CLASSIFIERS:
        if any(n in message for n in needles):
            return cls
    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return VaultNetworkError
    return VaultNotFoundError


class OnePasswordVaultClient:
    """Resolve vault references through a 1Password service account."""

    def __init__(self, token: str, *, integration_name: str = INTEGRATION_NAME):
        self._token = token
        self._integration_name = integration_name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._client: Any = None

    def _run(self, coro: Any) -> Any:
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
        return self._loop.run_until_complete(coro)

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            from onepassword.client import Client
        except ImportError as e:
            raise VaultError(
                "Initializing 1Password client",
                "onepassword-sdk is not installed",
                suggestions=["Install it with: pip install onepassword-sdk"],
                cause=e,
            ) from e

        try:
            self._client = self._run(
                Client.authenticate(
                    auth=self._token,
                    integration_name=self._integration_name,
                    integration_version=f"v{__version__}",
                )
            )
        except Exception as e:
            cls = classify(e)
            if cls is VaultNotFoundError:
                cls = VaultAuthError
            raise vault_error(
                cls,
                "Initializing 1Password client",
                "Failed to authenticate the service account token",
                cause=e,
            ) from e
        logger.info("Authenticated 1Password service account")
        return self._client

    def resolve(self, reference: str) -> str:
        parsed = VaultReference.parse(reference)
        client = self._ensure_client()
        try:
            value = self._run(client.secrets.resolve(parsed.to_op_uri()))
        except Exception as e:
            raise vault_error(
                classify(e),
                "Resolving secret",
                f"Failed to resolve reference {parsed}",
                reference=reference,
                cause=e,
            ) from e
        return str(value)

    def close(self) -> None:
        self._client = None
        if self._loop is not None:
            self._loop.close()
            self._loop = None
