"""The interface the materializer uses to fetch secret values."""

from __future__ import annotations

from typing import Protocol


class VaultClient(Protocol):
    """Resolve a vault reference to the secret's current plaintext.

    Implementations raise VaultNotFoundError, VaultAuthError,
    VaultRateLimitError or VaultNetworkError; they never return a
    substitute value.
    """

    def resolve(self, reference: str) -> str: ...

    def close(self) -> None: ...
