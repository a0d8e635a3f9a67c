"""
Vault access — resolve secret references to plaintext values.

Public API:
    VaultReference.parse(ref)      → vault / item / sections / field
    OnePasswordVaultClient(token)  → .resolve(ref) -> str
    read_token(token_file, env)    → bearer token (raises TokenError)
    write_token(path, token)       → store a token with mode 600
"""

from __future__ import annotations

from secretsmith.vault.client import VaultClient
from secretsmith.vault.onepassword import OnePasswordVaultClient
from secretsmith.vault.reference import VaultReference
from secretsmith.vault.token import read_token, write_token

__all__ = [
    "OnePasswordVaultClient",
    "VaultClient",
    "VaultReference",
    "read_token",
    "write_token",
]
