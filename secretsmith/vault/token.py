"""
Service-account token handling.

The token is read from the environment first, then from the token file. A
missing token is not fatal to a deployment run: the pipeline keeps existing
secrets and exits successfully.
"""

from __future__ import annotations

import os
import stat
from pathlib import Path

from secretsmith.errors import TokenError, file_error

TOKEN_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR  # 600
WRITE_PROBE = ".secretsmith-write-test"


def _token_suggestions(token_file: Path) -> list[str]:
    return [
        "Create a service account token in the vault's admin console",
        "Store it with: secretsmith token set",
        f"Or write it manually: echo 'your-token' | sudo tee {token_file}",
        f"Restrict permissions: sudo chmod 600 {token_file}",
    ]


def read_token(token_file: Path | str | None, token_env: str = "OP_SERVICE_ACCOUNT_TOKEN") -> str:
    """Return the bearer token from ``$token_env`` or ``token_file``.

    Raises TokenError if neither yields a non-empty token.
    """
    env_token = os.environ.get(token_env, "").strip()
    if env_token:
        return env_token

    if token_file is None:
        raise TokenError(
            "Token access",
            f"No token provided: ${token_env} is unset and no token file configured",
            suggestions=_token_suggestions(Path("/etc/secretsmith-token")),
        )

    token_file = Path(token_file)
    try:
        token = token_file.read_text().strip()
    except OSError as e:
        raise TokenError(
            "Token access",
            f"Cannot read token file: {e.strerror or e}",
            context=f"Token file: {token_file}",
            suggestions=_token_suggestions(token_file),
            cause=e,
        ) from e
    if not token:
        raise TokenError(
            "Token access",
            "Token file is empty",
            context=f"Token file: {token_file}",
            suggestions=_token_suggestions(token_file),
        )
    return token


def write_token(path: Path | str, token: str) -> Path:
    """Store ``token`` at ``path`` with mode 600, creating the parent directory."""
    path = Path(path)
    token = token.strip()
    if not token:
        raise TokenError("Storing token", "Token cannot be empty")

    parent = path.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
        probe = parent / WRITE_PROBE
        probe.write_text("probe")
        probe.unlink()
    except OSError as e:
        raise file_error("Storing token", parent, "Token directory is not writable", e) from e

    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, TOKEN_FILE_MODE)
        with os.fdopen(fd, "w") as f:
            os.fchmod(f.fileno(), TOKEN_FILE_MODE)
            f.write(token)
    except OSError as e:
        raise file_error("Storing token", path, "Failed to write token file", e) from e
    return path
