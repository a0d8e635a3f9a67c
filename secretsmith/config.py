"""
Process-level settings for secretsmith.

Everything the manifest does not carry comes from environment variables with
sensible defaults. CLI flags override individual fields for a single run via
``dataclasses.replace``.

Usage:
    from secretsmith.config import get_settings
    settings = get_settings()
    print(settings.output_dir)   # /var/lib/secretsmith/secrets
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_UNIT = "secretsmith.service"


@dataclass(frozen=True)
class Settings:
    """Top-level secretsmith settings."""

    # Where relative secret paths land
    output_dir: Path = field(default_factory=lambda: Path("/var/lib/secretsmith/secrets"))

    # Bearer token for the vault service
    token_file: Path = field(default_factory=lambda: Path("/etc/secretsmith-token"))
    token_env: str = "OP_SERVICE_ACCOUNT_TOKEN"

    # Change detection state
    hash_file: Path = field(
        default_factory=lambda: Path("/var/lib/secretsmith/secret-hashes.json")
    )

    # Service manager
    systemctl: str = "systemctl"
    unit_name: str = DEFAULT_UNIT
    dispatch_timeout: float = 30.0
    retry_backoff: float = 1.0

    log_level: str = "INFO"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the singleton settings from environment variables."""
    global _settings
    if _settings is not None:
        return _settings
    _settings = _load_from_env()
    return _settings


def _load_from_env() -> Settings:
    defaults = Settings()
    return Settings(
        output_dir=Path(os.environ.get("SECRETSMITH_OUTPUT_DIR", defaults.output_dir)),
        token_file=Path(os.environ.get("SECRETSMITH_TOKEN_FILE", defaults.token_file)),
        token_env=os.environ.get("SECRETSMITH_TOKEN_ENV", defaults.token_env),
        hash_file=Path(os.environ.get("SECRETSMITH_HASH_FILE", defaults.hash_file)),
        systemctl=os.environ.get("SECRETSMITH_SYSTEMCTL", defaults.systemctl),
        unit_name=os.environ.get("SECRETSMITH_UNIT", defaults.unit_name),
        dispatch_timeout=float(
            os.environ.get("SECRETSMITH_DISPATCH_TIMEOUT", defaults.dispatch_timeout)
        ),
        retry_backoff=float(os.environ.get("SECRETSMITH_RETRY_BACKOFF", defaults.retry_backoff)),
        log_level=os.environ.get("SECRETSMITH_LOG_LEVEL", defaults.log_level).upper(),
    )


def reset_settings() -> None:
    """Reset the singleton settings (for testing)."""
    global _settings
    _settings = None
