"""
Root-level shared test fixtures.

Inherited by tests/ and the package-local test suites. Nothing here touches
real users, systemd, or the vault service.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest
import yaml

from secretsmith.config import Settings, reset_settings
from secretsmith.errors import ServiceError, VaultNotFoundError, service_error


class FakeVault:
    """In-memory vault: reference -> value, or reference -> exception to raise."""

    def __init__(self, values: dict[str, str | BaseException] | None = None):
        self.values: dict[str, str | BaseException] = dict(values or {})
        self.calls: list[str] = []
        self.closed = False

    def resolve(self, reference: str) -> str:
        self.calls.append(reference)
        value = self.values.get(reference)
        if value is None:
            raise VaultNotFoundError("Resolving secret", f"No such reference {reference}")
        if isinstance(value, BaseException):
            raise value
        return value

    def close(self) -> None:
        self.closed = True


class RecordingServiceManager:
    """Records dispatches; ``failures[unit]`` makes that many attempts fail."""

    def __init__(self, failures: dict[str, int] | None = None):
        self.calls: list[tuple[str, str, str | None]] = []
        self.failures: dict[str, int] = dict(failures or {})
        self.active: set[str] = set()

    def _record(self, action: str, unit: str, signal_name: str | None = None) -> None:
        self.calls.append((action, unit, signal_name))
        remaining = self.failures.get(unit, 0)
        if remaining:
            self.failures[unit] = remaining - 1
            raise service_error(f"Dispatching {action} to {unit}", unit, action, output="boom")

    def restart(self, unit: str) -> None:
        self._record("restart", unit)

    def reload(self, unit: str) -> None:
        self._record("reload", unit)

    def send_signal(self, unit: str, signal_name: str) -> None:
        self._record("signal", unit, signal_name)

    def is_active(self, unit: str) -> bool:
        if unit == "broken.service":
            raise ServiceError("Checking state", "unit is broken", unit=unit)
        return unit in self.active


class FakePrincipals:
    """Principal directory where 'app'/'appgroup' map to the test process ids."""

    def __init__(self) -> None:
        self._users = {"root": 0, "app": os.getuid(), "postgres": os.getuid(), "nginx": os.getuid()}
        self._groups = {"root": 0, "appgroup": os.getgid(), "postgres": os.getgid(), "ssl-cert": os.getgid()}

    def uid(self, name: str) -> int | None:
        return self._users.get(name)

    def gid(self, name: str) -> int | None:
        return self._groups.get(name)

    def users(self) -> list[str]:
        return list(self._users)

    def groups(self) -> list[str]:
        return list(self._groups)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove env vars that leak between tests and drop cached settings."""
    for key in list(os.environ):
        if key.startswith("SECRETSMITH_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("OP_SERVICE_ACCOUNT_TOKEN", raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def fake_vault() -> FakeVault:
    return FakeVault()


@pytest.fixture
def service_manager() -> RecordingServiceManager:
    return RecordingServiceManager()


@pytest.fixture
def principals() -> FakePrincipals:
    return FakePrincipals()


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    out = tmp_path / "secrets"
    out.mkdir()
    return out


@pytest.fixture
def settings(tmp_path: Path, output_dir: Path) -> Settings:
    token_file = tmp_path / "token"
    token_file.write_text("ops_test_token\n")
    return Settings(
        output_dir=output_dir,
        token_file=token_file,
        hash_file=tmp_path / "state" / "hashes.json",
        retry_backoff=0.0,
    )


@pytest.fixture
def write_manifest(tmp_path: Path):
    """Write a manifest mapping to a YAML file and return its path."""
    counter = {"n": 0}

    def _write(data: dict, name: str | None = None) -> Path:
        counter["n"] += 1
        path = tmp_path / (name or f"manifest-{counter['n']}.yaml")
        path.write_text(yaml.safe_dump(data))
        return path

    return _write
