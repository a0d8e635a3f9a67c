"""
Service manager command surface.

``SystemctlManager`` drives systemd through ``systemctl``; argument lists are
passed directly to ``subprocess.run`` without a shell. ``DryRunServiceManager``
only logs and records what would have been dispatched.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Protocol

from secretsmith.errors import ServiceError, service_error

logger = logging.getLogger(__name__)

INACTIVE_EXIT_CODE = 3


class ServiceManager(Protocol):
    def restart(self, unit: str) -> None: ...

    def reload(self, unit: str) -> None: ...

    def send_signal(self, unit: str, signal_name: str) -> None: ...

    def is_active(self, unit: str) -> bool: ...


class SystemctlManager:
    """Dispatch actions to systemd units via the systemctl binary."""

    def __init__(self, systemctl: str = "systemctl", timeout: float = 30.0):
        self.systemctl = systemctl
        self.timeout = timeout

    def _run(self, args: list[str], unit: str, action: str) -> subprocess.CompletedProcess:
        cmd = [self.systemctl, *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            return subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            raise ServiceError(
                f"Running systemctl {action}",
                f"systemctl binary '{self.systemctl}' not found",
                unit=unit,
                suggestions=[
                    "Check that systemd is installed on this host",
                    "Set SECRETSMITH_SYSTEMCTL to the systemctl path",
                ],
                cause=e,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise service_error(
                f"Running systemctl {action}", unit, action, cause=e
            ) from e

    def _dispatch(self, args: list[str], unit: str, action: str) -> None:
        proc = self._run(args, unit, action)
        if proc.returncode != 0:
            raise service_error(
                f"Dispatching {action} to {unit}",
                unit,
                action,
                output=(proc.stderr or proc.stdout or ""),
            )
        logger.info("Dispatched %s to %s", action, unit)

    def restart(self, unit: str) -> None:
        self._dispatch(["restart", unit], unit, "restart")

    def reload(self, unit: str) -> None:
        self._dispatch(["reload", unit], unit, "reload")

    def send_signal(self, unit: str, signal_name: str) -> None:
        self._dispatch(
            ["kill", "--kill-whom=main", f"--signal={signal_name}", unit], unit, "kill"
        )

    def is_active(self, unit: str) -> bool:
        proc = self._run(["is-active", "--quiet", unit], unit, "is-active")
        if proc.returncode == 0:
            return True
        if proc.returncode == INACTIVE_EXIT_CODE:
            return False
        raise service_error(
            f"Checking state of {unit}",
            unit,
            "is-active",
            output=(proc.stderr or proc.stdout or ""),
        )

    def unit_exists(self, unit: str) -> bool:
        proc = self._run(["cat", unit], unit, "cat")
        return proc.returncode == 0


class DryRunServiceManager:
    """Record dispatches without touching systemd."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str | None]] = []

    def restart(self, unit: str) -> None:
        logger.info("[dry-run] would restart %s", unit)
        self.calls.append(("restart", unit, None))

    def reload(self, unit: str) -> None:
        logger.info("[dry-run] would reload %s", unit)
        self.calls.append(("reload", unit, None))

    def send_signal(self, unit: str, signal_name: str) -> None:
        logger.info("[dry-run] would send %s to %s", signal_name, unit)
        self.calls.append(("signal", unit, signal_name))

    def is_active(self, unit: str) -> bool:
        return False
