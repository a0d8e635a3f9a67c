"""
System users and groups — lookups for ownership validation and chown.

``SystemPrincipals`` reads the host account databases through ``pwd``/``grp``.
Tests substitute any object with the same methods.
"""

from __future__ import annotations

import grp
import pwd

ROOT = "root"

# Service accounts worth suggesting when an owner/group is misspelled
COMMON_SERVICE_ACCOUNTS = (
    "nginx",
    "apache",
    "www-data",
    "caddy",
    "postgres",
    "mysql",
    "redis",
    "docker",
    "systemd-network",
    "nobody",
    "ssl-cert",
)

MAX_SUGGESTIONS = 10


class SystemPrincipals:
    """Resolve user and group names against the host account databases."""

    def uid(self, name: str) -> int | None:
        if name == ROOT:
            return 0
        try:
            return pwd.getpwnam(name).pw_uid
        except KeyError:
            return None

    def gid(self, name: str) -> int | None:
        if name == ROOT:
            return 0
        try:
            return grp.getgrnam(name).gr_gid
        except KeyError:
            return None

    def users(self) -> list[str]:
        return [entry.pw_name for entry in pwd.getpwall()]

    def groups(self) -> list[str]:
        return [entry.gr_name for entry in grp.getgrall()]


def suggest(existing: list[str]) -> list[str]:
    """Pick a short list of plausible principals: root plus known service accounts."""
    picks = [ROOT]
    for name in existing:
        if name in COMMON_SERVICE_ACCOUNTS and name not in picks:
            picks.append(name)
    return picks[:MAX_SUGGESTIONS]
