"""
Structured errors for secretsmith.

Every error records what was being attempted, which component failed, and,
where the operator can act on it, a short list of remediation suggestions.
``str(err)`` renders the full report printed by the CLI.

Taxonomy:
  - ConfigurationError — malformed manifest, invalid template, unresolved variable
  - ValidationError    — bad path, bad mode, path collision, unknown principal
  - VaultError         — NotFound, AuthFailed, RateLimited, Network
  - FileSystemError    — permission denied, disk full, missing parent
  - ServiceError       — dispatch failed, unit not found
"""

from __future__ import annotations

import errno
import os


class SecretsmithError(Exception):
    """Base class: an operation failed in a component, with suggestions."""

    component = "secretsmith"

    def __init__(
        self,
        operation: str,
        issue: str,
        *,
        component: str | None = None,
        context: str = "",
        suggestions: list[str] | None = None,
        cause: BaseException | None = None,
    ):
        self.operation = operation
        self.issue = issue
        if component is not None:
            self.component = component
        self.context = context
        self.suggestions = list(suggestions or [])
        self.cause = cause
        super().__init__(issue)

    def __str__(self) -> str:
        lines = [f"ERROR: {self.operation} failed in {self.component}"]
        if self.issue:
            lines.append(f"  Issue: {self.issue}")
        if self.context:
            lines.append(f"  Context: {self.context}")
        if self.cause is not None:
            lines.append(f"  Cause: {self.cause}")
        if self.suggestions:
            lines.append("")
            lines.append("  Suggestions:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"  {i}. {suggestion}")
        return "\n".join(lines)


class ConfigurationError(SecretsmithError):
    component = "configuration"


class ValidationError(SecretsmithError):
    component = "validation"


class FileSystemError(SecretsmithError):
    component = "file system"


class ServiceError(SecretsmithError):
    component = "systemd service"

    def __init__(self, operation: str, issue: str, *, unit: str = "", **kwargs):
        self.unit = unit
        self.rollback_requested = False
        super().__init__(operation, issue, **kwargs)


class VaultError(SecretsmithError):
    component = "vault integration"
    kind = "unknown"


class VaultNotFoundError(VaultError):
    kind = "not_found"


class VaultAuthError(VaultError):
    kind = "auth_failed"


class VaultRateLimitError(VaultError):
    kind = "rate_limited"


class VaultNetworkError(VaultError):
    kind = "network"


class TokenError(VaultAuthError):
    component = "authentication"


# ─── Constructors with context-specific suggestions ──────────────────────


def _parent_of(path: str) -> str:
    parent = os.path.dirname(path.rstrip("/"))
    return parent or "."


def file_error(operation: str, path: str | os.PathLike, issue: str, cause: OSError | None = None) -> FileSystemError:
    """Build a FileSystemError, suggesting fixes based on the OS errno."""
    path = os.fspath(path)
    parent = _parent_of(path)
    suggestions: list[str] = []
    code = getattr(cause, "errno", None)
    if code in (errno.EACCES, errno.EPERM):
        suggestions = [
            f"Check that secretsmith can write to '{path}'",
            f"Check parent directory permissions: ls -la '{parent}'",
            "Run the deployment as root or as the owner of the target directory",
        ]
    elif code == errno.ENOENT:
        suggestions = [
            f"Create the parent directory: sudo mkdir -p '{parent}'",
            f"Verify the path is correct: '{path}'",
        ]
    elif code in (errno.ENOSPC, errno.EDQUOT):
        suggestions = [
            "Check available disk space: df -h",
            "Clean up temporary files if needed",
        ]
    return FileSystemError(
        operation,
        issue,
        context=f"Target path: {path}",
        suggestions=suggestions,
        cause=cause,
    )


_VAULT_SUGGESTIONS: dict[str, list[str]] = {
    "auth_failed": [
        "Verify the service account token is valid and has not expired",
        "Ensure the token file exists and is readable",
        "Store a new token with: secretsmith token set",
    ],
    "not_found": [
        "Verify the reference format: vault://Vault/Item/field",
        "Check that the vault, item, and field exist",
        "Ensure the service account has access to the vault",
    ],
    "network": [
        "Check internet connectivity",
        "Check for firewall or proxy issues",
        "Retry the operation in a few minutes",
    ],
    "rate_limited": [
        "Wait a few minutes before retrying",
        "Reduce the number of secrets fetched per run",
    ],
}


def vault_error(
    cls: type[VaultError],
    operation: str,
    issue: str,
    *,
    reference: str = "",
    cause: BaseException | None = None,
) -> VaultError:
    """Build a VaultError subclass with suggestions for its kind."""
    return cls(
        operation,
        issue,
        context=f"Reference: {reference}" if reference else "",
        suggestions=list(_VAULT_SUGGESTIONS.get(cls.kind, [])),
        cause=cause,
    )


def principal_error(operation: str, name: str, kind: str, available: list[str]) -> ValidationError:
    """An owner/group that does not exist, listing plausible alternatives."""
    create_cmd = "useradd" if kind == "user" else "groupadd"
    suggestions = [f"Create the {kind}: sudo {create_cmd} {name}"]
    if available:
        suggestions.append(f"Use an existing {kind} instead: {', '.join(available)}")
    database = "/etc/passwd" if kind == "user" else "/etc/group"
    suggestions.append(f"List all {kind}s: cut -d: -f1 {database} | sort")
    return ValidationError(
        operation,
        f"{kind} '{name}' does not exist",
        component="user management",
        suggestions=suggestions,
    )


def service_error(
    operation: str,
    unit: str,
    action: str,
    cause: BaseException | None = None,
    output: str = "",
) -> ServiceError:
    """A failed systemctl action against ``unit``."""
    if action == "is-active":
        suggestions = [
            f"Check if the unit exists: systemctl cat {unit}",
            "List all services: systemctl list-units --type=service",
        ]
    elif action == "cat":
        suggestions = [
            f"Check if the unit is installed: systemctl list-unit-files | grep {unit}",
            "Reload systemd configuration: sudo systemctl daemon-reload",
        ]
    else:
        suggestions = [
            f"Check service status: systemctl status {unit}",
            f"Check service logs: journalctl -u {unit} -n 20",
            f"Try it manually: sudo systemctl {action} {unit}",
        ]
    return ServiceError(
        operation,
        f"Service action '{action}' failed for '{unit}'",
        unit=unit,
        context=f"Output: {output.strip()}" if output.strip() else "",
        suggestions=suggestions,
        cause=cause,
    )
