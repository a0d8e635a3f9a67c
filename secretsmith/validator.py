"""
Manifest validation — structural and security checks before any I/O.

Validation is fail-fast: the first problem raises. On success the validator
returns every secret with its resolved output path and symlink paths, ready
for materialization.

Checks per secret, in manifest order:
  (a) reference shape
  (b) resolved path: non-empty, no traversal, not a sensitive system location
  (c) path and symlinks not already claimed by an earlier secret
  (d) mode is 3-4 octal digits without the world-write bit
  (e) owner/group exist (root always does)

Finally the ``after`` edges of every declared service, across all secrets,
must be free of cycles.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from secretsmith.errors import ConfigurationError, ValidationError, principal_error
from secretsmith.manifest.models import Manifest, SecretDescriptor
from secretsmith.paths import anchor_path, denied_prefix, has_traversal, render_path
from secretsmith.principals import ROOT, SystemPrincipals, suggest
from secretsmith.vault.reference import VaultReference

logger = logging.getLogger(__name__)

MODE_PATTERN = re.compile(r"^[0-7]{3,4}$")
WORLD_WRITE = 0o002


@dataclass(frozen=True)
class ResolvedSecret:
    """A validated secret with its concrete output locations."""

    index: int
    name: str
    secret: SecretDescriptor
    path: Path
    symlinks: tuple[Path, ...] = ()

    @property
    def file_mode(self) -> int:
        return int(self.secret.mode, 8)


def secret_label(index: int, secret: SecretDescriptor) -> str:
    return f"secret[{index}] ({secret.reference or '<no reference>'})"


def dependency_order(edges: Mapping[str, Iterable[str]]) -> list[str]:
    """Depth-first topological order of units, dependencies first.

    Edges pointing at units outside ``edges`` are ignored. Raises
    ConfigurationError on a cycle.
    """
    visited: set[str] = set()
    in_stack: set[str] = set()
    order: list[str] = []

    def visit(unit: str) -> None:
        if unit in in_stack:
            raise ConfigurationError(
                "Ordering service actions",
                f"Circular 'after' dependency involving '{unit}'",
                suggestions=["Remove one of the units from the other's 'after' list"],
            )
        if unit in visited:
            return
        in_stack.add(unit)
        for dep in edges[unit]:
            if dep in edges:
                visit(dep)
        in_stack.remove(unit)
        visited.add(unit)
        order.append(unit)

    for unit in edges:
        visit(unit)
    return order


def parse_mode(mode: str, field: str = "mode") -> int:
    """Parse an octal mode string, rejecting malformed and world-writable modes."""
    if not MODE_PATTERN.match(mode or ""):
        raise ValidationError(
            f"Validating {field}",
            f"Invalid mode '{mode}'",
            context="Expected format: 3-4 digit octal number (e.g. 0600, 0640)",
            suggestions=[f"Update {field} to an octal string such as \"0600\""],
        )
    value = int(mode, 8)
    if value & WORLD_WRITE:
        raise ValidationError(
            f"Validating {field}",
            f"Mode '{mode}' allows world write access (others can modify the secret)",
            suggestions=[
                "Remove write permission for others",
                "Use modes like 0600, 0640 or 0644 instead",
            ],
        )
    return value


class ManifestValidator:
    """Validate a manifest and resolve each secret's paths."""

    def __init__(self, output_dir: Path | str, principals: SystemPrincipals | None = None):
        self.output_dir = Path(output_dir)
        self.principals = principals or SystemPrincipals()

    def validate(self, manifest: Manifest) -> list[ResolvedSecret]:
        if not manifest.secrets:
            raise ConfigurationError(
                "Validating manifest",
                "No secrets defined in configuration",
                suggestions=["Add at least one entry under 'secrets'"],
            )

        claimed: dict[Path, str] = {}
        resolved = []
        for index, secret in enumerate(manifest.secrets):
            resolved.append(self._validate_secret(index, secret, manifest, claimed))
        self._check_service_order(manifest)
        logger.debug("Validated %d secret(s)", len(resolved))
        return resolved

    def _validate_secret(
        self,
        index: int,
        secret: SecretDescriptor,
        manifest: Manifest,
        claimed: dict[Path, str],
    ) -> ResolvedSecret:
        name = secret_label(index, secret)

        self._check_reference(secret.reference, name)

        rendered = render_path(secret, manifest.path_template, manifest.defaults, name)
        path = self._check_location(rendered, f"{name}.path")

        self._claim(path, name, f"{name}.path", claimed)
        symlinks = []
        for i, link in enumerate(secret.symlinks):
            field = f"{name}.symlinks[{i}]"
            link_path = self._check_location(link, field)
            self._claim(link_path, f"{name} (symlink)", field, claimed)
            symlinks.append(link_path)

        parse_mode(secret.mode, f"{name}.mode")
        self._check_principals(secret, name)

        return ResolvedSecret(
            index=index, name=name, secret=secret, path=path, symlinks=tuple(symlinks)
        )

    @staticmethod
    def _check_reference(reference: str, name: str) -> None:
        try:
            VaultReference.parse(reference)
        except ValueError as e:
            raise ValidationError(
                f"Validating {name}.reference",
                str(e),
                context=f"Reference: '{reference or '<empty>'}'",
                suggestions=[
                    "Use the format vault://Vault/Item/field",
                    "Or with sections: vault://Vault/Item/Section/field",
                    "Example: vault://Homelab/Database/password",
                ],
            ) from e

    def _check_location(self, raw: str, field: str) -> Path:
        """Checks shared by secret paths and symlink paths; returns the anchored path."""
        if not raw:
            raise ValidationError(
                f"Validating {field}",
                "Path cannot be empty",
                suggestions=[
                    "Use a relative path such as database/password",
                    "Or an absolute path such as /etc/ssl/certs/app.pem",
                ],
            )
        if has_traversal(raw):
            raise ValidationError(
                f"Validating {field}",
                "Path traversal detected (contains '..')",
                context=f"Path: {raw}",
                suggestions=[
                    "Remove '..' from the path",
                    "Use an absolute path to place files outside the output directory",
                ],
            )
        path = anchor_path(raw, self.output_dir)
        prefix = denied_prefix(path)
        if prefix is not None:
            raise ValidationError(
                f"Validating {field}",
                f"Path targets a sensitive system location: {prefix}",
                context=f"Path: {path}",
                suggestions=[
                    "Avoid placing secrets in system directories",
                    "Use /run/secrets/, /etc/secrets/ or the output directory instead",
                ],
            )
        return path

    @staticmethod
    def _claim(path: Path, owner: str, field: str, claimed: dict[Path, str]) -> None:
        existing = claimed.get(path)
        if existing is not None:
            raise ValidationError(
                f"Validating {field}",
                f"Duplicate path {path}: {owner} conflicts with {existing}",
                context=f"Conflicting path: {path}",
                suggestions=[
                    "Each secret path and symlink must be unique across all manifests",
                    "Change one of the paths or the variables feeding the path template",
                ],
            )
        claimed[path] = owner

    def _check_principals(self, secret: SecretDescriptor, name: str) -> None:
        if secret.owner and secret.owner != ROOT and self.principals.uid(secret.owner) is None:
            raise principal_error(
                f"Validating {name}.owner",
                secret.owner,
                "user",
                suggest(self.principals.users()),
            )
        if secret.group and secret.group != ROOT and self.principals.gid(secret.group) is None:
            raise principal_error(
                f"Validating {name}.group",
                secret.group,
                "group",
                suggest(self.principals.groups()),
            )

    @staticmethod
    def _check_service_order(manifest: Manifest) -> None:
        """Any run dispatches a subset of these edges, so the union must be acyclic."""
        edges: dict[str, set[str]] = {}
        for secret in manifest.secrets:
            for unit, policy in secret.service_policies():
                edges.setdefault(unit, set()).update(policy.after)
        dependency_order(edges)
