"""
Secret materialization — fetch a secret, render it, and write it to disk.

Steps for one secret, each returning early on failure:
  1. resolve the value through the vault client
  2. render the optional template (jinja2, value bound to ``secret``)
  3. create the parent directory and probe that it is writable
  4. resolve owner/group before touching the target
  5. write atomically with the declared mode and ownership
  6. (re)create every declared symlink

A failed attempt is not rolled back here; run-level rollback belongs to the
caller.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from collections.abc import Collection
from dataclasses import dataclass
from pathlib import Path

import jinja2

from secretsmith.errors import ConfigurationError, ValidationError, file_error, principal_error
from secretsmith.paths import denied_prefix, has_traversal
from secretsmith.principals import SystemPrincipals, suggest
from secretsmith.validator import ResolvedSecret
from secretsmith.vault.client import VaultClient

logger = logging.getLogger(__name__)

DEFAULT_DIR_MODE = 0o755
WRITE_PROBE = ".secretsmith-write-test"
TEMPLATE_SLOT = "secret"

_jinja = jinja2.Environment(
    undefined=jinja2.StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


@dataclass(frozen=True)
class MaterializedSecret:
    name: str
    path: Path
    symlinks: tuple[Path, ...] = ()


def render_template(template: str, value: str, secret_name: str = "secret") -> str:
    """Render ``template`` with the secret value bound to ``{{ secret }}``."""
    try:
        return _jinja.from_string(template).render(**{TEMPLATE_SLOT: value})
    except jinja2.TemplateError as e:
        raise ConfigurationError(
            f"Rendering template for {secret_name}",
            f"Template failed: {e}",
            context=f"Template: {template}",
            suggestions=[
                f"Reference the secret value as {{{{ {TEMPLATE_SLOT} }}}}",
                "Check the template for unbalanced {{ }} or {% %} blocks",
            ],
            cause=e,
        ) from e


def ensure_writable_dir(directory: Path, mode: int = DEFAULT_DIR_MODE, operation: str = "Preparing directory") -> None:
    """Create ``directory`` if needed and prove it is writable with a probe file."""
    try:
        directory.mkdir(mode=mode, parents=True, exist_ok=True)
    except OSError as e:
        raise file_error(operation, directory, "Cannot create directory", e) from e

    probe = directory / WRITE_PROBE
    try:
        probe.write_text("probe")
        probe.unlink()
    except OSError as e:
        raise file_error(operation, directory, "Directory is not writable", e) from e


def atomic_write(path: Path, data: bytes, mode: int, uid: int = -1, gid: int = -1) -> None:
    """Write ``data`` to ``path`` via a temp file in the same directory.

    Mode and ownership are applied to the temp file before the rename, so the
    target never exists with partial content or the wrong owner.
    """
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), mode)
            if uid != -1 or gid != -1:
                os.fchown(f.fileno(), uid, gid)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except OSError:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


class SecretMaterializer:
    """Write resolved secrets to their target paths."""

    def __init__(self, principals: SystemPrincipals | None = None, dir_mode: int = DEFAULT_DIR_MODE):
        self.principals = principals or SystemPrincipals()
        self.dir_mode = dir_mode

    def materialize(
        self,
        resolved: ResolvedSecret,
        vault_client: VaultClient,
        reserved: Collection[Path] = (),
    ) -> MaterializedSecret:
        """Materialize one secret.

        ``reserved`` holds output paths claimed by other secrets; symlinks may
        not replace them.
        """
        secret = resolved.secret
        name = resolved.name
        path = resolved.path

        value = vault_client.resolve(secret.reference)

        if secret.template is not None:
            value = render_template(secret.template, value, name)

        ensure_writable_dir(path.parent, self.dir_mode, f"Preparing parent directory for {name}")

        uid, gid = self._ownership(secret.owner, secret.group, name)

        try:
            atomic_write(path, value.encode("utf-8"), resolved.file_mode, uid, gid)
        except OSError as e:
            raise file_error(f"Writing secret file for {name}", path, "Failed to write secret", e) from e
        logger.info("Wrote %s (mode %s)", path, secret.mode)

        links = self._link(resolved, reserved)
        return MaterializedSecret(name=name, path=path, symlinks=links)

    def _ownership(self, owner: str | None, group: str | None, name: str) -> tuple[int, int]:
        uid = gid = -1
        if owner:
            found = self.principals.uid(owner)
            if found is None:
                raise principal_error(
                    f"Setting ownership for {name}", owner, "user", suggest(self.principals.users())
                )
            uid = found
        if group:
            found = self.principals.gid(group)
            if found is None:
                raise principal_error(
                    f"Setting ownership for {name}", group, "group", suggest(self.principals.groups())
                )
            gid = found
        return uid, gid

    def _link(self, resolved: ResolvedSecret, reserved: Collection[Path]) -> tuple[Path, ...]:
        created: list[Path] = []
        for i, link in enumerate(resolved.symlinks):
            field = f"{resolved.name}.symlinks[{i}]"
            if has_traversal(link) or denied_prefix(link) is not None:
                raise ValidationError(
                    f"Creating symlink {field}",
                    "Symlink path is not allowed",
                    context=f"Path: {link}",
                )
            if link == resolved.path or link in reserved or link in created:
                raise ValidationError(
                    f"Creating symlink {field}",
                    f"Symlink path {link} collides with another secret path",
                    context=f"Path: {link}",
                )

            ensure_writable_dir(link.parent, self.dir_mode, f"Preparing parent directory for {field}")

            try:
                if link.is_symlink() or link.is_file():
                    link.unlink()
            except OSError as e:
                raise file_error(
                    f"Removing existing file at {field}", link, "Failed to remove existing file", e
                ) from e

            try:
                link.symlink_to(resolved.path)
            except OSError as e:
                raise file_error(
                    f"Creating symlink {field}", link, f"Failed to link to {resolved.path}", e
                ) from e
            logger.debug("Linked %s -> %s", link, resolved.path)
            created.append(link)
        return tuple(created)
