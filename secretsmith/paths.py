"""
Path resolution — turn a secret's declared or templated path into a concrete
absolute path.

Resolution is lexical only (no filesystem access), so the same secret,
template and defaults always produce the same path. The validator relies on
that for its uniqueness check.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path

from secretsmith.errors import ConfigurationError
from secretsmith.manifest.models import SecretDescriptor

PLACEHOLDER = re.compile(r"\{([^{}]+)\}")

SHELL_METACHARACTERS = (";", "&", "|", "$", "`", "(", ")", "<", ">")

DENIED_PREFIXES = (
    "/bin",
    "/sbin",
    "/usr/bin",
    "/usr/sbin",
    "/boot",
    "/dev",
    "/proc",
    "/sys",
    "/etc/passwd",
    "/etc/shadow",
    "/etc/group",
    "/etc/gshadow",
    "/etc/sudoers",
)


def has_traversal(path: str | os.PathLike) -> bool:
    """True if any segment of ``path`` is ``..``."""
    return ".." in str(path).replace("\\", "/").split("/")


def denied_prefix(path: str | os.PathLike) -> str | None:
    """Return the sensitive system prefix ``path`` falls under, if any."""
    normalized = os.path.normpath(str(path))
    for prefix in DENIED_PREFIXES:
        if normalized == prefix or normalized.startswith(prefix + "/"):
            return prefix
    return None


def check_variable_value(name: str, value: str, secret_name: str = "secret") -> None:
    """Reject substituted values that could escape the path or reach a shell."""
    if ".." in value:
        raise ConfigurationError(
            f"Validating {secret_name}.variables.{name}",
            "Variable value contains path traversal attempt (..)",
            context=f"Value: '{value}'",
            suggestions=[
                "Remove '..' from the variable value",
                "Use plain directory or file names",
            ],
        )
    for char in SHELL_METACHARACTERS:
        if char in value:
            raise ConfigurationError(
                f"Validating {secret_name}.variables.{name}",
                f"Variable value contains shell metacharacter '{char}'",
                context=f"Value: '{value}'",
                suggestions=[
                    "Use only letters, digits, dots, hyphens and underscores in variable values",
                ],
            )


def substitute(
    template: str,
    variables: Mapping[str, str],
    defaults: Mapping[str, str],
    secret_name: str = "secret",
) -> str:
    """Replace every ``{name}`` placeholder; secret variables override defaults."""
    merged = {**defaults, **variables}
    for match in PLACEHOLDER.finditer(template):
        name = match.group(1)
        if name not in merged:
            available = ", ".join(sorted(merged)) or "(none)"
            raise ConfigurationError(
                f"Resolving {secret_name} path template",
                f"Template variable '{{{name}}}' not found in variables or defaults",
                context=f"Template: {template}",
                suggestions=[
                    f"Add '{name}' to the secret's variables",
                    f"Or add '{name}' to the manifest defaults",
                    f"Available variables: {available}",
                ],
            )
        check_variable_value(name, merged[name], secret_name)
    return PLACEHOLDER.sub(lambda m: merged[m.group(1)], template)


def anchor_path(path: str, output_dir: Path | str) -> Path:
    if os.path.isabs(path):
        return Path(os.path.normpath(path))
    return Path(os.path.normpath(os.path.join(os.path.abspath(output_dir), path)))


def render_path(
    secret: SecretDescriptor,
    path_template: str | None,
    defaults: Mapping[str, str] | None = None,
    secret_name: str = "secret",
) -> str:
    """The substituted path string, before anchoring under the output directory."""
    source = secret.path or path_template
    if not source:
        raise ConfigurationError(
            f"Resolving {secret_name} path",
            "No path specified and no pathTemplate configured",
            suggestions=[
                "Specify a path directly on the secret",
                "Or configure a pathTemplate at the manifest level",
                "Example template: /etc/secrets/{service}/{name}",
            ],
        )
    return substitute(source, secret.variables, defaults or {}, secret_name)


def resolve_path(
    secret: SecretDescriptor,
    path_template: str | None,
    defaults: Mapping[str, str] | None,
    output_dir: Path | str,
    secret_name: str = "secret",
) -> Path:
    """Resolve a secret's output path to an absolute path.

    Relative results are joined under ``output_dir``; absolute ones are kept.
    """
    rendered = render_path(secret, path_template, defaults, secret_name)
    return anchor_path(rendered, output_dir)


def resolve_symlink(link: str, output_dir: Path | str) -> Path:
    """Anchor a symlink path the same way as secret paths."""
    return anchor_path(link, output_dir)
