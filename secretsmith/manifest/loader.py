"""
Manifest loading — parse YAML/JSON documents and merge several into one.

Secrets lists are concatenated in document order. ``pathTemplate``,
``defaults`` and the policy blocks come from the last document that sets
them.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import pydantic
import yaml  # type: ignore[import-untyped]

from secretsmith.errors import ConfigurationError, file_error
from secretsmith.manifest.models import Manifest

logger = logging.getLogger(__name__)

_OVERRIDABLE = (
    "path_template",
    "defaults",
    "service_reconciliation",
    "change_detection",
    "materialization",
)


def _format_pydantic_error(exc: pydantic.ValidationError) -> list[str]:
    lines = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        lines.append(f"{loc}: {err['msg']}")
    return lines


def parse_document(data: object, source: str = "<memory>") -> Manifest:
    """Build a Manifest from an already-parsed document."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            "Parsing manifest",
            "Manifest document must be a mapping with a 'secrets' list",
            context=f"Source: {source}",
        )
    try:
        return Manifest.model_validate(data)
    except pydantic.ValidationError as e:
        problems = _format_pydantic_error(e)
        raise ConfigurationError(
            "Parsing manifest",
            f"Invalid manifest structure ({len(problems)} problem(s))",
            context=f"Source: {source}",
            suggestions=problems,
            cause=e,
        ) from e


def load_document(path: Path | str) -> Manifest:
    """Load and parse a single manifest file (YAML or JSON)."""
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise file_error("Loading manifest", path, "Cannot read manifest file", e) from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            "Parsing manifest",
            "Manifest is not valid YAML or JSON",
            context=f"Source: {path}",
            cause=e,
        ) from e

    return parse_document(data, source=str(path))


def merge_manifests(manifests: Sequence[Manifest]) -> Manifest:
    """Concatenate secrets; global settings from the last document that sets them."""
    secrets = []
    overrides: dict = {}
    for manifest in manifests:
        secrets.extend(manifest.secrets)
        for name in _OVERRIDABLE:
            if name in manifest.model_fields_set:
                overrides[name] = getattr(manifest, name)
    return Manifest(secrets=secrets, **overrides)


def load_manifests(paths: Sequence[Path | str]) -> Manifest:
    """Load every manifest file and merge them into one."""
    if not paths:
        raise ConfigurationError(
            "Loading manifests",
            "No manifest files provided",
            suggestions=["Pass at least one --config FILE"],
        )
    documents = [load_document(p) for p in paths]
    merged = merge_manifests(documents)
    logger.info("Loaded %d secret(s) from %d manifest(s)", len(merged.secrets), len(paths))
    return merged
