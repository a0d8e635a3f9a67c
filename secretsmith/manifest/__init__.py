"""
Secret manifests — the declarative input to a deployment run.

Public API:
    load_manifests(paths)   → merged Manifest
    parse_document(data)    → Manifest from an already-parsed mapping
"""

from __future__ import annotations

from secretsmith.manifest.loader import load_document, load_manifests, merge_manifests, parse_document
from secretsmith.manifest.models import (
    ChangeDetectionPolicy,
    DetailedServiceMap,
    FlatServiceList,
    Manifest,
    MaterializationPolicy,
    ReconciliationPolicy,
    SecretDescriptor,
    ServiceActionPolicy,
)

__all__ = [
    "ChangeDetectionPolicy",
    "DetailedServiceMap",
    "FlatServiceList",
    "Manifest",
    "MaterializationPolicy",
    "ReconciliationPolicy",
    "SecretDescriptor",
    "ServiceActionPolicy",
    "load_document",
    "load_manifests",
    "merge_manifests",
    "parse_document",
]
