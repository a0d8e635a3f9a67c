"""
Deployment pipeline — one run from manifest files to reconciled services.

    load → validate → token → materialize (+ change detection) → reconcile

Validation happens before any vault call or write. A missing token skips the
run without touching existing secrets. The hash store is saved once at the
end of the run, also when a later step raised.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from secretsmith.changes import ChangeDetector, HashStore
from secretsmith.config import Settings
from secretsmith.errors import SecretsmithError, TokenError
from secretsmith.manifest import Manifest, load_manifests
from secretsmith.materializer import MaterializedSecret, SecretMaterializer
from secretsmith.principals import SystemPrincipals
from secretsmith.reconciler import ReconcileResult, ServiceReconciler
from secretsmith.systemd import ServiceManager, SystemctlManager
from secretsmith.validator import ManifestValidator, ResolvedSecret
from secretsmith.vault import OnePasswordVaultClient, VaultClient, read_token

logger = logging.getLogger(__name__)

VaultFactory = Callable[[str], VaultClient]


@dataclass
class RunReport:
    materialized: list[MaterializedSecret] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)
    failed: dict[str, SecretsmithError] = field(default_factory=dict)
    reconcile: ReconcileResult | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        # Service failures tolerated by continueOnError are warnings only.
        return not self.failed


class DeploymentPipeline:
    """Run the full deployment for a set of manifest files."""

    def __init__(
        self,
        settings: Settings,
        vault_factory: VaultFactory | None = None,
        service_manager: ServiceManager | None = None,
        principals: SystemPrincipals | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.vault_factory = vault_factory or OnePasswordVaultClient
        self.service_manager = service_manager or SystemctlManager(
            settings.systemctl, settings.dispatch_timeout
        )
        self.principals = principals or SystemPrincipals()
        self.sleep = sleep

    def prepare(self, manifest_paths: Sequence[Path | str]) -> tuple[Manifest, list[ResolvedSecret]]:
        """Load, merge and validate manifests. No side effects."""
        manifest = load_manifests(manifest_paths)
        validator = ManifestValidator(self.settings.output_dir, self.principals)
        return manifest, validator.validate(manifest)

    def hash_store_for(self, manifest: Manifest) -> HashStore:
        override = manifest.change_detection.hash_file
        return HashStore(Path(override) if override else self.settings.hash_file)

    def run(self, manifest_paths: Sequence[Path | str]) -> RunReport:
        manifest, resolved = self.prepare(manifest_paths)
        logger.info("Validated %d secret(s)", len(resolved))

        report = RunReport()
        try:
            token = read_token(self.settings.token_file, self.settings.token_env)
        except TokenError as e:
            logger.warning("No vault token available, keeping existing secrets: %s", e.issue)
            report.skipped = True
            return report

        client = self.vault_factory(token)
        try:
            changed = self._materialize_all(manifest, resolved, client, report)
        finally:
            client.close()

        reconciler = ServiceReconciler(
            self.service_manager,
            manifest.service_reconciliation,
            sleep=self.sleep,
            backoff=self.settings.retry_backoff,
        )
        report.reconcile = reconciler.reconcile(changed)
        logger.info(
            "Run complete: %d materialized, %d changed, %d failed",
            len(report.materialized),
            len(report.changed),
            len(report.failed),
        )
        return report

    def _materialize_all(
        self,
        manifest: Manifest,
        resolved: list[ResolvedSecret],
        client: VaultClient,
        report: RunReport,
    ) -> list[ResolvedSecret]:
        materializer = SecretMaterializer(self.principals)
        detection = manifest.change_detection.enable
        store = self.hash_store_for(manifest).load() if detection else None
        detector = (
            ChangeDetector(store, manifest.change_detection.save_incrementally)
            if store is not None
            else None
        )
        continue_on_error = manifest.materialization.continue_on_error

        changed: list[ResolvedSecret] = []
        try:
            for item in resolved:
                reserved = self._reserved_paths(resolved, item)
                try:
                    written = materializer.materialize(item, client, reserved)
                    is_changed = detector is None or detector.has_changed(item.path)
                except SecretsmithError as e:
                    if not continue_on_error:
                        raise
                    logger.warning("Failed to materialize %s, continuing: %s", item.name, e.issue)
                    report.failed[item.name] = e
                    continue

                report.materialized.append(written)
                if is_changed:
                    changed.append(item)
                    report.changed.append(item.name)
        finally:
            if store is not None:
                store.save()
        return changed

    @staticmethod
    def _reserved_paths(resolved: list[ResolvedSecret], current: ResolvedSecret) -> set[Path]:
        reserved = set()
        for other in resolved:
            reserved.add(other.path)
            if other is not current:
                reserved.update(other.symlinks)
        return reserved
