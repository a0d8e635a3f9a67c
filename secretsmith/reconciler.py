"""
Service reconciliation — dispatch restart/reload/signal for changed secrets.

Actions are collected from every changed secret, deduplicated by unit name
(restart wins over reload), ordered so that units named in another action's
``after`` list go first, and executed with linear-backoff retries.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from secretsmith.errors import ServiceError, service_error
from secretsmith.manifest.models import ReconciliationPolicy, ServiceActionPolicy
from secretsmith.systemd import ServiceManager
from secretsmith.validator import ResolvedSecret, dependency_order

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceAction:
    unit: str
    policy: ServiceActionPolicy

    @property
    def kind(self) -> str:
        return self.policy.action

    def describe(self) -> str:
        if self.policy.signal:
            return f"signal {self.policy.signal} -> {self.unit}"
        return f"{self.kind} {self.unit}"


@dataclass
class ReconcileResult:
    actions: list[ServiceAction] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    failures: dict[str, ServiceError] = field(default_factory=dict)
    rollback_requested: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures


def collect_actions(changed: Sequence[ResolvedSecret]) -> list[ServiceAction]:
    """One action per unit, first-seen order; a restart replaces a reload."""
    by_unit: dict[str, ServiceAction] = {}
    for resolved in changed:
        for unit, policy in resolved.secret.service_policies():
            existing = by_unit.get(unit)
            if existing is None or (policy.restart and not existing.policy.restart):
                by_unit[unit] = ServiceAction(unit, policy)
    return list(by_unit.values())


def order_actions(actions: list[ServiceAction]) -> list[ServiceAction]:
    """Order actions so units named in another action's ``after`` go first.

    Raises ConfigurationError on a cycle.
    """
    by_unit = {a.unit: a for a in actions}
    edges = {a.unit: a.policy.after for a in actions}
    return [by_unit[unit] for unit in dependency_order(edges)]


class ServiceReconciler:
    """Apply service actions for changed secrets under a reconciliation policy."""

    def __init__(
        self,
        manager: ServiceManager,
        policy: ReconciliationPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        backoff: float = 1.0,
    ):
        self.manager = manager
        self.policy = policy or ReconciliationPolicy()
        self.sleep = sleep
        self.backoff = backoff

    def reconcile(self, changed: Sequence[ResolvedSecret]) -> ReconcileResult:
        result = ReconcileResult()
        if not self.policy.restart_on_change:
            logger.info("Service restarts disabled, skipping reconciliation")
            return result
        if not changed:
            logger.info("No secret changes detected, skipping service actions")
            return result

        result.actions = order_actions(collect_actions(changed))
        if not result.actions:
            return result
        logger.info(
            "Reconciling %d service(s) for %d changed secret(s)",
            len(result.actions),
            len(changed),
        )

        for action in result.actions:
            try:
                self._execute(action)
            except ServiceError as e:
                if not self.policy.continue_on_error:
                    e.rollback_requested = self.policy.rollback_on_failure
                    raise
                logger.warning("Service action failed, continuing: %s", action.describe())
                result.failures[action.unit] = e
            else:
                result.succeeded.append(action.unit)

        if result.failures and self.policy.rollback_on_failure:
            result.rollback_requested = True
        return result

    def _execute(self, action: ServiceAction) -> None:
        attempts = self.policy.max_retries + 1
        last_error: ServiceError | None = None
        for attempt in range(attempts):
            if attempt > 0:
                delay = self.backoff * attempt
                logger.info(
                    "Retrying %s (attempt %d/%d) in %.1fs",
                    action.describe(),
                    attempt + 1,
                    attempts,
                    delay,
                )
                self.sleep(delay)
            try:
                self._dispatch(action)
                return
            except ServiceError as e:
                logger.debug("Attempt %d for %s failed: %s", attempt + 1, action.unit, e.issue)
                last_error = e

        raise service_error(
            f"Reconciling {action.unit} after {attempts} attempt(s)",
            action.unit,
            action.kind,
            cause=last_error,
        ) from last_error

    def _dispatch(self, action: ServiceAction) -> None:
        policy = action.policy
        if policy.signal:
            self.manager.send_signal(action.unit, policy.signal)
        elif policy.restart:
            self.manager.restart(action.unit)
        else:
            self.manager.reload(action.unit)
