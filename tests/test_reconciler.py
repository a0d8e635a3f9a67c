"""Tests for secretsmith.reconciler — dedup, ordering, retries."""

from pathlib import Path

import pytest

from secretsmith.errors import ConfigurationError, ServiceError
from secretsmith.manifest import ReconciliationPolicy, SecretDescriptor
from secretsmith.reconciler import ServiceReconciler, collect_actions, order_actions
from secretsmith.validator import ResolvedSecret

REF = "vault://Homelab/Database/password"


def _resolved(services, index=0) -> ResolvedSecret:
    secret = SecretDescriptor.model_validate({"reference": REF, "path": f"s{index}", "services": services})
    return ResolvedSecret(index=index, name=f"secret[{index}]", secret=secret, path=Path(f"/srv/s{index}"))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def reconciler_for(service_manager, sleeps):
    def _make(**policy):
        return ServiceReconciler(
            service_manager,
            ReconciliationPolicy(**policy),
            sleep=sleeps.append,
            backoff=1.0,
        )

    return _make


class TestCollect:
    def test_dedup_first_seen_order(self):
        actions = collect_actions([_resolved(["a", "b"]), _resolved(["b", "c"], 1)])
        assert [a.unit for a in actions] == ["a", "b", "c"]

    def test_restart_wins_over_reload(self):
        actions = collect_actions(
            [
                _resolved({"nginx": {"restart": False}}),
                _resolved({"nginx": {"restart": True}}, 1),
            ]
        )
        assert len(actions) == 1
        assert actions[0].kind == "restart"

    def test_reload_does_not_replace_restart(self):
        actions = collect_actions(
            [
                _resolved(["nginx"]),
                _resolved({"nginx": {"restart": False, "signal": "SIGHUP"}}, 1),
            ]
        )
        assert actions[0].kind == "restart"
        assert actions[0].policy.signal is None


class TestOrder:
    def test_after_dependencies_first(self):
        actions = collect_actions(
            [_resolved({"app": {"after": ["db"]}, "db": {"after": []}})]
        )
        assert [a.unit for a in order_actions(actions)] == ["db", "app"]

    def test_external_after_ignored(self):
        actions = collect_actions([_resolved(["a", "b"])])
        assert [a.unit for a in order_actions(actions)] == ["a", "b"]

    def test_cycle(self):
        actions = collect_actions([_resolved({"a": {"after": ["b"]}, "b": {"after": ["a"]}})])
        with pytest.raises(ConfigurationError, match="Circular"):
            order_actions(actions)


class TestReconcile:
    def test_single_restart(self, reconciler_for, service_manager):
        result = reconciler_for().reconcile([_resolved(["postgresql"])])
        assert service_manager.calls == [("restart", "postgresql", None)]
        assert result.succeeded == ["postgresql"]
        assert result.ok

    def test_signal_and_reload(self, reconciler_for, service_manager):
        reconciler_for().reconcile(
            [_resolved({"nginx": {"signal": "HUP"}, "app": {"restart": False}})]
        )
        assert service_manager.calls == [("signal", "nginx", "SIGHUP"), ("reload", "app", None)]

    def test_no_changes_no_dispatch(self, reconciler_for, service_manager):
        result = reconciler_for().reconcile([])
        assert service_manager.calls == []
        assert result.actions == []

    def test_restart_on_change_disabled(self, reconciler_for, service_manager):
        reconciler_for(restart_on_change=False).reconcile([_resolved(["a"])])
        assert service_manager.calls == []

    def test_shared_service_dispatched_once(self, reconciler_for, service_manager):
        reconciler_for().reconcile([_resolved(["web"]), _resolved(["web"], 1)])
        assert service_manager.calls == [("restart", "web", None)]

    def test_retry_then_success(self, reconciler_for, service_manager, sleeps):
        service_manager.failures["flaky"] = 2
        result = reconciler_for(max_retries=3).reconcile([_resolved(["flaky"])])
        assert len(service_manager.calls) == 3
        assert sleeps == [1.0, 2.0]
        assert result.succeeded == ["flaky"]

    def test_attempts_are_retries_plus_one(self, reconciler_for, service_manager, sleeps):
        service_manager.failures["down"] = 99
        with pytest.raises(ServiceError):
            reconciler_for(max_retries=2).reconcile([_resolved(["down"])])
        assert len(service_manager.calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_zero_retries(self, reconciler_for, service_manager, sleeps):
        service_manager.failures["down"] = 99
        with pytest.raises(ServiceError):
            reconciler_for(max_retries=0).reconcile([_resolved(["down"])])
        assert len(service_manager.calls) == 1
        assert sleeps == []

    def test_stop_on_first_failure(self, reconciler_for, service_manager):
        service_manager.failures["a"] = 99
        with pytest.raises(ServiceError):
            reconciler_for(max_retries=0).reconcile([_resolved(["a", "b"])])
        assert [c[1] for c in service_manager.calls] == ["a"]

    def test_continue_on_error(self, reconciler_for, service_manager):
        service_manager.failures["a"] = 99
        result = reconciler_for(max_retries=0, continue_on_error=True).reconcile(
            [_resolved(["a", "b"])]
        )
        assert list(result.failures) == ["a"]
        assert result.succeeded == ["b"]
        assert not result.ok
        assert result.rollback_requested is False

    def test_rollback_flag(self, reconciler_for, service_manager):
        service_manager.failures["a"] = 99
        result = reconciler_for(
            max_retries=0, continue_on_error=True, rollback_on_failure=True
        ).reconcile([_resolved(["a"])])
        assert result.rollback_requested is True

    def test_rollback_flag_on_raised_error(self, reconciler_for, service_manager):
        service_manager.failures["a"] = 99
        with pytest.raises(ServiceError) as exc:
            reconciler_for(max_retries=0, rollback_on_failure=True).reconcile([_resolved(["a", "b"])])
        assert exc.value.rollback_requested is True
        assert exc.value.unit == "a"

    def test_raised_error_without_rollback_policy(self, reconciler_for, service_manager):
        service_manager.failures["a"] = 99
        with pytest.raises(ServiceError) as exc:
            reconciler_for(max_retries=0).reconcile([_resolved(["a"])])
        assert exc.value.rollback_requested is False
