# /*
# Copyright 2026 The env-manager Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Tests for plan execution, readiness gating and failure handling."""

from __future__ import annotations

import threading
import time

from conftest import FakeCluster, make_engine, make_spec, pod
from env_manager.engine import IdentityClaims
from env_manager.errors import ClusterUnreachable, Conflict, Forbidden
from env_manager.models import ActionStatus, ActionType, ReadinessCheck, ResourceId

A, B, C, D = pod("a"), pod("b"), pod("c"), pod("d")

READY_FAST = ReadinessCheck(condition="Ready", timeout=0.3)


# ---------------------------------------------------------------------------
# Happy paths
# ---------------------------------------------------------------------------


class TestReconcile:
    def test_creates_in_dependency_order(self, cluster: FakeCluster) -> None:
        """B is only created after A succeeded."""
        result = make_engine(cluster).reconcile([make_spec(B, deps=[A]), make_spec(A)])
        assert result.success
        assert result.statuses == {A: ActionStatus.APPLIED, B: ActionStatus.APPLIED}
        creates = [rid for op, rid in cluster.calls if op == "create"]
        assert creates == [A, B]

    def test_readiness_satisfied(self, cluster: FakeCluster) -> None:
        cluster.ready(B)
        specs = [make_spec(A), make_spec(B, deps=[A], readiness=READY_FAST)]
        result = make_engine(cluster).reconcile(specs)
        assert result.plan.targets() == [A, B]
        assert result.statuses == {A: ActionStatus.APPLIED, B: ActionStatus.APPLIED}

    def test_readiness_timeout_fails_resource(self, cluster: FakeCluster) -> None:
        specs = [make_spec(A), make_spec(B, deps=[A], readiness=READY_FAST)]
        result = make_engine(cluster).reconcile(specs)
        assert result.statuses == {A: ActionStatus.APPLIED, B: ActionStatus.FAILED}
        assert "timeout" in result.errors[B]
        assert not result.success

    def test_readiness_gates_dependents(self, cluster: FakeCluster) -> None:
        specs = [make_spec(A, readiness=READY_FAST), make_spec(B, deps=[A])]
        result = make_engine(cluster).reconcile(specs)
        assert result.statuses[A] is ActionStatus.FAILED
        assert result.statuses[B] is ActionStatus.SKIPPED
        assert cluster.count("create", B) == 0

    def test_wait_may_name_another_resource(self, cluster: FakeCluster) -> None:
        """A group wait on the last member watches the resource it names."""
        service = ResourceId("Service", "default", "a")
        cluster.ready(A)
        check = ReadinessCheck(kind="Pod", name="a", timeout=0.5)
        specs = [make_spec(A), make_spec(service, deps=[A], readiness=check)]
        result = make_engine(cluster).reconcile(specs)
        assert result.statuses[service] is ActionStatus.APPLIED

    def test_second_run_is_unchanged(self, cluster: FakeCluster) -> None:
        specs = [make_spec(A), make_spec(B, deps=[A]), make_spec(C)]
        engine = make_engine(cluster)
        engine.reconcile(specs)
        again = engine.reconcile(specs)
        assert again.plan.is_noop
        assert set(again.statuses.values()) == {ActionStatus.UNCHANGED}
        assert cluster.count("create") == 3
        assert cluster.count("update") == 0

    def test_changed_payload_is_updated(self, cluster: FakeCluster) -> None:
        engine = make_engine(cluster)
        engine.reconcile([make_spec(A)])
        result = engine.reconcile([make_spec(A, image="busybox:1.37")])
        assert result.statuses[A] is ActionStatus.UPDATED
        assert cluster.objects[A]["spec"]["containers"][0]["image"] == "busybox:1.37"

    def test_empty_spec_set(self, cluster: FakeCluster) -> None:
        result = make_engine(cluster).reconcile([])
        assert result.success
        assert result.statuses == {}


# ---------------------------------------------------------------------------
# Pruning
# ---------------------------------------------------------------------------


class TestPrune:
    def test_clean_removes_owned_in_reverse(self, cluster: FakeCluster) -> None:
        engine = make_engine(cluster)
        engine.reconcile([make_spec(A), make_spec(B, deps=[A])])
        result = engine.reconcile([], prune=True)
        assert result.statuses == {A: ActionStatus.DELETED, B: ActionStatus.DELETED}
        deletes = [rid for op, rid in cluster.calls if op == "delete"]
        assert deletes == [B, A]
        assert cluster.objects == {}

    def test_unowned_resources_survive(self, cluster: FakeCluster) -> None:
        foreign = cluster.seed(make_spec(pod("foreign")).payload)
        make_engine(cluster).reconcile([make_spec(A)])
        make_engine(cluster).reconcile([], prune=True)
        assert list(cluster.objects) == [foreign]

    def test_other_environment_survives(self, cluster: FakeCluster) -> None:
        make_engine(cluster, environment="other").reconcile([make_spec(C)])
        make_engine(cluster).reconcile([make_spec(A)])
        make_engine(cluster).reconcile([], prune=True)
        assert list(cluster.objects) == [C]

    def test_without_prune_undeclared_is_retained(self, cluster: FakeCluster) -> None:
        engine = make_engine(cluster)
        engine.reconcile([make_spec(A), make_spec(C)])
        result = engine.reconcile([make_spec(A)])
        assert result.plan.retained == (C,)
        assert C in cluster.objects

    def test_dropped_kind_is_pruned_through_discovery(self, cluster: FakeCluster) -> None:
        hpa = ResourceId("HorizontalPodAutoscaler", "default", "web")
        pdb = ResourceId("PodDisruptionBudget", "default", "web")
        engine = make_engine(cluster)
        engine.reconcile([make_spec(hpa), make_spec(pdb)])
        result = engine.reconcile([make_spec(pdb)], prune=True)
        assert result.statuses[hpa] is ActionStatus.DELETED
        assert list(cluster.objects) == [pdb]

    def test_dropped_kind_without_discovery_needs_declared_kinds(self, cluster: FakeCluster) -> None:
        hpa = ResourceId("HorizontalPodAutoscaler", "default", "web")
        engine = make_engine(cluster, discover_kinds=False)
        engine.reconcile([make_spec(hpa), make_spec(A)])
        assert engine.reconcile([make_spec(A)], prune=True).plan.of_type(ActionType.DELETE) == []
        assert hpa in cluster.objects
        result = engine.reconcile([make_spec(A)], prune=True, extra_kinds=["HorizontalPodAutoscaler"])
        assert result.statuses[hpa] is ActionStatus.DELETED
        assert list(cluster.objects) == [A]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_failure_skips_dependents_but_not_independent_branch(self, cluster: FakeCluster) -> None:
        cluster.fail("create", A, Forbidden("pods is forbidden"))
        specs = [make_spec(A), make_spec(B, deps=[A]), make_spec(C, deps=[B]), make_spec(D)]
        result = make_engine(cluster).reconcile(specs)
        assert result.statuses[A] is ActionStatus.FAILED
        assert result.statuses[B] is ActionStatus.SKIPPED
        assert result.statuses[C] is ActionStatus.SKIPPED
        assert result.statuses[D] is ActionStatus.APPLIED
        assert result.failed == [A]
        assert result.skipped == [B, C]
        assert "pod/default/a" in result.errors[B].lower()

    def test_forbidden_is_not_retried(self, cluster: FakeCluster) -> None:
        cluster.fail("create", A, Forbidden("forbidden"))
        result = make_engine(cluster).reconcile([make_spec(A)])
        assert result.statuses[A] is ActionStatus.FAILED
        assert result.errors[A].startswith("forbidden")
        assert cluster.count("create", A) == 1

    def test_unreachable_is_retried(self, cluster: FakeCluster) -> None:
        cluster.fail("create", A, ClusterUnreachable("connection refused"), ClusterUnreachable("connection refused"))
        result = make_engine(cluster, action_retries=3).reconcile([make_spec(A)])
        assert result.statuses[A] is ActionStatus.APPLIED
        assert cluster.count("create", A) == 3

    def test_unreachable_exhausts_retries(self, cluster: FakeCluster) -> None:
        cluster.fail("create", A, *(ClusterUnreachable("connection refused") for _ in range(3)))
        result = make_engine(cluster, action_retries=3).reconcile([make_spec(A)])
        assert result.statuses[A] is ActionStatus.FAILED
        assert "ClusterUnreachable" in result.errors[A]

    def test_conflict_on_update_retried_once(self, cluster: FakeCluster) -> None:
        engine = make_engine(cluster)
        engine.reconcile([make_spec(A)])
        cluster.fail("update", A, Conflict("the object has been modified"))
        result = engine.reconcile([make_spec(A, image="busybox:1.37")])
        assert result.statuses[A] is ActionStatus.UPDATED
        assert cluster.count("update", A) == 2

    def test_second_conflict_fails(self, cluster: FakeCluster) -> None:
        engine = make_engine(cluster)
        engine.reconcile([make_spec(A)])
        cluster.fail("update", A, Conflict("modified"), Conflict("modified"))
        result = engine.reconcile([make_spec(A, image="busybox:1.37")])
        assert result.statuses[A] is ActionStatus.FAILED
        assert cluster.count("update", A) == 2

    def test_create_conflict_with_existing_object_updates(self, cluster: FakeCluster) -> None:
        engine = make_engine(cluster)
        plan = engine.plan([make_spec(A)])
        cluster.seed(make_spec(A).payload)
        result = engine.execute(plan)
        assert result.statuses[A] is ActionStatus.APPLIED
        assert cluster.count("update", A) == 1
        assert cluster.objects[A]["metadata"]["labels"]


# ---------------------------------------------------------------------------
# Concurrency and cancellation
# ---------------------------------------------------------------------------


class TestScheduling:
    def test_independent_branches_run_concurrently(self, cluster: FakeCluster) -> None:
        """A and B only become ready once both exist, so a serial run would time out."""
        check = ReadinessCheck(timeout=3)
        specs = [make_spec(A, readiness=check), make_spec(B, readiness=check)]

        def _ready_when_both_created() -> None:
            deadline = time.monotonic() + 3
            while time.monotonic() < deadline:
                if A in cluster.objects and B in cluster.objects:
                    cluster.ready(A)
                    cluster.ready(B)
                    return
                time.sleep(0.01)

        threading.Thread(target=_ready_when_both_created, daemon=True).start()
        result = make_engine(cluster, concurrency=2).reconcile(specs)
        assert result.success

    def test_single_worker_still_runs_every_branch(self, cluster: FakeCluster) -> None:
        check = ReadinessCheck(timeout=0.3)
        specs = [make_spec(A, readiness=check), make_spec(B, readiness=check)]
        result = make_engine(cluster, concurrency=1).reconcile(specs)
        assert result.statuses[A] is ActionStatus.FAILED
        assert cluster.count("create", A) == 1
        assert cluster.count("create", B) == 1

    def test_cancel_skips_pending_actions(self, cluster: FakeCluster) -> None:
        engine = make_engine(cluster)
        specs = [make_spec(A, readiness=ReadinessCheck(timeout=30)), make_spec(B, deps=[A])]
        threading.Timer(0.2, engine.cancel.set).start()
        started = time.monotonic()
        result = engine.reconcile(specs)
        assert time.monotonic() - started < 5
        assert result.statuses[A] is ActionStatus.FAILED
        assert "cancelled" in result.errors[A]
        assert result.statuses[B] is ActionStatus.SKIPPED

    def test_plan_after_cancel_dispatches_nothing(self, cluster: FakeCluster) -> None:
        engine = make_engine(cluster)
        engine.cancel.set()
        result = engine.reconcile([make_spec(A)])
        assert result.statuses[A] is ActionStatus.SKIPPED
        assert cluster.count("create") == 0

    def test_plan_lists_actions(self, cluster: FakeCluster) -> None:
        plan = make_engine(cluster).plan([make_spec(A)])
        assert [a.type for a in plan] == [ActionType.CREATE]
        assert cluster.count("create") == 0

    def test_overlapping_passes_are_serialized(self) -> None:
        claims = IdentityClaims()
        order: list[str] = []

        def _second() -> None:
            with claims.claim([B, C]):
                order.append("second")

        with claims.claim([A, B]):
            thread = threading.Thread(target=_second)
            thread.start()
            time.sleep(0.1)
            order.append("first")
        thread.join(timeout=2)
        assert order == ["first", "second"]

    def test_disjoint_passes_do_not_block(self) -> None:
        claims = IdentityClaims()
        with claims.claim([A]):
            with claims.claim([B]):
                pass
