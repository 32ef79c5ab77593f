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

"""Shared fixtures: an in-memory cluster and factories for specs and engines."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable, Mapping
from typing import Any

import pytest

from env_manager.config import ReconcileConfig
from env_manager.engine import ReconciliationEngine
from env_manager.errors import Conflict, NotFound
from env_manager.kube import ClusterClient
from env_manager.models import ObservedResource, ReadinessCheck, ResourceId, ResourceSpec
from env_manager.prober import ReadinessProber
from env_manager.state import ClusterStateReader

ENV = "test-env"


# ---------------------------------------------------------------------------
# Fake cluster
# ---------------------------------------------------------------------------


def _kind_matches(kind: str, requested: str) -> bool:
    kind, requested = kind.lower(), requested.lower()
    if requested in (kind, f"{kind}s", f"{kind}es"):
        return True
    return kind.endswith("y") and requested == f"{kind[:-1]}ies"


def _selector_matches(labels: Mapping[str, str], selector: str | None) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key.strip()) != value.strip():
            return False
    return True


class FakeCluster(ClusterClient):
    """Thread-safe in-memory ClusterClient.

    Objects are stored as the payload last written. Conditions and phases
    are keyed by identity and may be set before the object exists. Queued
    failures are raised by the next matching call, one per call.
    """

    def __init__(self) -> None:
        self.objects: dict[ResourceId, dict[str, Any]] = {}
        self.conditions: dict[ResourceId, dict[str, str]] = {}
        self.phases: dict[ResourceId, str] = {}
        self.calls: list[tuple[str, ResourceId]] = []
        self._failures: dict[tuple[str, ResourceId], list[Exception]] = {}
        self._lock = threading.Lock()

    def fail(self, op: str, rid: ResourceId, *errors: Exception) -> None:
        self._failures.setdefault((op, rid), []).extend(errors)

    def ready(self, rid: ResourceId, condition: str = "Ready") -> None:
        self.conditions.setdefault(rid, {})[condition] = "True"

    def count(self, op: str, rid: ResourceId | None = None) -> int:
        return sum(1 for call_op, call_rid in self.calls if call_op == op and (rid is None or call_rid == rid))

    def seed(self, payload: Mapping[str, Any]) -> ResourceId:
        """Put an object in place without recording a call."""
        rid = ResourceId.from_manifest(payload)
        self.objects[rid] = copy.deepcopy(dict(payload))
        return rid

    def _enter(self, op: str, rid: ResourceId) -> None:
        self.calls.append((op, rid))
        queue = self._failures.get((op, rid))
        if queue:
            raise queue.pop(0)

    def _observed(self, rid: ResourceId) -> ObservedResource:
        metadata = self.objects[rid].get("metadata") or {}
        return ObservedResource(
            id=rid,
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            conditions=dict(self.conditions.get(rid, {})),
            phase=self.phases.get(rid),
        )

    def get(self, rid: ResourceId) -> ObservedResource | None:
        with self._lock:
            self._enter("get", rid)
            return self._observed(rid) if rid in self.objects else None

    def list(
        self,
        kinds: Iterable[str],
        *,
        namespace: str | None = None,
        selector: str | None = None,
    ) -> list[ObservedResource]:
        kinds = list(kinds)
        with self._lock:
            found = []
            for rid in sorted(self.objects):
                if not any(_kind_matches(rid.kind, kind) for kind in kinds):
                    continue
                if namespace and rid.namespace != namespace:
                    continue
                observed = self._observed(rid)
                if _selector_matches(observed.labels, selector):
                    found.append(observed)
            return found

    def create(self, payload: Mapping[str, Any]) -> None:
        rid = ResourceId.from_manifest(payload)
        with self._lock:
            self._enter("create", rid)
            if rid in self.objects:
                raise Conflict(f"{rid} already exists (AlreadyExists)")
            self.objects[rid] = copy.deepcopy(dict(payload))

    def update(self, payload: Mapping[str, Any]) -> None:
        rid = ResourceId.from_manifest(payload)
        with self._lock:
            self._enter("update", rid)
            if rid not in self.objects:
                raise NotFound(f"{rid} not found")
            self.objects[rid] = copy.deepcopy(dict(payload))

    def delete(self, rid: ResourceId) -> None:
        with self._lock:
            self._enter("delete", rid)
            self.objects.pop(rid, None)

    def listable_kinds(self) -> list[str]:
        with self._lock:
            return sorted({f"{rid.kind.lower()}s" for rid in self.objects})


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def pod(name: str, namespace: str = "default") -> ResourceId:
    return ResourceId("Pod", namespace, name)


def make_spec(
    rid: ResourceId,
    *,
    deps: Iterable[ResourceId] = (),
    readiness: ReadinessCheck | None = None,
    image: str = "busybox:1.36",
) -> ResourceSpec:
    metadata: dict[str, Any] = {"name": rid.name}
    if rid.namespace:
        metadata["namespace"] = rid.namespace
    payload: dict[str, Any] = {"apiVersion": "v1", "kind": rid.kind, "metadata": metadata}
    if rid.kind == "Pod":
        payload["spec"] = {"containers": [{"name": rid.name, "image": image}]}
    return ResourceSpec(id=rid, payload=payload, depends_on=tuple(deps), readiness=readiness)


def make_engine(
    cluster: FakeCluster,
    *,
    environment: str = ENV,
    concurrency: int = 4,
    prune: bool = False,
    action_retries: int = 3,
    discover_kinds: bool = True,
) -> ReconciliationEngine:
    config = ReconcileConfig(
        concurrency=concurrency,
        action_retries=action_retries,
        read_retries=3,
        backoff_initial=0,
        backoff_max=0,
        poll_interval=0.01,
        prune=prune,
        discover_kinds=discover_kinds,
    )
    reader = ClusterStateReader(cluster, retries=3, backoff_initial=0, backoff_max=0)
    prober = ReadinessProber(reader, poll_interval=0.01)
    return ReconciliationEngine(cluster, reader, prober, environment=environment, config=config)


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def engine(cluster: FakeCluster) -> ReconciliationEngine:
    return make_engine(cluster)
