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

"""Data model: resource identities, specs, live state, plans and results."""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any

from env_manager.constants import (
    ANNOTATION_DEPENDS_ON,
    ANNOTATION_PAYLOAD_HASH,
    CLUSTER_SCOPED_KINDS,
    DEFAULT_READINESS_TIMEOUT_SECONDS,
    DEFAULT_WEBV_COMMAND,
    DEFAULT_WEBV_SLEEP_MS,
    LABEL_ENVIRONMENT,
    LABEL_MANAGED_BY,
    MANAGED_BY_VALUE,
    NS_DEFAULT,
)


# ============================================================================
# Identities and desired state
# ============================================================================

@dataclass(frozen=True, order=True)
class ResourceId:
    """Identity of a Kubernetes resource.

    Attributes:
        kind: Resource kind, e.g. ``Deployment``.
        namespace: Namespace, or empty string for cluster-scoped kinds.
        name: Resource name. Empty for a collection (used by selector waits).
    """

    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        name = self.name or "*"
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{name}"
        return f"{self.kind}/{name}"

    @classmethod
    def of(cls, kind: str, name: str, namespace: str | None = None) -> ResourceId:
        """Build an identity, defaulting the namespace the way kubectl does."""
        if kind in CLUSTER_SCOPED_KINDS:
            return cls(kind, "", name)
        return cls(kind, namespace or NS_DEFAULT, name)

    @classmethod
    def parse(cls, text: str) -> ResourceId:
        """Parse ``Kind/namespace/name`` or ``Kind/name``.

        Raises:
            ValueError: If *text* does not have two or three parts.
        """
        parts = text.strip().split("/")
        if len(parts) == 3 and all(parts):
            return cls.of(parts[0], parts[2], parts[1])
        if len(parts) == 2 and all(parts):
            return cls.of(parts[0], parts[1])
        raise ValueError(f"Invalid resource reference '{text}', expected Kind/namespace/name")

    @classmethod
    def from_manifest(cls, doc: Mapping[str, Any]) -> ResourceId:
        """Derive the identity of a manifest document.

        Raises:
            ValueError: If the document has no kind or no metadata.name.
        """
        kind = doc.get("kind")
        metadata = doc.get("metadata") or {}
        name = metadata.get("name")
        if not kind or not name:
            raise ValueError("Manifest document requires 'kind' and 'metadata.name'")
        return cls.of(kind, name, metadata.get("namespace"))


@dataclass(frozen=True)
class ReadinessCheck:
    """A condition that must hold before dependents may proceed.

    Without a selector the condition is read from the owning resource. With
    one, it holds when at least one object of ``kind`` matches the selector
    and every match reports the condition as ``True``.
    """

    condition: str = "Ready"
    selector: str | None = None
    kind: str | None = None
    namespace: str | None = None
    name: str | None = None
    timeout: float = DEFAULT_READINESS_TIMEOUT_SECONDS

    def describe(self) -> str:
        scope = f" -l {self.selector}" if self.selector else ""
        return f"condition={self.condition}{scope} (timeout {self.timeout:g}s)"

    def target(self, default_namespace: str = NS_DEFAULT) -> ResourceId:
        """Identity an environment-level wait watches.

        Unnamed waits watch a collection (empty name) of ``kind`` objects.
        """
        kind = self.kind or "Pod"
        namespace = "" if kind in CLUSTER_SCOPED_KINDS else (self.namespace or default_namespace)
        return ResourceId(kind, namespace, self.name or "")


@dataclass(frozen=True)
class ResourceSpec:
    """Desired state of a single resource.

    Attributes:
        id: Resource identity.
        payload: The manifest document to apply.
        depends_on: Identities that must be applied before this resource.
        readiness: Optional readiness predicate gating dependents.
    """

    id: ResourceId
    payload: Mapping[str, Any] = field(default_factory=dict, hash=False, repr=False)
    depends_on: tuple[ResourceId, ...] = ()
    readiness: ReadinessCheck | None = None


@dataclass(frozen=True)
class ImageSpec:
    """A locally built container image imported into the cluster."""

    name: str
    tag: str
    context: Path
    dockerfile: str | None = None


@dataclass(frozen=True)
class SmokeTarget:
    """An HTTP endpoint checked by ``check``."""

    url: str
    expect: tuple[int, ...] = (200,)
    contains: str | None = None
    name: str | None = None

    @property
    def label(self) -> str:
        return self.name or self.url


@dataclass(frozen=True)
class LoadTestSpec:
    """A WebV run against the environment's entry point.

    Attributes:
        server: Base URL WebV sends requests to.
        files: WebV request files, resolved against the environment file.
        command: WebV executable.
        sleep: Milliseconds between requests in a timed run.
    """

    server: str
    files: tuple[Path, ...]
    command: str = DEFAULT_WEBV_COMMAND
    sleep: int = DEFAULT_WEBV_SLEEP_MS


@dataclass(frozen=True)
class Environment:
    """Everything loaded from a desired-state file."""

    name: str
    specs: tuple[ResourceSpec, ...] = ()
    waits: tuple[ReadinessCheck, ...] = ()
    system_waits: tuple[ReadinessCheck, ...] = ()
    checks: tuple[SmokeTarget, ...] = ()
    images: tuple[ImageSpec, ...] = ()
    loadtest: LoadTestSpec | None = None
    cluster: Mapping[str, Any] = field(default_factory=dict, hash=False)
    source: Path | None = None

    def image(self, name: str) -> ImageSpec:
        for image in self.images:
            if image.name == name:
                return image
        raise KeyError(name)


# ============================================================================
# Live state
# ============================================================================

@dataclass(frozen=True)
class ObservedResource:
    """What the cluster reports for one resource."""

    id: ResourceId
    labels: Mapping[str, str] = field(default_factory=dict, hash=False)
    annotations: Mapping[str, str] = field(default_factory=dict, hash=False)
    conditions: Mapping[str, str] = field(default_factory=dict, hash=False)
    phase: str | None = None

    def condition(self, name: str) -> str | None:
        """Return the status of condition *name* (case-insensitive), if reported."""
        wanted = name.lower()
        for key, value in self.conditions.items():
            if key.lower() == wanted:
                return value
        return None

    def owned_by(self, environment: str) -> bool:
        return (
            self.labels.get(LABEL_MANAGED_BY) == MANAGED_BY_VALUE
            and self.labels.get(LABEL_ENVIRONMENT) == environment
        )

    @property
    def payload_hash(self) -> str | None:
        return self.annotations.get(ANNOTATION_PAYLOAD_HASH)

    @property
    def recorded_dependencies(self) -> tuple[ResourceId, ...]:
        """Dependencies recorded when the resource was last applied."""
        raw = self.annotations.get(ANNOTATION_DEPENDS_ON)
        if not raw:
            return ()
        try:
            return tuple(ResourceId.parse(item) for item in json.loads(raw))
        except (TypeError, ValueError):
            return ()


class LiveState(Mapping[ResourceId, ObservedResource]):
    """Immutable snapshot of observed resources keyed by identity.

    A missing key means the resource does not exist.
    """

    def __init__(self, resources: Mapping[ResourceId, ObservedResource] | None = None) -> None:
        self._resources = MappingProxyType(dict(resources or {}))

    def __getitem__(self, key: ResourceId) -> ObservedResource:
        return self._resources[key]

    def __iter__(self) -> Iterator[ResourceId]:
        return iter(self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    def __repr__(self) -> str:
        return f"LiveState({sorted(str(k) for k in self._resources)})"

    def merged(self, other: LiveState) -> LiveState:
        return LiveState({**self._resources, **other._resources})


# ============================================================================
# Plans and results
# ============================================================================

class ActionType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"


@dataclass(frozen=True)
class Action:
    """One step of a plan, targeting exactly one resource."""

    type: ActionType
    target: ResourceId
    spec: ResourceSpec | None = field(default=None, compare=False)

    def __str__(self) -> str:
        return f"{self.type.value} {self.target}"


@dataclass(frozen=True)
class Plan:
    """Ordered actions: deletes (reverse dependency order), then the rest.

    Attributes:
        actions: The ordered actions.
        requires: Per target, the targets whose actions must reach a
            successful terminal status first (dependencies for
            create/update/skip, dependents for delete).
        retained: Owned resources that are no longer declared but were kept
            because pruning is off.
    """

    actions: tuple[Action, ...] = ()
    requires: Mapping[ResourceId, tuple[ResourceId, ...]] = field(default_factory=dict, compare=False)
    retained: tuple[ResourceId, ...] = ()

    def __iter__(self) -> Iterator[Action]:
        return iter(self.actions)

    def __len__(self) -> int:
        return len(self.actions)

    def targets(self) -> list[ResourceId]:
        return [action.target for action in self.actions]

    def of_type(self, action_type: ActionType) -> list[Action]:
        return [action for action in self.actions if action.type is action_type]

    @property
    def is_noop(self) -> bool:
        return all(action.type is ActionType.SKIP for action in self.actions)


class ActionStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    UPDATED = "updated"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def succeeded(self) -> bool:
        return self in (ActionStatus.APPLIED, ActionStatus.UPDATED, ActionStatus.DELETED, ActionStatus.UNCHANGED)

    @property
    def terminal(self) -> bool:
        return self is not ActionStatus.PENDING


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass.

    Attributes:
        plan: The plan that was executed.
        statuses: Final status per resource identity.
        errors: Failure or skip reason per resource identity.
    """

    plan: Plan
    statuses: dict[ResourceId, ActionStatus] = field(default_factory=dict)
    errors: dict[ResourceId, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed and not self.skipped

    @property
    def failed(self) -> list[ResourceId]:
        return sorted(rid for rid, status in self.statuses.items() if status is ActionStatus.FAILED)

    @property
    def skipped(self) -> list[ResourceId]:
        return sorted(rid for rid, status in self.statuses.items() if status is ActionStatus.SKIPPED)


class ProbeOutcome(str, Enum):
    READY = "ready"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SmokeResult:
    """Result of a single smoke-test request."""

    target: SmokeTarget
    ok: bool
    status_code: int | None = None
    latency_ms: float | None = None
    error: str | None = None
