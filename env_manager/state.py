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

"""Cluster State Reader: live-state snapshots and readiness predicates."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TypeVar

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from env_manager import logger
from env_manager.constants import (
    DEFAULT_BACKOFF_INITIAL_SECONDS,
    DEFAULT_BACKOFF_MAX_SECONDS,
    DEFAULT_READ_RETRIES,
    LABEL_ENVIRONMENT,
    LABEL_MANAGED_BY,
    MANAGED_BY_VALUE,
)
from env_manager.errors import ClusterUnreachable
from env_manager.kube import ClusterClient
from env_manager.models import LiveState, ObservedResource, ReadinessCheck, ResourceId

T = TypeVar("T")


def ownership_selector(environment: str) -> str:
    """Label selector matching every resource owned by *environment*."""
    return f"{LABEL_MANAGED_BY}={MANAGED_BY_VALUE},{LABEL_ENVIRONMENT}={environment}"


def condition_holds(observed: ObservedResource, condition: str) -> bool:
    """Whether *observed* reports *condition* as True.

    Resources without a conditions list (e.g. Namespaces) fall back to
    comparing the condition name with ``status.phase``.
    """
    status = observed.condition(condition)
    if status is None:
        return bool(observed.phase) and observed.phase.lower() == condition.lower()
    return status.lower() == "true"


class ClusterStateReader:
    """Reads live state through a ClusterClient.

    Absence is a normal outcome. ``ClusterUnreachable`` is retried with
    exponential backoff and re-raised once the budget is spent. Nothing is
    cached between calls.

    Args:
        client: Cluster API client.
        retries: Attempts per call.
        backoff_initial: First backoff delay in seconds.
        backoff_max: Backoff ceiling in seconds.
    """

    def __init__(
        self,
        client: ClusterClient,
        *,
        retries: int = DEFAULT_READ_RETRIES,
        backoff_initial: float = DEFAULT_BACKOFF_INITIAL_SECONDS,
        backoff_max: float = DEFAULT_BACKOFF_MAX_SECONDS,
    ) -> None:
        self.client = client
        self.retries = retries
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max

    def _call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=self.backoff_initial, max=self.backoff_max),
            retry=retry_if_exception_type(ClusterUnreachable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)

    def get(self, rid: ResourceId) -> ObservedResource | None:
        return self._call(self.client.get, rid)

    def read(self, ids: Iterable[ResourceId]) -> LiveState:
        """Snapshot the given identities; missing resources are left out.

        Raises:
            ClusterUnreachable: If the cluster cannot be reached after retries.
        """
        found: dict[ResourceId, ObservedResource] = {}
        for rid in ids:
            observed = self.get(rid)
            if observed is not None:
                found[rid] = observed
        return LiveState(found)

    def read_owned(self, environment: str, kinds: Iterable[str]) -> LiveState:
        """Snapshot every resource carrying *environment*'s ownership marker.

        Raises:
            ClusterUnreachable: If the cluster cannot be reached after retries.
        """
        items = self._call(self.client.list, list(kinds), selector=ownership_selector(environment))
        return LiveState({item.id: item for item in items if item.owned_by(environment)})

    def listable_kinds(self) -> list[str]:
        """Every resource type the cluster can list and delete.

        Raises:
            ClusterUnreachable: If the cluster cannot be reached after retries.
        """
        return self._call(self.client.listable_kinds)

    def evaluate(self, target: ResourceId, check: ReadinessCheck) -> bool:
        """Evaluate *check* for *target*.

        A check without a selector reads the target itself. Otherwise, or
        when the target is a collection (empty name), it lists the matching
        objects and requires at least one match, all reporting the condition.

        Raises:
            ClusterUnreachable: If the cluster cannot be reached after retries.
        """
        if check.selector is None and target.name:
            observed = self.get(target)
            return observed is not None and condition_holds(observed, check.condition)

        kind = check.kind or ("Pod" if target.name else target.kind)
        namespace = check.namespace or target.namespace or None
        matches = self._call(self.client.list, [kind], namespace=namespace, selector=check.selector)
        return bool(matches) and all(condition_holds(m, check.condition) for m in matches)
