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

"""Diff desired specs against live state and compute an ordered plan."""

from __future__ import annotations

import copy
import json
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from env_manager import logger
from env_manager.constants import (
    ANNOTATION_DEPENDS_ON,
    ANNOTATION_PAYLOAD_HASH,
    LABEL_ENVIRONMENT,
    LABEL_MANAGED_BY,
    MANAGED_BY_VALUE,
)
from env_manager.graph import DependencyGraph, build_graph
from env_manager.models import Action, ActionType, LiveState, Plan, ResourceId, ResourceSpec
from env_manager.utils import payload_hash

PayloadHash = Callable[[Mapping[str, Any]], str]


def stamp_ownership(spec: ResourceSpec, environment: str, hash_fn: PayloadHash = payload_hash) -> dict:
    """Return a copy of the spec payload carrying the ownership markers.

    The recorded hash covers the payload as declared, so re-applying an
    unchanged spec compares equal to what is live.
    """
    payload = copy.deepcopy(dict(spec.payload))
    metadata = payload.setdefault("metadata", {})
    if spec.id.namespace:
        metadata["namespace"] = spec.id.namespace
    metadata["labels"] = {
        **(metadata.get("labels") or {}),
        LABEL_MANAGED_BY: MANAGED_BY_VALUE,
        LABEL_ENVIRONMENT: environment,
    }
    metadata["annotations"] = {
        **(metadata.get("annotations") or {}),
        ANNOTATION_PAYLOAD_HASH: hash_fn(spec.payload),
        ANNOTATION_DEPENDS_ON: json.dumps([str(dep) for dep in spec.depends_on]),
    }
    return payload


def _forward_actions(
    graph: DependencyGraph,
    specs: Mapping[ResourceId, ResourceSpec],
    live: LiveState,
    hash_fn: PayloadHash,
) -> list[Action]:
    actions: list[Action] = []
    for rid in graph.order():
        spec = specs[rid]
        observed = live.get(rid)
        if observed is None:
            action_type = ActionType.CREATE
        elif observed.payload_hash != hash_fn(spec.payload) or observed.recorded_dependencies != tuple(spec.depends_on):
            action_type = ActionType.UPDATE
        else:
            action_type = ActionType.SKIP
        actions.append(Action(action_type, rid, spec))
    return actions


def prune_graph(owned: Iterable) -> DependencyGraph:
    """Rebuild the dependency graph of owned resources from their records."""
    records = sorted(owned, key=lambda observed: observed.id)
    return build_graph(
        (ResourceSpec(observed.id, depends_on=observed.recorded_dependencies) for observed in records),
        strict=False,
    )


def diff(
    graph: DependencyGraph,
    specs: Iterable[ResourceSpec],
    live: LiveState,
    owned: LiveState,
    *,
    environment: str,
    prune: bool = False,
    hash_fn: PayloadHash = payload_hash,
) -> Plan:
    """Compute the ordered plan that brings *live* to the desired *specs*.

    Args:
        graph: Dependency graph of the desired specs.
        specs: Desired specs.
        live: Live state of the desired identities.
        owned: Live state of every resource owned by *environment*.
        environment: Environment name used for ownership.
        prune: Whether owned resources missing from *specs* are deleted.
        hash_fn: Payload comparison; equal hashes mean "unchanged".

    Returns:
        Deletes in reverse dependency order followed by create, update and
        skip actions in forward dependency order.
    """
    by_id = {spec.id: spec for spec in specs}
    forward = _forward_actions(graph, by_id, live, hash_fn)
    requires: dict[ResourceId, tuple[ResourceId, ...]] = {rid: graph.dependencies(rid) for rid in graph}

    undeclared = [observed for rid, observed in owned.items() if rid not in by_id and observed.owned_by(environment)]
    deletes: list[Action] = []
    retained: tuple[ResourceId, ...] = ()
    if prune:
        pruned = prune_graph(undeclared)
        for rid in pruned.order(reverse=True):
            deletes.append(Action(ActionType.DELETE, rid))
            requires[rid] = pruned.dependents(rid)
    elif undeclared:
        retained = tuple(sorted(observed.id for observed in undeclared))
        logger.info("%d owned resources are no longer declared and are kept (prune disabled)", len(retained))

    return Plan(actions=tuple(deletes + forward), requires=requires, retained=retained)


def recreate_plan(graph: DependencyGraph, targets: Iterable[ResourceId]) -> Plan:
    """Delete plan for *targets* and everything depending on them.

    Used after an image rebuild: the resources are deleted dependents-first
    so the following reconcile creates them again with the new image.
    """
    doomed: set[ResourceId] = set()
    for rid in targets:
        doomed.add(rid)
        doomed |= graph.transitive_dependents(rid)
    order = [rid for rid in graph.order(reverse=True) if rid in doomed]
    requires = {rid: tuple(dep for dep in graph.dependents(rid) if dep in doomed) for rid in order}
    return Plan(actions=tuple(Action(ActionType.DELETE, rid) for rid in order), requires=requires)


def uses_image(spec: ResourceSpec, tag: str) -> bool:
    """Whether any container in the spec payload runs image *tag*."""
    def _walk(node: Any) -> bool:
        if isinstance(node, Mapping):
            if node.get("image") == tag:
                return True
            return any(_walk(value) for value in node.values())
        if isinstance(node, list):
            return any(_walk(item) for item in node)
        return False

    return _walk(spec.payload)
