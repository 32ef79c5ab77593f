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

"""Dependency graph construction, cycle detection and topological ordering."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from env_manager import logger
from env_manager.errors import CycleDetected, InvalidEnvironment, UnknownDependency
from env_manager.models import ResourceId, ResourceSpec


@dataclass(frozen=True)
class DependencyGraph:
    """Acyclic mapping from resource identity to its dependency identities.

    Attributes:
        edges: Identity -> identities it must be applied after.
        ordering: Forward topological order, dependencies first. Ties are
            broken by declaration order so plans are deterministic.
    """

    edges: Mapping[ResourceId, tuple[ResourceId, ...]] = field(default_factory=dict)
    ordering: tuple[ResourceId, ...] = ()

    def __contains__(self, rid: object) -> bool:
        return rid in self.edges

    def __iter__(self) -> Iterator[ResourceId]:
        return iter(self.ordering)

    def __len__(self) -> int:
        return len(self.edges)

    def dependencies(self, rid: ResourceId) -> tuple[ResourceId, ...]:
        return self.edges[rid]

    def dependents(self, rid: ResourceId) -> tuple[ResourceId, ...]:
        """Direct dependents of *rid*, in topological order."""
        return tuple(node for node in self.ordering if rid in self.edges[node])

    def transitive_dependents(self, rid: ResourceId) -> set[ResourceId]:
        found: set[ResourceId] = set()
        frontier = [rid]
        while frontier:
            current = frontier.pop()
            for dependent in self.dependents(current):
                if dependent not in found:
                    found.add(dependent)
                    frontier.append(dependent)
        return found

    def order(self, reverse: bool = False) -> list[ResourceId]:
        """Topological order; ``reverse=True`` puts dependents first."""
        return list(reversed(self.ordering)) if reverse else list(self.ordering)


def _topological_order(
    edges: Mapping[ResourceId, tuple[ResourceId, ...]],
    declared: Iterable[ResourceId],
) -> list[ResourceId]:
    """Depth-first post-order traversal that fails on the first back-edge.

    Raises:
        CycleDetected: If a dependency leads back to a node being visited.
    """
    order: list[ResourceId] = []
    visited: set[ResourceId] = set()

    for root in declared:
        if root in visited:
            continue
        path = [root]
        visiting = {root}
        stack = [(root, iter(edges[root]))]
        while stack:
            node, pending = stack[-1]
            for dep in pending:
                if dep in visiting:
                    raise CycleDetected(path[path.index(dep):])
                if dep not in visited:
                    path.append(dep)
                    visiting.add(dep)
                    stack.append((dep, iter(edges[dep])))
                    break
            else:
                stack.pop()
                path.pop()
                visiting.discard(node)
                visited.add(node)
                order.append(node)
    return order


def build_graph(specs: Iterable[ResourceSpec], *, strict: bool = True) -> DependencyGraph:
    """Build a DependencyGraph from resource specs.

    Args:
        specs: Desired resource specs, in declaration order.
        strict: Whether a dependency outside the spec set is an error. When
            False such edges are dropped, which is what pruning needs since
            recorded dependencies may point at resources already gone.

    Returns:
        The validated, topologically ordered graph.

    Raises:
        InvalidEnvironment: If two specs share an identity.
        UnknownDependency: If *strict* and a dependency is not in the set.
        CycleDetected: If the dependencies contain a cycle.
    """
    specs = list(specs)
    known: dict[ResourceId, ResourceSpec] = {}
    for spec in specs:
        if spec.id in known:
            raise InvalidEnvironment(f"Resource {spec.id} is declared more than once")
        known[spec.id] = spec

    edges: dict[ResourceId, tuple[ResourceId, ...]] = {}
    for spec in specs:
        deps: list[ResourceId] = []
        for dep in spec.depends_on:
            if dep not in known:
                if strict:
                    raise UnknownDependency(spec.id, dep)
                logger.debug("Dropping edge %s -> %s (not in graph)", spec.id, dep)
                continue
            if dep not in deps:
                deps.append(dep)
        edges[spec.id] = tuple(deps)

    ordering = _topological_order(edges, known)
    return DependencyGraph(edges=MappingProxyType(edges), ordering=tuple(ordering))
