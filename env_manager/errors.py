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

"""Error taxonomy for env_manager."""

from __future__ import annotations

from collections.abc import Iterable


class EnvManagerError(Exception):
    """Base class for all env_manager errors."""


# ============================================================================
# Desired-state input errors (exit code 2)
# ============================================================================

class InvalidEnvironment(EnvManagerError):
    """The desired-state input is missing or malformed."""


class CycleDetected(InvalidEnvironment):
    """The declared dependencies contain a cycle.

    Attributes:
        identities: Resource identities participating in the cycle, in
            traversal order.
    """

    def __init__(self, identities: Iterable) -> None:
        self.identities = tuple(identities)
        path = " -> ".join(str(i) for i in (*self.identities, self.identities[0]))
        super().__init__(f"Dependency cycle detected: {path}")


class UnknownDependency(InvalidEnvironment):
    """A resource depends on an identity that is not part of the spec set."""

    def __init__(self, resource, dependency) -> None:
        self.resource = resource
        self.dependency = dependency
        super().__init__(f"{resource} depends on unknown resource {dependency}")


# ============================================================================
# Cluster API errors
# ============================================================================

class ClusterError(EnvManagerError):
    """A cluster API call failed."""


class ClusterUnreachable(ClusterError):
    """The cluster API server could not be contacted."""


class Conflict(ClusterError):
    """The resource was modified concurrently."""


class Forbidden(ClusterError):
    """The request was rejected by the API server's authorization."""


class NotFound(ClusterError):
    """The requested resource does not exist.

    Only raised by Cluster API clients; readers turn it into absence.
    """


# ============================================================================
# External tool and session errors
# ============================================================================

class BuildFailed(EnvManagerError):
    """Building or importing a container image failed."""


class ProvisioningFailed(EnvManagerError):
    """The cluster could not be created, validated or deleted."""


class InvalidTransition(EnvManagerError):
    """A session phase transition that the state machine does not allow."""

    def __init__(self, current, requested) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move session from {current.value} to {requested.value}")


class LoadTestFailed(EnvManagerError):
    """The WebV load tester could not run or reported failed requests."""
