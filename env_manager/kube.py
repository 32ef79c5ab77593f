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

"""Cluster API client over kubectl with JSON output."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from typing import Any

from env_manager import logger
from env_manager.constants import KUBECTL_TIMEOUT_SECONDS
from env_manager.errors import ClusterError, ClusterUnreachable, Conflict, Forbidden, NotFound
from env_manager.models import ObservedResource, ResourceId
from env_manager.utils import run_kubectl

UNREACHABLE_KEYWORDS = (
    "unable to connect to the server",
    "connection refused",
    "i/o timeout",
    "tls handshake timeout",
    "timed out",
    "serviceunavailable",
    "no route to host",
)
CONFLICT_KEYWORDS = ("the object has been modified", "(conflict)", "(alreadyexists)")


def classify_kubectl_error(stderr: str) -> ClusterError:
    """Map kubectl stderr to the matching ClusterError subclass.

    Args:
        stderr: Captured standard error of a failed kubectl call.

    Returns:
        An exception instance (not raised).
    """
    message = stderr.strip()[:500] or "kubectl failed without output"
    lowered = message.lower()
    if any(kw in lowered for kw in UNREACHABLE_KEYWORDS):
        return ClusterUnreachable(message)
    if "(forbidden)" in lowered or "is forbidden" in lowered:
        return Forbidden(message)
    if any(kw in lowered for kw in CONFLICT_KEYWORDS):
        return Conflict(message)
    if "(notfound)" in lowered or "not found" in lowered:
        return NotFound(message)
    return ClusterError(message)


def observed_from_item(item: Mapping[str, Any]) -> ObservedResource:
    """Convert one object of ``kubectl get -o json`` output."""
    metadata = item.get("metadata") or {}
    status = item.get("status") or {}
    conditions = {
        cond["type"]: str(cond.get("status", ""))
        for cond in status.get("conditions") or []
        if isinstance(cond, Mapping) and "type" in cond
    }
    return ObservedResource(
        id=ResourceId.of(item["kind"], metadata["name"], metadata.get("namespace")),
        labels=dict(metadata.get("labels") or {}),
        annotations=dict(metadata.get("annotations") or {}),
        conditions=conditions,
        phase=status.get("phase"),
    )


def _namespace_args(namespace: str) -> list[str]:
    return ["-n", namespace] if namespace else []


class ClusterClient:
    """Cluster API consumed by the state reader and the reconciliation engine.

    Implementations raise ClusterError subclasses; ``get`` returns None for
    a missing resource instead of raising.
    """

    def get(self, rid: ResourceId) -> ObservedResource | None:
        raise NotImplementedError

    def list(
        self,
        kinds: Iterable[str],
        *,
        namespace: str | None = None,
        selector: str | None = None,
    ) -> list[ObservedResource]:
        raise NotImplementedError

    def create(self, payload: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def update(self, payload: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, rid: ResourceId) -> None:
        raise NotImplementedError

    def listable_kinds(self) -> list[str]:
        """Resource types the cluster serves that can be listed and deleted."""
        raise NotImplementedError


class KubectlClient(ClusterClient):
    """ClusterClient that shells out to kubectl.

    Args:
        context: kubeconfig context to target, or None for the current one.
        timeout: Seconds allowed per kubectl call.
        delete_timeout: Seconds allowed for deletes, which wait for finalizers.
    """

    def __init__(
        self,
        context: str | None = None,
        timeout: float = KUBECTL_TIMEOUT_SECONDS,
        delete_timeout: float = KUBECTL_TIMEOUT_SECONDS * 4,
    ) -> None:
        self.context = context
        self.timeout = timeout
        self.delete_timeout = delete_timeout

    def _run(self, args: list[str], *, input_text: str | None = None, timeout: float | None = None) -> str:
        if self.context:
            args = ["--context", self.context, *args]
        logger.debug("kubectl %s", " ".join(args))
        ok, stdout, stderr = run_kubectl(args, timeout=timeout or self.timeout, input_text=input_text)
        if not ok:
            raise classify_kubectl_error(stderr)
        return stdout

    def get(self, rid: ResourceId) -> ObservedResource | None:
        try:
            out = self._run(["get", rid.kind.lower(), rid.name, *_namespace_args(rid.namespace), "-o", "json"])
        except NotFound:
            return None
        return observed_from_item(json.loads(out))

    def list(
        self,
        kinds: Iterable[str],
        *,
        namespace: str | None = None,
        selector: str | None = None,
    ) -> list[ObservedResource]:
        kinds = [kind.lower() for kind in kinds]
        if not kinds:
            return []
        args = ["get", ",".join(kinds)]
        args += ["-n", namespace] if namespace else ["-A"]
        if selector:
            args += ["-l", selector]
        args += ["-o", "json", "--ignore-not-found"]
        out = self._run(args)
        if not out.strip():
            return []
        return [observed_from_item(item) for item in json.loads(out).get("items", [])]

    def create(self, payload: Mapping[str, Any]) -> None:
        self._run(["create", "-f", "-", "-o", "name"], input_text=json.dumps(payload))

    def update(self, payload: Mapping[str, Any]) -> None:
        self._run(["apply", "-f", "-", "-o", "name"], input_text=json.dumps(payload))

    def delete(self, rid: ResourceId) -> None:
        self._run(
            ["delete", rid.kind.lower(), rid.name, *_namespace_args(rid.namespace), "--ignore-not-found"],
            timeout=self.delete_timeout,
        )

    def listable_kinds(self) -> list[str]:
        out = self._run(["api-resources", "--verbs=list,delete", "-o", "name"])
        return [line.strip() for line in out.splitlines() if line.strip()]
