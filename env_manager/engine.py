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

"""Reconciliation Engine: plan and execute actions with readiness gating."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager

from rich.panel import Panel
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from env_manager import console, logger
from env_manager.config import ReconcileConfig
from env_manager.constants import NS_DEFAULT
from env_manager.errors import ClusterError, ClusterUnreachable, Conflict, Forbidden
from env_manager.graph import build_graph
from env_manager.kube import ClusterClient
from env_manager.models import (
    Action,
    ActionStatus,
    ActionType,
    Plan,
    ProbeOutcome,
    ReconcileResult,
    ResourceId,
    ResourceSpec,
)
from env_manager.planner import PayloadHash, diff, stamp_ownership
from env_manager.prober import ReadinessProber
from env_manager.state import ClusterStateReader
from env_manager.utils import payload_hash

STATUS_STYLES = {
    ActionStatus.APPLIED: "green",
    ActionStatus.UPDATED: "green",
    ActionStatus.DELETED: "green",
    ActionStatus.UNCHANGED: "dim",
    ActionStatus.FAILED: "red",
    ActionStatus.SKIPPED: "yellow",
    ActionStatus.PENDING: "white",
}


class IdentityClaims:
    """Process-wide registry that keeps concurrent passes off the same resources."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._claimed: set[ResourceId] = set()

    @contextmanager
    def claim(self, ids: Iterable[ResourceId]):
        """Block until none of *ids* is claimed by another pass, then hold them."""
        wanted = set(ids)
        with self._cond:
            self._cond.wait_for(lambda: not (wanted & self._claimed))
            self._claimed |= wanted
        try:
            yield
        finally:
            with self._cond:
                self._claimed -= wanted
                self._cond.notify_all()


CLAIMS = IdentityClaims()


class ReconciliationEngine:
    """Drives live state towards the desired specs of one environment.

    Args:
        client: Cluster API client used to apply actions.
        reader: State reader for live state and conflict re-reads.
        prober: Readiness prober; its cancellation signal is shared.
        environment: Environment name stamped on owned resources.
        config: Concurrency, retry and prune settings.
        hash_fn: Payload comparison used by the diff.
    """

    def __init__(
        self,
        client: ClusterClient,
        reader: ClusterStateReader,
        prober: ReadinessProber,
        *,
        environment: str,
        config: ReconcileConfig | None = None,
        hash_fn: PayloadHash = payload_hash,
    ) -> None:
        self.client = client
        self.reader = reader
        self.prober = prober
        self.environment = environment
        self.config = config or ReconcileConfig()
        self.hash_fn = hash_fn

    @property
    def cancel(self) -> threading.Event:
        return self.prober.cancel

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _kinds(self, specs: list[ResourceSpec], extra_kinds: Iterable[str] = ()) -> list[str]:
        """Kinds listed when looking for owned resources.

        Declared kinds are always included. With discovery on, every kind
        the cluster serves is listed too, which finds owned resources of a
        kind that is no longer declared anywhere.
        """
        candidates = list(self.config.managed_kinds)
        if self.config.discover_kinds:
            candidates += self.reader.listable_kinds()
        candidates += [spec.id.kind for spec in specs]
        candidates += list(extra_kinds)
        return list(dict.fromkeys(kind.lower() for kind in candidates))

    def plan(
        self,
        specs: Iterable[ResourceSpec],
        *,
        prune: bool | None = None,
        extra_kinds: Iterable[str] = (),
    ) -> Plan:
        """Read live state and compute the plan without executing it.

        Args:
            specs: Desired specs.
            prune: Override of the configured prune setting; None keeps it.
            extra_kinds: Kinds to search for owned resources in addition to
                the declared and configured ones.

        Raises:
            CycleDetected: Before anything is read, if the specs are cyclic.
            UnknownDependency: If a spec depends on an undeclared resource.
            ClusterUnreachable: If live state cannot be read.
        """
        specs = list(specs)
        graph = build_graph(specs)
        live = self.reader.read(graph.order())
        owned = self.reader.read_owned(self.environment, self._kinds(specs, extra_kinds))
        return diff(
            graph,
            specs,
            live,
            owned,
            environment=self.environment,
            prune=self.config.prune if prune is None else prune,
            hash_fn=self.hash_fn,
        )

    def reconcile(
        self,
        specs: Iterable[ResourceSpec],
        *,
        prune: bool | None = None,
        extra_kinds: Iterable[str] = (),
    ) -> ReconcileResult:
        """Plan and execute one reconciliation pass."""
        return self.execute(self.plan(specs, prune=prune, extra_kinds=extra_kinds))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.config.action_retries),
            wait=wait_exponential(multiplier=self.config.backoff_initial, max=self.config.backoff_max),
            retry=retry_if_exception_type(ClusterUnreachable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def _call(self, fn: Callable, arg) -> None:
        """Call the cluster with backoff on unreachability and one re-read on conflict."""
        try:
            self._retrying()(fn, arg)
        except Conflict:
            target = arg if isinstance(arg, ResourceId) else ResourceId.from_manifest(arg)
            logger.info("Conflict on %s, re-reading and retrying once", target)
            self.reader.get(target)
            self._retrying()(fn, arg)

    def _create(self, spec: ResourceSpec) -> None:
        payload = stamp_ownership(spec, self.environment, self.hash_fn)
        try:
            self._retrying()(self.client.create, payload)
        except Conflict:
            logger.info("%s appeared concurrently, re-reading and retrying once", spec.id)
            if self.reader.get(spec.id) is None:
                self._retrying()(self.client.create, payload)
            else:
                self._retrying()(self.client.update, payload)

    def _run_action(self, action: Action) -> tuple[ActionStatus, str | None]:
        """Execute one action in a worker thread and report its terminal status."""
        with console.scoped(str(action.target)):
            try:
                if action.type is ActionType.DELETE:
                    self._call(self.client.delete, action.target)
                    return ActionStatus.DELETED, None
                if action.type is ActionType.CREATE:
                    self._create(action.spec)
                    status = ActionStatus.APPLIED
                elif action.type is ActionType.UPDATE:
                    self._call(self.client.update, stamp_ownership(action.spec, self.environment, self.hash_fn))
                    status = ActionStatus.UPDATED
                else:
                    status = ActionStatus.UNCHANGED
            except Forbidden as err:
                return ActionStatus.FAILED, f"forbidden: {err}"
            except ClusterError as err:
                return ActionStatus.FAILED, f"{type(err).__name__}: {err}"

            check = action.spec.readiness
            if check is not None:
                target = action.target
                if check.kind or check.name:
                    target = check.target(action.target.namespace or NS_DEFAULT)
                outcome = self.prober.probe(target, check)
                if outcome is not ProbeOutcome.READY:
                    return ActionStatus.FAILED, f"readiness {outcome.value}: {check.describe()}"
            return status, None

    def _record(
        self,
        result: ReconcileResult,
        rid: ResourceId,
        status: ActionStatus,
        reason: str | None = None,
    ) -> None:
        result.statuses[rid] = status
        if reason:
            result.errors[rid] = reason
        style = STATUS_STYLES[status]
        suffix = f" ({reason})" if reason else ""
        console.print(f"[{style}]  {status.value:<9} {rid}{suffix}[/{style}]")
        logger.info("%s -> %s%s", rid, status.value, suffix)

    def _blocker(self, result: ReconcileResult, prerequisites: tuple[ResourceId, ...]) -> ResourceId | None:
        for rid in prerequisites:
            if result.statuses.get(rid) in (ActionStatus.FAILED, ActionStatus.SKIPPED):
                return rid
        return None

    def _ready(self, result: ReconcileResult, prerequisites: tuple[ResourceId, ...]) -> bool:
        return all(result.statuses[rid].succeeded for rid in prerequisites if rid in result.statuses)

    def execute(self, plan: Plan) -> ReconcileResult:
        """Execute *plan*, running independent branches concurrently.

        An action is dispatched once all its prerequisites succeeded and is
        marked SKIPPED as soon as one of them failed or was skipped. After
        cancellation nothing new is dispatched; in-flight calls finish.
        """
        result = ReconcileResult(plan=plan, statuses={action.target: ActionStatus.PENDING for action in plan})
        if not plan.actions:
            return result

        console.print(Panel.fit(f"Reconciling {len(plan)} resources", style="bold blue"))
        actions = {action.target: action for action in plan}
        waiting = [action.target for action in plan]
        running: dict[Future, ResourceId] = {}

        with CLAIMS.claim(actions), ThreadPoolExecutor(
            max_workers=self.config.concurrency, thread_name_prefix="reconcile",
        ) as executor:
            while waiting or running:
                for rid in list(waiting):
                    prerequisites = plan.requires.get(rid, ())
                    blocker = self._blocker(result, prerequisites)
                    if blocker is not None:
                        waiting.remove(rid)
                        self._record(result, rid, ActionStatus.SKIPPED,
                                     f"dependency {blocker} {result.statuses[blocker].value}")
                    elif self.cancel.is_set():
                        waiting.remove(rid)
                        self._record(result, rid, ActionStatus.SKIPPED, "cancelled")
                    elif self._ready(result, prerequisites):
                        waiting.remove(rid)
                        running[executor.submit(self._run_action, actions[rid])] = rid

                if not running:
                    for rid in waiting:
                        self._record(result, rid, ActionStatus.SKIPPED, "prerequisites never completed")
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    rid = running.pop(future)
                    status, reason = future.result()
                    self._record(result, rid, status, reason)

        return result
