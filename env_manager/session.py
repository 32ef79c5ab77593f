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

"""Orchestration Session: phase state machine and the user-facing verbs.

Every verb moves the session through the phases it needs and is idempotent:
re-running it in or past its phase validates instead of redoing work. A
failing step moves the session to ``failed`` and the verb returns an exit
code instead of raising; only an illegal phase move raises.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum

from rich.panel import Panel

from env_manager import console, logger
from env_manager.cluster import K3dProvisioner
from env_manager.config import DeployOptions
from env_manager.constants import EXIT_FAILED, EXIT_INVALID_INPUT, EXIT_OK, NS_DEFAULT, NS_KUBE_SYSTEM
from env_manager.engine import ReconciliationEngine
from env_manager.errors import ClusterError, EnvManagerError, InvalidEnvironment, InvalidTransition
from env_manager.graph import build_graph
from env_manager.images import ImageBuilder
from env_manager.loadtest import WebvRunner
from env_manager.models import Environment, ProbeOutcome, ReadinessCheck, ReconcileResult, SmokeResult
from env_manager.planner import recreate_plan, uses_image
from env_manager.report import render_plan, render_pods, render_status
from env_manager.smoke import SmokeTester


class SessionPhase(str, Enum):
    IDLE = "idle"
    CLUSTER_PROVISIONING = "cluster-provisioning"
    RECONCILING = "reconciling"
    PROBING = "probing"
    SMOKE_TESTING = "smoke-testing"
    COMPLETE = "complete"
    FAILED = "failed"
    TEARING_DOWN = "tearing-down"


TRANSITIONS: dict[SessionPhase, frozenset[SessionPhase]] = {
    SessionPhase.IDLE: frozenset({
        SessionPhase.CLUSTER_PROVISIONING,
        SessionPhase.SMOKE_TESTING,
        SessionPhase.TEARING_DOWN,
    }),
    SessionPhase.CLUSTER_PROVISIONING: frozenset({
        SessionPhase.RECONCILING,
        SessionPhase.COMPLETE,
        SessionPhase.FAILED,
        SessionPhase.TEARING_DOWN,
    }),
    SessionPhase.RECONCILING: frozenset({
        SessionPhase.PROBING,
        SessionPhase.COMPLETE,
        SessionPhase.FAILED,
        SessionPhase.TEARING_DOWN,
    }),
    SessionPhase.PROBING: frozenset({
        SessionPhase.SMOKE_TESTING,
        SessionPhase.COMPLETE,
        SessionPhase.FAILED,
        SessionPhase.TEARING_DOWN,
    }),
    SessionPhase.SMOKE_TESTING: frozenset({
        SessionPhase.COMPLETE,
        SessionPhase.FAILED,
        SessionPhase.TEARING_DOWN,
    }),
    SessionPhase.COMPLETE: frozenset({
        SessionPhase.CLUSTER_PROVISIONING,
        SessionPhase.RECONCILING,
        SessionPhase.SMOKE_TESTING,
        SessionPhase.TEARING_DOWN,
    }),
    SessionPhase.FAILED: frozenset({SessionPhase.TEARING_DOWN}),
    SessionPhase.TEARING_DOWN: frozenset({SessionPhase.IDLE, SessionPhase.FAILED}),
}


@dataclass(frozen=True)
class PhaseChange:
    phase: SessionPhase
    at: float
    note: str = ""


@dataclass
class Session:
    """Where an orchestration run is, and what it has produced so far.

    Attributes:
        phase: Current phase.
        history: Every phase entered, in order.
        completed: Phases that finished successfully since the last teardown.
        reconcile_result: Status map of the last reconciliation pass.
        smoke_results: Results of the last smoke test.
        error: Reason for entering ``failed``.
        exit_code: Process exit code the run maps to.
    """

    phase: SessionPhase = SessionPhase.IDLE
    history: list[PhaseChange] = field(default_factory=list)
    completed: set[SessionPhase] = field(default_factory=set)
    reconcile_result: ReconcileResult | None = None
    smoke_results: list[SmokeResult] = field(default_factory=list)
    error: str | None = None
    exit_code: int = EXIT_OK

    def can_transition(self, phase: SessionPhase) -> bool:
        return phase in TRANSITIONS[self.phase]

    def transition(self, phase: SessionPhase, note: str = "") -> None:
        """Move to *phase*.

        Raises:
            InvalidTransition: If the state machine does not allow the move.
        """
        if not self.can_transition(phase):
            raise InvalidTransition(self.phase, phase)
        logger.info("session %s -> %s%s", self.phase.value, phase.value, f" ({note})" if note else "")
        self.phase = phase
        self.history.append(PhaseChange(phase, time.time(), note))

    def fail(self, error: str, exit_code: int = EXIT_FAILED) -> None:
        self.error = error
        self.exit_code = exit_code
        self.transition(SessionPhase.FAILED, error)

    @property
    def ok(self) -> bool:
        return self.phase is not SessionPhase.FAILED


class PhaseFailed(EnvManagerError):
    """A phase could not reach its goal; carries the reason for the session."""


class Orchestrator:
    """Sequences provisioning, reconciliation, probing and smoke testing.

    The orchestrator holds no run state: every verb takes the Session it
    advances, so independent sessions can share one orchestrator.

    Args:
        environment: The loaded desired state.
        provisioner: Cluster provisioner.
        engine: Reconciliation Engine bound to the cluster; its prober also
            runs the environment-level waits.
        smoke: Smoke tester for ``check``.
        builder: Image builder for ``build``.
    """

    def __init__(
        self,
        environment: Environment,
        provisioner: K3dProvisioner,
        engine: ReconciliationEngine,
        smoke: SmokeTester,
        builder: ImageBuilder | None = None,
        load_tester: WebvRunner | None = None,
    ) -> None:
        self.environment = environment
        self.provisioner = provisioner
        self.engine = engine
        self.smoke = smoke
        self.builder = builder
        self.load_tester = load_tester

    def abort(self) -> None:
        """Signal cancellation: pending probes return and nothing new is dispatched."""
        self.engine.cancel.set()

    @contextmanager
    def _phase(self, session: Session, phase: SessionPhase, note: str = "") -> Iterator[None]:
        """Enter *phase*; any env_manager error inside fails the session."""
        session.transition(phase, note)
        try:
            yield
        except InvalidTransition:
            raise
        except InvalidEnvironment as err:
            console.print(f"[red]\u274c {err}[/red]")
            session.fail(str(err), EXIT_INVALID_INPUT)
            raise PhaseFailed(str(err)) from err
        except EnvManagerError as err:
            console.print(f"[red]\u274c {err}[/red]")
            session.fail(str(err))
            raise PhaseFailed(str(err)) from err
        session.completed.add(phase)

    def _run(self, session: Session, steps: Callable[[], None]) -> int:
        try:
            steps()
        except PhaseFailed as err:
            logger.debug("verb stopped in %s: %s", session.phase.value, err)
        return session.exit_code

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _wait_all(self, checks: tuple[ReadinessCheck, ...], default_namespace: str) -> None:
        prober = self.engine.prober
        for check in checks:
            target = check.target(default_namespace)
            outcome = prober.probe(target, check)
            if outcome is not ProbeOutcome.READY:
                raise PhaseFailed(f"Wait for {target} {check.describe()} ended {outcome.value}")

    def _provision(self, session: Session, *, create: bool) -> None:
        with self._phase(session, SessionPhase.CLUSTER_PROVISIONING, "create" if create else "validate"):
            if create:
                self.provisioner.create()
            else:
                self.provisioner.validate()
            self._wait_all(self.environment.system_waits, NS_KUBE_SYSTEM)

    def _ensure_cluster(self, session: Session) -> None:
        if SessionPhase.CLUSTER_PROVISIONING not in session.completed:
            self._provision(session, create=False)

    def _show_pods(self) -> None:
        namespaces = sorted({spec.id.namespace for spec in self.environment.specs if spec.id.namespace})
        pods = []
        try:
            for namespace in namespaces or [NS_DEFAULT]:
                pods.extend(self.engine.client.list(["pods"], namespace=namespace))
        except ClusterError as err:
            logger.warning("Could not list pods: %s", err)
            return
        render_pods(pods)

    def _rebuild(self, name: str) -> None:
        """Build and import *name*, then delete the resources running it.

        The following reconcile recreates them, so they pick up the new
        image even though the tag did not change.
        """
        if self.builder is None:
            raise PhaseFailed("No image builder configured")
        try:
            image = self.environment.image(name)
        except KeyError:
            raise InvalidEnvironment(f"Image '{name}' is not declared in {self.environment.name}") from None
        self.builder.build_and_import(image)
        users = [spec.id for spec in self.environment.specs if uses_image(spec, image.tag)]
        if not users:
            console.print(f"[yellow]\u26a0\ufe0f  No resource uses {image.tag}[/yellow]")
            return
        result = self.engine.execute(recreate_plan(build_graph(self.environment.specs), users))
        if not result.success:
            render_status(result)
            raise PhaseFailed(f"Could not remove resources using image '{name}'")

    def _reconcile(self, session: Session, options: DeployOptions, rebuild: str | None = None) -> None:
        with self._phase(session, SessionPhase.RECONCILING, "dry run" if options.dry_run else ""):
            if rebuild is not None:
                self._rebuild(rebuild)
            if options.dry_run:
                render_plan(self.engine.plan(self.environment.specs, prune=options.prune))
                return
            result = self.engine.reconcile(self.environment.specs, prune=options.prune)
            session.reconcile_result = result
            render_status(result)
            if not result.success:
                raise PhaseFailed(f"{len(result.failed)} failed, {len(result.skipped)} skipped")

    def _probe(self, session: Session) -> None:
        with self._phase(session, SessionPhase.PROBING):
            self._wait_all(self.environment.waits, NS_DEFAULT)
            self._show_pods()

    def _smoke(self, session: Session) -> None:
        with self._phase(session, SessionPhase.SMOKE_TESTING):
            results = self.smoke.run(self.environment.checks)
            session.smoke_results = results
            failed = [result.target.label for result in results if not result.ok]
            if failed:
                raise PhaseFailed(f"Endpoint checks failed: {', '.join(failed)}")

    def _teardown(self, session: Session, note: str, action: Callable[[], None]) -> None:
        with self._phase(session, SessionPhase.TEARING_DOWN, note):
            action()
        session.completed.clear()
        session.transition(SessionPhase.IDLE)

    def _prune_all(self, session: Session) -> None:
        declared = [spec.id.kind for spec in self.environment.specs]
        result = self.engine.reconcile([], prune=True, extra_kinds=declared)
        session.reconcile_result = result
        render_status(result)
        if not result.success:
            raise PhaseFailed(f"{len(result.failed)} deletions failed")
        self._show_pods()

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    def create(self, session: Session) -> int:
        """Create the cluster (or validate an existing one) and wait for system pods."""
        def steps() -> None:
            console.print(Panel.fit(f"create: {self.environment.name}", style="bold blue"))
            self._provision(session, create=True)
            session.transition(SessionPhase.COMPLETE)
        return self._run(session, steps)

    def deploy(self, session: Session, options: DeployOptions | None = None) -> int:
        """Reconcile the environment, then run the environment-level waits."""
        options = options or DeployOptions()

        def steps() -> None:
            console.print(Panel.fit(f"deploy: {self.environment.name}", style="bold blue"))
            self._ensure_cluster(session)
            self._reconcile(session, options)
            if not options.dry_run:
                self._probe(session)
            session.transition(SessionPhase.COMPLETE)
        return self._run(session, steps)

    def check(self, session: Session) -> int:
        """Smoke test the declared endpoints."""
        def steps() -> None:
            self._smoke(session)
            session.transition(SessionPhase.COMPLETE)
        return self._run(session, steps)

    def load_test(self, session: Session, duration: int | None = None) -> int:
        """Run the declared WebV files once, or in a loop for *duration* seconds."""
        def steps() -> None:
            with self._phase(session, SessionPhase.SMOKE_TESTING, "load test" if duration else "webv"):
                spec = self.environment.loadtest
                if spec is None:
                    raise InvalidEnvironment(f"Environment '{self.environment.name}' declares no loadtest")
                if self.load_tester is None:
                    raise PhaseFailed("No load tester configured")
                self.load_tester.run(spec, duration)
            session.transition(SessionPhase.COMPLETE)
        return self._run(session, steps)

    def clean(self, session: Session) -> int:
        """Delete every resource this environment owns, keeping the cluster."""
        def steps() -> None:
            console.print(Panel.fit(f"clean: {self.environment.name}", style="bold blue"))
            self._teardown(session, "clean", lambda: self._prune_all(session))
        return self._run(session, steps)

    def delete(self, session: Session) -> int:
        """Delete the cluster."""
        def steps() -> None:
            self._teardown(session, "delete cluster", self.provisioner.delete)
        return self._run(session, steps)

    def build(self, session: Session, image: str, options: DeployOptions | None = None) -> int:
        """Rebuild *image*, load it into the cluster and redeploy its users."""
        options = options or DeployOptions()

        def steps() -> None:
            console.print(Panel.fit(f"build: {image}", style="bold blue"))
            self._ensure_cluster(session)
            self._reconcile(session, options, rebuild=image)
            self._probe(session)
            session.transition(SessionPhase.COMPLETE)
        return self._run(session, steps)

    def all(self, session: Session) -> int:
        """delete, create, deploy and check, stopping at the first failure."""
        for verb in (self.delete, self.create, self.deploy, self.check):
            code = verb(session)
            if code != EXIT_OK:
                return code
        return EXIT_OK
