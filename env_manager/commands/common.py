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

"""Shared wiring for the CLI verbs: load, build the orchestrator, run, exit."""

from __future__ import annotations

import signal
from collections.abc import Callable
from pathlib import Path

import typer

from env_manager import console, logger
from env_manager.cluster import K3dProvisioner
from env_manager.config import (
    ClusterConfig,
    ReconcileConfig,
    SmokeConfig,
    display_config,
    resolve_cluster_config,
    resolve_reconcile_config,
)
from env_manager.constants import DEFAULT_ENVIRONMENT_FILE, EXIT_FAILED, EXIT_INVALID_INPUT, EXIT_OK
from env_manager.engine import ReconciliationEngine
from env_manager.errors import EnvManagerError, InvalidEnvironment
from env_manager.images import ImageBuilder
from env_manager.kube import KubectlClient
from env_manager.loader import load_environment
from env_manager.loadtest import WebvRunner
from env_manager.models import Environment
from env_manager.prober import ReadinessProber
from env_manager.session import Orchestrator, Session
from env_manager.smoke import SmokeTester
from env_manager.state import ClusterStateReader
from env_manager.utils import require_command

EnvFileOption = typer.Option(
    Path(DEFAULT_ENVIRONMENT_FILE), "--file", "-f", help="Environment file describing the desired state")
ClusterNameOption = typer.Option(
    None, "--cluster-name", help="k3d cluster name (overrides the file and ENVM_CLUSTER_NAME)")

REQUIRED_COMMANDS = ("k3d", "kubectl")


def build_orchestrator(
    environment: Environment,
    cluster_cfg: ClusterConfig,
    reconcile_cfg: ReconcileConfig,
    smoke_cfg: SmokeConfig | None = None,
) -> Orchestrator:
    """Wire provisioner, client, reader, prober, engine and testers together."""
    provisioner = K3dProvisioner(cluster_cfg)
    client = KubectlClient(context=provisioner.context)
    reader = ClusterStateReader(
        client,
        retries=reconcile_cfg.read_retries,
        backoff_initial=reconcile_cfg.backoff_initial,
        backoff_max=reconcile_cfg.backoff_max,
    )
    prober = ReadinessProber(reader, poll_interval=reconcile_cfg.poll_interval)
    engine = ReconciliationEngine(client, reader, prober, environment=environment.name, config=reconcile_cfg)
    return Orchestrator(
        environment,
        provisioner,
        engine,
        SmokeTester(smoke_cfg or SmokeConfig()),
        ImageBuilder(cluster_cfg),
        WebvRunner(),
    )


def load_orchestrator(
    env_file: Path,
    *,
    cluster_name: str | None = None,
    concurrency: int | None = None,
) -> Orchestrator:
    """Load *env_file* and resolve configuration.

    Raises:
        InvalidEnvironment: If the file or its settings are invalid.
    """
    environment = load_environment(env_file)
    cluster_cfg = resolve_cluster_config(environment.cluster, cluster_name=cluster_name)
    reconcile_cfg = resolve_reconcile_config(concurrency=concurrency)
    display_config(cluster_cfg, reconcile_cfg)
    return build_orchestrator(environment, cluster_cfg, reconcile_cfg)


def run_verb(
    env_file: Path,
    verb: Callable[[Orchestrator, Session], int],
    *,
    cluster_name: str | None = None,
    concurrency: int | None = None,
    commands: tuple[str, ...] = REQUIRED_COMMANDS,
) -> None:
    """Run *verb* and exit with its code.

    The first Ctrl-C cancels the run: probes stop waiting, nothing new is
    dispatched and the status map is still reported. A second one aborts.
    """
    try:
        orchestrator = load_orchestrator(env_file, cluster_name=cluster_name, concurrency=concurrency)
        for cmd in commands:
            require_command(cmd)
    except InvalidEnvironment as err:
        console.print(f"[red]\u274c {err}[/red]")
        raise typer.Exit(EXIT_INVALID_INPUT) from err
    except EnvManagerError as err:
        console.print(f"[red]\u274c {err}[/red]")
        raise typer.Exit(EXIT_FAILED) from err

    def _on_interrupt(signum, frame) -> None:
        console.print("[yellow]\u26a0\ufe0f  Interrupted, finishing in-flight actions (Ctrl-C again to abort)[/yellow]")
        orchestrator.abort()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    session = Session()
    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        code = verb(orchestrator, session)
    finally:
        signal.signal(signal.SIGINT, previous)

    logger.info("session finished in %s with exit code %d", session.phase.value, code)
    if code == EXIT_OK:
        console.print("[green]\u2705 Done[/green]")
    else:
        console.print(f"[red]\u274c {session.error or 'Failed'}[/red]")
    raise typer.Exit(code)
