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

"""Deployment verbs: deploy, clean and all."""

from __future__ import annotations

from pathlib import Path

import typer

from env_manager.commands.common import ClusterNameOption, EnvFileOption, run_verb
from env_manager.config import DeployOptions

ConcurrencyOption = typer.Option(
    None, "--concurrency", "-j", min=1, help="Maximum concurrent actions (overrides ENVM_CONCURRENCY)")


def deploy(
    env_file: Path = EnvFileOption,
    cluster_name: str | None = ClusterNameOption,
    prune: bool | None = typer.Option(
        None, "--prune/--no-prune", help="Delete owned resources that are no longer declared (default: ENVM_PRUNE)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the plan without applying it"),
    concurrency: int | None = ConcurrencyOption,
) -> None:
    """Reconcile the cluster to the environment file and wait for readiness."""
    options = DeployOptions(prune=prune, dry_run=dry_run)
    run_verb(
        env_file,
        lambda orchestrator, session: orchestrator.deploy(session, options),
        cluster_name=cluster_name,
        concurrency=concurrency,
    )


def clean(
    env_file: Path = EnvFileOption,
    cluster_name: str | None = ClusterNameOption,
    concurrency: int | None = ConcurrencyOption,
) -> None:
    """Delete every resource the environment owns; the cluster stays."""
    run_verb(
        env_file,
        lambda orchestrator, session: orchestrator.clean(session),
        cluster_name=cluster_name,
        concurrency=concurrency,
    )


def all_(
    env_file: Path = EnvFileOption,
    cluster_name: str | None = ClusterNameOption,
    concurrency: int | None = ConcurrencyOption,
) -> None:
    """Recreate the cluster, deploy the environment and check its endpoints."""
    run_verb(
        env_file,
        lambda orchestrator, session: orchestrator.all(session),
        cluster_name=cluster_name,
        concurrency=concurrency,
    )
