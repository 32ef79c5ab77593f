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

"""Configuration classes, run options, and config resolution/display."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from env_manager import console, logger
from env_manager.constants import (
    DEFAULT_ACTION_RETRIES,
    DEFAULT_AGENTS,
    DEFAULT_API_PORT,
    DEFAULT_BACKOFF_INITIAL_SECONDS,
    DEFAULT_BACKOFF_MAX_SECONDS,
    DEFAULT_CLUSTER_CREATE_MAX_RETRIES,
    DEFAULT_CLUSTER_NAME,
    DEFAULT_K3S_IMAGE,
    DEFAULT_MANAGED_KINDS,
    DEFAULT_NODE_READY_TIMEOUT,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_READ_RETRIES,
    DEFAULT_SMOKE_TIMEOUT_SECONDS,
)
from env_manager.errors import InvalidEnvironment


# ============================================================================
# Configuration classes
# ============================================================================

class ClusterConfig(BaseSettings):
    """k3d cluster configuration, auto-loaded from ENVM_* env vars.

    Attributes:
        cluster_name: Name of the k3d cluster.
        config_file: Optional k3d config file; when set, it takes precedence
            over the individual options below.
        api_port: Kubernetes API server port.
        ports: Port mappings passed as ``--port`` (e.g. ``30080:30080@server:0``).
        agents: Number of agent nodes.
        k3s_image: K3s Docker image to use.
        max_retries: Maximum cluster creation attempts.
        node_timeout: Seconds to wait for nodes to become Ready.
    """

    model_config = SettingsConfigDict(env_prefix="ENVM_", extra="ignore")

    cluster_name: str = DEFAULT_CLUSTER_NAME
    config_file: Path | None = None
    api_port: int = Field(default=DEFAULT_API_PORT, ge=1, le=65535)
    ports: list[str] = Field(default_factory=list)
    agents: int = Field(default=DEFAULT_AGENTS, ge=0, le=100)
    k3s_image: str = DEFAULT_K3S_IMAGE
    max_retries: int = Field(default=DEFAULT_CLUSTER_CREATE_MAX_RETRIES, ge=1, le=10)
    node_timeout: int = Field(default=DEFAULT_NODE_READY_TIMEOUT, ge=1)


class ReconcileConfig(BaseSettings):
    """Reconciliation tuning, auto-loaded from ENVM_* env vars.

    Attributes:
        concurrency: Maximum actions executed at once across independent branches.
        action_retries: Attempts per action when the cluster is unreachable.
        read_retries: Attempts per state read when the cluster is unreachable.
        backoff_initial: First exponential backoff delay in seconds.
        backoff_max: Backoff ceiling in seconds.
        poll_interval: Readiness polling interval in seconds.
        prune: Whether ``deploy`` deletes owned resources no longer declared.
        managed_kinds: Kinds always listed when looking for owned resources.
        discover_kinds: Also list every kind the cluster serves, so owned
            resources of kinds no longer declared are still found.
    """

    model_config = SettingsConfigDict(env_prefix="ENVM_", extra="ignore")

    concurrency: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1)
    action_retries: int = Field(default=DEFAULT_ACTION_RETRIES, ge=1, le=10)
    read_retries: int = Field(default=DEFAULT_READ_RETRIES, ge=1, le=10)
    backoff_initial: float = Field(default=DEFAULT_BACKOFF_INITIAL_SECONDS, ge=0)
    backoff_max: float = Field(default=DEFAULT_BACKOFF_MAX_SECONDS, ge=0)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, gt=0)
    prune: bool = False
    managed_kinds: list[str] = Field(default_factory=lambda: list(DEFAULT_MANAGED_KINDS))
    discover_kinds: bool = True


class SmokeConfig(BaseSettings):
    """Smoke test configuration, auto-loaded from ENVM_SMOKE_* env vars."""

    model_config = SettingsConfigDict(env_prefix="ENVM_SMOKE_", extra="ignore")

    timeout: float = Field(default=DEFAULT_SMOKE_TIMEOUT_SECONDS, gt=0)


# ============================================================================
# Run options
# ============================================================================

@dataclass(frozen=True)
class DeployOptions:
    """Options for a single ``deploy`` invocation.

    Attributes:
        prune: Delete owned resources that are no longer declared. None
            uses the configured default.
        dry_run: Print the plan without executing it.
    """

    prune: bool | None = None
    dry_run: bool = False


# ============================================================================
# Config resolution
# ============================================================================

def resolve_cluster_config(
    file_values: Mapping[str, Any] | None = None,
    *,
    cluster_name: str | None = None,
    config_file: Path | None = None,
) -> ClusterConfig:
    """Merge CLI overrides, the environment file, ENVM_* variables and defaults.

    Resolution priority: CLI arguments > environment file ``cluster`` section
    > ENVM_* environment variables > defaults.

    Args:
        file_values: ``cluster`` section of the environment file, if any.
        cluster_name: CLI override for the cluster name, or None.
        config_file: CLI override for the k3d config file, or None.

    Returns:
        The resolved cluster configuration.

    Raises:
        InvalidEnvironment: If the file values fail validation.
    """
    values = dict(file_values or {})
    if "name" in values:
        values["cluster_name"] = values.pop("name")
    if "config" in values:
        values["config_file"] = values.pop("config")
    try:
        cfg = ClusterConfig(**values)
    except ValidationError as err:
        raise InvalidEnvironment(f"Invalid cluster settings: {err}") from err

    overrides: dict = {}
    if cluster_name is not None:
        overrides["cluster_name"] = cluster_name
    if config_file is not None:
        overrides["config_file"] = config_file
    if overrides:
        cfg = cfg.model_copy(update=overrides)
    logger.debug("Resolved cluster config: %s", cfg)
    return cfg


def resolve_reconcile_config(
    *,
    concurrency: int | None = None,
    prune: bool | None = None,
) -> ReconcileConfig:
    """Build the reconcile config with optional CLI overrides."""
    cfg = ReconcileConfig()
    overrides: dict = {}
    if concurrency is not None:
        overrides["concurrency"] = concurrency
    if prune is not None:
        overrides["prune"] = prune
    if overrides:
        cfg = cfg.model_copy(update=overrides)
    return cfg


# ============================================================================
# Display
# ============================================================================

def display_config(cluster_cfg: ClusterConfig, reconcile_cfg: ReconcileConfig) -> None:
    """Print the resolved configuration.

    Args:
        cluster_cfg: k3d cluster configuration.
        reconcile_cfg: Reconciliation tuning.
    """
    console.print(Panel.fit("Configuration", style="bold blue"))
    console.print("[yellow]k3d cluster:[/yellow]")
    console.print(f"  cluster_name    : {cluster_cfg.cluster_name}")
    if cluster_cfg.config_file:
        console.print(f"  config_file     : {cluster_cfg.config_file}")
    else:
        console.print(f"  api_port        : {cluster_cfg.api_port}")
        console.print(f"  agents          : {cluster_cfg.agents}")
        console.print(f"  k3s_image       : {cluster_cfg.k3s_image}")
    console.print("[yellow]Reconcile:[/yellow]")
    console.print(f"  concurrency     : {reconcile_cfg.concurrency}")
    console.print(f"  action_retries  : {reconcile_cfg.action_retries}")
    console.print(f"  poll_interval   : {reconcile_cfg.poll_interval:g}s")
    console.print(f"  prune           : {reconcile_cfg.prune}")
    console.print(f"  discover_kinds  : {reconcile_cfg.discover_kinds}")
