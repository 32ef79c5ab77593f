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

"""k3d cluster lifecycle: create, validate and delete."""

from __future__ import annotations

import json

import sh
from rich.panel import Panel
from tenacity import RetryError, retry, stop_after_attempt, wait_fixed

from env_manager import console
from env_manager.config import ClusterConfig
from env_manager.constants import CLUSTER_CREATE_RETRY_WAIT_SECONDS, CLUSTER_TIMEOUT, K3D_CONTEXT_PREFIX
from env_manager.errors import ProvisioningFailed


# ============================================================================
# Cluster operations
# ============================================================================

def cluster_exists(cfg: ClusterConfig) -> bool:
    """Check whether k3d knows a cluster with the configured name.

    Raises:
        ProvisioningFailed: If k3d cannot list clusters.
    """
    try:
        clusters = json.loads(str(sh.k3d("cluster", "list", "-o", "json")) or "[]")
    except sh.ErrorReturnCode as err:
        raise ProvisioningFailed(f"Failed to list k3d clusters: {err.stderr.decode(errors='replace')}") from err
    return any(cluster.get("name") == cfg.cluster_name for cluster in clusters)


def _create_args(cfg: ClusterConfig) -> list[str]:
    args = ["cluster", "create", cfg.cluster_name]
    if cfg.config_file:
        return [*args, "--config", str(cfg.config_file), "--wait", "--timeout", CLUSTER_TIMEOUT]
    args += [
        "--servers", "1",
        "--agents", str(cfg.agents),
        "--image", cfg.k3s_image,
        "--api-port", str(cfg.api_port),
    ]
    for port in cfg.ports:
        args += ["--port", port]
    return [*args, "--wait", "--timeout", CLUSTER_TIMEOUT]


def create_cluster(cfg: ClusterConfig) -> None:
    """Create a k3d cluster with retry logic.

    A failed attempt removes whatever k3d left behind before retrying.

    Args:
        cfg: k3d cluster configuration including retry count.

    Raises:
        ProvisioningFailed: If the cluster cannot be created after all retries.
    """
    console.print(Panel.fit(f"Creating k3d cluster '{cfg.cluster_name}'", style="bold blue"))

    @retry(
        stop=stop_after_attempt(cfg.max_retries),
        wait=wait_fixed(CLUSTER_CREATE_RETRY_WAIT_SECONDS),
    )
    def _attempt() -> None:
        try:
            sh.k3d(*_create_args(cfg))
        except sh.ErrorReturnCode:
            console.print("[yellow]   Cluster creation failed, cleaning up before retry[/yellow]")
            try:
                sh.k3d("cluster", "delete", cfg.cluster_name)
            except sh.ErrorReturnCode_1:
                console.print("[yellow]   Nothing to clean up[/yellow]")
            raise

    try:
        _attempt()
    except RetryError as err:
        cause = err.last_attempt.exception()
        raise ProvisioningFailed(f"Failed to create cluster '{cfg.cluster_name}': {cause}") from err
    console.print("[green]\u2705 Cluster created successfully[/green]")


def wait_for_nodes(cfg: ClusterConfig) -> None:
    """Wait for all nodes to be ready.

    Raises:
        ProvisioningFailed: If the nodes are not Ready within the timeout.
    """
    console.print("[yellow]\u2139\ufe0f  Waiting for all nodes to be ready...[/yellow]")
    try:
        sh.kubectl(
            "--context", context_name(cfg),
            "wait", "--for=condition=Ready", "nodes", "--all", f"--timeout={cfg.node_timeout}s",
        )
    except sh.ErrorReturnCode as err:
        raise ProvisioningFailed(f"Nodes not ready after {cfg.node_timeout}s") from err
    console.print("[green]\u2705 All nodes are ready[/green]")


def delete_cluster(cfg: ClusterConfig) -> None:
    """Delete the k3d cluster; a missing cluster is not an error.

    Args:
        cfg: k3d cluster configuration with the cluster name.

    Raises:
        ProvisioningFailed: If k3d fails for any other reason.
    """
    console.print(f"[yellow]\u2139\ufe0f  Deleting k3d cluster '{cfg.cluster_name}'...[/yellow]")
    try:
        sh.k3d("cluster", "delete", cfg.cluster_name)
        console.print(f"[green]\u2705 Cluster '{cfg.cluster_name}' deleted[/green]")
    except sh.ErrorReturnCode_1:
        console.print(f"[yellow]\u26a0\ufe0f  Cluster '{cfg.cluster_name}' not found or already deleted[/yellow]")
    except sh.ErrorReturnCode as err:
        stderr = err.stderr.decode(errors="replace").strip()
        raise ProvisioningFailed(f"Failed to delete cluster '{cfg.cluster_name}': {stderr}") from err


def context_name(cfg: ClusterConfig) -> str:
    """kubeconfig context k3d registers for the cluster."""
    return f"{K3D_CONTEXT_PREFIX}{cfg.cluster_name}"


# ============================================================================
# Provisioner
# ============================================================================

class K3dProvisioner:
    """Idempotent cluster provisioning used by the orchestration session."""

    def __init__(self, cfg: ClusterConfig) -> None:
        self.cfg = cfg

    @property
    def context(self) -> str:
        return context_name(self.cfg)

    def exists(self) -> bool:
        return cluster_exists(self.cfg)

    def create(self) -> bool:
        """Create the cluster unless it exists, then wait for nodes.

        Returns:
            True if a cluster was created, False if an existing one was validated.
        """
        created = False
        if self.exists():
            console.print(f"[yellow]   Cluster '{self.cfg.cluster_name}' already exists, validating[/yellow]")
        else:
            create_cluster(self.cfg)
            created = True
        wait_for_nodes(self.cfg)
        return created

    def validate(self) -> None:
        """Fail unless the cluster exists and its nodes are Ready."""
        if not self.exists():
            raise ProvisioningFailed(f"Cluster '{self.cfg.cluster_name}' does not exist; run 'create' first")
        wait_for_nodes(self.cfg)

    def delete(self) -> None:
        delete_cluster(self.cfg)
