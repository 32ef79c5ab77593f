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

"""Tests for configuration resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from env_manager.config import ClusterConfig, ReconcileConfig, resolve_cluster_config, resolve_reconcile_config
from env_manager.constants import DEFAULT_API_PORT, DEFAULT_CLUSTER_NAME
from env_manager.errors import InvalidEnvironment


class TestClusterConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ENVM_CLUSTER_NAME", raising=False)
        cfg = ClusterConfig()
        assert cfg.cluster_name == DEFAULT_CLUSTER_NAME
        assert cfg.api_port == DEFAULT_API_PORT
        assert cfg.config_file is None

    def test_env_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENVM_CLUSTER_NAME", "from-env")
        monkeypatch.setenv("ENVM_AGENTS", "2")
        cfg = ClusterConfig()
        assert cfg.cluster_name == "from-env"
        assert cfg.agents == 2

    def test_file_beats_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENVM_CLUSTER_NAME", "from-env")
        cfg = resolve_cluster_config({"name": "from-file", "config": "k3d.yaml"})
        assert cfg.cluster_name == "from-file"
        assert cfg.config_file == Path("k3d.yaml")

    def test_cli_beats_file(self) -> None:
        cfg = resolve_cluster_config({"name": "from-file"}, cluster_name="from-cli")
        assert cfg.cluster_name == "from-cli"

    def test_invalid_file_values(self) -> None:
        with pytest.raises(InvalidEnvironment, match="Invalid cluster settings"):
            resolve_cluster_config({"api_port": 0})


class TestReconcileConfig:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ENVM_PRUNE", raising=False)
        cfg = ReconcileConfig()
        assert cfg.concurrency >= 1
        assert cfg.prune is False
        assert "deployments" in cfg.managed_kinds

    def test_overrides(self) -> None:
        cfg = resolve_reconcile_config(concurrency=2, prune=True)
        assert cfg.concurrency == 2
        assert cfg.prune is True

    def test_env_prune(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENVM_PRUNE", "true")
        assert ReconcileConfig().prune is True

    def test_kind_discovery_can_be_disabled(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ENVM_DISCOVER_KINDS", raising=False)
        assert ReconcileConfig().discover_kinds is True
        monkeypatch.setenv("ENVM_DISCOVER_KINDS", "false")
        assert ReconcileConfig().discover_kinds is False
