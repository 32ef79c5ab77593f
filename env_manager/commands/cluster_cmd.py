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

"""Cluster verbs: create and delete."""

from __future__ import annotations

from pathlib import Path

from env_manager.commands.common import ClusterNameOption, EnvFileOption, run_verb


def create(
    env_file: Path = EnvFileOption,
    cluster_name: str | None = ClusterNameOption,
) -> None:
    """Create the k3d cluster, or validate it if it already exists."""
    run_verb(env_file, lambda orchestrator, session: orchestrator.create(session), cluster_name=cluster_name)


def delete(
    env_file: Path = EnvFileOption,
    cluster_name: str | None = ClusterNameOption,
) -> None:
    """Delete the k3d cluster."""
    run_verb(env_file, lambda orchestrator, session: orchestrator.delete(session), cluster_name=cluster_name)
