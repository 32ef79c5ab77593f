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

"""Local image builds and import into the k3d cluster."""

from __future__ import annotations

import docker
import sh
from rich.panel import Panel

from env_manager import console, logger
from env_manager.config import ClusterConfig
from env_manager.errors import BuildFailed
from env_manager.models import ImageSpec


def build_image(image: ImageSpec) -> None:
    """Build *image* from its context directory with the Docker daemon.

    Raises:
        BuildFailed: If Docker is unavailable or the build fails.
    """
    console.print(f"[yellow]\u2139\ufe0f  Building {image.tag} from {image.context}...[/yellow]")
    if not image.context.is_dir():
        raise BuildFailed(f"Build context {image.context} does not exist")
    try:
        docker_client = docker.from_env()
    except docker.errors.DockerException as err:
        raise BuildFailed(f"Failed to connect to Docker: {err}") from err

    try:
        _, log_stream = docker_client.images.build(
            path=str(image.context),
            tag=image.tag,
            dockerfile=image.dockerfile,
            rm=True,
        )
        for chunk in log_stream:
            line = chunk.get("stream", "").rstrip()
            if line:
                logger.debug("docker build: %s", line)
    except docker.errors.BuildError as err:
        raise BuildFailed(f"Build of {image.tag} failed: {err.msg}") from err
    except docker.errors.APIError as err:
        raise BuildFailed(f"Docker API error building {image.tag}: {err}") from err
    finally:
        docker_client.close()
    console.print(f"[green]\u2713 Built {image.tag}[/green]")


def import_image(image: ImageSpec, cfg: ClusterConfig) -> None:
    """Import a locally built image into the cluster's image store.

    Raises:
        BuildFailed: If ``k3d image import`` fails.
    """
    console.print(f"[yellow]\u2139\ufe0f  Importing {image.tag} into '{cfg.cluster_name}'...[/yellow]")
    try:
        sh.k3d("image", "import", image.tag, "-c", cfg.cluster_name)
    except sh.ErrorReturnCode as err:
        raise BuildFailed(
            f"Failed to import {image.tag}: {err.stderr.decode(errors='replace').strip()}"
        ) from err
    console.print(f"[green]\u2713 Imported {image.tag}[/green]")


class ImageBuilder:
    """Builds declared images and loads them into the cluster."""

    def __init__(self, cfg: ClusterConfig) -> None:
        self.cfg = cfg

    def build_and_import(self, image: ImageSpec) -> None:
        console.print(Panel.fit(f"Building image '{image.name}'", style="bold blue"))
        build_image(image)
        import_image(image, self.cfg)
