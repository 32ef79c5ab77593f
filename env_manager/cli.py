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

"""
cli.py - Declarative local cluster environments.

Verbs:
    create   Create the k3d cluster (validates an existing one)
    delete   Delete the k3d cluster
    deploy   Reconcile the cluster to the environment file
    check    Smoke test the declared endpoints
    test     Run the WebV files once, or as a load test with --duration
    clean    Delete every resource the environment owns
    all      delete, create, deploy and check
    build    Rebuild an image, import it and redeploy its users

Examples:
    # Bring up the full environment from scratch
    env-manager all

    # Preview what deploy would change, including deletions
    env-manager deploy --prune --dry-run

    # Use another environment file and cluster
    env-manager deploy -f envs/dev.yaml --cluster-name dev

    # Load test the entry point for a minute
    env-manager test --duration 60

Exit codes: 0 success, 1 a phase failed, 2 the environment file is invalid.
"""

from __future__ import annotations

import logging
import sys

import typer

from env_manager import __version__, console
from env_manager.commands import build_cmd, check_cmd, cluster_cmd, deploy_cmd
from env_manager.constants import EXIT_FAILED

app = typer.Typer(
    help="Declarative local cluster environments.",
    no_args_is_help=True,
)


def _version(value: bool) -> None:
    if value:
        console.print(f"env-manager {__version__}")
        raise typer.Exit()


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False, "--version", callback=_version, is_eager=True, help="Show the version and exit"),
) -> None:
    """Initialize logging for all verbs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.command("create")(cluster_cmd.create)
app.command("delete")(cluster_cmd.delete)
app.command("deploy")(deploy_cmd.deploy)
app.command("clean")(deploy_cmd.clean)
app.command("all")(deploy_cmd.all_)
app.command("check")(check_cmd.check)
app.command("test")(check_cmd.run_test)
app.command("build")(build_cmd.build)


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(EXIT_FAILED)


if __name__ == "__main__":
    main()
