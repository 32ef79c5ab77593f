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

"""Endpoint verbs: check and test."""

from __future__ import annotations

from pathlib import Path

import typer

from env_manager.commands.common import EnvFileOption, run_verb


def check(env_file: Path = EnvFileOption) -> None:
    """Send one request to every declared endpoint and report the results."""
    run_verb(env_file, lambda orchestrator, session: orchestrator.check(session), commands=())


def run_test(
    env_file: Path = EnvFileOption,
    duration: int | None = typer.Option(
        None, "--duration", "-d", min=1, help="Loop the WebV files for this many seconds (load test)"),
) -> None:
    """Run the environment's WebV files once, or as a timed load test."""
    run_verb(env_file, lambda orchestrator, session: orchestrator.load_test(session, duration), commands=())
