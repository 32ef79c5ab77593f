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

"""WebV runs against the deployed environment."""

from __future__ import annotations

import sh
from rich.panel import Panel

from env_manager import console, logger
from env_manager.errors import LoadTestFailed
from env_manager.models import LoadTestSpec


def webv_args(spec: LoadTestSpec, duration: int | None = None) -> list[str]:
    """WebV arguments for *spec*.

    Without *duration* every request file is sent once. With it, WebV
    loops over the files for *duration* seconds, pausing spec.sleep
    milliseconds between requests.
    """
    args = ["--verbose", "--server", spec.server, "--files", *(str(f) for f in spec.files)]
    if duration is not None:
        args += ["--run-loop", "--sleep", str(spec.sleep), "--duration", str(duration)]
    return args


def _echo(line: str) -> None:
    console.print(line.rstrip("\n"), markup=False, highlight=False)


class WebvRunner:
    """Runs WebV through sh and streams its output to the console."""

    def run(self, spec: LoadTestSpec, duration: int | None = None) -> None:
        """Run WebV once, or for *duration* seconds.

        Raises:
            LoadTestFailed: If WebV is not installed or exits non-zero.
        """
        title = f"Load test: {duration}s" if duration is not None else "Integration test"
        console.print(Panel.fit(f"{title} against {spec.server}", style="bold blue"))
        missing = [str(f) for f in spec.files if not f.is_file()]
        if missing:
            raise LoadTestFailed(f"WebV files not found: {', '.join(missing)}")
        try:
            webv = sh.Command(spec.command)
        except sh.CommandNotFound as err:
            raise LoadTestFailed(f"Required command '{spec.command}' not found. Please install it first.") from err

        args = webv_args(spec, duration)
        logger.debug("Running %s %s", spec.command, " ".join(args))
        try:
            webv(*args, _out=_echo)
        except sh.ErrorReturnCode as err:
            stderr = err.stderr.decode(errors="replace").strip()
            detail = f": {stderr}" if stderr else ""
            raise LoadTestFailed(f"{spec.command} exited with code {err.exit_code}{detail}") from err
        console.print("[green]\u2705 WebV run passed[/green]")
