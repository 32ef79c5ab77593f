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

"""Rich rendering of plans, status maps and pods."""

from __future__ import annotations

from collections.abc import Iterable

from rich.table import Table

from env_manager import console
from env_manager.engine import STATUS_STYLES
from env_manager.models import ActionType, ObservedResource, Plan, ReconcileResult

ACTION_STYLES = {
    ActionType.CREATE: "green",
    ActionType.UPDATE: "cyan",
    ActionType.DELETE: "red",
    ActionType.SKIP: "dim",
}


def render_plan(plan: Plan) -> None:
    table = Table(title="Plan", title_justify="left")
    table.add_column("#", justify="right")
    table.add_column("Action")
    table.add_column("Resource")
    table.add_column("After")
    for idx, action in enumerate(plan, start=1):
        style = ACTION_STYLES[action.type]
        after = ", ".join(str(rid) for rid in plan.requires.get(action.target, ()))
        table.add_row(str(idx), f"[{style}]{action.type.value}[/{style}]", str(action.target), after)
    console.print(table)
    if plan.retained:
        console.print(f"[yellow]\u26a0\ufe0f  {len(plan.retained)} owned resources are no longer declared "
                      "and were kept (use --prune to delete them)[/yellow]")


def render_status(result: ReconcileResult) -> None:
    """Print the full per-resource status map and a failure summary."""
    table = Table(title="Reconcile result", title_justify="left")
    table.add_column("Resource")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")
    for action in result.plan:
        status = result.statuses[action.target]
        style = STATUS_STYLES[status]
        table.add_row(
            str(action.target),
            action.type.value,
            f"[{style}]{status.value}[/{style}]",
            result.errors.get(action.target, ""),
        )
    console.print(table)
    if result.success:
        console.print(f"[green]\u2705 {len(result.statuses)} resources reconciled[/green]")
        return
    if result.failed:
        console.print(f"[red]\u274c Failed: {', '.join(str(rid) for rid in result.failed)}[/red]")
    if result.skipped:
        console.print(f"[yellow]\u26a0\ufe0f  Skipped: {', '.join(str(rid) for rid in result.skipped)}[/yellow]")


def render_pods(pods: Iterable[ObservedResource]) -> None:
    table = Table(title="Pods", title_justify="left")
    table.add_column("Namespace")
    table.add_column("Name")
    table.add_column("Phase")
    table.add_column("Ready")
    for pod in sorted(pods, key=lambda p: p.id):
        table.add_row(pod.id.namespace, pod.id.name, pod.phase or "-", pod.condition("Ready") or "-")
    console.print(table)
