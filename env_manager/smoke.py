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

"""Smoke tests: one bounded HTTP request per declared endpoint."""

from __future__ import annotations

import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

import requests
from rich.panel import Panel

from env_manager import console, logger
from env_manager.config import SmokeConfig
from env_manager.models import SmokeResult, SmokeTarget

MAX_SMOKE_WORKERS = 8


def check_target(session: requests.Session, target: SmokeTarget, timeout: float) -> SmokeResult:
    """Issue a single GET against *target* and judge the response.

    Args:
        session: HTTP session to send the request with.
        target: Endpoint with its expected statuses and optional body text.
        timeout: Seconds allowed for connect and read.

    Returns:
        The per-target result, including latency when a response arrived.
    """
    start = time.perf_counter()
    try:
        response = session.get(target.url, timeout=timeout)
    except requests.Timeout:
        return SmokeResult(target, ok=False, error=f"timed out after {timeout:g}s")
    except requests.RequestException as err:
        return SmokeResult(target, ok=False, error=f"{type(err).__name__}: {err}")
    latency_ms = (time.perf_counter() - start) * 1000

    if response.status_code not in target.expect:
        expected = ", ".join(str(code) for code in target.expect)
        return SmokeResult(target, ok=False, status_code=response.status_code, latency_ms=latency_ms,
                           error=f"expected {expected}")
    if target.contains and target.contains not in response.text:
        return SmokeResult(target, ok=False, status_code=response.status_code, latency_ms=latency_ms,
                           error=f"body does not contain '{target.contains}'")
    return SmokeResult(target, ok=True, status_code=response.status_code, latency_ms=latency_ms)


class SmokeTester:
    """Runs smoke checks concurrently and reports them in declaration order."""

    def __init__(self, config: SmokeConfig | None = None, session: requests.Session | None = None) -> None:
        self.config = config or SmokeConfig()
        self.session = session or requests.Session()

    def run(self, targets: Sequence[SmokeTarget]) -> list[SmokeResult]:
        if not targets:
            console.print("[yellow]\u26a0\ufe0f  No endpoints declared, nothing to check[/yellow]")
            return []
        console.print(Panel.fit(f"Checking {len(targets)} endpoints", style="bold blue"))
        with ThreadPoolExecutor(max_workers=min(len(targets), MAX_SMOKE_WORKERS)) as executor:
            results = list(executor.map(
                lambda target: check_target(self.session, target, self.config.timeout), targets,
            ))
        for result in results:
            if result.ok:
                console.print(f"[green]\u2713 {result.target.label} {result.status_code} "
                              f"({result.latency_ms:.0f} ms)[/green]")
            else:
                console.print(f"[red]\u2717 {result.target.label} - {result.error}[/red]")
            logger.info("smoke %s ok=%s status=%s", result.target.url, result.ok, result.status_code)
        return results
