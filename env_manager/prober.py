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

"""Readiness Prober: cancellable polling of readiness predicates."""

from __future__ import annotations

import threading

from tenacity import RetryError, Retrying, retry_if_result, stop_before_delay, stop_when_event_set, wait_fixed

from env_manager import console, logger
from env_manager.constants import DEFAULT_POLL_INTERVAL_SECONDS
from env_manager.errors import ClusterUnreachable
from env_manager.models import ProbeOutcome, ReadinessCheck, ResourceId
from env_manager.state import ClusterStateReader


class ReadinessProber:
    """Polls a ClusterStateReader until a readiness predicate holds.

    Args:
        reader: State reader used to evaluate predicates.
        poll_interval: Seconds between polls.
        cancel: Shared cancellation signal; setting it stops every probe
            at its next wake-up and makes it return ``CANCELLED``.
    """

    def __init__(
        self,
        reader: ClusterStateReader,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        cancel: threading.Event | None = None,
    ) -> None:
        self.reader = reader
        self.poll_interval = poll_interval
        self.cancel = cancel if cancel is not None else threading.Event()

    def _poll(self, target: ResourceId, check: ReadinessCheck) -> bool:
        if self.cancel.is_set():
            return False
        try:
            return self.reader.evaluate(target, check)
        except ClusterUnreachable as err:
            logger.warning("Readiness poll for %s failed, will retry: %s", target, err)
            return False

    def probe(self, target: ResourceId, check: ReadinessCheck) -> ProbeOutcome:
        """Wait until *check* holds for *target*.

        Returns:
            ``READY`` when the predicate holds, ``TIMEOUT`` when the next poll
            would land past ``check.timeout`` seconds, or
            ``CANCELLED`` if the cancellation signal was set.
        """
        if self.cancel.is_set():
            return ProbeOutcome.CANCELLED

        console.print(f"[yellow]\u2139\ufe0f  Waiting for {target} {check.describe()}...[/yellow]")
        retrying = Retrying(
            stop=stop_before_delay(check.timeout) | stop_when_event_set(self.cancel),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_result(lambda ready: not ready),
            sleep=self.cancel.wait,
        )
        try:
            retrying(self._poll, target, check)
        except RetryError:
            if self.cancel.is_set():
                console.print(f"[yellow]\u26a0\ufe0f  Wait for {target} cancelled[/yellow]")
                return ProbeOutcome.CANCELLED
            console.print(f"[red]\u2717 {target} not {check.condition} after {check.timeout:g}s[/red]")
            return ProbeOutcome.TIMEOUT

        console.print(f"[green]\u2713 {target} is {check.condition}[/green]")
        return ProbeOutcome.READY
