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

"""env_manager - declarative cluster-environment orchestration package."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager

from rich.console import Console
from rich.markup import escape

__version__ = "0.1.0"


class ThreadAwareConsole:
    """Console proxy that tags output of worker threads with their task label."""

    def __init__(self, real_console: Console) -> None:
        object.__setattr__(self, "_real", real_console)
        object.__setattr__(self, "_local", threading.local())

    def __getattr__(self, name: str):
        return getattr(self._real, name)

    def print(self, *objects, **kwargs) -> None:
        label = getattr(self._local, "label", None)
        if label and objects:
            objects = (f"[dim]{escape(f'[{label}]')}[/dim]", *objects)
        self._real.print(*objects, **kwargs)

    @contextmanager
    def scoped(self, label: str):
        """Prefix all console output of the current thread with *label*."""
        previous = getattr(self._local, "label", None)
        self._local.label = label
        try:
            yield
        finally:
            self._local.label = previous


console = ThreadAwareConsole(Console(stderr=True))
logger = logging.getLogger("env_manager")
