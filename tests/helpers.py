"""Helpers for launching real child processes through `sys.executable -c`."""

from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from mageworker.supervisor import CommandSpec, WorkerSettings

SLEEPER = "import time; time.sleep(600)"
QUICK_EXIT = "import sys; sys.exit(0)"


def sigterm_ignorer(ready_file: Path) -> str:
    """A worker that ignores SIGTERM and touches `ready_file` once the handler is in place."""
    return (
        "import signal, time; "
        "signal.signal(signal.SIGTERM, signal.SIG_IGN); "
        f"open({str(ready_file)!r}, 'w').close(); "
        "time.sleep(600)"
    )


def python_command(script: str, *args: str, cwd: Optional[Path] = None) -> CommandSpec:
    return CommandSpec(executable=sys.executable, args=("-c", script, *args), cwd=cwd)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RecordingCommandFactory:
    """Builds python commands per worker and records every call."""

    def __init__(self, scripts: Optional[Dict[str, str]] = None, default: str = SLEEPER) -> None:
        self.scripts = scripts or {}
        self.default = default
        self.failing: set = set()
        self.calls: List[tuple] = []

    def __call__(self, name: str, settings: WorkerSettings, index: Optional[int]) -> CommandSpec:
        self.calls.append((name, settings, index))
        if name in self.failing:
            return CommandSpec(executable="/nonexistent/bin/magento", args=("queue:consumers:start", name))
        marker = "--single-thread" if index is None else f"--multi-process={index}"
        script = self.scripts.get(name, self.default)
        return python_command(script, name, f"--max-messages={settings.max_messages}", marker)


