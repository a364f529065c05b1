"""Exception types raised by the mageworker daemon."""

from typing import Optional, Sequence


class MageWorkerError(Exception):
    """Base class for all daemon errors."""


class ConfigurationError(MageWorkerError):
    """The Magento environment is missing or misconfigured."""


class SpawnError(MageWorkerError):
    """The OS refused to create a worker process."""

    def __init__(self, worker_name: str, command: Sequence[str], reason: Optional[str] = None):
        self.worker_name = worker_name
        self.command = list(command)
        self.reason = reason
        message = f"Failed to start worker '{worker_name}': {' '.join(self.command)}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class ReapError(MageWorkerError):
    """Waiting on a child process failed at the OS level."""

    def __init__(self, pid: int, reason: str):
        self.pid = pid
        super().__init__(f"Failed to reap process {pid}: {reason}")
