import logging
from enum import Enum
from typing import Callable, List, Optional

from mageworker.supervisor import shutdown
from mageworker.supervisor.models import CommandSpec, WorkerSettings
from mageworker.supervisor.process import ExitStatus, ProcessHandle

log = logging.getLogger(__name__)

# (worker name, settings, partition index or None for single-instance mode) -> launch command
CommandFactory = Callable[[str, WorkerSettings, Optional[int]], CommandSpec]


class WorkerState(Enum):
    """Lifecycle state of a worker unit."""
    STOPPED = "stopped"
    RUNNING = "running"
    TERMINATING = "terminating"


class WorkerUnit:
    """
    All running instances of one named worker.

    A unit is started, checked and recycled as a whole: one exited
    instance makes the whole unit unhealthy and a restart replaces every
    instance.
    """

    def __init__(
        self,
        name: str,
        settings: WorkerSettings,
        command_factory: CommandFactory,
        capture_output: bool = False,
    ) -> None:
        self.name = name
        self.settings = settings
        self.command_factory = command_factory
        self.capture_output = capture_output
        self.handles: List[ProcessHandle] = []
        self.state = WorkerState.STOPPED
        self.restart_count = 0
        self.last_exit: Optional[ExitStatus] = None

    def __repr__(self) -> str:
        return f"<WorkerUnit {self.name} state={self.state.value} pids={self.pids}>"

    @property
    def pids(self) -> List[int]:
        return [handle.pid for handle in self.handles]

    def _instance_name(self, index: Optional[int]) -> str:
        return self.name if index is None else f"{self.name}#{index}"

    def start(self, settings: Optional[WorkerSettings] = None) -> None:
        """
        Launches `instance_count` instances of the worker.

        Partitioned workers get a zero-based index per instance. If a spawn
        fails, the instances started so far are kept and the unit stays
        degraded until the next restart.

        :param settings: Replaces the unit's settings before starting.
        :raises SpawnError: If any instance fails to start.
        """
        if self.handles:
            raise RuntimeError(f"Worker '{self.name}' is already running; terminate it first.")
        if settings is not None:
            self.settings = settings

        count = self.settings.instance_count
        indexes = list(range(count)) if self.settings.is_partitioned else [None]
        log.debug(f"Starting worker {self.name} with {count} instance(s)")
        try:
            for index in indexes:
                command = self.command_factory(self.name, self.settings, index)
                self.handles.append(
                    ProcessHandle.spawn(command, name=self._instance_name(index), capture_output=self.capture_output)
                )
        finally:
            self.state = WorkerState.RUNNING if self.handles else WorkerState.STOPPED
        log.info(f"Worker {self.name} running (PIDs: {', '.join(map(str, self.pids))})")

    def is_healthy(self) -> bool:
        """True iff every expected instance exists and is still alive."""
        if len(self.handles) != self.settings.instance_count:
            return False
        return all(handle.poll_alive() is None for handle in self.handles)

    def terminate(self) -> None:
        """
        Stops every instance: SIGTERM, grace period, SIGKILL, reap.

        A no-op on a stopped unit.
        """
        if not self.handles:
            self.state = WorkerState.STOPPED
            return

        log.debug(f"Terminating worker: {self.name}")
        self.state = WorkerState.TERMINATING
        try:
            shutdown.graceful_shutdown_sequence(self.handles)
        finally:
            self.handles = []
            self.state = WorkerState.STOPPED

    def restart(self, settings: Optional[WorkerSettings] = None) -> None:
        """Terminates all instances, then starts a fresh set."""
        self.terminate()
        self.restart_count += 1
        self.start(settings)

    def _log_exits(self) -> None:
        for handle in self.handles:
            status = handle.poll_alive()
            if status is not None:
                self.last_exit = status
                log.info(f"Worker {handle.name} (PID {handle.pid}) {status.describe()}")
        expected = self.settings.instance_count
        if len(self.handles) != expected:
            log.warning(f"Worker {self.name} is degraded: {len(self.handles)} of {expected} instances started.")

    def ensure_healthy(self, settings: Optional[WorkerSettings] = None) -> bool:
        """
        Restarts the unit if any instance has exited, for whatever reason.

        A worker that stops after reaching its message limit is recycled the
        same way as one that crashed.

        :return: True if the unit was restarted.
        """
        if self.is_healthy():
            return False
        self._log_exits()
        log.info(f"Restarting worker {self.name}")
        self.restart(settings)
        return True
