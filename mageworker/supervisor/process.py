import sys
import signal
import psutil
import logging
import threading
import subprocess
from dataclasses import dataclass
from typing import IO, Any, Dict, Optional

from mageworker.exceptions import ReapError, SpawnError
from mageworker.supervisor.models import CommandSpec

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExitStatus:
    """How a child process ended. A negative returncode means it was killed by a signal."""
    returncode: int

    @property
    def signaled(self) -> bool:
        return self.returncode < 0

    @property
    def signal_number(self) -> Optional[int]:
        return -self.returncode if self.signaled else None

    @property
    def exit_code(self) -> Optional[int]:
        return None if self.signaled else self.returncode

    def describe(self) -> str:
        if self.signaled:
            try:
                name = signal.Signals(self.signal_number).name
            except ValueError:
                name = f"signal {self.signal_number}"
            return f"killed by {name}"
        return f"exited with code {self.returncode}"


#* --- Output Capture ---
def _read_pipe(pipe: IO[bytes], process_name: str, level: int) -> None:
    """Target function for reader threads. Reads and logs lines from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{process_name}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").rstrip()
            if line:
                proc_logger.log(level, line)
    except (OSError, ValueError) as e:
        proc_logger.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()


def log_process_output(process: subprocess.Popen, name: str) -> None:
    """Starts background threads to consume and log a process's stdout/stderr."""
    if process.stdout:
        threading.Thread(
            target=_read_pipe, args=(process.stdout, name, logging.INFO),
            daemon=True, name=f"stdout-{name}",
        ).start()
    if process.stderr:
        threading.Thread(
            target=_read_pipe, args=(process.stderr, name, logging.ERROR),
            daemon=True, name=f"stderr-{name}",
        ).start()


def _get_popen_kwargs() -> Dict[str, Any]:
    """Returns platform-specific arguments for subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    # Workers get their own session so a terminal Ctrl-C only reaches the supervisor.
    return {"start_new_session": True}


#* --- Process Handle ---
class ProcessHandle:
    """
    Owns exactly one OS child process.

    The handle must be reaped before it is dropped; `reap()` is the only
    place that blocks on the OS.
    """

    def __init__(self, popen: subprocess.Popen, name: str) -> None:
        self.name = name
        self.popen = popen
        self.pid: int = popen.pid
        self.exit_status: Optional[ExitStatus] = None
        self.reaped = False
        try:
            # Captured now so later signals can detect PID reuse.
            self._process: Optional[psutil.Process] = psutil.Process(popen.pid)
        except psutil.NoSuchProcess:
            self._process = None

    def __repr__(self) -> str:
        return f"<ProcessHandle {self.name} pid={self.pid} status={self.status()}>"

    @classmethod
    def spawn(cls, command: CommandSpec, name: Optional[str] = None, capture_output: bool = False) -> "ProcessHandle":
        """
        Launches a process described by `command`.

        :param command: Executable, arguments and working directory.
        :param name: Logical name used for logging; defaults to the executable.
        :param capture_output: If True, stdout/stderr are forwarded to the `proc.<name>` loggers.
        :raises SpawnError: If the OS refuses to create the process.
        """
        name = name or command.executable
        argv = command.argv()
        output = subprocess.PIPE if capture_output else subprocess.DEVNULL
        try:
            p = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=output,
                cwd=str(command.cwd) if command.cwd else None,
                env=command.env,
                **_get_popen_kwargs(),
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            log.error(f"Failed to start process '{name}': {e}")
            raise SpawnError(name, argv, str(e)) from e

        if capture_output:
            log_process_output(p, name)
        log.debug(f"Started {name} with PID {p.pid}: {' '.join(argv)}")
        return cls(p, name)

    def poll_alive(self) -> Optional[ExitStatus]:
        """
        Non-blocking liveness check.

        :return: None while the process is alive, otherwise its ExitStatus.
        """
        if self.exit_status is None:
            returncode = self.popen.poll()
            if returncode is not None:
                self.exit_status = ExitStatus(returncode)
        return self.exit_status

    @property
    def is_alive(self) -> bool:
        return self.poll_alive() is None

    def status(self) -> str:
        """Gets a string representation of the process status."""
        if self.exit_status is not None or self._process is None:
            return "stopped"
        try:
            if self._process.status() == psutil.STATUS_ZOMBIE:
                return "zombie"
            return "running"
        except psutil.NoSuchProcess:
            return "stopped"
        except psutil.Error:
            return "unknown"

    def _send(self, action: str) -> None:
        if self._process is None or self.poll_alive() is not None:
            return
        try:
            getattr(self._process, action)()
        except psutil.NoSuchProcess:
            log.debug(f"Process {self.name} (PID {self.pid}) no longer exists, skipping {action}.")

    def signal_terminate(self) -> None:
        """Sends SIGTERM without waiting for the process to react."""
        self._send("terminate")

    def force_kill(self) -> None:
        """Sends SIGKILL."""
        self._send("kill")

    def reap(self) -> ExitStatus:
        """
        Blocks until the OS releases the process entry.

        Only the first call waits; later calls return the recorded status.

        :raises ReapError: If waiting on the process fails at the OS level.
        """
        if self.reaped:
            return self.exit_status
        try:
            returncode = self.popen.wait()
        except OSError as e:
            raise ReapError(self.pid, str(e)) from e
        self.reaped = True
        self.exit_status = ExitStatus(returncode)
        return self.exit_status
