import time
import logging
from typing import List, Sequence

from mageworker import settings
from mageworker.exceptions import ReapError
from mageworker.supervisor.process import ExitStatus, ProcessHandle

log = logging.getLogger(__name__)


def _terminate_processes(handles: Sequence[ProcessHandle]) -> List[ProcessHandle]:
    """Sends SIGTERM to every handle that is still alive and returns those handles."""
    signaled = []
    for handle in handles:
        if handle.poll_alive() is not None:
            continue
        log.debug(f"Sending SIGTERM to {handle.name} (PID {handle.pid})")
        handle.signal_terminate()
        signaled.append(handle)
    return signaled


def wait_for_exit(handles: Sequence[ProcessHandle], timeout: float, interval: float) -> List[ProcessHandle]:
    """
    Polls the handles until they have all exited or `timeout` elapses.

    :return: The handles still alive when the wait ended.
    """
    deadline = time.monotonic() + timeout
    alive = [h for h in handles if h.poll_alive() is None]
    while alive and time.monotonic() < deadline:
        time.sleep(interval)
        alive = [h for h in alive if h.poll_alive() is None]
    return alive


def _forceful_kill(handles: Sequence[ProcessHandle]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not handles:
        return

    log.warning(f"{len(handles)} processes did not terminate gracefully. Forcing shutdown...")
    for handle in handles:
        log.warning(f"Killing stubborn process {handle.name} (PID {handle.pid}).")
        handle.force_kill()


def _reap_all(handles: Sequence[ProcessHandle]) -> List[ExitStatus]:
    statuses = []
    for handle in handles:
        try:
            status = handle.reap()
        except ReapError as e:
            log.critical(f"{e}. Process table tracking for '{handle.name}' is lost; dropping it.")
            continue
        log.debug(f"Reaped {handle.name} (PID {handle.pid}): {status.describe()}")
        statuses.append(status)
    return statuses


def graceful_shutdown_sequence(
    handles: Sequence[ProcessHandle],
    grace_period: float = settings.GRACEFUL_SHUTDOWN_TIMEOUT,
    poll_interval: float = settings.TERMINATE_POLL_INTERVAL,
) -> List[ExitStatus]:
    """
    Runs the full termination sequence for the given handles.

    Every live process gets SIGTERM, then up to `grace_period` seconds to
    exit, then SIGKILL. Every handle is reaped exactly once, whichever
    path it took.

    :param handles: The process handles to shut down.
    :return: Exit statuses of the handles that were reaped.
    """
    signaled = _terminate_processes(handles)
    alive = wait_for_exit(signaled, grace_period, poll_interval)
    _forceful_kill(alive)
    return _reap_all(handles)
