import time
import signal
import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, TYPE_CHECKING

from mageworker import settings
from mageworker.exceptions import SpawnError
from mageworker.supervisor.models import WorkerSettings
from mageworker.supervisor.worker import CommandFactory, WorkerUnit

if TYPE_CHECKING:
    from mageworker.config import ConfigProvider

log = logging.getLogger(__name__)

TERM_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class Supervisor:
    """
    Runs every configured worker and keeps it running.

    The supervision loop checks all units every `poll_interval` seconds and
    restarts the unhealthy ones. SIGINT/SIGTERM set the shutdown flag; the
    loop notices it at the top of the next iteration and stops every unit.
    """

    def __init__(self, units: Iterable[WorkerUnit], poll_interval: float = settings.SUPERVISOR_SLEEP_INTERVAL) -> None:
        self.units: List[WorkerUnit] = list(units)
        self.poll_interval = poll_interval
        self.shutdown_signal_received = threading.Event()
        self.received_signal: Optional[int] = None
        self._previous_handlers: Dict[int, Any] = {}

    @classmethod
    def initialize(
        cls,
        worker_names: Iterable[str],
        settings_by_name: Mapping[str, Optional[WorkerSettings]],
        command_factory: CommandFactory,
        default_max_messages: int = settings.DEFAULT_MAX_MESSAGES,
        capture_output: bool = settings.CAPTURE_WORKER_OUTPUT,
        poll_interval: float = settings.SUPERVISOR_SLEEP_INTERVAL,
    ) -> "Supervisor":
        """
        Creates and starts one unit per worker name.

        Workers without settings run a single instance with `default_max_messages`.
        If any worker fails to start, or startup is interrupted, every unit
        started so far is terminated again and the error is re-raised.

        :raises SpawnError: If any instance fails to start.
        """
        units: List[WorkerUnit] = []
        try:
            for name in worker_names:
                if any(unit.name == name for unit in units):
                    log.warning(f"Worker '{name}' is listed more than once. Ignoring duplicate.")
                    continue
                worker_settings = settings_by_name.get(name) or WorkerSettings(max_messages=default_max_messages)
                unit = WorkerUnit(name, worker_settings, command_factory, capture_output=capture_output)
                units.append(unit)
                unit.start()
        except BaseException as e:
            reason = "interrupted" if isinstance(e, KeyboardInterrupt) else "failed"
            log.critical(f"Startup {reason}. Stopping the workers that were already started.")
            for unit in units:
                unit.terminate()
            raise

        process_count = sum(len(unit.handles) for unit in units)
        log.info(f"Started {len(units)} workers ({process_count} processes)")
        return cls(units, poll_interval=poll_interval)

    @classmethod
    def from_provider(cls, provider: "ConfigProvider", **kwargs: Any) -> "Supervisor":
        """Discovers the workers through `provider` and starts them."""
        log.debug("Fetching worker list...")
        names = provider.list_workers()
        log.info(f"Found {len(names)} workers")
        settings_by_name = {name: provider.settings_for(name) for name in names}
        kwargs.setdefault("default_max_messages", provider.default_max_messages)
        return cls.initialize(names, settings_by_name, provider.command_for, **kwargs)

    #* --- Signal Handling ---
    def _handle_signal(self, signum: int, frame: Any) -> None:
        # Runs between bytecodes of the main thread, so no logging here.
        self.received_signal = signum
        self.shutdown_signal_received.set()

    def install_signal_handlers(self) -> None:
        """Routes SIGINT/SIGTERM into the shutdown flag."""
        if threading.current_thread() is not threading.main_thread():
            log.debug("Not on the main thread; signal handlers not installed.")
            return
        for sig in TERM_SIGNALS:
            self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)

    def restore_signal_handlers(self) -> None:
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers.clear()

    def request_shutdown(self) -> None:
        self.shutdown_signal_received.set()

    #* --- Supervision ---
    def tick(self) -> List[str]:
        """
        Runs one health check over all units, restarting unhealthy ones.

        A unit that fails to restart is left degraded and retried on the
        next tick. No restarts happen once shutdown has been requested.

        :return: Names of the units that were restarted.
        """
        restarted = []
        for unit in self.units:
            if self.shutdown_signal_received.is_set():
                break
            try:
                if unit.ensure_healthy():
                    restarted.append(unit.name)
            except SpawnError as e:
                log.error(f"{e}. Retrying on the next health check.")
        return restarted

    def supervision_loop(self) -> None:
        """Checks the units every `poll_interval` seconds until shutdown is requested."""
        log.info(f"Supervisor started. Monitoring {len(self.units)} workers.")
        while not self.shutdown_signal_received.is_set():
            self.tick()
            self.shutdown_signal_received.wait(self.poll_interval)

        if self.received_signal is not None:
            log.info(f"Received {signal.Signals(self.received_signal).name}. Stopping all workers.")

    def run(self) -> None:
        """Installs the signal handlers, supervises until shutdown, then stops every unit."""
        self.install_signal_handlers()
        try:
            self.supervision_loop()
        finally:
            self.shutdown()
            self.restore_signal_handlers()

    def shutdown(self) -> None:
        """Terminates every unit in creation order. Safe to call more than once."""
        self.shutdown_signal_received.set()
        running = [unit for unit in self.units if unit.handles]
        if not running:
            log.info("No running workers found to stop.")
            return

        log.info(f"Stopping {len(running)} workers")
        start_time = time.monotonic()
        for unit in running:
            unit.terminate()
        log.info(f"Supervisor stop sequence completed in {time.monotonic() - start_time:.2f} seconds.")
