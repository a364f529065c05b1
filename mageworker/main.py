import sys
import signal
import logging
import argparse
import setproctitle
from pathlib import Path
from typing import List, Optional

from mageworker import __version__, settings
from mageworker.config import MagentoConfigProvider
from mageworker.exceptions import ConfigurationError, SpawnError
from mageworker.log import setup_logging
from mageworker.supervisor import Supervisor

log = logging.getLogger("mageworker")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mageworker",
        description="Runs Magento 2 queue consumers in the background and restarts them when they exit.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "-w", "--working-directory",
        type=Path,
        default=None,
        help="Magento root directory (defaults to the current directory).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point of the daemon.

    :return: 0 after a clean shutdown, 1 if the environment is invalid or workers could not start.
    """
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    setproctitle.setproctitle(settings.PROCESS_TITLE)

    magento_dir = args.working_directory or Path.cwd()
    # Until the supervisor installs its own handlers, SIGTERM interrupts
    # startup like Ctrl-C so the workers started so far are stopped.
    previous_sigterm = signal.signal(signal.SIGTERM, signal.default_int_handler)
    try:
        try:
            provider = MagentoConfigProvider(magento_dir)
            supervisor = Supervisor.from_provider(provider)
        except ConfigurationError as e:
            log.error(f"Configuration check failed: {e}")
            return 1
        except SpawnError as e:
            log.critical(f"{e}. No workers are running.")
            return 1
        except KeyboardInterrupt:
            log.warning("Startup interrupted. No workers are running.")
            return 1

        supervisor.run()
    finally:
        signal.signal(signal.SIGTERM, previous_sigterm)

    log.info("All workers stopped. Exiting.")
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
