"""
Discovery of the workers to run.

The supervisor only needs a `ConfigProvider`. `MagentoConfigProvider` reads
the queue consumers and their runner settings from a Magento 2 installation
by calling `php` and `bin/magento` in the Magento root.
"""

import json
import logging
import subprocess
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from mageworker import settings
from mageworker.exceptions import ConfigurationError
from mageworker.supervisor.models import CommandSpec, WorkerSettings

log = logging.getLogger(__name__)

RABBITMQ_CONFIGURED_QUERY = f"""
$config = include '{settings.MAGENTO_ENV_FILE}';
var_dump(isset($config['queue']['amqp']));
"""

CONSUMER_RUNNER_QUERY = f"""
$config = include '{settings.MAGENTO_ENV_FILE}';
$runner = $config['cron_consumers_runner'] ?? [];
if (isset($runner['multiple_processes']) && empty($runner['multiple_processes'])) {{
    unset($runner['multiple_processes']);
}}
echo json_encode(empty($runner) ? new stdClass() : $runner);
"""


class ConfigProvider(Protocol):
    """What the supervisor needs to know about the workers it runs."""
    rabbitmq_configured: bool
    default_max_messages: int

    def list_workers(self) -> List[str]: ...

    def settings_for(self, name: str) -> Optional[WorkerSettings]: ...

    def command_for(self, name: str, worker_settings: WorkerSettings, index: Optional[int]) -> CommandSpec: ...


@dataclass(frozen=True)
class ConsumerRunnerConfig:
    """The `cron_consumers_runner` section of Magento's app/etc/env.php."""
    cron_run: bool = settings.DEFAULT_CRON_RUN
    max_messages: int = settings.DEFAULT_MAX_MESSAGES
    consumers: Tuple[str, ...] = ()
    multiple_processes: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "ConsumerRunnerConfig":
        """
        Builds the config from the decoded JSON, applying Magento's defaults.

        :raises ConfigurationError: If a value has the wrong type.
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Magento cron_consumers_runner configuration must be an object.")

        try:
            max_messages = int(data.get("max_messages", settings.DEFAULT_MAX_MESSAGES))
            processes = data.get("multiple_processes") or {}
            if not isinstance(processes, dict):
                raise ConfigurationError("Magento consumer multiple_processes must map consumer names to counts.")
            multiple_processes = {str(name): int(count) for name, count in processes.items()}
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid Magento cron_consumers_runner configuration: {e}") from e

        consumers = data.get("consumers") or []
        if not isinstance(consumers, list):
            raise ConfigurationError("Magento consumers setting must be a list of consumer names.")

        config = cls(
            cron_run=bool(data.get("cron_run", settings.DEFAULT_CRON_RUN)),
            max_messages=max_messages,
            consumers=tuple(str(name) for name in consumers),
            multiple_processes=multiple_processes,
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.cron_run:
            raise ConfigurationError(
                "Magento cron worker is enabled. Please see "
                f"{settings.MAGENTO_QUEUE_DOCS_URL} to see how to disable the cron_run variable."
            )
        if self.max_messages < 0:
            raise ConfigurationError("Magento consumer max_messages must not be negative.")
        if any(count < 0 for count in self.multiple_processes.values()):
            raise ConfigurationError("Magento consumer multiple_processes values must not be negative.")


class MagentoConfigProvider:
    """Reads queue consumers and their settings from a Magento installation."""

    def __init__(self, magento_dir: Path, php_executable: str = settings.PHP_EXECUTABLE) -> None:
        """
        Validates the Magento root and loads its consumer configuration.

        :param magento_dir: The Magento root directory.
        :param php_executable: The PHP CLI used to read app/etc/env.php.
        :raises ConfigurationError: If the installation is missing or misconfigured.
        """
        self.magento_dir = Path(magento_dir).expanduser().resolve()
        self.php_executable = php_executable
        self.validate()

        self.rabbitmq_configured = self._query_rabbitmq_configured()
        log.debug(f"Message broker configured: {self.rabbitmq_configured}")
        self.consumer_config = ConsumerRunnerConfig.from_dict(self._query_consumer_config())

    @property
    def magento_bin(self) -> Path:
        return self.magento_dir / settings.MAGENTO_BIN

    @property
    def default_max_messages(self) -> int:
        return self.consumer_config.max_messages

    def validate(self) -> None:
        if not self.magento_dir.is_dir():
            raise ConfigurationError(f"Magento directory not found: {self.magento_dir}")
        if not self.magento_bin.exists():
            raise ConfigurationError(f"Magento bin not found: {self.magento_bin}")

    def _run(self, argv: Sequence[str], description: str) -> str:
        """Runs a query command in the Magento root and returns its stdout."""
        log.debug(f"Running {description}: {' '.join(argv)}")
        try:
            result = subprocess.run(
                list(argv),
                cwd=str(self.magento_dir),
                capture_output=True,
                text=True,
                timeout=settings.QUERY_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise ConfigurationError(f"Failed to run {description}: {e}") from e
        if result.returncode != 0:
            details = (result.stderr or result.stdout).strip()
            raise ConfigurationError(f"{description} failed with exit code {result.returncode}: {details}")
        return result.stdout

    def _query_rabbitmq_configured(self) -> bool:
        output = self._run([self.php_executable, "-r", RABBITMQ_CONFIGURED_QUERY], "message broker query")
        return output.strip() == "bool(true)"

    def _query_consumer_config(self) -> Any:
        output = self._run([self.php_executable, "-r", CONSUMER_RUNNER_QUERY], "consumer configuration query")
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Could not parse Magento consumer configuration: {e}") from e

    def list_workers(self) -> List[str]:
        """
        Lists the consumers to run, as reported by `bin/magento queue:consumers:list`.

        Broker-only consumers are dropped when no broker is configured, and
        the `consumers` allow-list is applied when it is set.
        """
        output = self._run([str(self.magento_bin), "queue:consumers:list"], "consumer list query")
        names = [line.strip() for line in output.splitlines() if line.strip()]

        if not self.rabbitmq_configured:
            skipped = [name for name in names if name in settings.RABBITMQ_CONSUMER_NAMES]
            if skipped:
                log.debug(f"Skipping broker-only consumers: {', '.join(skipped)}")
            names = [name for name in names if name not in settings.RABBITMQ_CONSUMER_NAMES]

        allowed = self.consumer_config.consumers
        if allowed:
            names = [name for name in names if name in allowed]
        return names

    def settings_for(self, name: str) -> Optional[WorkerSettings]:
        count = self.consumer_config.multiple_processes.get(name, 0)
        return WorkerSettings(
            instance_count=count if count > 0 else 1,
            max_messages=self.consumer_config.max_messages,
        )

    def command_for(self, name: str, worker_settings: WorkerSettings, index: Optional[int]) -> CommandSpec:
        args = ["queue:consumers:start", name]
        # 0 lets the consumer run without a message limit.
        if worker_settings.has_message_cap:
            args += ["--max-messages", str(worker_settings.max_messages)]
        if worker_settings.is_partitioned and index is not None:
            args += ["--multi-process", str(index)]
        else:
            args.append("--single-thread")
        return CommandSpec(executable=str(self.magento_bin), args=tuple(args), cwd=self.magento_dir)
