"""
This module contains the configuration settings for the mageworker daemon.
It defines supervisor timings, the Magento integration commands and the
logging configuration. Values marked as overridable can be changed through
environment variables or a `.env` file.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes', 'y')


#* --- Supervisor Settings ---
SUPERVISOR_SLEEP_INTERVAL = float(os.getenv("SUPERVISOR_SLEEP_INTERVAL", "2"))  # seconds between health checks
GRACEFUL_SHUTDOWN_TIMEOUT = 0.5  # seconds before force-killing
TERMINATE_POLL_INTERVAL = 0.05   # seconds between liveness checks while terminating
CAPTURE_WORKER_OUTPUT = _env_flag("CAPTURE_WORKER_OUTPUT", "True")
PROCESS_TITLE = "mageworker: supervisor"

#* --- Magento Integration ---
PHP_EXECUTABLE = os.getenv("PHP_EXECUTABLE", "php")
MAGENTO_BIN = "bin/magento"
MAGENTO_ENV_FILE = "app/etc/env.php"
MAGENTO_QUEUE_DOCS_URL = (
    "https://experienceleague.adobe.com/docs/commerce-operations/configuration-guide/"
    "message-queues/manage-message-queues.html#configuration"
)
DEFAULT_MAX_MESSAGES = 10000
DEFAULT_CRON_RUN = True
QUERY_TIMEOUT = 60  # seconds allowed for php / bin/magento configuration queries

# Consumers that only work with an AMQP broker configured.
RABBITMQ_CONSUMER_NAMES = frozenset({"async.operations.all"})

#* --- Logging ---
LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'
LOKI_ENABLED = _env_flag("LOKI_ENABLED")
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "")
LOKI_JOB_NAME = os.getenv("LOKI_JOB_NAME", "mageworker")
LOG_BUFFER_FLUSH_INTERVAL = int(os.getenv("LOG_BUFFER_FLUSH_INTERVAL", "10"))
LOG_BUFFER_BATCH_SIZE = 200
