"""
This module contains the configuration settings for procmux.
It defines supervisor timeouts, stream handling parameters and logging options.
Every value can be overridden from the environment or a .env file.
"""

import os
import signal
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 't', 'yes', 'y')


def _env_signal(name: str, default: str) -> signal.Signals:
    raw = os.getenv(name, default).strip().upper()
    if not raw.startswith("SIG"):
        raw = f"SIG{raw}"
    try:
        return signal.Signals[raw]
    except KeyError:
        return signal.Signals[default]


#* --- Supervisor Settings ---
SUPERVISOR_SLEEP_INTERVAL = 0.5
GRACEFUL_SHUTDOWN_TIMEOUT = float(os.getenv("PROCMUX_SHUTDOWN_TIMEOUT", "10"))  # seconds before force-killing
FORCE_KILL_TIMEOUT = float(os.getenv("PROCMUX_KILL_TIMEOUT", "5"))  # seconds to wait for reaping after a kill
WORKER_STOP_SIGNAL = _env_signal("PROCMUX_STOP_SIGNAL", "SIGTERM")
PROCESS_TITLE = "procmux - Supervisor"

#* --- Stream Settings ---
READ_CHUNK_SIZE = int(os.getenv("PROCMUX_READ_CHUNK_SIZE", "65536"))
OUTPUT_ENCODING = os.getenv("PROCMUX_ENCODING", "utf-8")

#* --- Logging ---
VERBOSE_LOGGING = _env_bool("PROCMUX_VERBOSE")
MIRROR_OUTPUT_TO_LOG = _env_bool("PROCMUX_MIRROR_TO_LOG")
LOG_BUFFER_FLUSH_INTERVAL = 10
LOKI_BATCH_SIZE = 200

# Grafana Loki (for observability)
LOKI_ENABLED = _env_bool("LOKI_ENABLED")
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- Demo Workload ---
# (identity, interval in milliseconds) launched when no workers are given.
DEMO_WORKERS = [("app1", 1000), ("app2", 1500), ("app3", 2000)]
