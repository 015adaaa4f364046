import os
import sys
import socket
import logging
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

import requests

from procmux import settings

WORKER_JOB = "procmux-worker"
SUPERVISOR_JOB = "procmux"


class LokiHandler(logging.Handler):
    """
    Ships log records to a Grafana Loki instance in batches.

    Records from ``proc.<identity>`` loggers are labelled with the worker
    identity so each supervised process gets its own Loki stream. A batch is
    pushed when it reaches ``batch_size`` entries and otherwise every
    ``flush_interval`` seconds from a background thread.
    """
    def __init__(self, url: str, org_id: Optional[str] = None,
                 flush_interval: Optional[float] = None, batch_size: Optional[int] = None):
        """
        :param url: The base URL of the Loki instance.
        :param org_id: Tenant sent as ``X-Scope-OrgID``.
        :param flush_interval: Seconds between background flushes.
        :param batch_size: Push as soon as the buffer holds this many entries.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.headers = {'Content-Type': 'application/json'}
        if org_id:
            self.headers['X-Scope-OrgID'] = org_id
        self.log_buffer: Deque[Dict[str, Any]] = deque()
        self.buffer_lock = threading.Lock()
        self.flush_interval = flush_interval or settings.LOG_BUFFER_FLUSH_INTERVAL
        self.batch_size = batch_size or settings.LOKI_BATCH_SIZE
        self.hostname = os.getenv('HOSTNAME') or socket.gethostname()

        self.stop_event = threading.Event()
        self.flush_thread = threading.Thread(target=self._flush_loop, name="LokiFlushThread", daemon=True)
        self.flush_thread.start()

    def _flush_loop(self) -> None:
        while not self.stop_event.wait(self.flush_interval):
            self.flush()
        self.flush()

    def build_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        """Builds one Loki stream entry for a log record."""
        if record.name.startswith('proc.'):
            # Worker lines are shipped verbatim under the worker's identity.
            job, logger_name, msg = WORKER_JOB, record.name.split('.', 1)[-1], record.getMessage()
        else:
            job, logger_name, msg = SUPERVISOR_JOB, record.name, self.format(record)

        return {
            "stream": {
                "job": job,
                "level": record.levelname.lower(),
                "hostname": self.hostname,
                "logger": logger_name,
            },
            "values": [[str(int(record.created * 1e9)), msg]],
        }

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = self.build_entry(record)
        except Exception:
            self.handleError(record)
            return

        batch = None
        with self.buffer_lock:
            self.log_buffer.append(entry)
            if len(self.log_buffer) >= self.batch_size:
                batch = self._take_batch()
        if batch:
            self._push(batch)

    def _take_batch(self) -> List[Dict[str, Any]]:
        """Empties the buffer. Assumes the buffer lock is held."""
        batch = list(self.log_buffer)
        self.log_buffer.clear()
        return batch

    def _push(self, batch: List[Dict[str, Any]]) -> None:
        try:
            response = requests.post(self.url, json={"streams": batch}, headers=self.headers, timeout=5)
            # Loki answers a successful push with 204 No Content.
            if response.status_code != 204:
                print(f"ERROR: Loki returned status {response.status_code}: {response.text}", file=sys.stderr)
        except requests.RequestException as e:
            print(f"CRITICAL: Failed to send {len(batch)} logs to Loki: {e}", file=sys.stderr)

    def flush(self) -> None:
        with self.buffer_lock:
            batch = self._take_batch()
        if batch:
            self._push(batch)

    def close(self) -> None:
        """Stops the flush thread, which pushes whatever is still buffered."""
        self.stop_event.set()
        if self.flush_thread.is_alive():
            self.flush_thread.join(timeout=self.flush_interval + 2)
        super().close()
