import sys
import queue
import logging
import threading
from typing import Optional, TextIO, Tuple

from procmux import settings
from procmux.log.setup import SUBPROCESS_LOGGER_PREFIX
from procmux.supervisor.worker import StreamKind, TaggedLine

log = logging.getLogger(__name__)

_STOP = object()


def render(line: TaggedLine) -> str:
    """Renders a tagged line the way it appears on the aggregated output."""
    if line.stream_kind == StreamKind.ERR:
        return f"[{line.worker_identity} ERROR] {line.text}"
    return f"[{line.worker_identity}] {line.text}"


class AggregatedSink:
    """
    The single destination of all workers' output.

    Pump threads hand lines over through :meth:`submit`; one writer thread
    takes them off the queue in arrival order and writes each one whole,
    Out lines to the normal channel and Err lines to the error channel.
    """

    def __init__(self, out: Optional[TextIO] = None, err: Optional[TextIO] = None,
                 mirror_to_log: Optional[bool] = None) -> None:
        """
        :param out: Normal channel; defaults to the supervisor's stdout.
        :param err: Error channel; defaults to the supervisor's stderr.
        :param mirror_to_log: Also emit each line on the ``proc.<identity>`` logger.
        """
        self.out = out
        self.err = err
        self.mirror_to_log = settings.MIRROR_OUTPUT_TO_LOG if mirror_to_log is None else mirror_to_log
        self.lines_written = 0
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._writer: Optional[threading.Thread] = None
        self._closed = threading.Event()

    def start(self) -> None:
        if self._writer is not None:
            return
        self._writer = threading.Thread(target=self._drain, name="AggregatedSinkWriter", daemon=True)
        self._writer.start()

    def submit(self, line: TaggedLine) -> None:
        """Queues a line for writing. Safe to call from any thread."""
        if self._closed.is_set():
            log.debug(f"Dropping line from '{line.worker_identity}' submitted after sink close.")
            return
        self._queue.put(line)

    def close(self, timeout: Optional[float] = None) -> None:
        """Writes everything already queued, then stops the writer thread."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._queue.put(_STOP)
        if self._writer is not None:
            self._writer.join(timeout)

    def _channels(self) -> Tuple[TextIO, TextIO]:
        # Resolved late so stream redirection (e.g. pytest capture) is honoured.
        return self.out or sys.stdout, self.err or sys.stderr

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            try:
                self.write(item)
            except Exception as e:
                log.error(f"Failed to write output line of '{item.worker_identity}': {e}")

    def write(self, line: TaggedLine) -> None:
        """Writes one line. Only ever called from the writer thread."""
        out, err = self._channels()
        stream = err if line.stream_kind == StreamKind.ERR else out
        stream.write(render(line) + "\n")
        stream.flush()
        self.lines_written += 1

        if self.mirror_to_log:
            level = logging.ERROR if line.stream_kind == StreamKind.ERR else logging.INFO
            logging.getLogger(f"{SUBPROCESS_LOGGER_PREFIX}{line.worker_identity}").log(level, line.text)
