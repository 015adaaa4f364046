import signal
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from procmux import settings
from procmux.supervisor.shutdown import ShutdownReport, graceful_shutdown_sequence
from procmux.supervisor.errors import ConfigurationError, LaunchError, WorkerAbnormalExit
from procmux.supervisor.sink import AggregatedSink
from procmux.supervisor.worker import WorkerHandle, WorkerSpec, WorkerState

log = logging.getLogger(__name__)

SpecLike = Union[WorkerSpec, Tuple[str, str, Sequence[str]]]


@dataclass
class StartupResult:
    """What happened when the workers were launched."""
    started: List[str] = field(default_factory=list)
    errors: Dict[str, LaunchError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def normalize_specs(configs: Iterable[SpecLike]) -> List[WorkerSpec]:
    """
    Converts the launch configuration to WorkerSpecs and validates it.

    :param configs: WorkerSpecs or ``(identity, program, args)`` tuples, in launch order.
    :raises ConfigurationError: On an empty or duplicate identity, or an empty program.
    """
    specs: List[WorkerSpec] = []
    seen = set()
    for config in configs:
        if isinstance(config, WorkerSpec):
            spec = config
        else:
            try:
                identity, program, args = config
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid worker entry {config!r}: expected (identity, program, args).") from e
            spec = WorkerSpec(identity, program, tuple(args))

        if not spec.identity or not spec.identity.strip():
            raise ConfigurationError("Worker identity must not be empty.")
        if spec.identity in seen:
            raise ConfigurationError(f"Duplicate worker identity '{spec.identity}'.")
        if not spec.program:
            raise ConfigurationError(f"Worker '{spec.identity}' has no program.")
        seen.add(spec.identity)
        specs.append(spec)
    return specs


class Supervisor:
    """
    Launches a fixed set of workers, routes their output to one sink and
    coordinates their shutdown.

    Every worker line goes through the sink's single writer thread. Each
    worker's exit is observed on its own thread, so one exit never blocks
    another, and exited workers stay in :attr:`workers` with their final state.
    """

    def __init__(self, sink: Optional[AggregatedSink] = None,
                 shutdown_timeout: Optional[float] = None,
                 kill_timeout: Optional[float] = None,
                 stop_signal: Optional[int] = None) -> None:
        """
        :param sink: Destination of the tagged lines; defaults to stdout/stderr.
        :param shutdown_timeout: Seconds a worker gets to exit after the stop signal before it is killed.
        :param kill_timeout: Seconds to wait for a killed worker to be reaped.
        :param stop_signal: Signal forwarded to workers on shutdown.
        """
        self.sink = sink or AggregatedSink()
        self.shutdown_timeout = settings.GRACEFUL_SHUTDOWN_TIMEOUT if shutdown_timeout is None else shutdown_timeout
        self.kill_timeout = settings.FORCE_KILL_TIMEOUT if kill_timeout is None else kill_timeout
        self.stop_signal = stop_signal

        self.workers: Dict[str, WorkerHandle] = {}
        self.launch_errors: Dict[str, LaunchError] = {}
        self.exit_codes: Dict[str, int] = {}
        self.abnormal_exits: Dict[str, WorkerAbnormalExit] = {}
        self.shutdown_requested = False
        self.shutdown_report: Optional[ShutdownReport] = None
        self.shutdown_signal_received = threading.Event()

        self._state_lock = threading.Lock()
        # Held for the whole of start() and shutdown() so they never overlap.
        self._lifecycle_lock = threading.Lock()
        self._all_exited = threading.Event()
        self._started = False
        self._launch_done = False
        self._previous_handlers: Dict[int, Any] = {}

    #* --- Startup ---
    def start(self, configs: Iterable[SpecLike]) -> StartupResult:
        """
        Launches every configured worker, in order.

        A worker that fails to launch is recorded in the result and does not
        stop the others from starting.

        :param configs: WorkerSpecs or ``(identity, program, args)`` tuples.
        :raises ConfigurationError: If the configuration is invalid or start() was already called.
        """
        specs = normalize_specs(configs)
        result = StartupResult()

        with self._lifecycle_lock:
            with self._state_lock:
                if self._started:
                    raise ConfigurationError("Supervisor has already been started.")
                self._started = True

            self.sink.start()
            log.info(f"Starting {len(specs)} workers...")
            try:
                for spec in specs:
                    if self.shutdown_signal_received.is_set():
                        log.warning(f"Shutdown requested during startup; not launching '{spec.identity}'.")
                        break
                    try:
                        handle = WorkerHandle.launch(spec, self.sink.submit, self._on_worker_exit, self.stop_signal)
                    except LaunchError as e:
                        log.error(str(e))
                        self.launch_errors[spec.identity] = e
                        result.errors[spec.identity] = e
                        continue
                    with self._state_lock:
                        self.workers[spec.identity] = handle
                    result.started.append(spec.identity)
            finally:
                with self._state_lock:
                    self._launch_done = True
                    self._check_all_exited()

        if result.errors:
            log.error(f"{len(result.errors)} workers failed to launch: {', '.join(result.errors)}")
        log.info(f"Supervisor setup complete. {len(result.started)} workers running.")
        return result

    #* --- Exit Tracking ---
    def _on_worker_exit(self, handle: WorkerHandle) -> None:
        code = handle.exit_code
        with self._state_lock:
            self.exit_codes[handle.identity] = code
            if code != 0:
                self.abnormal_exits[handle.identity] = WorkerAbnormalExit(handle.identity, code)
            self._check_all_exited()

        if code == 0 or self.shutdown_requested:
            log.info(f"Worker '{handle.identity}' exited with code {code}")
        else:
            log.warning(str(self.abnormal_exits[handle.identity]))

    def _check_all_exited(self) -> None:
        """Sets the all-exited event. Assumes the state lock is held."""
        if self._launch_done and all(identity in self.exit_codes for identity in self.workers):
            self._all_exited.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Blocks until every launched worker has exited and drained.

        :return: True if all workers exited, False on timeout.
        """
        return self._all_exited.wait(timeout)

    def status(self) -> List[Dict[str, Any]]:
        """Returns a snapshot of every worker, in launch order."""
        with self._state_lock:
            handles = list(self.workers.values())
        return [
            {
                "identity": h.identity,
                "pid": h.pid,
                "state": h.state.value,
                "exit_code": h.exit_code,
            }
            for h in handles
        ]

    #* --- Shutdown ---
    def request_shutdown(self) -> None:
        """Asks the run loop to shut down. Safe to call from a signal handler."""
        self.shutdown_signal_received.set()

    def _handle_signal(self, signum, frame) -> None:
        self.request_shutdown()

    def install_signal_handlers(self) -> None:
        """Routes SIGINT and SIGTERM to the shutdown sequence. Must be called from the main thread."""
        for sig in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[sig] = signal.signal(sig, self._handle_signal)

    def restore_signal_handlers(self) -> None:
        """Puts back the handlers that were active before install_signal_handlers()."""
        while self._previous_handlers:
            sig, handler = self._previous_handlers.popitem()
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)

    def shutdown(self) -> Optional[ShutdownReport]:
        """
        Stops every worker that is still running.

        Each worker gets one termination request and ``shutdown_timeout``
        seconds to exit; stragglers are killed. Only the first call does
        anything; later and concurrent calls return None immediately.

        :return: The report of the shutdown sequence, or None if one already ran.
        """
        with self._state_lock:
            if self.shutdown_requested:
                return None
            self.shutdown_requested = True
        self.shutdown_signal_received.set()

        with self._lifecycle_lock:
            with self._state_lock:
                handles = [h for h in self.workers.values() if h.state != WorkerState.EXITED]

            if not handles:
                log.info("No running workers found to stop.")
                report = ShutdownReport()
            else:
                log.info(f"Initiating graceful shutdown for {len(handles)} workers...")
                report = graceful_shutdown_sequence(handles, self.shutdown_timeout, self.kill_timeout)
                if report.killed:
                    log.warning(f"Workers killed after {self.shutdown_timeout}s timeout: {', '.join(report.killed)}")

        self.shutdown_report = report
        log.info("Worker stop sequence completed.")
        return report

    def close(self) -> None:
        """Makes sure no worker is left running, then flushes and stops the sink."""
        if self._started and not self.wait(0):
            self.shutdown()
        self.sink.close()

    #* --- Main Loop ---
    def run(self, configs: Iterable[SpecLike]) -> int:
        """
        Runs the supervisor until every worker exited or a shutdown signal arrived.

        :param configs: WorkerSpecs or ``(identity, program, args)`` tuples.
        :return: The supervisor's own exit code.
        """
        self.install_signal_handlers()
        try:
            self.start(configs)
            while not self.shutdown_signal_received.is_set():
                if self.wait(settings.SUPERVISOR_SLEEP_INTERVAL):
                    log.info("All workers have exited.")
                    break
            if self.shutdown_signal_received.is_set():
                log.info("Received shutdown signal. Stopping workers...")
                self.shutdown()
        except KeyboardInterrupt:
            log.info("Supervisor loop interrupted by user.")
            self.shutdown()
        finally:
            self.close()
            self.restore_signal_handlers()

        self.log_exit_summary()
        return 0

    def log_exit_summary(self) -> Dict[str, int]:
        """Logs and returns the final ``identity -> exit code`` mapping."""
        with self._state_lock:
            summary = dict(self.exit_codes)
        for identity in self.workers:
            code = summary.get(identity)
            log.info(f"  {identity}: {'still running' if code is None else f'exit code {code}'}")
        for identity, error in self.launch_errors.items():
            log.info(f"  {identity}: failed to launch ({error.cause})")
        return summary
