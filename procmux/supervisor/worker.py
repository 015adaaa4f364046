import enum
import signal
import psutil
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from procmux import settings
from procmux.supervisor import process_utils
from procmux.supervisor.errors import LaunchError

log = logging.getLogger(__name__)


class StreamKind(str, enum.Enum):
    OUT = "out"
    ERR = "err"


class WorkerState(str, enum.Enum):
    STARTING = "starting"
    RUNNING = "running"
    EXITING = "exiting"
    EXITED = "exited"


@dataclass(frozen=True)
class WorkerSpec:
    """One entry of the launch configuration."""
    identity: str
    program: str
    args: Sequence[str] = ()
    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]


@dataclass(frozen=True)
class TaggedLine:
    """A single line of worker output, labelled with where it came from."""
    worker_identity: str
    stream_kind: StreamKind
    text: str
    # Monotonic per worker and stream. Not a global order.
    sequence_hint: int = field(default=0, compare=False)


LineCallback = Callable[[TaggedLine], None]
ExitCallback = Callable[["WorkerHandle"], None]


class WorkerHandle:
    """
    Owns the lifecycle of exactly one external process.

    A handle is created by :meth:`launch`, which starts the process, one pump
    thread per output stream and one thread that observes the process exit.
    The handle reaches ``EXITED`` only once the process has been reaped and
    both pumps have drained their streams.
    """

    def __init__(self, spec: WorkerSpec, on_line: LineCallback,
                 on_exit: Optional[ExitCallback] = None,
                 stop_signal: Optional[int] = None) -> None:
        self.spec = spec
        self.stop_signal = stop_signal if stop_signal is not None else settings.WORKER_STOP_SIGNAL
        self.state = WorkerState.STARTING
        self.exit_code: Optional[int] = None
        self.termination_requests = 0
        self._on_line = on_line
        self._on_exit = on_exit
        self._proc: Optional[psutil.Popen] = None
        self._pumps: List[threading.Thread] = []
        self._waiter: Optional[threading.Thread] = None
        self._sequence: Dict[StreamKind, int] = {StreamKind.OUT: 0, StreamKind.ERR: 0}
        self._lock = threading.Lock()
        self._exited = threading.Event()

    @property
    def identity(self) -> str:
        return self.spec.identity

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc is not None else None

    @property
    def process(self) -> Optional[psutil.Popen]:
        return self._proc

    @property
    def signal_number(self) -> Optional[int]:
        """The signal that terminated the process, if it was terminated by one."""
        if self.exit_code is not None and self.exit_code < 0:
            return -self.exit_code
        return None

    @property
    def has_exited(self) -> bool:
        return self._exited.is_set()

    @classmethod
    def launch(cls, spec: WorkerSpec, on_line: LineCallback,
               on_exit: Optional[ExitCallback] = None,
               stop_signal: Optional[int] = None) -> "WorkerHandle":
        """
        Starts the worker's process and its pump and exit-observer threads.

        :param spec: Identity, program and arguments of the worker.
        :param on_line: Receives every TaggedLine the worker produces.
        :param on_exit: Called once, from the observer thread, after the worker exited and drained.
        :param stop_signal: Signal used by request_termination(); defaults to the configured one.
        :raises LaunchError: If the program cannot be found or the OS refuses to start it.
        """
        handle = cls(spec, on_line, on_exit, stop_signal)
        handle._start()
        return handle

    def _start(self) -> None:
        try:
            self._proc = process_utils.spawn(self.spec.argv, cwd=self.spec.cwd, env=self.spec.env)
        except (OSError, ValueError, psutil.Error) as e:
            raise LaunchError(self.identity, self.spec.program, e) from e

        for kind, pipe in ((StreamKind.OUT, self._proc.stdout), (StreamKind.ERR, self._proc.stderr)):
            pump = threading.Thread(
                target=process_utils.pump_stream,
                args=(pipe, self.identity, kind.value, self._line_emitter(kind)),
                name=f"pump-{self.identity}-{kind.value}",
                daemon=True,
            )
            pump.start()
            self._pumps.append(pump)

        self._waiter = threading.Thread(target=self._observe_exit, name=f"wait-{self.identity}", daemon=True)
        self._waiter.start()

        with self._lock:
            # The process may already have exited and drained.
            if self.state == WorkerState.STARTING:
                self.state = WorkerState.RUNNING
        log.info(f"Worker '{self.identity}' started with PID: {self.pid}")

    def _line_emitter(self, kind: StreamKind) -> Callable[[str], None]:
        def emit(text: str) -> None:
            # Only this stream's pump thread touches its counter.
            self._sequence[kind] += 1
            self._on_line(TaggedLine(self.identity, kind, text, self._sequence[kind]))
        return emit

    def _observe_exit(self) -> None:
        code = self._proc.wait()
        for pump in self._pumps:
            pump.join()

        with self._lock:
            self.exit_code = int(code)
            self.state = WorkerState.EXITED
        log.debug(f"Worker '{self.identity}' exited with code {self.exit_code} and its streams are drained.")

        # The exit is recorded by the owner before anyone blocked in await_exit() wakes up.
        if self._on_exit is not None:
            try:
                self._on_exit(self)
            except Exception as e:
                log.error(f"Exit callback for worker '{self.identity}' failed: {e}", exc_info=True)
        self._exited.set()

    def request_termination(self) -> bool:
        """
        Sends the graceful stop signal to the process.

        Idempotent: only the first call while the worker is starting or
        running sends anything; later calls, and calls after exit, are no-ops.

        :return: True if a signal was sent by this call.
        """
        with self._lock:
            if self.state not in (WorkerState.STARTING, WorkerState.RUNNING) or self._proc is None:
                return False
            self.state = WorkerState.EXITING
            self.termination_requests += 1
            sent = process_utils.send_signal(self._proc, self.stop_signal)

        if sent:
            log.debug(f"Sent {signal.Signals(self.stop_signal).name} to '{self.identity}' (PID {self.pid}).")
        return sent

    def kill(self) -> None:
        """Hard-terminates the process and everything it spawned."""
        if self._proc is None or self.has_exited:
            return
        with self._lock:
            if self.state != WorkerState.EXITED:
                self.state = WorkerState.EXITING
        process_utils.kill_process_tree(self._proc)

    def await_exit(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Blocks until the process exited and both streams are drained.

        :param timeout: Seconds to wait; None waits forever.
        :return: The exit code (negative for "terminated by signal N"), or None on timeout.
        """
        if not self._exited.wait(timeout):
            return None
        return self.exit_code

    def __repr__(self) -> str:
        return f"<WorkerHandle {self.identity!r} pid={self.pid} state={self.state.value} exit_code={self.exit_code}>"
