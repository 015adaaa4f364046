import time
import logging
from dataclasses import dataclass, field
from typing import Iterable, List

from procmux.supervisor.worker import WorkerHandle

log = logging.getLogger(__name__)


@dataclass
class ShutdownReport:
    """Outcome of one shutdown sequence."""
    terminated: List[str] = field(default_factory=list)
    killed: List[str] = field(default_factory=list)
    unresponsive: List[str] = field(default_factory=list)


def _terminate_workers(handles: Iterable[WorkerHandle]) -> List[str]:
    """Sends the graceful stop signal to every worker that has not exited."""
    signalled = []
    for handle in handles:
        if handle.has_exited:
            continue
        log.debug(f"Requesting termination of '{handle.identity}' (PID {handle.pid}).")
        if handle.request_termination():
            signalled.append(handle.identity)
    return signalled


def _wait_until(handles: Iterable[WorkerHandle], deadline: float) -> List[WorkerHandle]:
    """
    Waits for the workers to exit until a shared deadline.

    All workers are stopping concurrently, so each one gets the whole window.

    :return: The workers still running at the deadline.
    """
    alive = []
    for handle in handles:
        remaining = max(0.0, deadline - time.monotonic())
        if handle.await_exit(remaining) is None:
            alive.append(handle)
    return alive


def _forceful_kill(handles: List[WorkerHandle]) -> None:
    """Forcefully kills workers that didn't terminate gracefully."""
    if not handles:
        return

    log.warning(f"{len(handles)} workers did not terminate gracefully. Forcing shutdown...")
    for handle in handles:
        log.warning(f"Killing stubborn worker '{handle.identity}' (PID {handle.pid}).")
        handle.kill()


def graceful_shutdown_sequence(handles: List[WorkerHandle], timeout: float,
                               kill_timeout: float) -> ShutdownReport:
    """
    Runs the full graceful shutdown sequence for the given workers.

    :param handles: Workers to shut down. Exited workers are skipped.
    :param timeout: Seconds each worker gets to exit after the stop signal.
    :param kill_timeout: Seconds to wait for killed workers to be reaped and drained.
    :return: Which workers were signalled, which needed a hard kill and which never finished.
    """
    report = ShutdownReport()
    report.terminated = _terminate_workers(handles)

    alive = _wait_until(handles, time.monotonic() + timeout)
    _forceful_kill(alive)
    report.killed = [h.identity for h in alive]

    if alive:
        report.unresponsive = [h.identity for h in _wait_until(alive, time.monotonic() + kill_timeout)]
        for identity in report.unresponsive:
            log.error(f"Worker '{identity}' did not finish after being killed; abandoning its streams.")
    return report
