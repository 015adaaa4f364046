import io
import sys
import threading
from typing import Callable, List

import pytest

from procmux.supervisor import AggregatedSink, TaggedLine, WorkerSpec

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="relies on POSIX signals")


def python_worker(identity: str, code: str) -> WorkerSpec:
    """A worker running an inline Python script with unbuffered output."""
    return WorkerSpec(identity, sys.executable, ("-u", "-c", code))


SLEEPER = """
import sys, time
print("ready", flush=True)
time.sleep(30)
"""

POLITE_SLEEPER = """
import signal, sys, time
def stop(signum, frame):
    print("stopping", flush=True)
    sys.exit(0)
signal.signal(signal.SIGTERM, stop)
print("ready", flush=True)
time.sleep(30)
"""

STUBBORN_SLEEPER = """
import signal, time
signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("ready", flush=True)
time.sleep(30)
"""


class RecordingSink(AggregatedSink):
    """An AggregatedSink writing to in-memory streams that also keeps every TaggedLine."""

    def __init__(self):
        super().__init__(out=io.StringIO(), err=io.StringIO(), mirror_to_log=False)
        self.lines: List[TaggedLine] = []
        self._cond = threading.Condition()

    def write(self, line: TaggedLine) -> None:
        super().write(line)
        with self._cond:
            self.lines.append(line)
            self._cond.notify_all()

    def wait_for(self, predicate: Callable[[List[TaggedLine]], bool], timeout: float = 10) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: predicate(self.lines), timeout)

    def texts(self, identity: str) -> List[str]:
        with self._cond:
            return [line.text for line in self.lines if line.worker_identity == identity]

    def count(self, text: str) -> int:
        with self._cond:
            return sum(1 for line in self.lines if line.text == text)


@pytest.fixture
def sink():
    recording = RecordingSink()
    yield recording
    recording.close(timeout=5)
