"""
Demo workload: a long-running process that emits log lines at an interval.

Usage: python -m procmux.demo.worker <name> <interval_ms>
"""

import os
import sys
import time
import signal


def _emit(text: str, stream=None) -> None:
    print(text, file=stream or sys.stdout, flush=True)


def tick(name: str, counter: int) -> None:
    """Prints the lines for one interval."""
    if counter % 10 == 0:
        _emit(f"ERROR: This is error log #{counter} from {name}", sys.stderr)
    elif counter % 5 == 0:
        _emit(f"WARNING: This is warning log #{counter} from {name}")
    else:
        _emit(str({"counter": counter, "name": name}))

    if counter % 7 == 0:
        _emit(f"{name} is emitting a burst of logs:")
        for i in range(1, 4):
            _emit(f"{name} burst log {i}")

    if counter % 12 == 0:
        _emit(f"IMPORTANT MESSAGE FROM {name}")


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    name = argv[0] if argv else "unknown"
    try:
        interval = int(argv[1]) if len(argv) > 1 else 1000
    except ValueError:
        interval = 1000

    def stop(signum, frame):
        _emit(f"Process {name} received {signal.Signals(signum).name}")
        sys.exit(0)

    signal.signal(signal.SIGINT, stop)
    signal.signal(signal.SIGTERM, stop)

    _emit(f"Process {name} started with PID:{os.getpid()} and interval {interval}ms")
    counter = 0
    while True:
        time.sleep(interval / 1000)
        counter += 1
        tick(name, counter)


if __name__ == "__main__":
    sys.exit(main())
