import os
import sys
import shlex
import logging
from typing import List, Optional

import setproctitle

from procmux import settings
from procmux.log.setup import setup_logging
from procmux.supervisor import ConfigurationError, Supervisor, WorkerSpec

log = logging.getLogger("procmux")

USAGE = """Usage: procmux [--verbose] ["name=command arg ..." ...]

Each argument starts one worker; the text after '=' is split with shell rules.
Without workers, the demo trio app1/app2/app3 is launched."""


def parse_worker_arg(raw: str) -> WorkerSpec:
    """
    Parses one ``identity=command line`` argument.

    :raises ConfigurationError: If the identity or the command is missing.
    """
    identity, sep, command = raw.partition("=")
    identity = identity.strip()
    if not sep or not identity:
        raise ConfigurationError(f"Invalid worker '{raw}': expected name=command.")
    try:
        argv = shlex.split(command)
    except ValueError as e:
        raise ConfigurationError(f"Invalid command for worker '{identity}': {e}") from e
    if not argv:
        raise ConfigurationError(f"Worker '{identity}' has no command.")
    return WorkerSpec(identity, argv[0], tuple(argv[1:]))


def demo_workers() -> List[WorkerSpec]:
    """The default launch set: three demo workers emitting logs at different intervals."""
    return [
        WorkerSpec(name, sys.executable, ("-u", "-m", "procmux.demo.worker", name, str(interval)))
        for name, interval in settings.DEMO_WORKERS
    ]


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point for the supervisor."""
    args = list(sys.argv[1:] if argv is None else argv)

    if "-h" in args or "--help" in args:
        print(USAGE)
        return 0

    verbose = settings.VERBOSE_LOGGING
    if "--verbose" in args:
        verbose = True
        args.remove("--verbose")
    setup_logging(logging.DEBUG if verbose else logging.INFO)
    setproctitle.setproctitle(settings.PROCESS_TITLE)

    try:
        specs = [parse_worker_arg(raw) for raw in args] if args else demo_workers()
        supervisor = Supervisor()
        log.info(f"Supervisor started with PID: {os.getpid()}")
        return supervisor.run(specs)
    except ConfigurationError as e:
        log.error(f"Configuration error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
