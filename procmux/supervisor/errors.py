"""Error taxonomy of the supervisor."""

from typing import Optional


class ProcmuxError(Exception):
    """Base class for all supervisor errors."""


class ConfigurationError(ProcmuxError):
    """The launch configuration is invalid. Raised before any worker is launched."""


class LaunchError(ProcmuxError):
    """A worker's program could not be started."""

    def __init__(self, identity: str, program: str, cause: Optional[BaseException] = None):
        self.identity = identity
        self.program = program
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to launch worker '{identity}' ({program}){detail}")


class StreamReadError(ProcmuxError):
    """Reading a worker's output stream failed. Pumps treat it as end of input."""

    def __init__(self, identity: str, stream_kind: str, cause: BaseException):
        self.identity = identity
        self.stream_kind = stream_kind
        self.cause = cause
        super().__init__(f"Read error on {stream_kind} stream of '{identity}': {cause}")


class WorkerAbnormalExit(ProcmuxError):
    """Record of a worker that exited with a non-zero status or was killed by a signal."""

    def __init__(self, identity: str, exit_code: int):
        self.identity = identity
        self.exit_code = exit_code
        if exit_code < 0:
            reason = f"terminated by signal {-exit_code}"
        else:
            reason = f"exited with code {exit_code}"
        super().__init__(f"Worker '{identity}' {reason}")
