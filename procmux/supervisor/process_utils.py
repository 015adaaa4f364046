import os
import sys
import signal
import psutil
import logging
import subprocess
from typing import IO, Any, Callable, Dict, List, Optional

from procmux import settings
from procmux.supervisor.errors import StreamReadError
from procmux.supervisor.splitter import iter_lines

log = logging.getLogger(__name__)


#* --- Process Creation ---
def get_popen_creation_flags() -> Dict[str, Any]:
    """
    Returns platform-specific keyword arguments for Popen.

    Workers get their own session (POSIX) or process group (Windows) so a
    terminal interrupt reaches only the supervisor, which then forwards a
    single termination request to each worker.

    :return dict: A dictionary of keyword arguments for Popen.
    """
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}


def build_environment(extra: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
    """Merges a worker's extra environment over the supervisor's own."""
    if not extra:
        return None
    env = dict(os.environ)
    env.update(extra)
    return env


def spawn(argv: List[str], cwd: Optional[str] = None, env: Optional[Dict[str, str]] = None) -> psutil.Popen:
    """
    Starts a worker process with both output streams piped.

    :param argv: Program followed by its arguments.
    :param cwd: Working directory for the process.
    :param env: Extra environment variables.
    :return: The psutil.Popen handle of the started process.
    :raises OSError: If the program cannot be found or the OS refuses to start it.
    """
    return psutil.Popen(
        argv,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=cwd,
        env=build_environment(env),
        **get_popen_creation_flags(),
    )


#* --- Stream Pumping ---
def read_chunk(pipe: IO[bytes], identity: str, stream_kind: str, size: int) -> bytes:
    """
    Reads whatever is available from a pipe, up to ``size`` bytes.

    :return: The bytes read; ``b""`` at end of input.
    :raises StreamReadError: If the underlying read fails.
    """
    try:
        reader = getattr(pipe, "read1", None) or pipe.read
        return reader(size)
    except (OSError, ValueError) as e:
        raise StreamReadError(identity, stream_kind, e) from e


def decode_line(raw: bytes, encoding: str) -> str:
    """Decodes one line, replacing undecodable bytes and dropping a trailing carriage return."""
    text = raw.decode(encoding, errors="replace")
    if text.endswith("\r"):
        text = text[:-1]
    return text


def pump_stream(
    pipe: IO[bytes],
    identity: str,
    stream_kind: str,
    on_line: Callable[[str], None],
    chunk_size: Optional[int] = None,
    encoding: Optional[str] = None,
) -> None:
    """
    Target function for pump threads. Reads a pipe until end of input and
    hands every complete line to ``on_line``.

    A read error ends the stream the same way end of input does: the partial
    line is flushed and the pipe closed.
    """
    chunk_size = chunk_size or settings.READ_CHUNK_SIZE
    encoding = encoding or settings.OUTPUT_ENCODING

    def read() -> bytes:
        try:
            return read_chunk(pipe, identity, stream_kind, chunk_size)
        except StreamReadError as e:
            log.debug(f"Pipe reader for {identity} stream exited: {e}")
            return b""

    try:
        for raw in iter_lines(read):
            on_line(decode_line(raw, encoding))
    finally:
        try:
            pipe.close()
        except OSError:
            pass


#* --- Signals ---
def send_signal(proc: psutil.Process, sig: int) -> bool:
    """
    Sends a signal to a process.

    :return: True if the signal was delivered, False if the process is already gone.
    """
    try:
        if sys.platform == "win32" and sig != signal.CTRL_BREAK_EVENT:
            proc.terminate()
        else:
            proc.send_signal(sig)
        return True
    except (psutil.NoSuchProcess, ProcessLookupError):
        return False


def kill_process_tree(proc: psutil.Process) -> None:
    """
    Forcefully kills a process, its descendants and, on POSIX, its process group.

    Descendants that inherited the worker's pipes would otherwise keep the
    streams open after the worker itself died.
    """
    try:
        children = proc.children(recursive=True)
    except psutil.Error:
        children = []

    for victim in [proc] + children:
        try:
            log.warning(f"Killing stubborn process {victim.pid}.")
            victim.kill()
        except psutil.NoSuchProcess:
            continue

    if sys.platform != "win32":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
