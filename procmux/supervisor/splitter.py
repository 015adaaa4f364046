from typing import Callable, Iterator, List


class StreamLineSplitter:
    """
    Turns chunks of bytes read from one stream into complete lines.

    Chunks may have any size, including zero, and may hold any number of
    newlines. Complete lines are returned without their ``\\n``; bytes after
    the last newline are held back until more data arrives or the stream is
    closed, at which point they are flushed as one final line.

    A splitter belongs to a single stream and cannot be reused once closed.
    """

    def __init__(self) -> None:
        self._pending = bytearray()
        self._closed = False

    @property
    def pending(self) -> bytes:
        """Bytes received after the last line boundary."""
        return bytes(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, chunk: bytes) -> List[bytes]:
        """
        Consumes one chunk and returns the lines it completed, in order.

        :param chunk: The next bytes delivered by the stream.
        :return: Complete lines, newline stripped. Empty when no boundary was crossed.
        """
        if self._closed:
            raise ValueError("feed() called on a closed StreamLineSplitter")
        if not chunk:
            return []

        self._pending += chunk
        if b"\n" not in chunk:
            return []

        *lines, rest = bytes(self._pending).split(b"\n")
        self._pending = bytearray(rest)
        return lines

    def close(self) -> List[bytes]:
        """
        Marks end of input and flushes the held-back partial line, if any.

        :return: A list holding the final unterminated line, or an empty list.
        """
        if self._closed:
            return []
        self._closed = True
        if not self._pending:
            return []
        last = bytes(self._pending)
        self._pending.clear()
        return [last]


def iter_lines(read: Callable[[], bytes]) -> Iterator[bytes]:
    """
    Lazily yields the lines of a stream.

    :param read: Returns the next chunk, or ``b""`` at end of input.
    """
    splitter = StreamLineSplitter()
    while True:
        chunk = read()
        if not chunk:
            break
        yield from splitter.feed(chunk)
    yield from splitter.close()
