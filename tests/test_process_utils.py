import io

import pytest

from procmux.supervisor import StreamReadError
from procmux.supervisor import process_utils


class ChunkedPipe:
    """A pipe stand-in that returns pre-set chunks, then optionally fails."""

    def __init__(self, chunks, error=None):
        self.chunks = list(chunks)
        self.error = error
        self.closed = False

    def read1(self, size):
        if self.chunks:
            return self.chunks.pop(0)
        if self.error is not None:
            raise self.error
        return b""

    def close(self):
        self.closed = True


def test_decode_line_replaces_bad_bytes_and_drops_carriage_return():
    assert process_utils.decode_line(b"caf\xc3\xa9\r", "utf-8") == "café"
    assert process_utils.decode_line(b"\xff ok", "utf-8") == "� ok"


def test_read_chunk_wraps_failures():
    pipe = io.BytesIO(b"data")
    pipe.close()
    with pytest.raises(StreamReadError) as excinfo:
        process_utils.read_chunk(pipe, "app1", "out", 10)
    assert excinfo.value.identity == "app1"
    assert excinfo.value.stream_kind == "out"


def test_pump_stream_splits_chunks_and_closes_pipe():
    pipe = ChunkedPipe([b"hello\nwor", b"ld\n", b"tail"])
    lines = []

    process_utils.pump_stream(pipe, "app1", "out", lines.append, chunk_size=4, encoding="utf-8")

    assert lines == ["hello", "world", "tail"]
    assert pipe.closed


def test_pump_stream_treats_read_error_as_end_of_input():
    pipe = ChunkedPipe([b"partial"], error=BrokenPipeError("gone"))
    lines = []

    process_utils.pump_stream(pipe, "app1", "err", lines.append, chunk_size=4, encoding="utf-8")

    assert lines == ["partial"]
    assert pipe.closed


def test_build_environment_merges_over_os_environ(monkeypatch):
    monkeypatch.setenv("PROCMUX_BASE", "1")
    assert process_utils.build_environment(None) is None
    env = process_utils.build_environment({"EXTRA": "2"})
    assert env["PROCMUX_BASE"] == "1"
    assert env["EXTRA"] == "2"


def test_pump_stream_read_error_flushes_complete_and_partial_lines():
    pipe = ChunkedPipe([b"one\ntw", b"o\nthr"], error=OSError("bad descriptor"))
    lines = []

    process_utils.pump_stream(pipe, "app1", "out", lines.append, chunk_size=4, encoding="utf-8")

    assert lines == ["one", "two", "thr"]
    assert pipe.closed
