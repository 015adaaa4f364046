import logging
from unittest import mock

import pytest
import requests

from procmux.log import LokiHandler, MainFormatter, SubprocessLogFilter


def make_record(name, msg, level=logging.INFO):
    return logging.LogRecord(name, level, __file__, 1, msg, None, None)


def test_formatter_renders_worker_lines_raw():
    formatter = MainFormatter()
    assert formatter.format(make_record("proc.app1", "hello")) == "hello"


def test_formatter_decorates_supervisor_logs():
    formatted = MainFormatter().format(make_record("procmux.supervisor", "Starting", logging.WARNING))
    assert "WARNING" in formatted
    assert "[procmux.supervisor] - Starting" in formatted


def test_subprocess_filter_keeps_worker_lines_off_the_console():
    log_filter = SubprocessLogFilter()
    assert not log_filter.filter(make_record("proc.app1", "hello"))
    assert log_filter.filter(make_record("procmux.main", "hello"))


@pytest.fixture
def loki():
    handler = LokiHandler("http://loki:3100/", org_id="tenant", flush_interval=60, batch_size=2)
    yield handler
    with mock.patch("procmux.log.handler.requests.post"):
        handler.close()


def test_loki_handler_pushes_a_batch(loki):
    response = mock.Mock(status_code=204)
    with mock.patch("procmux.log.handler.requests.post", return_value=response) as post:
        loki.emit(make_record("proc.app1", "hello"))
        post.assert_not_called()
        loki.emit(make_record("procmux.supervisor", "started"))

    post.assert_called_once()
    args, kwargs = post.call_args
    assert args[0] == "http://loki:3100/loki/api/v1/push"
    assert kwargs["headers"]["X-Scope-OrgID"] == "tenant"
    streams = kwargs["json"]["streams"]
    assert [s["stream"]["logger"] for s in streams] == ["app1", "procmux.supervisor"]
    assert streams[0]["stream"]["job"] == "procmux-worker"
    assert streams[0]["values"][0][1] == "hello"
    assert len(loki.log_buffer) == 0


def test_loki_handler_survives_network_errors(loki, capsys):
    with mock.patch("procmux.log.handler.requests.post", side_effect=requests.ConnectionError("down")):
        loki.emit(make_record("proc.app1", "one"))
        loki.emit(make_record("proc.app1", "two"))

    assert "Failed to send 2 logs to Loki" in capsys.readouterr().err
    assert len(loki.log_buffer) == 0


def test_flush_with_empty_buffer_sends_nothing(loki):
    with mock.patch("procmux.log.handler.requests.post") as post:
        loki.flush()
    post.assert_not_called()


def test_close_pushes_what_is_still_buffered():
    handler = LokiHandler("http://loki:3100", flush_interval=60, batch_size=10)
    with mock.patch("procmux.log.handler.requests.post", return_value=mock.Mock(status_code=204)) as post:
        handler.emit(make_record("proc.app2", "last words"))
        handler.close()

    post.assert_called_once()
    assert "X-Scope-OrgID" not in post.call_args.kwargs["headers"]
    assert post.call_args.kwargs["json"]["streams"][0]["values"][0][1] == "last words"
    assert not handler.flush_thread.is_alive()
