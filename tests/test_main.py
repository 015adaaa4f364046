import sys
import shlex

import pytest

from procmux import main as entry
from procmux.supervisor import ConfigurationError, Supervisor


def test_parse_worker_arg_splits_command_line():
    spec = entry.parse_worker_arg("app1=node child.js 'app one' 1000")
    assert spec.identity == "app1"
    assert spec.program == "node"
    assert spec.args == ("child.js", "app one", "1000")


@pytest.mark.parametrize("raw", ["no-separator", "=node child.js", "app1=", "app1=   ", "app1=echo 'unterminated"])
def test_parse_worker_arg_rejects_bad_entries(raw):
    with pytest.raises(ConfigurationError):
        entry.parse_worker_arg(raw)


def test_demo_workers_mirror_the_default_trio():
    specs = entry.demo_workers()
    assert [s.identity for s in specs] == ["app1", "app2", "app3"]
    assert specs[0].program == sys.executable
    assert specs[0].args[-3:] == ("procmux.demo.worker", "app1", "1000")


def test_help_exits_cleanly(capsys):
    assert entry.main(["--help"]) == 0
    assert "Usage: procmux" in capsys.readouterr().out


@pytest.fixture
def quiet_entry(monkeypatch):
    monkeypatch.setattr(entry, "setup_logging", lambda level: None)
    monkeypatch.setattr(entry.setproctitle, "setproctitle", lambda title: None)
    monkeypatch.setattr(Supervisor, "install_signal_handlers", lambda self: None)


def test_main_reports_configuration_errors(quiet_entry):
    assert entry.main(["app1=echo hi", "app1=echo again"]) == 2


def test_main_runs_workers_to_completion(quiet_entry, capsys):
    command = f"{shlex.quote(sys.executable)} -u -c \"print('hi')\""
    assert entry.main([f"quick={command}"]) == 0
    assert "[quick] hi" in capsys.readouterr().out
