from procmux.demo import worker


def test_tick_emits_counter_line(capsys):
    worker.tick("app1", 1)
    assert capsys.readouterr().out == "{'counter': 1, 'name': 'app1'}\n"


def test_tick_patterns(capsys):
    worker.tick("app1", 5)
    assert capsys.readouterr().out == "WARNING: This is warning log #5 from app1\n"

    worker.tick("app1", 10)
    captured = capsys.readouterr()
    assert captured.err == "ERROR: This is error log #10 from app1\n"
    assert captured.out == ""

    worker.tick("app1", 7)
    assert capsys.readouterr().out.splitlines()[1:] == [
        "app1 is emitting a burst of logs:",
        "app1 burst log 1",
        "app1 burst log 2",
        "app1 burst log 3",
    ]

    worker.tick("app1", 12)
    assert capsys.readouterr().out.splitlines()[-1] == "IMPORTANT MESSAGE FROM app1"
