import io
import sys
import threading

import pytest

from polyrun.exceptions import AlreadyRedirectedError, LifecycleError
from polyrun.redirect import StreamRedirector, routed_stdio
from polyrun.runners.python import PythonRunner


def test_second_bind_is_rejected_and_first_sinks_stay():
    redirector = StreamRedirector()
    out, err = io.BytesIO(), io.BytesIO()
    redirector.bind(out, err)
    with pytest.raises(AlreadyRedirectedError):
        redirector.bind(io.BytesIO(), io.BytesIO())
    redirector.emit_stdout("hello\n")
    redirector.emit_stderr(b"oops\n")
    assert out.getvalue() == b"hello\n"
    assert err.getvalue() == b"oops\n"


def test_unbound_redirector_uses_process_streams(capsys):
    redirector = StreamRedirector()
    assert not redirector.bound
    redirector.emit_stdout(b"to stdout\n")
    redirector.stderr.write("to stderr\n")
    captured = capsys.readouterr()
    assert captured.out == "to stdout\n"
    assert captured.err == "to stderr\n"


def test_text_adapter_encodes_utf8():
    redirector = StreamRedirector()
    out = io.BytesIO()
    redirector.bind(out, io.BytesIO())
    redirector.stdout.write("café")
    assert out.getvalue() == "café".encode("utf-8")


def test_runner_redirect_is_one_shot():
    runner = PythonRunner()
    first_out, first_err = io.BytesIO(), io.BytesIO()
    runner.redirect(first_out, first_err)
    second_out = io.BytesIO()
    with pytest.raises(LifecycleError):
        runner.redirect(second_out, io.BytesIO())
    runner.init()
    assert runner.eval_script("print('still bound')") == 0
    assert first_out.getvalue() == b"still bound\n"
    assert second_out.getvalue() == b""
    runner.close()


def test_bind_requires_both_sinks():
    with pytest.raises(ValueError):
        StreamRedirector().bind(io.BytesIO(), None)


def test_routed_stdio_keeps_overlapping_threads_apart(capsys):
    saved = sys.stdout
    a_out, b_out = io.StringIO(), io.StringIO()
    a_entered, b_entered, a_left = (threading.Event() for _ in range(3))

    def first():
        with routed_stdio(a_out, io.StringIO()):
            a_entered.set()
            b_entered.wait(timeout=5)
            print("from A")
        a_left.set()

    def second():
        a_entered.wait(timeout=5)
        with routed_stdio(b_out, io.StringIO()):
            b_entered.set()
            a_left.wait(timeout=5)
            print("from B")

    threads = [threading.Thread(target=first), threading.Thread(target=second)]
    for thread in threads:
        thread.start()
    a_entered.wait(timeout=5)
    print("from main")
    for thread in threads:
        thread.join(timeout=5)

    assert a_out.getvalue() == "from A\n"
    assert b_out.getvalue() == "from B\n"
    assert sys.stdout is saved
    assert capsys.readouterr().out == "from main\n"


def test_routed_stdio_restores_process_streams():
    saved_out, saved_err = sys.stdout, sys.stderr
    out, err = io.StringIO(), io.StringIO()
    with routed_stdio(out, err):
        print("visible")
        print("problem", file=sys.stderr)
    assert (sys.stdout, sys.stderr) == (saved_out, saved_err)
    assert out.getvalue() == "visible\n"
    assert err.getvalue() == "problem\n"
