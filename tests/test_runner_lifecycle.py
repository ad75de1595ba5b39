from __future__ import annotations

import threading

from pathlib import Path

import pytest

from polyrun.exceptions import LifecycleError, RunnerInitError
from polyrun.options import RunOptions
from polyrun.runners import RunnerState, ScriptRunner
from polyrun.runners.base import extension_of, to_path
from tests.sample_runners import BlockingRunner, RecordingRunner


def test_execution_requires_init(fake_runner):
    assert fake_runner.state is RunnerState.UNINITIALIZED
    with pytest.raises(LifecycleError):
        fake_runner.eval_script("noop")
    with pytest.raises(LifecycleError):
        fake_runner.run_interactive()
    assert fake_runner.calls == []


def test_second_direct_init_is_rejected(fake_runner):
    fake_runner.init(["--flag"])
    with pytest.raises(LifecycleError):
        fake_runner.init(["--flag"])
    assert fake_runner.init_calls == [("--flag",)]


def test_close_is_idempotent_and_blocks_execution(fake_runner):
    fake_runner.init()
    fake_runner.close()
    fake_runner.close()
    assert fake_runner.state is RunnerState.CLOSED
    assert fake_runner.close_calls == 1
    with pytest.raises(LifecycleError):
        fake_runner.eval_script("noop")
    with pytest.raises(LifecycleError):
        fake_runner.init()


def test_close_before_init_skips_engine_teardown(fake_runner):
    fake_runner.close()
    assert fake_runner.state is RunnerState.CLOSED
    assert fake_runner.close_calls == 0


def test_reset_round_trip_starts_clean(fake_runner):
    fake_runner.init(["a"])
    fake_runner.exec_before(["before()"])
    fake_runner.exec_after(["after()"])
    fake_runner.close()
    assert fake_runner.before_statements == ()
    fake_runner.reset()
    assert fake_runner.state is RunnerState.INITIALIZED
    assert fake_runner.init_calls == [("a",), ("a",)]
    assert fake_runner.before_statements == ()
    assert fake_runner.after_statements == ()
    assert fake_runner.eval_script("noop") == 0


def test_reset_on_initialized_runner_closes_first(fake_runner):
    fake_runner.init()
    fake_runner.exec_before(["x"])
    fake_runner.reset()
    assert fake_runner.close_calls == 1
    assert fake_runner.state is RunnerState.INITIALIZED
    assert fake_runner.before_statements == ()


def test_buffers_persist_across_executions(fake_runner):
    fake_runner.init()
    fake_runner.set_before(["setup()"])
    fake_runner.eval_script("one")
    fake_runner.eval_script("two")
    assert [call[2] for call in fake_runner.calls] == [
        ("setup()",),
        ("setup()",),
    ]
    fake_runner.clear_before()
    fake_runner.eval_script("three")
    assert fake_runner.calls[-1][2] == ()


def test_failed_init_leaves_runner_uninitialized():
    runner = RecordingRunner(fail_init=True)
    with pytest.raises(RunnerInitError):
        runner.init()
    assert runner.state is RunnerState.UNINITIALIZED


def test_unexpected_init_errors_become_init_errors():
    class Exploding(RecordingRunner):
        def _do_init(self, args):
            raise OSError("toolchain missing")

    runner = Exploding()
    with pytest.raises(RunnerInitError, match="toolchain missing"):
        runner.init()


def test_concurrent_execution_is_rejected():
    runner = BlockingRunner()
    runner.init()
    results = []
    worker = threading.Thread(
        target=lambda: results.append(runner.eval_script("slow"))
    )
    worker.start()
    assert runner.entered.wait(timeout=5)
    assert runner.state is RunnerState.RUNNING
    with pytest.raises(LifecycleError, match="busy"):
        runner.eval_script("fast")
    runner.release.set()
    worker.join(timeout=5)
    assert results == [0]
    assert runner.state is RunnerState.INITIALIZED


def test_execution_returns_to_initialized_after_failure(fake_runner):
    fake_runner.init()
    options = RunOptions()
    assert fake_runner.eval_script("fail at 3", options) == 1
    assert options.error_line == 3
    assert fake_runner.state is RunnerState.INITIALIZED


def test_run_test_defaults_image_dir_to_script_parent(fake_runner, tmp_path):
    script = tmp_path / "suite" / "case.fake"
    fake_runner.init()
    fake_runner.run_test(script.as_uri(), None, ["x"])
    _, called_script, image_dir, args = fake_runner.calls[-1]
    assert called_script == script
    assert image_dir == script.parent
    assert args == ("x",)
    fake_runner.run_test(str(script), tmp_path / "images")
    assert fake_runner.calls[-1][2] == tmp_path / "images"


def test_identity_predicates(fake_runner):
    assert fake_runner.default_extension == "fake"
    assert fake_runner.has_extension(".FAKE")
    assert fake_runner.has_extension("fake")
    assert not fake_runner.has_extension("py")
    assert fake_runner.can_handle("Fake")
    assert fake_runner.can_handle("text/fake")
    assert fake_runner.can_handle("/tmp/run.fake")
    assert fake_runner.can_handle("Fake: inline()")
    assert not fake_runner.can_handle("script.py")
    assert not fake_runner.can_handle("")


def test_strip_prefix(fake_runner):
    assert fake_runner.strip_prefix("Fake:  code") == "code"
    assert fake_runner.strip_prefix("Fakecode") == "code"
    assert fake_runner.strip_prefix("Fake") is None
    assert fake_runner.strip_prefix("Other: code") is None


def test_is_supported_is_evaluated_once(fake_runner):
    assert fake_runner.is_supported()
    assert fake_runner.is_supported()
    assert fake_runner.support_checks == 1


def test_extension_of_handles_paths_and_uris():
    assert extension_of("/a/b/script.PY") == "py"
    assert extension_of("C:\\scripts\\run.rb") == "rb"
    assert extension_of("file:///tmp/x.js?raw=1") == "js"
    assert extension_of(".sh") == "sh"
    assert extension_of("print('a.b')") is None
    assert extension_of("") is None


def test_to_path_accepts_file_uris(tmp_path):
    target = tmp_path / "with space.py"
    assert to_path(target.as_uri()) == target
    assert to_path(str(target)) == target
    assert to_path(Path("rel.py")) == Path("rel.py")


def test_runner_without_interactive_session():
    class Batch(RecordingRunner):
        _run_interactive = ScriptRunner._run_interactive

    runner = Batch()
    runner.init()
    with pytest.raises(LifecycleError, match="no interactive session"):
        runner.run_interactive()
    assert runner.state is RunnerState.INITIALIZED
