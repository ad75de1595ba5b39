"""In-process Python runner."""

from __future__ import annotations

import builtins
import code as code_module
import logging
import sys
import threading
import traceback

from pathlib import Path
from types import TracebackType
from typing import Any, Dict, Optional, Sequence, TextIO, Tuple

from polyrun.help import interactive_banner
from polyrun.options import RunOptions
from polyrun.redirect import routed_stdio
from polyrun.runners.base import ScriptRunner
from polyrun.statements import BracketedSource

LOGGER = logging.getLogger(__name__)

# sys.argv and sys.path belong to the whole process, so script and test runs
# of all PythonRunner instances take turns. Output is routed per thread.
_INTERPRETER_LOCK = threading.RLock()


def exit_code_from(value: Any, stderr: TextIO) -> int:
    """Translate a ``SystemExit.code`` the way the interpreter does."""

    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    print(value, file=stderr)
    return 1


def _raise_exit(code: Any = 0) -> None:
    raise SystemExit(code)


class _Console(code_module.InteractiveConsole):
    """InteractiveConsole that reads from an explicit text stream."""

    def __init__(
        self,
        namespace: Dict[str, Any],
        stdin: TextIO,
        *,
        prompts: bool = True,
    ) -> None:
        super().__init__(namespace, filename="<console>")
        self._stdin = stdin
        self._prompts = prompts

    def raw_input(self, prompt: str = "") -> str:
        if self._prompts and prompt:
            sys.stdout.write(prompt)
            sys.stdout.flush()
        line = self._stdin.readline()
        if not line:
            raise EOFError
        return line.rstrip("\r\n")


class PythonRunner(ScriptRunner):
    """Executes Python scripts with ``exec`` inside the host interpreter.

    Output is written to the redirected streams when :meth:`redirect` was
    called. Interactive sessions read from ``stdin`` (default
    ``sys.stdin``) and end on EOF, ``exit()`` or ``quit()``.
    """

    name = "Python"
    type = "text/python"
    extensions = ("py",)

    def __init__(self, *, stdin: Optional[TextIO] = None) -> None:
        super().__init__()
        self._stdin = stdin
        self._host_args: Tuple[str, ...] = ()

    def _do_init(self, args: Tuple[str, ...]) -> None:
        # Host args are exposed to scripts; nothing has to be started.
        self._host_args = args

    def command_line_help(self) -> str:
        return (
            "Python scripts (.py) run inside the host interpreter. "
            "Script arguments are available as sys.argv[1:]."
        )

    def interactive_help(self) -> str:
        return (
            "Type Python statements. shelp() shows this text, "
            "exit() or EOF ends the session. Session arguments are in "
            "POLYRUN_SCRIPT_ARGS."
        )

    # ------------------------------------------------------------------
    def _run_script(
        self, script: Path, script_args: Tuple[str, ...], options: RunOptions
    ) -> int:
        return self._run_file(script, script_args, options, extra={})

    def _run_test(
        self,
        script: Path,
        image_dir: Path,
        script_args: Tuple[str, ...],
        options: RunOptions,
    ) -> int:
        image_path = str(image_dir)
        with _INTERPRETER_LOCK:
            sys.path.insert(0, image_path)
            try:
                return self._run_file(
                    script,
                    script_args,
                    options,
                    extra={"IMAGE_DIR": image_path},
                )
            finally:
                try:
                    sys.path.remove(image_path)
                except ValueError:
                    pass

    def _eval_script(self, code: str, options: RunOptions) -> int:
        source = self._statements.bracket(code)
        return self._execute(source, "<eval>", ["-c"], options, extra={})

    def _run_file(
        self,
        script: Path,
        script_args: Tuple[str, ...],
        options: RunOptions,
        *,
        extra: Dict[str, Any],
    ) -> int:
        stderr = self._redirector.stderr
        try:
            text = script.read_text(encoding="utf-8")
        except OSError as exc:
            print(f"[{self.label}] cannot read {script}: {exc}", file=stderr)
            return 1
        if not options.silent:
            LOGGER.info("Running %s with %s", script, self.label)
        source = self._statements.bracket(text)
        argv = [str(script), *script_args]
        return self._execute(source, str(script), argv, options, extra=extra)

    def _execute(
        self,
        source: BracketedSource,
        filename: str,
        argv: Sequence[str],
        options: RunOptions,
        *,
        extra: Dict[str, Any],
    ) -> int:
        stdout = self._redirector.stdout
        stderr = self._redirector.stderr
        try:
            compiled = compile(source.text, filename, "exec")
        except SyntaxError as exc:
            self._record_line(source, exc.lineno, options)
            stderr.write("".join(traceback.format_exception_only(type(exc), exc)))
            return 1

        namespace: Dict[str, Any] = {
            "__name__": "__main__",
            "__file__": filename,
            "__builtins__": builtins,
            "POLYRUN_ARGS": list(self._host_args),
        }
        namespace.update(extra)
        with _INTERPRETER_LOCK, routed_stdio(stdout, stderr):
            saved_argv = sys.argv
            sys.argv = list(argv)
            try:
                exec(compiled, namespace)
            except SystemExit as exc:
                return exit_code_from(exc.code, stderr)
            except Exception as exc:
                self._record_line(
                    source, _failing_line(exc.__traceback__, filename), options
                )
                stderr.write(
                    "".join(
                        traceback.format_exception(
                            type(exc), exc, exc.__traceback__
                        )
                    )
                )
                return 1
            finally:
                sys.argv = saved_argv
                stdout.flush()
        return 0

    @staticmethod
    def _record_line(
        source: BracketedSource,
        engine_line: Optional[int],
        options: RunOptions,
    ) -> None:
        if not engine_line:
            return
        line = source.to_user_line(engine_line)
        if line > 0:
            options.record_error(line)

    # ------------------------------------------------------------------
    def _run_interactive(self, script_args: Tuple[str, ...]) -> int:
        stdout = self._redirector.stdout
        stderr = self._redirector.stderr
        namespace: Dict[str, Any] = {
            "__name__": "__console__",
            "__builtins__": builtins,
            "exit": _raise_exit,
            "quit": _raise_exit,
            "shelp": lambda: print(self.interactive_help()),
            "POLYRUN_ARGS": list(self._host_args),
            "POLYRUN_SCRIPT_ARGS": list(script_args),
        }
        console = _Console(namespace, self._stdin or sys.stdin)
        # Sessions can block for long, so they leave sys.argv alone and
        # do not take the interpreter lock.
        try:
            with routed_stdio(stdout, stderr):
                for stmt in self.before_statements:
                    console.push(stmt)
                console.interact(banner=interactive_banner(self), exitmsg="")
        except SystemExit as exc:
            return exit_code_from(exc.code, stderr)
        return 0


def _failing_line(tb: Optional[TracebackType], filename: str) -> Optional[int]:
    line = None
    for frame, lineno in traceback.walk_tb(tb):
        if frame.f_code.co_filename == filename:
            line = lineno
    return line


__all__ = ["PythonRunner", "exit_code_from"]
