# Copyright (c) Meta Platforms, Inc. and affiliates.
# Modifications copyright (c) 2025 Logan Martel.
# Adapted from https://github.com/meta-pytorch/KernelAgent (Apache-2.0).

"""Runner base for engines that run as a separate interpreter process."""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
import threading
import uuid

from pathlib import Path
from typing import IO, Callable, Dict, List, Mapping, Optional, TextIO, Tuple

from polyrun.exceptions import LifecycleError, RunnerInitError
from polyrun.options import RunOptions
from polyrun.runners.base import ScriptRunner

LOGGER = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = -9


def _pump(source: IO[bytes], emit: Callable[[bytes], None]) -> None:
    for chunk in iter(lambda: source.read1(4096), b""):  # type: ignore[attr-defined]
        emit(chunk)
    source.close()


def _feed(source: TextIO, sink: IO[bytes]) -> None:
    try:
        for line in iter(source.readline, ""):
            sink.write(line.encode("utf-8"))
            sink.flush()
    except (BrokenPipeError, ValueError):
        pass
    finally:
        try:
            sink.close()
        except BrokenPipeError:
            pass


class ExternalRunner(ScriptRunner):
    """Writes the bracketed script to a temp file and runs the interpreter.

    ``executable`` must be on ``PATH`` for the runner to be supported. Init
    args are passed to the interpreter ahead of the script path. Engine line
    numbers are read from stderr with ``error_line_pattern`` where ``{file}``
    stands for the temp script name.
    """

    executable: str = ""
    interpreter_args: Tuple[str, ...] = ()
    interactive_executable: Optional[str] = None
    interactive_args: Tuple[str, ...] = ()
    error_line_pattern: str = r"{file}:(\d+)"

    def __init__(
        self,
        *,
        executable: Optional[str] = None,
        timeout_s: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        stdin: Optional[TextIO] = None,
    ) -> None:
        super().__init__()
        if executable:
            self.executable = executable
        self.timeout_s = timeout_s
        self._env: Dict[str, str] = dict(env or {})
        self._stdin = stdin
        self._resolved: Optional[str] = None
        self._extra_args: Tuple[str, ...] = ()
        self._workdir: Optional[Path] = None

    def _check_supported(self) -> bool:
        return bool(self.executable) and shutil.which(self.executable) is not None

    def _do_init(self, args: Tuple[str, ...]) -> None:
        resolved = shutil.which(self.executable) if self.executable else None
        if resolved is None:
            raise RunnerInitError(
                f"runner {self.label} needs '{self.executable}' on PATH"
            )
        self._resolved = resolved
        self._extra_args = args
        self._workdir = Path(
            tempfile.mkdtemp(prefix=f"polyrun-{self.label.lower()}-")
        )

    def _do_close(self) -> None:
        if self._workdir is not None:
            shutil.rmtree(self._workdir, ignore_errors=True)
        self._workdir = None
        self._resolved = None

    def command_line_help(self) -> str:
        exts = ", ".join(f".{ext}" for ext in self.extensions)
        return (
            f"{self.label} scripts ({exts}) run with '{self.executable}'. "
            "Script arguments are passed on the interpreter command line."
        )

    # ------------------------------------------------------------------
    def _run_script(
        self, script: Path, script_args: Tuple[str, ...], options: RunOptions
    ) -> int:
        text = self._read_script(script)
        if text is None:
            return 1
        return self._execute(text, script_args, options, cwd=script.parent)

    def _run_test(
        self,
        script: Path,
        image_dir: Path,
        script_args: Tuple[str, ...],
        options: RunOptions,
    ) -> int:
        text = self._read_script(script)
        if text is None:
            return 1
        return self._execute(
            text,
            script_args,
            options,
            cwd=script.parent,
            env={"POLYRUN_IMAGE_DIR": str(image_dir)},
        )

    def _eval_script(self, code: str, options: RunOptions) -> int:
        return self._execute(code, (), options, cwd=None)

    def _read_script(self, script: Path) -> Optional[str]:
        try:
            return script.read_text(encoding="utf-8")
        except OSError as exc:
            self._redirector.emit_stderr(
                f"[{self.label}] cannot read {script}: {exc}\n"
            )
            return None

    def _execute(
        self,
        code: str,
        script_args: Tuple[str, ...],
        options: RunOptions,
        *,
        cwd: Optional[Path],
        env: Optional[Mapping[str, str]] = None,
    ) -> int:
        if self._workdir is None or self._resolved is None:
            raise LifecycleError(
                f"runner {self.label} has no engine to run on"
            )
        source = self._statements.bracket(code)
        suffix = self.default_extension or "txt"
        src_path = self._workdir / f"script_{uuid.uuid4().hex[:8]}.{suffix}"
        src_path.write_text(source.text, encoding="utf-8")
        argv = [
            self._resolved,
            *self.interpreter_args,
            *self._extra_args,
            str(src_path),
            *script_args,
        ]
        if not options.silent:
            LOGGER.info("Running %s", " ".join(argv))
        try:
            proc = subprocess.run(
                argv,
                cwd=str(cwd) if cwd else None,
                env=self._build_env(env),
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=self.timeout_s,
            )
        except subprocess.TimeoutExpired as exc:
            self._redirector.emit_stdout(exc.stdout or b"")
            self._redirector.emit_stderr(exc.stderr or b"")
            self._redirector.emit_stderr(
                f"[{self.label}] timed out after {self.timeout_s}s\n"
            )
            return TIMEOUT_EXIT_CODE
        finally:
            src_path.unlink(missing_ok=True)
        self._redirector.emit_stdout(proc.stdout)
        self._redirector.emit_stderr(proc.stderr)
        if proc.returncode != 0:
            engine_line = self.parse_error_line(
                proc.stderr.decode("utf-8", errors="replace"), src_path.name
            )
            if engine_line is not None:
                line = source.to_user_line(engine_line)
                if line > 0:
                    options.record_error(line)
        return proc.returncode

    def parse_error_line(self, stderr: str, filename: str) -> Optional[int]:
        pattern = self.error_line_pattern.replace("{file}", re.escape(filename))
        match = re.search(pattern, stderr)
        return int(match.group(1)) if match else None

    def _build_env(self, extra: Optional[Mapping[str, str]]) -> Dict[str, str]:
        exec_env = os.environ.copy()
        exec_env.update(self._env)
        if extra:
            exec_env.update(extra)
        return exec_env

    # ------------------------------------------------------------------
    def _run_interactive(self, script_args: Tuple[str, ...]) -> int:
        program = self._resolved
        if self.interactive_executable:
            program = shutil.which(self.interactive_executable)
            if program is None:
                raise RunnerInitError(
                    f"runner {self.label} needs "
                    f"'{self.interactive_executable}' for interactive use"
                )
        argv = [program, *self.interactive_args]
        env = self._build_env(
            {"POLYRUN_SCRIPT_ARGS": json.dumps(list(script_args))}
        )
        redirected = self._redirector.bound
        proc = subprocess.Popen(
            argv,
            env=env,
            stdin=subprocess.PIPE if self._stdin is not None else None,
            stdout=subprocess.PIPE if redirected else None,
            stderr=subprocess.PIPE if redirected else None,
        )
        threads: List[threading.Thread] = []
        if self._stdin is not None:
            threads.append(
                threading.Thread(
                    target=_feed, args=(self._stdin, proc.stdin), daemon=True
                )
            )
        if redirected:
            threads.append(
                threading.Thread(
                    target=_pump,
                    args=(proc.stdout, self._redirector.emit_stdout),
                    daemon=True,
                )
            )
            threads.append(
                threading.Thread(
                    target=_pump,
                    args=(proc.stderr, self._redirector.emit_stderr),
                    daemon=True,
                )
            )
        for thread in threads:
            thread.start()
        returncode = proc.wait()
        for thread in threads:
            thread.join(timeout=1.0)
        return returncode


__all__ = ["ExternalRunner", "TIMEOUT_EXIT_CODE"]
