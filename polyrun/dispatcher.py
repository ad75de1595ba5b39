"""Dispatcher that forwards execution requests to resolved runners."""

from __future__ import annotations

import logging
import threading

from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple, Union

from polyrun.exceptions import LifecycleError, ResolutionError, RunnerInitError
from polyrun.help import command_line_help
from polyrun.options import RunOptions
from polyrun.registry import Resolution, RunnerRegistry
from polyrun.runners.base import RunnerState, ScriptRunner
from polyrun.statements import StatementInjector

LOGGER = logging.getLogger(__name__)


class Dispatcher:
    """Resolves identifiers through a registry and runs the chosen runner.

    Before each non-interactive call the dispatcher's before/after buffers
    replace the runner's own buffers. Runners that fail to initialize are
    excluded from the registry until :meth:`reset` is called for them.
    """

    def __init__(
        self,
        registry: RunnerRegistry,
        *,
        init_args: Sequence[str] = (),
        default_runner: Optional[str] = None,
    ) -> None:
        self._registry = registry
        self._init_args: Tuple[str, ...] = tuple(init_args)
        self._default_runner = default_runner
        self._statements = StatementInjector()
        self._active: Optional[ScriptRunner] = None
        self._lock = threading.Lock()

    @property
    def registry(self) -> RunnerRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Statement buffers
    @property
    def before_statements(self) -> Tuple[str, ...]:
        return self._statements.before.lines

    @property
    def after_statements(self) -> Tuple[str, ...]:
        return self._statements.after.lines

    def exec_before(self, stmts: Optional[Iterable[str]]) -> None:
        self._statements.exec_before(stmts)

    def exec_after(self, stmts: Optional[Iterable[str]]) -> None:
        self._statements.exec_after(stmts)

    def clear_before(self) -> None:
        self._statements.before.clear()

    def clear_after(self) -> None:
        self._statements.after.clear()

    # ------------------------------------------------------------------
    # Runner selection
    def resolve(self, identifier: Union[str, Path]) -> Resolution:
        return self._registry.resolve(str(identifier))

    def use(self, identifier: str) -> ScriptRunner:
        """Make the runner for ``identifier`` the target of inline code."""

        runner = self._registry.resolve(identifier).runner
        self._active = runner
        return runner

    @property
    def active_runner(self) -> Optional[ScriptRunner]:
        return self._active

    def _current_runner(self) -> ScriptRunner:
        if self._active is None and self._default_runner:
            self._active = self._registry.resolve(self._default_runner).runner
        if self._active is None:
            raise ResolutionError(
                "inline code needs a language or an active runner"
            )
        if self._registry.is_excluded(self._active):
            raise ResolutionError(
                f"runner {self._active.label} is excluded after a failed init"
            )
        return self._active

    def _inline_target(
        self, code: str, language: Optional[str]
    ) -> Tuple[ScriptRunner, str]:
        if language is not None:
            return self._registry.resolve(language).runner, code
        resolution = self._registry.resolve_prefix(code)
        if resolution is not None:
            return resolution.runner, resolution.target
        return self._current_runner(), code

    def _prepare(self, runner: ScriptRunner, *, inject: bool = True) -> None:
        with self._lock:
            if runner.state is RunnerState.UNINITIALIZED:
                try:
                    runner.init(self._init_args)
                except RunnerInitError:
                    LOGGER.error("Runner %s failed to initialize", runner.label)
                    self._registry.exclude(runner)
                    raise
            elif runner.state is RunnerState.CLOSED:
                raise LifecycleError(
                    f"runner {runner.label} is closed; reset it to use it again"
                )
        if inject:
            runner.exec_before(self._statements.before.lines)
            runner.exec_after(self._statements.after.lines)

    @staticmethod
    def _report(
        runner: ScriptRunner,
        operation: str,
        exit_code: Optional[int],
        options: RunOptions,
    ) -> None:
        if not options.failed and not exit_code:
            return
        if options.failed:
            LOGGER.warning(
                "%s on runner %s failed with exit code %s at line %d",
                operation,
                runner.label,
                exit_code,
                options.error_line,
            )
        else:
            LOGGER.warning(
                "%s on runner %s returned exit code %s",
                operation,
                runner.label,
                exit_code,
            )

    # ------------------------------------------------------------------
    # Execution intents
    def _file_target(
        self, identifier: Union[str, Path], language: Optional[str]
    ) -> Tuple[ScriptRunner, str]:
        if language is not None:
            return self._registry.resolve(language).runner, str(identifier)
        resolution = self.resolve(identifier)
        return resolution.runner, resolution.target

    def run_script(
        self,
        identifier: Union[str, Path],
        script_args: Sequence[str] = (),
        options: Optional[RunOptions] = None,
        *,
        language: Optional[str] = None,
    ) -> int:
        options = options if options is not None else RunOptions()
        runner, target = self._file_target(identifier, language)
        self._prepare(runner)
        exit_code = runner.run_script(target, script_args, options)
        self._report(runner, "run_script", exit_code, options)
        return exit_code

    def eval_script(
        self,
        code: str,
        options: Optional[RunOptions] = None,
        *,
        language: Optional[str] = None,
    ) -> int:
        options = options if options is not None else RunOptions()
        runner, code = self._inline_target(code, language)
        self._prepare(runner)
        exit_code = runner.eval_script(code, options)
        self._report(runner, "eval_script", exit_code, options)
        return exit_code

    def run_lines(
        self,
        code: str,
        options: Optional[RunOptions] = None,
        *,
        language: Optional[str] = None,
    ) -> None:
        options = options if options is not None else RunOptions()
        runner, code = self._inline_target(code, language)
        self._prepare(runner)
        runner.run_lines(code, options)
        self._report(runner, "run_lines", None, options)

    def run_test(
        self,
        script_uri: Union[str, Path],
        image_dir_uri: Optional[Union[str, Path]] = None,
        script_args: Sequence[str] = (),
        options: Optional[RunOptions] = None,
        *,
        language: Optional[str] = None,
    ) -> int:
        options = options if options is not None else RunOptions()
        runner, target = self._file_target(script_uri, language)
        self._prepare(runner)
        exit_code = runner.run_test(target, image_dir_uri, script_args, options)
        self._report(runner, "run_test", exit_code, options)
        return exit_code

    def run_interactive(
        self,
        identifier: Optional[str] = None,
        script_args: Sequence[str] = (),
    ) -> int:
        if identifier is not None:
            runner = self._registry.resolve(identifier).runner
        else:
            runner = self._current_runner()
        self._prepare(runner, inject=False)
        LOGGER.info("Starting interactive %s session", runner.label)
        return runner.run_interactive(script_args)

    # ------------------------------------------------------------------
    # Recovery and teardown
    def reset(self, identifier: str) -> ScriptRunner:
        """Re-initialize a runner and admit it to resolution again."""

        runner = self._registry.resolve(
            identifier, include_excluded=True
        ).runner
        with self._lock:
            if runner.state is RunnerState.UNINITIALIZED:
                runner.init(self._init_args)
            else:
                runner.reset()
        self._registry.include(runner)
        LOGGER.info("Runner %s reset", runner.label)
        return runner

    def close(self) -> None:
        """Close every registered runner."""

        errors = []
        for runner in self._registry.runners:
            try:
                runner.close()
            except Exception as exc:
                LOGGER.error("Closing runner %s failed: %s", runner.label, exc)
                errors.append(exc)
        self._active = None
        if errors:
            raise errors[0]

    def __enter__(self) -> "Dispatcher":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Help
    def command_line_help(self) -> str:
        return command_line_help(self._registry.runners)

    def interactive_help(self, identifier: Optional[str] = None) -> str:
        if identifier is not None:
            runner = self._registry.resolve(identifier).runner
        else:
            runner = self._current_runner()
        return runner.interactive_help()


__all__ = ["Dispatcher"]
