"""Script runner catalog."""

from typing import Dict, Type

from .base import RunnerState, ScriptRunner
from .external import ExternalRunner
from .javascript import JavaScriptRunner
from .python import PythonRunner
from .ruby import RubyRunner
from .shell import ShellRunner

RUNNER_CLASSES: Dict[str, Type[ScriptRunner]] = {
    "python": PythonRunner,
    "javascript": JavaScriptRunner,
    "ruby": RubyRunner,
    "shell": ShellRunner,
}


def register_runner_class(name: str, runner_cls: Type[ScriptRunner]) -> None:
    """Register or override a runner class at runtime."""

    RUNNER_CLASSES[name.lower()] = runner_cls


def unregister_runner_class(name: str) -> None:
    """Remove a runner class that was previously registered."""

    RUNNER_CLASSES.pop(name.lower(), None)


__all__ = [
    "ExternalRunner",
    "JavaScriptRunner",
    "PythonRunner",
    "RUNNER_CLASSES",
    "RubyRunner",
    "RunnerState",
    "ScriptRunner",
    "ShellRunner",
    "register_runner_class",
    "unregister_runner_class",
]
