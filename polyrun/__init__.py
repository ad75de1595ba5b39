"""polyrun package entry point."""

from .dispatcher import Dispatcher
from .exceptions import (
    AlreadyRedirectedError,
    LifecycleError,
    ResolutionError,
    RunnerInitError,
    ScriptRunnerError,
)
from .options import RunOptions
from .registry import Resolution, RunnerRegistry
from .runners import RunnerState, ScriptRunner

__all__ = [
    "AlreadyRedirectedError",
    "Dispatcher",
    "LifecycleError",
    "Resolution",
    "ResolutionError",
    "RunOptions",
    "RunnerInitError",
    "RunnerRegistry",
    "RunnerState",
    "ScriptRunner",
    "ScriptRunnerError",
]
