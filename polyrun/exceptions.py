"""Custom exceptions for the script runner core."""


class ScriptRunnerError(RuntimeError):
    """Base exception for dispatch and runner lifecycle failures."""


class ResolutionError(ScriptRunnerError):
    """Raised when no supported runner matches an identifier."""


class LifecycleError(ScriptRunnerError):
    """Raised when a runner is used outside of a valid lifecycle state."""


class AlreadyRedirectedError(LifecycleError):
    """Raised when a runner's stdio is redirected a second time."""


class RunnerInitError(ScriptRunnerError):
    """Raised when the engine behind a runner cannot be started."""
