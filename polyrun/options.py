"""Per-invocation options handed to a runner."""

from __future__ import annotations

from dataclasses import dataclass

NO_ERROR_LINE = -1


@dataclass
class RunOptions:
    """Flags for a single execution call.

    ``silent`` is chosen by the caller. ``error_line`` is written by the runner
    (through :meth:`record_error`) when a script fails at a known 1-based
    source line and stays at ``-1`` otherwise.
    """

    silent: bool = False
    error_line: int = NO_ERROR_LINE

    def __post_init__(self) -> None:
        self._check_line(self.error_line)

    @staticmethod
    def _check_line(line: int) -> None:
        if line < NO_ERROR_LINE:
            raise ValueError(f"error_line must be >= -1, got {line}")

    @property
    def failed(self) -> bool:
        return self.error_line != NO_ERROR_LINE

    def set_silent(self, silent: bool) -> "RunOptions":
        self.silent = silent
        return self

    def record_error(self, line: int) -> None:
        line = int(line)
        self._check_line(line)
        self.error_line = line

    def reset_error(self) -> None:
        self.error_line = NO_ERROR_LINE
