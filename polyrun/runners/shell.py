"""POSIX shell runner."""

from __future__ import annotations

import os

from polyrun.runners.external import ExternalRunner


class ShellRunner(ExternalRunner):
    """Executes shell scripts with `sh`; only available on POSIX hosts."""

    name = "Shell"
    type = "text/x-sh"
    extensions = ("sh", "bash")
    executable = "sh"
    interactive_args = ("-i",)
    # dash reports "file: 7: ...", bash "file: line 7: ..."
    error_line_pattern = r"{file}:(?: line)? (\d+):"

    def _check_supported(self) -> bool:
        return os.name == "posix" and super()._check_supported()

    def interactive_help(self) -> str:
        return "Interactive shell. Type `exit` or send EOF to leave."


__all__ = ["ShellRunner"]
