"""Ruby runner that shells out to the Ruby interpreter."""

from __future__ import annotations

from polyrun.runners.external import ExternalRunner


class RubyRunner(ExternalRunner):
    """Executes Ruby code via the system `ruby` command."""

    name = "Ruby"
    type = "text/ruby"
    extensions = ("rb",)
    executable = "ruby"
    interactive_executable = "irb"
    interactive_args = ("--noreadline",)

    def interactive_help(self) -> str:
        return "irb session. Type `exit` or send EOF to leave."


__all__ = ["RubyRunner"]
