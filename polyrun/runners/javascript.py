"""JavaScript runner backed by Node.js."""

from __future__ import annotations

from polyrun.runners.external import ExternalRunner


class JavaScriptRunner(ExternalRunner):
    """Executes JavaScript code via the system `node` command."""

    name = "JavaScript"
    type = "text/javascript"
    extensions = ("js", "mjs")
    executable = "node"
    interactive_args = ("-i",)

    def interactive_help(self) -> str:
        return "Node.js REPL. Type .exit or send EOF to leave."


__all__ = ["JavaScriptRunner"]
