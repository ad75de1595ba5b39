# Copyright (c) Meta Platforms, Inc. and affiliates.
# Modifications copyright (c) 2025 Logan Martel.
# Adapted from https://github.com/meta-pytorch/KernelAgent (Apache-2.0).

"""Help text assembly backed by Jinja2 templates."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    Template,
    TemplateNotFound,
)

if TYPE_CHECKING:  # pragma: no cover
    from polyrun.runners.base import ScriptRunner


class HelpRenderer:
    """Loads and renders the help templates from one or more directories."""

    def __init__(
        self,
        templates_dir: Optional[Path] = None,
        *,
        extra_dirs: Optional[Sequence[Path]] = None,
    ) -> None:
        if templates_dir is not None:
            base_dir = Path(templates_dir)
        else:
            base_dir = Path(__file__).parent / "templates"
        if not base_dir.exists():
            raise FileNotFoundError(
                f"Templates directory not found: {base_dir}"
            )
        paths = [Path(path) for path in extra_dirs or ()]
        for override in paths:
            if not override.exists():
                raise FileNotFoundError(
                    f"Help template directory not found: {override}"
                )
        paths.append(base_dir)
        self._base_dir = base_dir
        self._env = Environment(
            loader=ChoiceLoader(
                [FileSystemLoader(str(path)) for path in paths]
            ),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    @property
    def templates_dir(self) -> Path:
        return self._base_dir

    def render(self, template_name: str, **context) -> str:
        return self._get_template(template_name).render(**context)

    def command_line_help(self, runners: Iterable["ScriptRunner"]) -> str:
        entries = [
            {
                "name": runner.label,
                "type": runner.type,
                "extensions": list(runner.extensions),
                "supported": runner.is_supported(),
                "text": runner.command_line_help(),
            }
            for runner in runners
        ]
        return self.render("command_line.j2", runners=entries).rstrip() + "\n"

    def interactive_banner(self, runner: "ScriptRunner") -> str:
        return self.render(
            "interactive.j2",
            name=runner.label,
            type=runner.type,
            text=runner.interactive_help(),
        ).rstrip()

    def _get_template(self, template_name: str) -> Template:
        try:
            return self._env.get_template(template_name)
        except TemplateNotFound as exc:
            raise FileNotFoundError(
                f"Template '{template_name}' not found in {self.templates_dir}"
            ) from exc


@lru_cache(maxsize=1)
def default_renderer() -> HelpRenderer:
    return HelpRenderer()


def command_line_help(runners: Iterable["ScriptRunner"]) -> str:
    return default_renderer().command_line_help(runners)


def interactive_banner(runner: "ScriptRunner") -> str:
    return default_renderer().interactive_banner(runner)


__all__ = [
    "HelpRenderer",
    "command_line_help",
    "default_renderer",
    "interactive_banner",
]
