"""Typed helpers for parsing polyrun configuration dictionaries."""

from __future__ import annotations

import logging

from dataclasses import dataclass, field
from importlib import import_module
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from polyrun.dispatcher import Dispatcher
from polyrun.registry import RunnerRegistry
from polyrun.runners import RUNNER_CLASSES

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "polyrun.yaml"


def _ensure_path(value: Optional[str | Path], *, config_root: Path) -> Optional[Path]:
    if value is None:
        return None
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (config_root / path).resolve()
    return path


def _as_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value)
    return (str(value),)


@dataclass(frozen=True)
class LoggingSettings:
    file: Optional[Path] = None
    level: str = "INFO"
    max_bytes: int = 2_000_000
    backup_count: int = 3


@dataclass(frozen=True)
class RunnerSettings:
    enabled: Optional[Tuple[str, ...]] = None
    modules: Tuple[str, ...] = ()
    options: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def options_for(self, name: str) -> Dict[str, Any]:
        for key, value in self.options.items():
            if key.lower() == name.lower():
                return dict(value or {})
        return {}


@dataclass(frozen=True)
class PolyrunSettings:
    default_runner: Optional[str] = "Python"
    init_args: Tuple[str, ...] = ()
    runners: RunnerSettings = field(default_factory=RunnerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


def load_config(config_path: Path) -> dict:
    if not config_path.exists():
        raise FileNotFoundError(f"Config file '{config_path}' not found.")
    return yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}


def build_settings(
    config: Optional[Dict[str, Any]], *, config_root: Path
) -> PolyrunSettings:
    cfg = (config or {}).get("polyrun") or {}
    runners_cfg = cfg.get("runners") or {}
    enabled = runners_cfg.get("enabled")
    runner_settings = RunnerSettings(
        enabled=_as_tuple(enabled) if enabled is not None else None,
        modules=_as_tuple(runners_cfg.get("modules")),
        options=dict(runners_cfg.get("options") or {}),
    )
    logging_cfg = cfg.get("logging") or {}
    logging_settings = LoggingSettings(
        file=_ensure_path(logging_cfg.get("file"), config_root=config_root),
        level=str(logging_cfg.get("level", "INFO")).upper(),
        max_bytes=int(logging_cfg.get("max_bytes", 2_000_000)),
        backup_count=int(logging_cfg.get("backup_count", 3)),
    )
    default_runner = cfg.get("default_runner", "Python")
    return PolyrunSettings(
        default_runner=str(default_runner) if default_runner else None,
        init_args=_as_tuple(cfg.get("init_args")),
        runners=runner_settings,
        logging=logging_settings,
    )


def import_runner_modules(settings: PolyrunSettings) -> None:
    """Import plugin modules so they can register extra runner classes."""

    for mod_name in settings.runners.modules:
        if not mod_name:
            continue
        try:
            import_module(mod_name)
        except Exception as exc:  # pragma: no cover
            LOGGER.error("Failed to import runner module '%s': %s", mod_name, exc)


def build_registry(settings: Optional[PolyrunSettings] = None) -> RunnerRegistry:
    """Instantiate the catalog runners selected by ``settings``."""

    settings = settings or PolyrunSettings()
    enabled = settings.runners.enabled
    wanted = None if enabled is None else {name.lower() for name in enabled}
    registry = RunnerRegistry()
    for key, runner_cls in RUNNER_CLASSES.items():
        if wanted is not None and key not in wanted:
            continue
        kwargs = settings.runners.options_for(key)
        registry.register(runner_cls(**kwargs))
    if wanted is not None:
        missing = wanted - set(RUNNER_CLASSES)
        for name in sorted(missing):
            LOGGER.warning("Unknown runner '%s' in configuration", name)
    return registry


def build_dispatcher(settings: Optional[PolyrunSettings] = None) -> Dispatcher:
    settings = settings or PolyrunSettings()
    import_runner_modules(settings)
    return Dispatcher(
        build_registry(settings),
        init_args=settings.init_args,
        default_runner=settings.default_runner,
    )


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "LoggingSettings",
    "PolyrunSettings",
    "RunnerSettings",
    "build_dispatcher",
    "build_registry",
    "build_settings",
    "import_runner_modules",
    "load_config",
]
