"""Registry that maps identifiers to script runners."""

from __future__ import annotations

import logging
import threading

from dataclasses import dataclass, field
from typing import (
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Mapping,
    NoReturn,
    Optional,
    Tuple,
)

from polyrun.exceptions import ResolutionError
from polyrun.runners.base import ScriptRunner, extension_of, normalize_extension

LOGGER = logging.getLogger(__name__)

MATCH_NAME = "name"
MATCH_TYPE = "type"
MATCH_EXTENSION = "extension"
MATCH_PREFIX = "prefix"


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving an identifier.

    ``target`` is the identifier with any ``<name>:`` prefix removed: a script
    path for file-based calls or inline code for prefix matches.
    """

    runner: ScriptRunner
    matched_by: str
    identifier: str
    target: str


@dataclass(frozen=True)
class _Tables:
    order: Tuple[ScriptRunner, ...] = ()
    by_name: Mapping[str, ScriptRunner] = field(default_factory=dict)
    by_folded_name: Mapping[str, ScriptRunner] = field(default_factory=dict)
    by_type: Mapping[str, Tuple[ScriptRunner, ...]] = field(default_factory=dict)
    by_extension: Mapping[str, Tuple[ScriptRunner, ...]] = field(
        default_factory=dict
    )
    excluded: FrozenSet[int] = frozenset()


class RunnerRegistry:
    """Indexes runners by name, type and extension.

    Mutations happen under a lock and publish a fresh immutable set of
    tables; lookups only read the current snapshot, so parallel sessions can
    resolve identifiers while a plugin registers a late runner.
    """

    def __init__(self, runners: Iterable[ScriptRunner] = ()) -> None:
        self._lock = threading.Lock()
        self._runners: List[ScriptRunner] = []
        self._excluded: set[int] = set()
        self._tables = _Tables()
        for runner in runners:
            self.register(runner)

    # ------------------------------------------------------------------
    # Mutation
    def register(self, runner: ScriptRunner) -> bool:
        """Add ``runner``; returns ``False`` when its name is already taken."""

        with self._lock:
            if any(existing is runner for existing in self._runners):
                LOGGER.debug("Runner %s already registered", runner.label)
                return False
            if runner.name and any(
                existing.name == runner.name for existing in self._runners
            ):
                LOGGER.warning(
                    "A runner named '%s' is already registered; ignoring %s",
                    runner.name,
                    runner.__class__.__name__,
                )
                return False
            if not runner.extensions and runner.is_supported():
                raise ValueError(
                    f"runner {runner.label} is supported but declares no "
                    "extensions"
                )
            self._runners.append(runner)
            self._publish()
        LOGGER.debug(
            "Registered runner %s (type=%s, extensions=%s)",
            runner.label,
            runner.type,
            ", ".join(runner.extensions),
        )
        return True

    def unregister(self, runner: ScriptRunner) -> None:
        with self._lock:
            self._runners = [r for r in self._runners if r is not runner]
            self._excluded.discard(id(runner))
            self._publish()

    def exclude(self, runner: ScriptRunner) -> None:
        """Keep ``runner`` registered but out of resolution."""

        with self._lock:
            self._excluded.add(id(runner))
            self._publish()
        LOGGER.warning("Runner %s excluded from resolution", runner.label)

    def include(self, runner: ScriptRunner) -> None:
        with self._lock:
            self._excluded.discard(id(runner))
            self._publish()

    def _publish(self) -> None:
        by_name: Dict[str, ScriptRunner] = {}
        by_folded: Dict[str, ScriptRunner] = {}
        by_type: Dict[str, List[ScriptRunner]] = {}
        by_ext: Dict[str, List[ScriptRunner]] = {}
        for runner in self._runners:
            if runner.name:
                by_name[runner.name] = runner
                by_folded.setdefault(runner.name.casefold(), runner)
            by_type.setdefault(runner.type, []).append(runner)
            for ext in runner.extensions:
                bucket = by_ext.setdefault(normalize_extension(ext), [])
                if runner not in bucket:
                    bucket.append(runner)
        self._tables = _Tables(
            order=tuple(self._runners),
            by_name=by_name,
            by_folded_name=by_folded,
            by_type={key: tuple(value) for key, value in by_type.items()},
            by_extension={key: tuple(value) for key, value in by_ext.items()},
            excluded=frozenset(self._excluded),
        )

    # ------------------------------------------------------------------
    # Queries
    @property
    def runners(self) -> Tuple[ScriptRunner, ...]:
        return self._tables.order

    def supported_runners(self) -> Tuple[ScriptRunner, ...]:
        return tuple(r for r in self._tables.order if r.is_supported())

    def get(self, name: str) -> Optional[ScriptRunner]:
        return self._tables.by_name.get(name)

    def is_excluded(self, runner: ScriptRunner) -> bool:
        return id(runner) in self._tables.excluded

    def __len__(self) -> int:
        return len(self._tables.order)

    def __iter__(self) -> Iterator[ScriptRunner]:
        return iter(self._tables.order)

    def __contains__(self, runner: object) -> bool:
        return any(r is runner for r in self._tables.order)

    def find(self, identifier: str) -> Optional[ScriptRunner]:
        """Return the runner for ``identifier`` or ``None``."""

        try:
            return self.resolve(identifier).runner
        except ResolutionError:
            return None

    def resolve(
        self, identifier: str, *, include_excluded: bool = False
    ) -> Resolution:
        """Resolve ``identifier`` by name, type, extension, then prefix.

        Names match exactly first; a case-insensitive name match is tried
        only after the exact type lookup failed.

        Raises :class:`ResolutionError` when nothing usable matches.
        ``include_excluded`` lets recovery paths reach runners that were
        excluded after a failed init.
        """

        ident = str(identifier).strip()
        if not ident:
            raise ResolutionError("cannot resolve an empty identifier")
        tables = self._tables
        usable = _Usable(tables, include_excluded)

        by_name = tables.by_name.get(ident)
        if by_name is not None and usable(by_name):
            return self._checked(by_name, MATCH_NAME, ident, ident)

        for runner in tables.by_type.get(ident, ()):
            if usable(runner):
                return self._checked(runner, MATCH_TYPE, ident, ident)

        by_name = tables.by_folded_name.get(ident.casefold())
        if by_name is not None and usable(by_name):
            return self._checked(by_name, MATCH_NAME, ident, ident)

        ext = extension_of(ident)
        if ext:
            for runner in tables.by_extension.get(ext, ()):
                if usable(runner):
                    target = ident
                    if runner.name and ident.startswith(f"{runner.name}:"):
                        target = runner.strip_prefix(ident) or ident
                    return self._checked(runner, MATCH_EXTENSION, ident, target)

        resolution = self._match_prefix(ident, tables, usable)
        if resolution is not None:
            return resolution
        usable.fail(ident)

    def resolve_prefix(self, identifier: str) -> Optional[Resolution]:
        """Resolve only the ``<name>:<code>`` / ``<name><code>`` form.

        Returns ``None`` when no runner name prefixes ``identifier``; raises
        :class:`ResolutionError` when only unusable runners do.
        """

        ident = str(identifier).lstrip()
        tables = self._tables
        usable = _Usable(tables, False)
        resolution = self._match_prefix(ident, tables, usable)
        if resolution is None and usable.rejected:
            usable.fail(ident)
        return resolution

    def _match_prefix(
        self, ident: str, tables: _Tables, usable: "_Usable"
    ) -> Optional[Resolution]:
        prefixed = [
            runner
            for runner in tables.order
            if runner.strip_prefix(ident) is not None
        ]
        # Longest name first; sort() keeps registration order for ties.
        prefixed.sort(key=lambda runner: -len(runner.name or ""))
        for runner in prefixed:
            if usable(runner):
                remainder = runner.strip_prefix(ident) or ""
                return self._checked(runner, MATCH_PREFIX, ident, remainder)
        return None

    def _checked(
        self,
        runner: ScriptRunner,
        matched_by: str,
        identifier: str,
        target: str,
    ) -> Resolution:
        if not runner.can_handle(identifier):
            LOGGER.warning(
                "Runner %s was resolved by %s for '%s' but does not claim it",
                runner.label,
                matched_by,
                identifier,
            )
        return Resolution(
            runner=runner,
            matched_by=matched_by,
            identifier=identifier,
            target=target,
        )


class _Usable:
    """Filters candidates and remembers the ones that were turned down."""

    def __init__(self, tables: _Tables, include_excluded: bool) -> None:
        self._tables = tables
        self._include_excluded = include_excluded
        self.rejected: List[ScriptRunner] = []

    def __call__(self, runner: ScriptRunner) -> bool:
        excluded = (
            not self._include_excluded and id(runner) in self._tables.excluded
        )
        if excluded or not runner.is_supported():
            if not any(r is runner for r in self.rejected):
                self.rejected.append(runner)
            return False
        return True

    def fail(self, ident: str) -> NoReturn:
        if self.rejected:
            labels = ", ".join(runner.label for runner in self.rejected)
            raise ResolutionError(
                f"no usable runner for '{ident}': {labels} is unsupported "
                "on this host or excluded"
            )
        raise ResolutionError(f"no runner can handle '{ident}'")


__all__ = [
    "MATCH_EXTENSION",
    "MATCH_NAME",
    "MATCH_PREFIX",
    "MATCH_TYPE",
    "Resolution",
    "RunnerRegistry",
]
