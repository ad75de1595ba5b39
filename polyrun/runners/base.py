"""Base script runner interface and lifecycle state machine."""

from __future__ import annotations

import logging
import re
import textwrap
import threading

from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator, Optional, Sequence, Tuple, Union
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from polyrun.exceptions import LifecycleError, RunnerInitError
from polyrun.options import RunOptions
from polyrun.redirect import StreamRedirector
from polyrun.statements import StatementInjector

LOGGER = logging.getLogger(__name__)

ScriptLocation = Union[str, Path]

_EXTENSION_RE = re.compile(r"^[A-Za-z0-9_+-]+$")


class RunnerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    CLOSED = "closed"


def normalize_extension(ending: str) -> str:
    return ending.strip().lstrip(".").lower()


def extension_of(identifier: str) -> Optional[str]:
    """Return the lower-cased extension of a path, URI or bare extension."""

    text = identifier.strip()
    if not text:
        return None
    if "://" in text or text.startswith("file:"):
        text = urlparse(text).path
    segment = re.split(r"[\\/]", text)[-1]
    if "." in segment:
        candidate = segment.rsplit(".", 1)[1]
    else:
        candidate = segment
    if not candidate or not _EXTENSION_RE.match(candidate):
        return None
    return candidate.lower()


def to_path(location: ScriptLocation) -> Path:
    """Turn a filesystem path or ``file:`` URI into a :class:`Path`."""

    if isinstance(location, Path):
        return location
    text = str(location)
    if text.startswith("file:"):
        return Path(url2pathname(unquote(urlparse(text).path)))
    return Path(text).expanduser()


class ScriptRunner(ABC):
    """Shared contract for one scripting language engine.

    Subclasses describe themselves through ``name``, ``type`` and
    ``extensions`` and implement the ``_do_*`` / ``_run_*`` hooks. The public
    methods enforce the lifecycle::

        UNINITIALIZED -> INITIALIZED -> (RUNNING)* -> CLOSED
        CLOSED -> INITIALIZED  (only through reset())

    ``close()`` clears the before/after buffers, so a reset runner starts
    clean.
    """

    name: Optional[str] = None
    type: str = "unknown"
    extensions: Tuple[str, ...] = ()

    def __init__(self) -> None:
        self._state = RunnerState.UNINITIALIZED
        self._lock = threading.Lock()
        self._init_args: Tuple[str, ...] = ()
        self._statements = StatementInjector()
        self._redirector = StreamRedirector()
        self._supported: Optional[bool] = None

    # ------------------------------------------------------------------
    # Identity
    @property
    def label(self) -> str:
        return self.name or self.__class__.__name__

    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def default_extension(self) -> Optional[str]:
        return self.extensions[0] if self.extensions else None

    @property
    def init_args(self) -> Tuple[str, ...]:
        return self._init_args

    def is_supported(self) -> bool:
        """Whether the host can run this engine (evaluated once)."""

        if self._supported is None:
            self._supported = bool(self._check_supported())
        return self._supported

    def _check_supported(self) -> bool:
        return True

    def has_extension(self, ending: str) -> bool:
        wanted = normalize_extension(ending)
        return any(normalize_extension(ext) == wanted for ext in self.extensions)

    def strip_prefix(self, identifier: str) -> Optional[str]:
        """Return the inline code of a ``<name>:<code>`` identifier."""

        if not self.name or not identifier.startswith(self.name):
            return None
        rest = identifier[len(self.name) :]
        if rest.startswith(":"):
            rest = rest[1:]
        rest = rest.lstrip()
        return rest or None

    def can_handle(self, identifier: str) -> bool:
        if not identifier:
            return False
        if self.name and identifier.casefold() == self.name.casefold():
            return True
        if identifier == self.type:
            return True
        ext = extension_of(identifier)
        if ext and self.has_extension(ext):
            return True
        return self.strip_prefix(identifier) is not None

    # ------------------------------------------------------------------
    # Lifecycle
    def init(self, args: Sequence[str] = ()) -> None:
        with self._lock:
            if self._state is not RunnerState.UNINITIALIZED:
                raise LifecycleError(
                    f"cannot init runner {self.label}: it is "
                    f"{self._state.value}"
                )
            self._start(args)

    def close(self) -> None:
        with self._lock:
            previous = self._state
            if previous is RunnerState.CLOSED:
                return
            self._state = RunnerState.CLOSED
        self._statements.clear()
        if previous is not RunnerState.UNINITIALIZED:
            LOGGER.debug("Closing runner %s", self.label)
            self._do_close()

    def reset(self) -> None:
        """Close the runner and initialize it again with the cached args."""

        args = self._init_args
        self.close()
        with self._lock:
            self._start(args)

    def _start(self, args: Sequence[str]) -> None:
        cached = tuple(str(arg) for arg in args)
        try:
            self._do_init(cached)
        except RunnerInitError:
            raise
        except Exception as exc:
            raise RunnerInitError(
                f"runner {self.label} failed to initialize: {exc}"
            ) from exc
        self._init_args = cached
        self._state = RunnerState.INITIALIZED
        LOGGER.debug("Initialized runner %s with args %s", self.label, cached)

    @contextmanager
    def _executing(self, operation: str) -> Iterator[None]:
        with self._lock:
            if self._state is RunnerState.RUNNING:
                raise LifecycleError(
                    f"runner {self.label} is busy; {operation} rejected"
                )
            if self._state is not RunnerState.INITIALIZED:
                raise LifecycleError(
                    f"cannot {operation} on runner {self.label}: it is "
                    f"{self._state.value}"
                )
            self._state = RunnerState.RUNNING
        try:
            yield
        finally:
            with self._lock:
                if self._state is RunnerState.RUNNING:
                    self._state = RunnerState.INITIALIZED

    # ------------------------------------------------------------------
    # Execution
    def run_script(
        self,
        script: ScriptLocation,
        script_args: Sequence[str] = (),
        options: Optional[RunOptions] = None,
    ) -> int:
        options = options if options is not None else RunOptions()
        with self._executing("run_script"):
            return int(
                self._run_script(to_path(script), tuple(script_args), options)
            )

    def eval_script(
        self, code: str, options: Optional[RunOptions] = None
    ) -> int:
        options = options if options is not None else RunOptions()
        with self._executing("eval_script"):
            return int(self._eval_script(code, options))

    def run_lines(self, code: str, options: Optional[RunOptions] = None) -> None:
        options = options if options is not None else RunOptions()
        with self._executing("run_lines"):
            self._run_lines(code, options)

    def run_test(
        self,
        script_uri: ScriptLocation,
        image_dir_uri: Optional[ScriptLocation] = None,
        script_args: Sequence[str] = (),
        options: Optional[RunOptions] = None,
    ) -> int:
        options = options if options is not None else RunOptions()
        script = to_path(script_uri)
        if image_dir_uri is None:
            image_dir = script.parent
        else:
            image_dir = to_path(image_dir_uri)
        with self._executing("run_test"):
            return int(
                self._run_test(script, image_dir, tuple(script_args), options)
            )

    def run_interactive(self, script_args: Sequence[str] = ()) -> int:
        with self._executing("run_interactive"):
            return int(self._run_interactive(tuple(script_args)))

    # ------------------------------------------------------------------
    # Statements and redirection
    @property
    def before_statements(self) -> Tuple[str, ...]:
        return self._statements.before.lines

    @property
    def after_statements(self) -> Tuple[str, ...]:
        return self._statements.after.lines

    def exec_before(self, stmts: Optional[Iterable[str]]) -> None:
        """Replace the before buffer (``None`` or empty clears it)."""

        self._statements.exec_before(stmts)

    def exec_after(self, stmts: Optional[Iterable[str]]) -> None:
        """Replace the after buffer (``None`` or empty clears it)."""

        self._statements.exec_after(stmts)

    def set_before(self, stmts: Iterable[str]) -> None:
        self._statements.before.set(stmts)

    def set_after(self, stmts: Iterable[str]) -> None:
        self._statements.after.set(stmts)

    def clear_before(self) -> None:
        self._statements.before.clear()

    def clear_after(self) -> None:
        self._statements.after.clear()

    @property
    def redirected(self) -> bool:
        return self._redirector.bound

    def redirect(self, stdout: BinaryIO, stderr: BinaryIO) -> None:
        """Bind stdout/stderr to the given binary sinks, once."""

        self._redirector.bind(stdout, stderr)
        LOGGER.debug("Redirected stdio of runner %s", self.label)

    # ------------------------------------------------------------------
    # Help surfaces
    def command_line_help(self) -> str:
        exts = ", ".join(f".{ext}" for ext in self.extensions)
        return f"Runs {self.type} scripts ({exts})."

    def interactive_help(self) -> str:
        return f"Interactive {self.label} session. End it with EOF."

    # ------------------------------------------------------------------
    # Engine hooks
    @abstractmethod
    def _do_init(self, args: Tuple[str, ...]) -> None:
        """Start the engine; raise RunnerInitError when it cannot start."""

    def _do_close(self) -> None:
        """Release engine resources."""

    @abstractmethod
    def _run_script(
        self, script: Path, script_args: Tuple[str, ...], options: RunOptions
    ) -> int:
        """Execute a script file and return its exit code."""

    @abstractmethod
    def _eval_script(self, code: str, options: RunOptions) -> int:
        """Execute inline code and return its exit code."""

    def _run_lines(self, code: str, options: RunOptions) -> None:
        self._eval_script(textwrap.dedent(code), options)

    def _run_test(
        self,
        script: Path,
        image_dir: Path,
        script_args: Tuple[str, ...],
        options: RunOptions,
    ) -> int:
        return self._run_script(script, script_args, options)

    def _run_interactive(self, script_args: Tuple[str, ...]) -> int:
        raise LifecycleError(f"runner {self.label} has no interactive session")

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(name={self.name!r}, "
            f"type={self.type!r}, state={self._state.value})"
        )
