"""One-shot binding of a runner's stdout/stderr to caller sinks."""

from __future__ import annotations

import io
import sys
import threading

from contextlib import contextmanager
from contextvars import ContextVar
from typing import BinaryIO, Iterator, List, Optional, TextIO, Tuple, Union

from polyrun.exceptions import AlreadyRedirectedError


class _SinkWriter(io.TextIOBase):
    """Text stream that encodes writes into a binary sink."""

    def __init__(self, sink: BinaryIO, encoding: str = "utf-8") -> None:
        super().__init__()
        self._sink = sink
        self._encoding = encoding

    @property
    def encoding(self) -> str:  # type: ignore[override]
        return self._encoding

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        if not text:
            return 0
        self._sink.write(text.encode(self._encoding, errors="replace"))
        return len(text)

    def flush(self) -> None:
        flush = getattr(self._sink, "flush", None)
        if flush is not None:
            flush()


class StreamRedirector:
    """Holds the stdio endpoints of a single runner instance.

    Until :meth:`bind` succeeds, output goes to the process ``sys.stdout`` and
    ``sys.stderr`` (looked up at write time so pytest capture keeps working).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stdout_sink: Optional[BinaryIO] = None
        self._stderr_sink: Optional[BinaryIO] = None
        self._stdout: Optional[_SinkWriter] = None
        self._stderr: Optional[_SinkWriter] = None

    @property
    def bound(self) -> bool:
        return self._stdout_sink is not None

    def bind(self, stdout: BinaryIO, stderr: BinaryIO) -> None:
        if stdout is None or stderr is None:
            raise ValueError("both stdout and stderr sinks are required")
        with self._lock:
            if self.bound:
                raise AlreadyRedirectedError(
                    "runner stdio is already redirected"
                )
            self._stdout_sink = stdout
            self._stderr_sink = stderr
            self._stdout = _SinkWriter(stdout)
            self._stderr = _SinkWriter(stderr)

    @property
    def stdout(self) -> TextIO:
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def stderr(self) -> TextIO:
        return self._stderr if self._stderr is not None else sys.stderr

    @property
    def stdout_sink(self) -> Optional[BinaryIO]:
        return self._stdout_sink

    @property
    def stderr_sink(self) -> Optional[BinaryIO]:
        return self._stderr_sink

    def emit_stdout(self, data: Union[bytes, str]) -> None:
        self._emit(data, self._stdout_sink, self.stdout)

    def emit_stderr(self, data: Union[bytes, str]) -> None:
        self._emit(data, self._stderr_sink, self.stderr)

    @staticmethod
    def _emit(
        data: Union[bytes, str],
        sink: Optional[BinaryIO],
        fallback: TextIO,
    ) -> None:
        if not data:
            return
        if sink is not None:
            if isinstance(data, str):
                data = data.encode("utf-8", errors="replace")
            sink.write(data)
            flush = getattr(sink, "flush", None)
            if flush is not None:
                flush()
            return
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")
        fallback.write(data)
        fallback.flush()


_ACTIVE_STDIO: ContextVar[Optional[Tuple[TextIO, TextIO]]] = ContextVar(
    "polyrun_active_stdio", default=None
)


class _RoutedStream(io.TextIOBase):
    """Stand-in for ``sys.stdout``/``sys.stderr`` that follows the context.

    Writes go to the stream bound by :func:`routed_stdio` for the current
    thread or task and to the replaced process stream everywhere else.
    """

    def __init__(self, slot: int, fallback: TextIO) -> None:
        super().__init__()
        self._slot = slot
        self.fallback = fallback

    @property
    def target(self) -> TextIO:
        active = _ACTIVE_STDIO.get()
        return active[self._slot] if active is not None else self.fallback

    @property
    def encoding(self) -> str:  # type: ignore[override]
        return getattr(self.target, "encoding", "utf-8")

    def writable(self) -> bool:
        return True

    def isatty(self) -> bool:
        isatty = getattr(self.target, "isatty", None)
        return bool(isatty()) if isatty is not None else False

    def write(self, text: str) -> int:
        return self.target.write(text)

    def flush(self) -> None:
        self.target.flush()


class _Routing:
    """Reference-counted installation of the routed process streams."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0
        self.streams: List[_RoutedStream] = []

    def acquire(self) -> None:
        with self.lock:
            if self.users == 0:
                self.streams = [
                    _RoutedStream(0, sys.stdout),
                    _RoutedStream(1, sys.stderr),
                ]
                sys.stdout, sys.stderr = self.streams
            self.users += 1

    def release(self) -> None:
        with self.lock:
            self.users -= 1
            if self.users:
                return
            stdout, stderr = self.streams
            # Leave streams that someone else swapped in meanwhile alone.
            if sys.stdout is stdout:
                sys.stdout = stdout.fallback
            if sys.stderr is stderr:
                sys.stderr = stderr.fallback
            self.streams = []


_ROUTING = _Routing()


def _unwrap(stream: TextIO) -> TextIO:
    while isinstance(stream, _RoutedStream):
        stream = stream.fallback
    return stream


@contextmanager
def routed_stdio(stdout: TextIO, stderr: TextIO) -> Iterator[None]:
    """Send ``print`` output of the current context to the given streams.

    Unlike :func:`contextlib.redirect_stdout` this is safe when several
    threads use it at once: every thread sees only its own streams and the
    process streams are restored after the last user leaves.
    """

    _ROUTING.acquire()
    token = _ACTIVE_STDIO.set((_unwrap(stdout), _unwrap(stderr)))
    try:
        yield
    finally:
        _ACTIVE_STDIO.reset(token)
        _ROUTING.release()
