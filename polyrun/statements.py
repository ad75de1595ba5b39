"""Before/after statement buffers spliced around user scripts."""

from __future__ import annotations

import re

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

# Only the breaks the interpreters count; str.splitlines also splits on
# U+2028, form feeds and friends that may sit inside string literals.
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


def source_lines(text: str) -> List[str]:
    """Split ``text`` into source lines without a trailing empty line."""

    if not text:
        return []
    lines = _LINE_BREAK.split(text)
    if lines[-1] == "":
        lines.pop()
    return lines


class StatementBuffer:
    """Ordered source lines with replace (never append) semantics."""

    def __init__(self, lines: Optional[Iterable[str]] = None) -> None:
        self._lines: Tuple[str, ...] = ()
        if lines:
            self.set(lines)

    def set(self, lines: Union[str, Iterable[str]]) -> None:
        if isinstance(lines, str):
            lines = (lines,) if lines else ()
        self._lines = tuple(str(line) for line in lines)

    def clear(self) -> None:
        self._lines = ()

    def assign(self, lines: Optional[Union[str, Iterable[str]]]) -> None:
        """Replace the buffer; ``None`` or an empty iterable clears it."""

        if lines is None:
            self.clear()
        else:
            self.set(lines)

    @property
    def lines(self) -> Tuple[str, ...]:
        return self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def __bool__(self) -> bool:
        return bool(self._lines)

    def __iter__(self):
        return iter(self._lines)

    def __repr__(self) -> str:
        return f"StatementBuffer({list(self._lines)!r})"


@dataclass(frozen=True)
class BracketedSource:
    """Script text with injected statements and the user-line offset."""

    text: str
    offset: int
    user_lines: int

    def to_user_line(self, engine_line: int) -> int:
        """Map a line number of ``text`` back to the user's script.

        Lines inside the injected blocks map to ``-1``.
        """

        line = engine_line - self.offset
        if line < 1 or line > self.user_lines:
            return -1
        return line


class StatementInjector:
    """Holds the before and after buffers of one runner."""

    def __init__(self) -> None:
        self.before = StatementBuffer()
        self.after = StatementBuffer()

    def exec_before(self, stmts: Optional[Iterable[str]]) -> None:
        self.before.assign(stmts)

    def exec_after(self, stmts: Optional[Iterable[str]]) -> None:
        self.after.assign(stmts)

    def clear(self) -> None:
        self.before.clear()
        self.after.clear()

    def bracket(self, code: str) -> BracketedSource:
        # Statements may span several lines themselves.
        head = source_lines("\n".join(self.before.lines))
        tail = source_lines("\n".join(self.after.lines))
        body = source_lines(code)
        parts = [*head, *body, *tail]
        text = "\n".join(parts)
        if parts:
            text += "\n"
        return BracketedSource(
            text=text, offset=len(head), user_lines=len(body)
        )
