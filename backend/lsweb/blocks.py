"""Block boundary resolution and per-stream cursors."""

import re
from typing import List, Optional, Pattern, Sequence, Tuple

from .errors import UnknownStatement, UnterminatedBlock
from .statements import StatementKind

# Opener patterns used for same-type depth counting.
OPENERS = {
    StatementKind.WHILE: re.compile(r"^WHILE\s+", re.IGNORECASE),
    StatementKind.FOR: re.compile(r"^FOR\s+", re.IGNORECASE),
    StatementKind.FUNCTION: re.compile(r"^FUNCTION\s+", re.IGNORECASE),
    StatementKind.EVERY: re.compile(r"^EVERY\s+", re.IGNORECASE),
    StatementKind.TICK: re.compile(r"^TICK\s+", re.IGNORECASE),
}


def find_block_end(
    lines: Sequence[str], start: int, opener: Pattern[str], terminator: str, end: Optional[int] = None
) -> int:
    """Return the index of the terminator matching a header at `start - 1`.

    Only lines matching `opener` nest, so a WHILE inside a FOR is invisible
    to the FOR resolver and vice versa. The scan stops at `end` (exclusive)
    when given, so a header inside a function or loop body cannot borrow a
    terminator from beyond that body.

    Raises:
        UnterminatedBlock: if the lines run out before depth returns to zero.
    """
    depth = 1
    j = start
    limit = len(lines) if end is None else min(end, len(lines))
    while j < limit:
        text = lines[j].strip()
        if opener.match(text):
            depth += 1
        elif text.upper() == terminator:
            depth -= 1
            if depth == 0:
                return j
        j += 1
    raise UnterminatedBlock(terminator)


class Cursor:
    """Position of one stream inside a line range.

    Conditionals are tracked with a stack of frames, one per open IF. Each
    frame records whether its enclosing region was live when the IF was met
    and whether its current branch is taken; a line runs only while every
    frame is live and taken.
    """

    def __init__(self, lines: Sequence[str], start: int = 0, end: int = -1):
        self.lines = lines
        self.index = start
        self.end = len(lines) if end < 0 else end
        self._frames: List[Tuple[bool, bool]] = []

    @property
    def done(self) -> bool:
        return self.index >= self.end

    def next_line(self) -> str:
        text = self.lines[self.index].strip()
        self.index += 1
        return text

    @property
    def skipping(self) -> bool:
        return bool(self._frames) and not (self._frames[-1][0] and self._frames[-1][1])

    def push_condition(self, taken: bool) -> None:
        self._frames.append((not self.skipping, bool(taken)))

    def flip_condition(self, line: str) -> None:
        if not self._frames:
            raise UnknownStatement(line)
        live, taken = self._frames[-1]
        self._frames[-1] = (live, not taken)

    def pop_condition(self, line: str) -> None:
        if not self._frames:
            raise UnknownStatement(line)
        self._frames.pop()

    def check_closed(self) -> None:
        if self._frames:
            raise UnterminatedBlock("ENDIF")
