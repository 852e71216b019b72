"""Regex search over buffer lines with smart-case matching.

Lines are given as a sequence of ``str`` (or UTF-8 ``bytes``), one per
buffer line, without line terminators.  Lines that are not valid UTF-8 are
skipped.  Columns in results are character columns.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from itertools import islice
from typing import Optional, Sequence, Union

from .records import Pos

Line = Union[str, bytes]
Match = tuple[Pos, Pos]

# Lines scanned below the visible text rows when collecting highlights.
_VIEWPORT_SLACK = 4


def _line_text(line: Line) -> Optional[str]:
    if isinstance(line, (bytes, bytearray, memoryview)):
        try:
            text = bytes(line).decode("utf-8")
        except UnicodeDecodeError:
            return None
    else:
        text = str(line)
    return text[:-1] if text.endswith("\n") else text


def compile_pattern(pattern: str) -> Optional[re.Pattern[str]]:
    """Compile ``pattern`` with smart case; None if it is not a valid regex.

    The match ignores case when the pattern has no uppercase letter.
    """
    flags = 0 if any(c.isupper() for c in pattern) else re.IGNORECASE
    try:
        return re.compile(pattern, flags)
    except re.error:
        return None


def _span(line_idx: int, m: re.Match[str]) -> Match:
    return (Pos(line_idx, m.start()), Pos(line_idx, m.end()))


def search_forward(
    lines: Sequence[Line], regex: re.Pattern[str], start: Pos
) -> Optional[Match]:
    """First match at or after ``start``, wrapping to the top of the buffer."""
    line_count = len(lines)
    passes = (range(start.line, line_count), range(0, min(start.line, line_count)))
    for pass_no, indices in enumerate(passes):
        for idx in indices:
            text = _line_text(lines[idx])
            if text is None:
                continue
            offset = start.col if pass_no == 0 and idx == start.line else 0
            m = regex.search(text, min(offset, len(text)))
            if m is not None:
                return _span(idx, m)
    return None


def _last_match_before(
    text: str, regex: re.Pattern[str], idx: int, limit: Optional[int]
) -> Optional[Match]:
    best: Optional[Match] = None
    at = 0
    while True:
        m = regex.search(text, at)
        if m is None:
            break
        if limit is not None and m.end() >= limit:
            break
        best = _span(idx, m)
        at = m.end() if m.end() > m.start() else m.end() + 1
        if at >= len(text):
            break
    return best


def search_backward(
    lines: Sequence[Line], regex: re.Pattern[str], start: Pos
) -> Optional[Match]:
    """Last match ending before ``start``, wrapping to the bottom of the buffer."""
    line_count = len(lines)
    passes = (range(min(start.line + 1, line_count)), range(line_count))
    for pass_no, indices in enumerate(passes):
        for idx in reversed(indices):
            text = _line_text(lines[idx])
            if text is None:
                continue
            limit = start.col if pass_no == 0 and idx == start.line else None
            best = _last_match_before(text, regex, idx, limit)
            if best is not None:
                return best
    return None


@dataclass
class FindState:
    """Incremental find: the pattern, viewport highlights and current match."""

    pattern: str = ""
    matches: list[Match] = field(default_factory=list)
    regex: Optional[re.Pattern[str]] = None
    current: Optional[Match] = None
    active: bool = False

    def clear(self) -> None:
        """Forget matches, the compiled pattern and the current match."""
        self.matches.clear()
        self.regex = None
        self.current = None

    def update_highlights(
        self,
        pattern: str,
        lines: Sequence[Line],
        scroll_line: int,
        text_rows: int,
        cursor: Pos,
    ) -> None:
        """Set a new pattern, highlight the viewport and pick a current match.

        The current match is the first visible one at or after ``cursor``,
        else the first visible one, else the next match in the whole buffer.
        """
        self.matches.clear()
        self.current = None
        self.pattern = pattern
        if not pattern:
            self.regex = None
            return
        self.regex = compile_pattern(pattern)
        if self.regex is None:
            return

        self.refresh_viewport_matches(lines, scroll_line, text_rows)
        in_viewport = next((m for m in self.matches if m[0] >= cursor), None)
        if in_viewport is None and self.matches:
            in_viewport = self.matches[0]
        if in_viewport is not None:
            self.current = in_viewport
        else:
            self.current = search_forward(lines, self.regex, cursor)

    def refresh_viewport_matches(
        self, lines: Sequence[Line], scroll_line: int, text_rows: int
    ) -> None:
        """Recollect matches on the visible lines (plus a few below)."""
        self.matches.clear()
        if self.regex is None:
            return
        end = min(scroll_line + text_rows + _VIEWPORT_SLACK, len(lines))
        for idx, line in enumerate(islice(lines, scroll_line, end), start=scroll_line):
            text = _line_text(line)
            if text is None:
                continue
            self.matches.extend(_span(idx, m) for m in self.regex.finditer(text))

    def find_next(self, lines: Sequence[Line], cursor: Pos) -> Optional[Match]:
        """Move to the next match at or after ``cursor`` and return it."""
        if self.regex is None:
            return None
        result = search_forward(lines, self.regex, cursor)
        if result is not None:
            self.current = result
        return result

    def find_prev(self, lines: Sequence[Line], cursor: Pos) -> Optional[Match]:
        """Move to the previous match before ``cursor`` and return it."""
        if self.regex is None:
            return None
        result = search_backward(lines, self.regex, cursor)
        if result is not None:
            self.current = result
        return result

    def exit(self) -> Optional[Match]:
        """Leave find mode, returning the current match for selection."""
        current = self.current
        self.active = False
        self.clear()
        return current

    def status_text(self) -> str:
        """Status line text, e.g. ``Find: foo (3 matches)``."""
        n = len(self.matches)
        return f"Find: {self.pattern} ({n} match{'' if n == 1 else 'es'})"