"""Locate sentinel lines in captured pane text.

tmux wraps long lines at the pane width, so a sentinel printed near the right
edge can come back split across two visual lines, sometimes with a padding
space after the break. Plain substring search misses those and the poll loop
would then run into its timeout.
"""

from __future__ import annotations

import re

_WRAP_GAP = r"(?:\n ?)?"


def find_delimiter(
    buffer: str,
    delimiter: str,
    *,
    require_own_line: bool = True,
) -> tuple[int, int] | None:
    """Find the last occurrence of ``delimiter`` in ``buffer``.

    An occurrence counts only if it starts a line: at offset 0, right after a
    newline, or after nothing but spaces/tabs on its line. When no exact
    occurrence qualifies, a second pass allows a line break (plus an optional
    space) between any two characters of the delimiter.

    Args:
        buffer: Captured pane text.
        delimiter: Sentinel to look for.
        require_own_line: Drop the start-of-line constraint when False.

    Returns:
        ``(start, end)`` offsets of the delimiter text (including any inserted
        breaks), or None when it is not present.
    """

    if not delimiter:
        return None

    exact = _find_exact(buffer, delimiter, require_own_line)
    if exact is not None:
        return exact
    return _find_wrapped(buffer, delimiter, require_own_line)


def strip_wrapping(text: str) -> str:
    """Remove the breaks tmux inserts when it wraps a line."""

    return re.sub(r"\n ?", "", text)


def _find_exact(buffer: str, delimiter: str, require_own_line: bool) -> tuple[int, int] | None:
    idx = buffer.rfind(delimiter)
    while idx != -1:
        if not require_own_line or _starts_line(buffer, idx):
            return idx, idx + len(delimiter)
        if idx == 0:
            break
        idx = buffer.rfind(delimiter, 0, idx + len(delimiter) - 1)
    return None


def _starts_line(buffer: str, idx: int) -> bool:
    line_start = buffer.rfind("\n", 0, idx) + 1
    return buffer[line_start:idx].strip(" \t\r") == ""


def _find_wrapped(buffer: str, delimiter: str, require_own_line: bool) -> tuple[int, int] | None:
    body = _WRAP_GAP.join(re.escape(char) for char in delimiter)
    if require_own_line:
        pattern = re.compile(r"(?:^|\n)[ \t]*(" + body + ")")
    else:
        pattern = re.compile("(" + body + ")")

    last: re.Match[str] | None = None
    for match in pattern.finditer(buffer):
        last = match
    if last is None:
        return None
    return last.start(1), last.end(1)
