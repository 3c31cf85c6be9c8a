"""Bounded output history for a session.

A ring of OutputLine records plus a monotonic received counter. The counter
never shrinks, so a reader can tell how many lines scrolled away before the
window it can currently see: total_received() - size().
"""

from collections import deque

from .types import DEFAULT_MAX_BUFFER_LINES, OutputLine, Source, now_ms


class OutputBuffer:
    """Append-only line log with FIFO eviction."""

    def __init__(self, max_lines: int = DEFAULT_MAX_BUFFER_LINES):
        if max_lines < 1:
            raise ValueError("max_lines must be at least 1")
        self.max_lines = max_lines
        self._lines: deque[OutputLine] = deque(maxlen=max_lines)
        self._total = 0

    def append(self, text: str, source: Source) -> list[OutputLine]:
        """Split text into lines and append them under one timestamp.

        A single trailing newline does not produce an extra blank line;
        blank lines inside the text are kept. Returns the appended lines.
        """
        parts = text.split("\n")
        if parts and parts[-1] == "":
            parts.pop()
        if not parts:
            return []

        timestamp = now_ms()
        new_lines = [OutputLine(content=part, timestamp=timestamp, source=source) for part in parts]
        self._lines.extend(new_lines)
        self._total += len(new_lines)
        return new_lines

    def get_lines(self, count: int | None = None, from_end: bool = True) -> list[OutputLine]:
        """Last (or first) `count` lines in original order; everything if count is falsy."""
        if not count:
            return list(self._lines)
        lines = list(self._lines)
        if from_end:
            return lines[-count:]
        return lines[:count]

    def get_all(self) -> list[OutputLine]:
        return list(self._lines)

    def clear(self) -> None:
        """Clear the visible window. total_received() is unaffected."""
        self._lines.clear()

    def size(self) -> int:
        return len(self._lines)

    def total_received(self) -> int:
        return self._total
