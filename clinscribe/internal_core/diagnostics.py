from __future__ import annotations

from collections import deque
from typing import Deque


def sanitize_detail(detail: str, max_chars: int = 200) -> str:
    # Child output can be arbitrarily long; keep status text to one short line.
    detail = " ".join((detail or "").split()).strip()
    if len(detail) > max_chars:
        detail = detail[:max_chars] + "…"
    return detail


class OutputTail:
    """Bounded buffer of the most recent lines a child process wrote."""

    def __init__(self, max_lines: int = 50) -> None:
        self._lines: Deque[str] = deque(maxlen=max(1, int(max_lines)))

    def append(self, line: str) -> None:
        line = (line or "").rstrip("\r\n")
        if line:
            self._lines.append(line)

    def clear(self) -> None:
        self._lines.clear()

    def text(self) -> str:
        return "\n".join(self._lines)

    def summary(self, max_chars: int = 200) -> str:
        return sanitize_detail(self.text(), max_chars=max_chars)

    def __len__(self) -> int:
        return len(self._lines)
