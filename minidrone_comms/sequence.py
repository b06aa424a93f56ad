from __future__ import annotations

import threading
from typing import Dict


class SequenceTracker:
    """One wrapping 8-bit counter per buffer id, starting at 0."""

    __slots__ = ("_counters", "_lock")

    def __init__(self) -> None:
        self._counters: Dict[int, int] = {}
        self._lock = threading.Lock()

    def next(self, buffer_id: int) -> int:
        with self._lock:
            current = self._counters.get(buffer_id, 0)
            self._counters[buffer_id] = (current + 1) & 0xFF
            return current

    def peek(self, buffer_id: int) -> int:
        with self._lock:
            return self._counters.get(buffer_id, 0)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
