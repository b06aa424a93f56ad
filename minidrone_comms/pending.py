from __future__ import annotations

import asyncio
from typing import Dict, Tuple

from .errors import PendingAckConflict

AckKey = Tuple[int, int]


class PendingAckTable:
    """Futures waiting for an acknowledgment, keyed by ``(buffer_id, packet_id)``.

    Must be used from the event loop that owns the connection.
    """

    def __init__(self) -> None:
        self._entries: Dict[AckKey, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def register(self, buffer_id: int, packet_id: int) -> asyncio.Future:
        key = (buffer_id, packet_id)
        if key in self._entries:
            raise PendingAckConflict(buffer_id, packet_id)
        future = asyncio.get_running_loop().create_future()
        self._entries[key] = future
        return future

    def resolve(self, buffer_id: int, packet_id: int) -> bool:
        future = self._entries.pop((buffer_id, packet_id), None)
        if future is None:
            return False
        if not future.done():
            future.set_result(None)
        return True

    def discard(self, buffer_id: int, packet_id: int) -> None:
        future = self._entries.pop((buffer_id, packet_id), None)
        if future is not None and not future.done():
            future.cancel()

    def fail_all(self, exc: BaseException) -> int:
        entries = list(self._entries.values())
        self._entries.clear()
        for future in entries:
            if not future.done():
                future.set_exception(exc)
        return len(entries)
