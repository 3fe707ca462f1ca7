from __future__ import annotations

import asyncio
from dataclasses import dataclass

from coinguard.alerts.history import Notification


@dataclass(slots=True)
class OutboxStats:
    accepted: int = 0
    dropped: int = 0
    taken: int = 0


class NotificationOutbox:
    """
    Bounded hand-off between the watch evaluator and slow outbound sinks.

    offer() never waits: when the outbox is full the notification is dropped
    (it is still in history) and counted. The consumer awaits take().
    """
    def __init__(self, maxsize: int = 500):
        self._q: asyncio.Queue[Notification] = asyncio.Queue(maxsize=maxsize)
        self.stats = OutboxStats()

    def offer(self, n: Notification) -> bool:
        if self._q.full():
            self.stats.dropped += 1
            return False
        self._q.put_nowait(n)
        self.stats.accepted += 1
        return True

    async def take(self) -> Notification:
        n = await self._q.get()
        self.stats.taken += 1
        return n

    def discard_pending(self) -> int:
        """Empty the outbox on shutdown; returns how many were never delivered."""
        count = 0
        while not self._q.empty():
            self._q.get_nowait()
            count += 1
        return count

    @property
    def pending(self) -> int:
        return self._q.qsize()
