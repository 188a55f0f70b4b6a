from __future__ import annotations

"""
Broadcast channel for runtime state snapshots.

Design intent:
- One producer (supervisor or generation client) publishes immutable snapshots.
- Any number of consumers (API stream, CLI, tests) subscribe without a UI framework.
- Publishing never blocks; a slow subscriber loses its oldest items, not the producer's time.
"""

import asyncio
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

_CLOSED = object()


class Subscription(Generic[T]):
    def __init__(self, channel: "UpdateChannel[T]", maxsize: int) -> None:
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def _offer(self, item: object) -> None:
        if self._closed:
            return
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                try:
                    self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass

    def _close(self) -> None:
        self._offer(_CLOSED)
        self._closed = True

    async def get(self) -> Optional[T]:
        """Next item, or None once the channel is closed."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]

    def latest(self) -> Optional[T]:
        """Drain queued items and return the newest one without waiting."""
        newest: Optional[T] = None
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return newest
            if item is _CLOSED:
                self._closed = True
                return newest
            newest = item  # type: ignore[assignment]

    def unsubscribe(self) -> None:
        self._channel._remove(self)
        self._closed = True

    def close(self) -> None:
        """Stop receiving; items already queued are still delivered before the end."""
        self._channel._remove(self)
        self._close()

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class UpdateChannel(Generic[T]):
    def __init__(self, *, maxsize: int = 256) -> None:
        self._maxsize = max(1, int(maxsize))
        self._subscribers: list[Subscription[T]] = []
        self._last: Optional[T] = None
        self._closed = False

    @property
    def last(self) -> Optional[T]:
        return self._last

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, *, replay_last: bool = True, maxsize: Optional[int] = None) -> Subscription[T]:
        sub: Subscription[T] = Subscription(self, self._maxsize if maxsize is None else max(0, int(maxsize)))
        if self._closed:
            sub._close()
            return sub
        if replay_last and self._last is not None:
            sub._offer(self._last)
        self._subscribers.append(sub)
        return sub

    def publish(self, item: T) -> None:
        self._last = item
        for sub in list(self._subscribers):
            sub._offer(item)

    def close(self) -> None:
        self._closed = True
        for sub in list(self._subscribers):
            sub._close()
        self._subscribers = []

    def _remove(self, sub: Subscription[T]) -> None:
        try:
            self._subscribers.remove(sub)
        except ValueError:
            pass
