from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import AsyncIterator

logger = logging.getLogger(__name__)

_CLOSED = None


class EventChannel:
    """Per-workflow fan-out of state-transition events.

    Each subscriber owns a bounded queue. History is replayed on subscribe so
    a late subscriber still sees every transition of its workflow; a
    subscriber whose queue overflows is dropped.
    """

    def __init__(self, max_queue_size: int = 256) -> None:
        self._history: dict[str, list[dict]] = defaultdict(list)
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._closed: set[str] = set()
        self._max_queue_size = max_queue_size
        self._lock = asyncio.Lock()

    def history(self, key: str) -> list[dict]:
        return list(self._history.get(key, []))

    def is_closed(self, key: str) -> bool:
        return key in self._closed

    async def subscribe(self, key: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size + len(self._history.get(key, [])) + 1)
        async with self._lock:
            for payload in self._history.get(key, []):
                queue.put_nowait(payload)
            if key in self._closed:
                queue.put_nowait(_CLOSED)
            else:
                self._subscribers[key].add(queue)
        return queue

    async def unsubscribe(self, key: str, queue: asyncio.Queue) -> None:
        async with self._lock:
            queues = self._subscribers.get(key)
            if not queues:
                return
            queues.discard(queue)
            if not queues:
                self._subscribers.pop(key, None)

    async def publish(self, key: str, payload: dict) -> None:
        async with self._lock:
            if key in self._closed:
                logger.debug("Dropping event for closed channel %s", key)
                return
            self._history[key].append(payload)
            queues = list(self._subscribers.get(key, set()))

            stale: list[asyncio.Queue] = []
            for queue in queues:
                # The last slot is reserved for the close marker.
                if queue.qsize() >= queue.maxsize - 1:
                    stale.append(queue)
                    continue
                queue.put_nowait(payload)

            if stale:
                active = self._subscribers.get(key, set())
                for queue in stale:
                    active.discard(queue)
                    queue.put_nowait(_CLOSED)
                if not active:
                    self._subscribers.pop(key, None)
                logger.debug("Removed %d stale subscriber(s) from channel %s", len(stale), key)

    async def close(self, key: str) -> None:
        async with self._lock:
            if key in self._closed:
                return
            self._closed.add(key)
            queues = self._subscribers.pop(key, set())
        for queue in queues:
            queue.put_nowait(_CLOSED)

    async def discard(self, key: str) -> None:
        async with self._lock:
            self._history.pop(key, None)
            self._closed.discard(key)
            queues = self._subscribers.pop(key, set())
        for queue in queues:
            queue.put_nowait(_CLOSED)

    async def stream(self, key: str) -> AsyncIterator[dict]:
        queue = await self.subscribe(key)
        try:
            while True:
                payload = await queue.get()
                if payload is _CLOSED:
                    return
                yield payload
        finally:
            await self.unsubscribe(key, queue)
