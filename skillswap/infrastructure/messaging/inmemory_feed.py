from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Dict, Iterable, List

from ...core.domain.models import ChangeEvent
from ...core.errors import SubscriptionError
from ...core.ports.services import ChangeFeedBus, FeedStream

_CLOSED = object()


class _QueueStream(FeedStream):
    def __init__(self, bus: "InMemoryChangeFeedBus", tables: Iterable[str]) -> None:
        self._bus = bus
        self.tables = frozenset(tables)
        self.queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    async def __anext__(self) -> ChangeEvent:
        if self._closed and self.queue.empty():
            raise StopAsyncIteration
        item = await self.queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item  # type: ignore[return-value]

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._detach(self)
        self.queue.put_nowait(_CLOSED)


class InMemoryChangeFeedBus(ChangeFeedBus):
    def __init__(self) -> None:
        self._streams: Dict[str, List[_QueueStream]] = defaultdict(list)
        self._seq = 0

    async def publish(self, event: ChangeEvent) -> None:
        self._seq += 1
        if not event.seq:
            event.seq = self._seq
        for stream in list(self._streams.get(event.table, ())):
            stream.queue.put_nowait(event)

    async def subscribe(self, tables: Iterable[str]) -> FeedStream:
        stream = _QueueStream(self, tables)
        for table in stream.tables:
            self._streams[table].append(stream)
        return stream

    def _detach(self, stream: _QueueStream) -> None:
        for table in stream.tables:
            streams = self._streams.get(table)
            if streams and stream in streams:
                streams.remove(stream)
                if not streams:
                    self._streams.pop(table, None)

    def subscriber_count(self, table: str) -> int:
        return len(self._streams.get(table, ()))

    async def disconnect_all(self, reason: str = "feed disconnected") -> None:
        """Break every open stream the way a dropped socket would."""
        for streams in list(self._streams.values()):
            for stream in list(streams):
                self._detach(stream)
                stream.queue.put_nowait(SubscriptionError(reason))
