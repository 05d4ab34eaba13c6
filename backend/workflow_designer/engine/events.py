"""Event sink between the execution engine (producer) and its caller (consumer).

A bounded asyncio.Queue carries ExecutionEvents. A full queue blocks the
engine until the consumer catches up, so no event is dropped while a
consumer is attached. ``close()`` never blocks: it enqueues an end-of-stream
sentinel when there is room, otherwise the consumer stops once the queue
is drained. It is always called once the run is terminal.

If the consumer goes away (e.g. SSE client disconnect) it calls
``detach()``: buffered events are discarded and later emits become no-ops,
so a producer blocked on a full queue is released.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, Optional

from .. import settings
from .models import ExecutionEvent

logger = logging.getLogger(__name__)

_END = object()


class EventSink:
    """Ordered, single-consumer stream of ExecutionEvents for one run."""

    def __init__(self, maxsize: int = settings.EVENT_QUEUE_MAXSIZE):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._detached = False
        self._sequence = 0
        self._last_timestamp: Optional[datetime] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    def _stamp(self, event: ExecutionEvent) -> None:
        now = datetime.now(timezone.utc)
        # Clock resolution can repeat a value; keep timestamps strictly increasing
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        self._sequence += 1
        event.timestamp = now
        event.sequence = self._sequence

    async def emit(self, event: ExecutionEvent) -> None:
        if self._closed:
            raise RuntimeError("cannot emit on a closed event sink")
        self._stamp(event)
        if self._detached:
            return
        await self._queue.put(event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._detached:
            return
        try:
            self._queue.put_nowait(_END)
        except asyncio.QueueFull:
            pass

    def detach(self) -> None:
        """Consumer is gone: drop buffered events and stop blocking the producer."""
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def __aiter__(self) -> AsyncIterator[ExecutionEvent]:
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _END:
                return
            yield item


def event_to_json(event: ExecutionEvent) -> str:
    return json.dumps(event.to_dict(), ensure_ascii=False, default=str)


def format_sse(payload: Dict[str, Any]) -> str:
    """Format one camelCase JSON object as an SSE ``data:`` frame."""
    return f"data: {json.dumps(payload, ensure_ascii=False, default=str)}\n\n"
