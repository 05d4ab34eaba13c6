"""Unit tests for EventSink and SSE framing."""

import asyncio
import json

import pytest

from workflow_designer.engine import EventSink, ExecutionEvent, ExecutionEventType, ExecutionStatus, format_sse
from workflow_designer.engine.events import event_to_json


def _event(node_id=None):
    return ExecutionEvent(
        type=ExecutionEventType.LOG_MESSAGE, status=ExecutionStatus.RUNNING, node_id=node_id,
    )


async def _drain(sink):
    return [e async for e in sink]


class TestEventSink:

    @pytest.mark.asyncio
    async def test_stamps_sequence_and_timestamp(self):
        sink = EventSink()
        for i in range(3):
            await sink.emit(_event(f"n{i}"))
        await sink.close()

        events = [e async for e in sink]
        assert [e.sequence for e in events] == [1, 2, 3]
        assert events[0].timestamp < events[1].timestamp < events[2].timestamp

    @pytest.mark.asyncio
    async def test_emit_after_close(self):
        sink = EventSink()
        await sink.close()
        with pytest.raises(RuntimeError):
            await sink.emit(_event())

    @pytest.mark.asyncio
    async def test_full_queue_blocks_producer(self):
        sink = EventSink(maxsize=1)
        await sink.emit(_event("first"))
        blocked = asyncio.ensure_future(sink.emit(_event("second")))
        await asyncio.sleep(0)
        assert not blocked.done()

        sink.detach()
        await asyncio.wait_for(blocked, timeout=1)
        assert sink.detached

    @pytest.mark.asyncio
    async def test_close_on_full_queue_does_not_block(self):
        sink = EventSink(maxsize=1)
        await sink.emit(_event("only"))

        await asyncio.wait_for(sink.close(), timeout=1)

        events = [e async for e in sink]
        assert [e.node_id for e in events] == ["only"]

    @pytest.mark.asyncio
    async def test_close_wakes_waiting_consumer(self):
        sink = EventSink(maxsize=1)
        consumer = asyncio.ensure_future(_drain(sink))
        await asyncio.sleep(0)

        await sink.close()
        assert await asyncio.wait_for(consumer, timeout=1) == []

    @pytest.mark.asyncio
    async def test_detached_sink_drops_events(self):
        sink = EventSink(maxsize=1)
        sink.detach()
        for _ in range(5):
            await sink.emit(_event())
        await sink.close()
        assert sink.closed


class TestSerialization:

    def test_event_to_json_camel_case(self):
        payload = json.loads(event_to_json(_event("node-1")))
        assert payload["type"] == "LogMessage"
        assert payload["nodeId"] == "node-1"
        assert payload["status"] == "Running"

    def test_format_sse(self):
        frame = format_sse({"type": "NodeStarted", "nodeId": "a"})
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: "):]) == {"type": "NodeStarted", "nodeId": "a"}
