"""SSE streaming of a live workflow execution.

Each ExecutionEvent is sent as one ``data:`` frame with camelCase JSON. An
idle connection gets a keepalive comment. The final frame carries the
terminal result (``type: ExecutionResult``).
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from workflow_designer import settings
from workflow_designer.engine.events import format_sse
from workflow_designer.engine.executor import ExecutionRun
from workflow_designer.engine.models import DeclarativeExecutionResult
from workflow_designer.logging_config import get_sse_logger

logger = get_sse_logger()

KEEPALIVE = ": keepalive\n\n"
RESULT_EVENT_TYPE = "ExecutionResult"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

OnFinish = Callable[[DeclarativeExecutionResult], Awaitable[Any]]


def result_frame(result: DeclarativeExecutionResult) -> str:
    payload: Dict[str, Any] = {"type": RESULT_EVENT_TYPE, **result.to_dict()}
    return format_sse(payload)


async def stream_execution(
    execution: ExecutionRun,
    on_finish: Optional[OnFinish] = None,
    keepalive_interval: float = settings.SSE_KEEPALIVE_INTERVAL,
) -> AsyncIterator[str]:
    """Yield SSE frames for ``execution`` until it finishes.

    If the client goes away first the run is cancelled and its events are
    dropped; ``on_finish`` still receives the terminal result.
    """
    logger.info(f"Client connected for run_id: {execution.run_id}")
    events = execution.__aiter__()
    completed = False
    next_task: Optional[asyncio.Task] = None
    try:
        while True:
            if next_task is None:
                next_task = asyncio.ensure_future(events.__anext__())
            done, _ = await asyncio.wait({next_task}, timeout=keepalive_interval)
            if not done:
                yield KEEPALIVE
                continue
            try:
                event = next_task.result()
            except StopAsyncIteration:
                break
            finally:
                next_task = None
            yield format_sse(event.to_dict())

        result = await execution.result()
        completed = True
        if on_finish is not None:
            await on_finish(result)
        yield result_frame(result)
        logger.info(f"Stream finished for run_id: {execution.run_id} ({result.status.value})")
    finally:
        if next_task is not None and not next_task.done():
            next_task.cancel()
        if not completed:
            logger.info(f"Client disconnected from run_id: {execution.run_id}, cancelling")
            await execution.aclose()
            result = await execution.result()
            if on_finish is not None:
                await on_finish(result)
