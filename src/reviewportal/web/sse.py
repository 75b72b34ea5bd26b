"""Server-Sent Events transport for discovery and review progress.

A producer coroutine receives an ``EventSink``; every event it emits is
queued and written to the client as ``data: {"type": ..., ...}``. The
producer runs as its own task so a slow client never blocks a review.
When the client disconnects the producer is cancelled, which marks any
in-flight review failed through the orchestrator's cancellation path.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable

from sse_starlette.sse import EventSourceResponse

from reviewportal.logging import get_logger
from reviewportal.review.events import EventKind, EventSink, ReviewEvent, event

logger = get_logger(__name__)

Producer = Callable[[EventSink], Awaitable[None]]


async def _produce(producer: Producer, queue: asyncio.Queue[ReviewEvent | None]) -> None:
    try:
        await producer(queue.put)
    except Exception as e:
        logger.error(
            "sse_producer_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        await queue.put(event(EventKind.ERROR, message=str(e)))
    finally:
        queue.put_nowait(None)


async def event_frames(producer: Producer) -> AsyncIterator[dict[str, str]]:
    """Run ``producer`` and yield its events as SSE frames until it returns."""
    queue: asyncio.Queue[ReviewEvent | None] = asyncio.Queue()
    task = asyncio.create_task(_produce(producer, queue), name="sse-producer")
    logger.debug("sse_stream_opened")
    try:
        while True:
            item = await queue.get()
            if item is None:
                break
            yield item.to_sse()
    finally:
        if not task.done():
            logger.info("sse_client_disconnected")
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.debug("sse_stream_closed")


def stream_events(producer: Producer) -> EventSourceResponse:
    return EventSourceResponse(event_frames(producer))
