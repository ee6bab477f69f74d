# stream/sse.py
from __future__ import annotations
import asyncio
import json
from typing import Any, AsyncGenerator, Dict

from backend.src.buffer.store import TaskStore
from backend.src.core.logging import get_logger
from backend.src.schemas.events import StreamEvent
from backend.src.stream.replay import StreamAttachment

logger = get_logger("deepqeeb.stream.sse")

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
KEEPALIVE_FRAME = ": keepalive\n\n"


def sse_pack(ev: Dict[str, Any]) -> str:
    return "event: message\ndata: " + json.dumps(ev, ensure_ascii=False) + "\n\n"


async def _relay_frames(
    att: StreamAttachment,
    queue: "asyncio.Queue[StreamEvent]",
    store: TaskStore,
    keepalive_secs: float,
) -> AsyncGenerator[str, None]:
    cid = att.conversation_id
    offset = att.delivered_offset
    try:
        yield sse_pack(att.init.to_wire())
        for ev in att.backlog:
            yield sse_pack(ev.to_wire())
        if not att.live:
            return
        store.update_stream_output_index(cid, offset)
        while True:
            try:
                ev = await asyncio.wait_for(queue.get(), timeout=keepalive_secs)
            except asyncio.TimeoutError:
                if not store.has_task(cid):
                    logger.info("STREAM_ORPHANED conversation_id=%s", cid)
                    return
                yield KEEPALIVE_FRAME
                continue
            yield sse_pack(ev.to_wire())
            if ev.type == "chunk" and ev.content:
                offset += len(ev.content)
                store.update_stream_output_index(cid, offset)
            if ev.is_terminal:
                return
    finally:
        att.close()
        logger.info("STREAM_DETACH conversation_id=%s offset=%s", cid, offset)


class SSERelay:
    """Async iterator over the SSE frames of one attachment.

    Sends the catch-up frames and then every live event from the queue. Ends
    after a terminal event, or at a keepalive tick once the task is gone.
    ``aclose()`` releases the subscription even when iteration never started.
    """

    def __init__(
        self,
        att: StreamAttachment,
        queue: "asyncio.Queue[StreamEvent]",
        store: TaskStore,
        keepalive_secs: float,
    ):
        self.att = att
        self._frames = _relay_frames(att, queue, store, keepalive_secs)

    def __aiter__(self) -> "SSERelay":
        return self

    async def __anext__(self) -> str:
        return await self._frames.__anext__()

    async def aclose(self) -> None:
        try:
            await self._frames.aclose()
        finally:
            self.att.close()


def sse_relay(
    att: StreamAttachment,
    queue: "asyncio.Queue[StreamEvent]",
    store: TaskStore,
    keepalive_secs: float,
) -> SSERelay:
    return SSERelay(att, queue, store, keepalive_secs)
