# api/routes_stream.py
from __future__ import annotations
import asyncio

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from backend.src.core.errors import InvalidStateError, NotFoundError
from backend.src.core.logging import get_logger
from backend.src.schemas.events import StreamEvent
from backend.src.stream.sse import SSE_HEADERS, sse_relay

router = APIRouter()
logger = get_logger("deepqeeb.api.stream")


@router.get("/stream/stats")
def stream_stats(request: Request):
    return request.app.state.store.stats().model_dump()


@router.get("/stream/{conversation_id}")
async def stream(conversation_id: str, request: Request, from_index: int = Query(-1, alias="fromIndex")):
    logger.info("STREAM_REQUEST conversation_id=%s from_index=%s", conversation_id, from_index)
    queue: asyncio.Queue = asyncio.Queue()
    loop = asyncio.get_running_loop()

    def on_event(ev: StreamEvent) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, ev)

    att = request.app.state.replay.attach(conversation_id, from_index, on_event)
    return StreamingResponse(
        sse_relay(att, queue, request.app.state.store, request.app.state.keepalive_secs),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        # releases the subscription when the body never starts streaming
        background=BackgroundTask(att.close),
    )


@router.post("/stream/{conversation_id}/stop")
async def stop(conversation_id: str, request: Request):
    logger.info("STOP_REQUEST conversation_id=%s", conversation_id)
    request.app.state.runner.cancel(conversation_id)
    return {"success": True, "message": "Task stopped"}


@router.delete("/stream/{conversation_id}")
def delete(conversation_id: str, request: Request):
    store = request.app.state.store
    status = store.get_status(conversation_id)
    if status is None:
        raise NotFoundError("No active task found", conversation_id=conversation_id)
    if status == "running":
        raise InvalidStateError("Task is still running", conversation_id=conversation_id)
    store.delete_task(conversation_id)
    return {"success": True, "deleted": conversation_id}
