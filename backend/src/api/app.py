# api/app.py
from __future__ import annotations
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.src.agents.driver import AgentDriver
from backend.src.agents.runner import AgentRunner
from backend.src.api.routes_chat import router as chat_router
from backend.src.api.routes_stream import router as stream_router
from backend.src.buffer.reaper import IdleReaper
from backend.src.buffer.store import TaskStore
from backend.src.core.config import bootstrap_env, env_float, env_int
from backend.src.core.constants import (
    BUFFER_TTL_SECS,
    DB_DIR,
    DB_FILENAME,
    REPLAY_BATCH_CHARS,
    STREAM_KEEPALIVE_SECS,
    SWEEP_INTERVAL_SECS,
)
from backend.src.core.errors import TaskBufferError
from backend.src.core.logging import get_logger
from backend.src.persistence.base import MessageStore
from backend.src.persistence.sqlite import SqliteMessageStore
from backend.src.stream.replay import ReplayService

logger = get_logger("deepqeeb.api.app")


def create_app(
    *,
    store: Optional[TaskStore] = None,
    messages: Optional[MessageStore] = None,
    driver: Optional[AgentDriver] = None,
) -> FastAPI:
    """Build the API with its own TaskStore, reaper and runner.

    Tests pass in a fresh store, an in-memory message store and a fake driver.
    """
    bootstrap_env()
    store = store or TaskStore(ttl_secs=env_float("BUFFER_TTL_SECS", BUFFER_TTL_SECS))
    if messages is None:
        messages = SqliteMessageStore(Path(os.getenv("DB_DIR", DB_DIR)) / DB_FILENAME)
    runner = AgentRunner(store, messages, driver)
    replay = ReplayService(store, messages, batch_chars=env_int("REPLAY_BATCH_CHARS", REPLAY_BATCH_CHARS))
    reaper = IdleReaper(store, interval_secs=env_float("SWEEP_INTERVAL_SECS", SWEEP_INTERVAL_SECS))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reaper.start()
        try:
            yield
        finally:
            await runner.shutdown()
            await reaper.stop()
            close = getattr(messages, "close", None)
            if close is not None:
                close()

    app = FastAPI(title="DeepQeeb Agent Stream API", lifespan=lifespan)
    app.state.store = store
    app.state.messages = messages
    app.state.runner = runner
    app.state.replay = replay
    app.state.reaper = reaper
    app.state.keepalive_secs = env_float("STREAM_KEEPALIVE_SECS", STREAM_KEEPALIVE_SECS)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"], allow_credentials=True,
        allow_methods=["*"], allow_headers=["*"],
    )

    @app.exception_handler(TaskBufferError)
    async def _buffer_error(request: Request, exc: TaskBufferError) -> JSONResponse:
        logger.warning(
            "REQUEST_REJECTED path=%s status=%s conversation_id=%s error=%s",
            request.url.path,
            exc.status_code,
            exc.conversation_id,
            exc.message,
        )
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    app.include_router(chat_router, prefix="/api")
    app.include_router(stream_router, prefix="/api")
    return app
