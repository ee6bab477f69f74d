# api/routes_chat.py
from __future__ import annotations

from fastapi import APIRouter, Request

from backend.src.agents.driver import AgentRequest

router = APIRouter()


@router.post("/chat", status_code=202)
async def chat(inp: AgentRequest, request: Request):
    """Admit a background agent run; follow it on GET /api/stream/{conversation_id}."""
    task = request.app.state.runner.start(inp)
    return {
        "conversation_id": task.conversation_id,
        "task_id": task.id,
        "status": task.status,
        "stream_url": f"/api/stream/{task.conversation_id}",
    }
