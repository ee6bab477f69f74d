# schemas/messages.py
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


MessageRole = Literal["system", "user", "assistant"]


class ToolCallRecord(BaseModel):
    name: str
    parameters: Dict[str, Any] = {}


class StoredMessage(BaseModel):
    id: str
    conversation_id: str
    role: MessageRole
    content: str = ""
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime

    def tool_calls(self) -> List[ToolCallRecord]:
        raw = (self.metadata or {}).get("tool_calls") or []
        return [ToolCallRecord.model_validate(tc) for tc in raw if isinstance(tc, dict)]


class ConversationMeta(BaseModel):
    id: str
    script_id: Optional[str] = None
    last_agent_mode: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.now)
