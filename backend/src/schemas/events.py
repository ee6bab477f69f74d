# schemas/events.py
from __future__ import annotations
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


StreamEventType = Literal["chunk", "message_finished", "agent_finished", "agent_error"]

TERMINAL_EVENT_TYPES = ("agent_finished", "agent_error")


class StreamEvent(BaseModel):
    """Unit pushed from the producer to every subscriber of a conversation."""

    type: StreamEventType
    content: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def chunk(cls, content: str) -> "StreamEvent":
        return cls(type="chunk", content=content)

    @classmethod
    def message_finished(cls) -> "StreamEvent":
        return cls(type="message_finished")

    @classmethod
    def agent_finished(cls) -> "StreamEvent":
        return cls(type="agent_finished")

    @classmethod
    def agent_error(cls, error: str) -> "StreamEvent":
        return cls(type="agent_error", error=error)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class InitEvent(BaseModel):
    """First frame of every stream: the full transcript plus resume offsets."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["init"] = "init"
    stream_messages: str = Field(alias="streamMessages")
    last_message_index: int = Field(alias="lastMessageIndex")
    last_stream_output_index: int = Field(alias="lastStreamOutputIndex")
    status: str

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
