# schemas/tasks.py
from __future__ import annotations
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


TaskStatus = Literal["running", "completed", "error", "stopped"]
AgentMode = Literal["script", "game"]

TERMINAL_STATUSES = ("completed", "error", "stopped")


@dataclass
class AgentTask:
    """In-memory record of one background agent run for a conversation.

    ``buffer`` only ever grows. ``last_message_boundary`` and
    ``last_delivered_offset`` are ``-1`` until first set.
    """

    id: str
    conversation_id: str
    script_id: str
    agent_mode: str
    created_at: datetime
    updated_at: datetime
    status: TaskStatus = "running"
    buffer: str = ""
    last_message_boundary: int = -1
    last_delivered_offset: int = -1
    error_message: Optional[str] = None
    # set by stop_task; drivers poll it or get cancelled by the runner
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TaskStats(BaseModel):
    total: int = 0
    running: int = 0
    completed: int = 0
    error: int = 0
    stopped: int = 0


class StreamState(BaseModel):
    """Snapshot used to build the ``init`` frame for a consumer."""

    model_config = ConfigDict(populate_by_name=True)

    stream_messages: str = Field(alias="streamMessages")
    last_message_index: int = Field(alias="lastMessageIndex")
    last_stream_output_index: int = Field(alias="lastStreamOutputIndex")
    status: TaskStatus


class StreamData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: str
    last_message_index: int = Field(alias="lastMessageIndex")
    last_stream_output_index: int = Field(alias="lastStreamOutputIndex")
