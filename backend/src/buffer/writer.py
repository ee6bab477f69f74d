# buffer/writer.py
from __future__ import annotations
import threading
from typing import Optional

from backend.src.buffer.store import TaskStore


class StreamWriter:
    """Producer-side handle bound to one task of a conversation.

    Carries the task's cancellation signal so a driver can stop producing
    as soon as the task is stopped. Once a newer task replaces this one,
    every call is a no-op.
    """

    def __init__(
        self,
        store: TaskStore,
        conversation_id: str,
        cancel_event: threading.Event,
        task_id: Optional[str] = None,
    ):
        self.store = store
        self.conversation_id = conversation_id
        self.task_id = task_id
        self._cancel_event = cancel_event

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def write(self, text: str) -> bool:
        return self.store.write_chunk(self.conversation_id, text, self.task_id)

    def message_finished(self) -> bool:
        return self.store.mark_message_finished(self.conversation_id, self.task_id)

    def finished(self) -> bool:
        return self.store.mark_agent_finished(self.conversation_id, self.task_id)

    def error(self, message: str) -> bool:
        return self.store.mark_agent_error(self.conversation_id, message, self.task_id)
