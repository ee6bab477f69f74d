# persistence/memory.py
"""In-memory message store for tests and local runs."""
from __future__ import annotations
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from backend.src.schemas.messages import ConversationMeta, StoredMessage


class InMemoryMessageStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: Dict[str, List[StoredMessage]] = {}
        self._conversations: Dict[str, ConversationMeta] = {}

    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredMessage:
        now = datetime.now(timezone.utc)
        msg = StoredMessage(
            id=str(uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            metadata=metadata,
            created_at=now,
        )
        with self._lock:
            self._messages.setdefault(conversation_id, []).append(msg)
            meta = self._conversations.get(conversation_id) or ConversationMeta(id=conversation_id)
            self._conversations[conversation_id] = meta.model_copy(update={"updated_at": now})
        return msg

    def list_messages(self, conversation_id: str) -> List[StoredMessage]:
        with self._lock:
            return list(self._messages.get(conversation_id, []))

    def get_conversation(self, conversation_id: str) -> Optional[ConversationMeta]:
        with self._lock:
            return self._conversations.get(conversation_id)

    def update_conversation(
        self,
        conversation_id: str,
        *,
        script_id: Optional[str] = None,
        last_agent_mode: Optional[str] = None,
    ) -> ConversationMeta:
        update: Dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if script_id is not None:
            update["script_id"] = script_id
        if last_agent_mode is not None:
            update["last_agent_mode"] = last_agent_mode
        with self._lock:
            current = self._conversations.get(conversation_id) or ConversationMeta(id=conversation_id)
            updated = current.model_copy(update=update)
            self._conversations[conversation_id] = updated
        return updated
