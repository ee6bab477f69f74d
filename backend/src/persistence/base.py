# persistence/base.py
"""Durable message storage consumed by the agent runner and the stream replay path."""
from __future__ import annotations
from typing import Any, Dict, List, Optional, Protocol

from backend.src.schemas.messages import ConversationMeta, StoredMessage


class MessageStore(Protocol):
    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StoredMessage: ...

    def list_messages(self, conversation_id: str) -> List[StoredMessage]: ...

    def get_conversation(self, conversation_id: str) -> Optional[ConversationMeta]: ...

    def update_conversation(
        self,
        conversation_id: str,
        *,
        script_id: Optional[str] = None,
        last_agent_mode: Optional[str] = None,
    ) -> ConversationMeta: ...
