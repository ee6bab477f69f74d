# stream/transcript.py
from __future__ import annotations
import json
from typing import Iterable

from backend.src.schemas.messages import StoredMessage

MESSAGE_FINISHED_MARKER = "[MESSAGE_FINISHED]"
AGENT_FINISHED_MARKER = "[AGENT_FINISHED]"


def system_block(content: str) -> str:
    return f"[SYSTEM]{content}[/SYSTEM]"


def user_block(content: str) -> str:
    return f"[USER]{content}[/USER]"


def tool_block(name: str, parameters: dict) -> str:
    return f"[TOOL]{name}:{json.dumps(parameters, ensure_ascii=False)}[/TOOL]"


def serialize_message(msg: StoredMessage) -> str:
    if msg.role == "system":
        return system_block(msg.content)
    if msg.role == "user":
        return user_block(msg.content)
    tools = "".join(tool_block(tc.name, tc.parameters) for tc in msg.tool_calls())
    return f"[ASSISTANT]{msg.content or ''}[/ASSISTANT]{tools}{MESSAGE_FINISHED_MARKER}"


def serialize_history(messages: Iterable[StoredMessage]) -> str:
    """Render persisted messages in the same marker format the live buffer uses."""
    return "".join(serialize_message(m) for m in messages)
