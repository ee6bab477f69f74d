# agents/driver.py
from __future__ import annotations
from typing import Awaitable, Callable, List, Optional, Tuple

from pydantic import BaseModel, Field

from backend.src.agents.prompts import system_prompt_for
from backend.src.buffer.writer import StreamWriter
from backend.src.core.constants import MAX_USER_CHARS
from backend.src.core.logging import get_logger
from backend.src.llm.base import normalize
from backend.src.llm.factory import get_llm, is_not_found_error, model_candidates
from backend.src.schemas.messages import StoredMessage
from backend.src.schemas.tasks import AgentMode

logger = get_logger("deepqeeb.agents.driver")


class AgentRequest(BaseModel):
    conversation_id: str = Field(min_length=1)
    script_id: str = ""
    agent_mode: AgentMode = "script"
    text: str = Field(min_length=1, max_length=MAX_USER_CHARS)
    provider: Optional[str] = None
    model: Optional[str] = None


# (request, prior history, writer) -> final assistant text
AgentDriver = Callable[[AgentRequest, List[StoredMessage], StreamWriter], Awaitable[str]]


def build_chat_messages(req: AgentRequest, history: List[StoredMessage]) -> List[Tuple[str, str]]:
    out: List[Tuple[str, str]] = [("system", system_prompt_for(req.agent_mode))]
    for msg in history:
        if msg.role in ("user", "assistant") and msg.content:
            out.append((msg.role, msg.content))
    out.append(("user", req.text))
    return out


async def llm_driver(req: AgentRequest, history: List[StoredMessage], writer: StreamWriter) -> str:
    """Stream one assistant turn from a LangChain chat model into ``writer``.

    Retries the next candidate model on a not-found error, but only while
    nothing has been written yet.
    """
    provider, model = normalize(req.provider, req.model)
    messages = build_chat_messages(req, history)
    candidates = model_candidates(provider, model)
    last_err: Optional[Exception] = None
    for idx, candidate in enumerate(candidates):
        llm = get_llm(provider, candidate, streaming=True, temperature=0.7)
        acc = ""
        try:
            async for chunk in llm.astream(messages):
                if writer.cancelled:
                    logger.info("AGENT_CANCEL_SEEN conversation_id=%s chars=%s", req.conversation_id, len(acc))
                    return acc
                tok = getattr(chunk, "content", "") or ""
                if isinstance(tok, list):
                    tok = "".join(p.get("text", "") for p in tok if isinstance(p, dict))
                if tok:
                    acc += tok
                    writer.write(tok)
            return acc
        except Exception as e:
            last_err = e
            if not acc and idx < len(candidates) - 1 and is_not_found_error(e):
                logger.warning("MODEL_FALLBACK provider=%s model=%s error=%s", provider, candidate, e)
                continue
            raise
    if last_err:
        raise last_err
    return ""
