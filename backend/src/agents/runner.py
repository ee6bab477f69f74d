# agents/runner.py
from __future__ import annotations
import asyncio
from typing import Dict, List, Optional

from backend.src.agents.driver import AgentDriver, AgentRequest, llm_driver
from backend.src.buffer.store import TaskStore
from backend.src.buffer.writer import StreamWriter
from backend.src.core.constants import MAX_HISTORY_MESSAGES
from backend.src.core.errors import ConflictError, DriverError
from backend.src.core.logging import get_logger
from backend.src.persistence.base import MessageStore
from backend.src.schemas.messages import StoredMessage
from backend.src.schemas.tasks import AgentTask
from backend.src.stream.transcript import MESSAGE_FINISHED_MARKER, serialize_history, user_block

logger = get_logger("deepqeeb.agents.runner")

ASSISTANT_OPEN = "[ASSISTANT]"
ASSISTANT_CLOSE = "[/ASSISTANT]"


class AgentRunner:
    """Admits agent tasks and drives them in the background on the event loop.

    The run outlives the HTTP request that started it; consumers follow it
    through the stream endpoint.
    """

    def __init__(self, store: TaskStore, messages: MessageStore, driver: Optional[AgentDriver] = None):
        self.store = store
        self.messages = messages
        self.driver = driver or llm_driver
        self._inflight: Dict[str, asyncio.Task] = {}

    def start(self, req: AgentRequest) -> AgentTask:
        cid = req.conversation_id
        current = self.store.get_task(cid)
        if current is not None and current.is_running:
            raise ConflictError("Agent task already running for this conversation", conversation_id=cid)

        history = self.messages.list_messages(cid)
        initial = serialize_history(history) + user_block(req.text)
        task = self.store.create_task(cid, req.script_id, req.agent_mode, initial)
        try:
            self.messages.append_message(cid, "user", req.text)
            self.messages.update_conversation(cid, script_id=req.script_id or None, last_agent_mode=req.agent_mode)
        except Exception as e:
            logger.exception("PERSIST_USER_FAILED conversation_id=%s", cid)
            self.store.mark_agent_error(cid, f"Failed to save message: {e}")
            raise

        recent = history[-MAX_HISTORY_MESSAGES:]
        self._inflight[cid] = asyncio.get_running_loop().create_task(
            self._run(req, recent, task), name=f"agent-{cid}"
        )
        return task

    def cancel(self, conversation_id: str) -> AgentTask:
        """Stop the running task and preempt its driver at the next suspension point."""
        task = self.store.cancel_task(conversation_id)
        inflight = self._inflight.get(conversation_id)
        if inflight is not None and not inflight.done():
            inflight.cancel()
        else:
            # nothing left to observe the stop; close out subscribers here
            self.store.mark_agent_finished(conversation_id)
        return task

    async def shutdown(self) -> None:
        pending = [t for t in self._inflight.values() if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._inflight.clear()

    async def _run(self, req: AgentRequest, history: List[StoredMessage], task: AgentTask) -> None:
        cid = req.conversation_id
        writer = StreamWriter(self.store, cid, task.cancel_event, task_id=task.id)
        logger.info("AGENT_START conversation_id=%s task_id=%s agent_mode=%s", cid, task.id, req.agent_mode)
        try:
            writer.write(ASSISTANT_OPEN)
            text = await self.driver(req, history, writer)
            if writer.cancelled:
                writer.finished()
                logger.info("AGENT_STOPPED conversation_id=%s task_id=%s", cid, task.id)
                return
            writer.write(ASSISTANT_CLOSE + MESSAGE_FINISHED_MARKER)
            writer.message_finished()
            if text:
                self.messages.append_message(cid, "assistant", text, {"type": "normal", "agent_mode": req.agent_mode})
            writer.finished()
            logger.info("AGENT_END conversation_id=%s task_id=%s chars=%s", cid, task.id, len(text or ""))
        except asyncio.CancelledError:
            if writer.cancelled:
                writer.finished()
            else:
                writer.error("Agent task cancelled")
            logger.info("AGENT_CANCELLED conversation_id=%s task_id=%s", cid, task.id)
            raise
        except Exception as e:
            err = DriverError(str(e) or e.__class__.__name__, conversation_id=cid)
            logger.exception("AGENT_ERROR conversation_id=%s task_id=%s error=%s", cid, task.id, err.message)
            writer.error(err.message)
        finally:
            if self._inflight.get(cid) is asyncio.current_task():
                self._inflight.pop(cid, None)
