# stream/replay.py
"""Catch-up payloads for consumers that attach to (or re-attach to) a conversation stream.

Offsets follow the "last delivered index" convention: a consumer resuming
with ``from_index=k`` already holds ``buffer[:k+1]`` and is sent
``buffer[k+1:]`` followed by live events.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

from backend.src.buffer.store import Subscriber, Subscription, TaskStore
from backend.src.core.constants import REPLAY_BATCH_CHARS
from backend.src.core.errors import NotFoundError
from backend.src.core.logging import get_logger
from backend.src.persistence.base import MessageStore
from backend.src.schemas.events import InitEvent, StreamEvent
from backend.src.stream.transcript import AGENT_FINISHED_MARKER, serialize_history

logger = get_logger("deepqeeb.stream.replay")


@dataclass
class StreamAttachment:
    conversation_id: str
    init: InitEvent
    backlog: List[StreamEvent] = field(default_factory=list)
    subscription: Optional[Subscription] = None
    start_index: int = -1
    # last buffer index the consumer holds once init + backlog are sent
    delivered_offset: int = -1
    from_history: bool = False

    @property
    def live(self) -> bool:
        return self.subscription is not None

    def close(self) -> None:
        if self.subscription is not None:
            self.subscription.close()


def batch_text(text: str, size: int) -> List[str]:
    size = max(1, size)
    return [text[i : i + size] for i in range(0, len(text), size)]


class ReplayService:
    def __init__(self, store: TaskStore, messages: MessageStore, batch_chars: int = REPLAY_BATCH_CHARS):
        self.store = store
        self.messages = messages
        self.batch_chars = batch_chars

    def attach(self, conversation_id: str, from_index: int, on_event: Subscriber) -> StreamAttachment:
        """Build the catch-up payload and register ``on_event`` for everything after it.

        Falls back to persisted history when no task is registered; raises
        NotFoundError when there is no history either.
        """
        found = self.store.snapshot_and_subscribe(conversation_id, on_event)
        if found is None:
            return self._from_history(conversation_id)

        state, error_message, subscription = found
        buf = state.stream_messages
        start = from_index if from_index >= 0 else state.last_stream_output_index
        att = StreamAttachment(
            conversation_id=conversation_id,
            init=InitEvent(
                stream_messages=buf,
                last_message_index=state.last_message_index,
                last_stream_output_index=start,
                status=state.status,
            ),
            subscription=subscription,
            start_index=start,
            delivered_offset=len(buf) - 1,
        )
        if start < len(buf):
            att.backlog = [StreamEvent.chunk(part) for part in batch_text(buf[start + 1 :], self.batch_chars)]
        if subscription is None:
            if state.status == "error":
                att.backlog.append(StreamEvent.agent_error(error_message or "Agent task failed"))
            else:
                att.backlog.append(StreamEvent.agent_finished())
        logger.info(
            "STREAM_ATTACH conversation_id=%s status=%s start_index=%s buffer_chars=%s backlog_batches=%s live=%s",
            conversation_id,
            state.status,
            start,
            len(buf),
            len(att.backlog),
            att.live,
        )
        return att

    def _from_history(self, conversation_id: str) -> StreamAttachment:
        messages = self.messages.list_messages(conversation_id)
        if not messages:
            raise NotFoundError("Conversation not found or no messages", conversation_id=conversation_id)
        transcript = serialize_history(messages) + AGENT_FINISHED_MARKER
        logger.info(
            "STREAM_HISTORY conversation_id=%s messages=%s chars=%s",
            conversation_id,
            len(messages),
            len(transcript),
        )
        return StreamAttachment(
            conversation_id=conversation_id,
            init=InitEvent(
                stream_messages=transcript,
                last_message_index=len(transcript) - len(AGENT_FINISHED_MARKER),
                last_stream_output_index=-1,
                status="completed",
            ),
            backlog=[StreamEvent.agent_finished()],
            from_history=True,
        )
