# buffer/store.py
from __future__ import annotations
import copy
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from backend.src.core.config import env_bool
from backend.src.core.constants import BUFFER_TTL_SECS
from backend.src.core.errors import ConflictError, InvalidStateError, NotFoundError
from backend.src.core.logging import get_logger
from backend.src.schemas.events import StreamEvent
from backend.src.schemas.tasks import AgentTask, StreamData, StreamState, TaskStats

logger = get_logger("deepqeeb.buffer.store")

Subscriber = Callable[[StreamEvent], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription:
    """Handle for one registered callback. Closing it is idempotent."""

    __slots__ = ("conversation_id", "callback", "_store", "_closed")

    def __init__(self, store: "TaskStore", conversation_id: str, callback: Subscriber):
        self._store = store
        self.conversation_id = conversation_id
        self.callback = callback
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._remove_subscriber(self.conversation_id, self.callback)

    __call__ = close


class TaskStore:
    """Owns every in-flight agent task, its subscribers and its access time.

    Registry, event hub and stream writer share one coarse lock. Publishing
    happens while the lock is held, so every subscriber of a conversation sees
    writer calls in call order, and a snapshot taken together with a
    subscription (``snapshot_and_subscribe``) splices cleanly with live events.
    Subscriber callbacks must not block.
    """

    def __init__(self, ttl_secs: float = BUFFER_TTL_SECS, clock: Callable[[], float] = time.monotonic):
        self.ttl_secs = ttl_secs
        self._clock = clock
        self._lock = threading.RLock()
        self._tasks: Dict[str, AgentTask] = {}
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._last_access: Dict[str, float] = {}

    # ------------------------------------------------------------------ registry

    def create_task(
        self,
        conversation_id: str,
        script_id: str,
        agent_mode: str,
        initial_buffer: str = "",
    ) -> AgentTask:
        with self._lock:
            current = self._tasks.get(conversation_id)
            if current is not None and current.is_running:
                logger.warning("TASK_CONFLICT conversation_id=%s task_id=%s", conversation_id, current.id)
                raise ConflictError(
                    f"Agent task already running for conversation {conversation_id}",
                    conversation_id=conversation_id,
                )
            if current is not None and self._subscribers.get(conversation_id):
                # the replaced task's driver can no longer close out its consumers
                logger.info("TASK_REPLACED conversation_id=%s task_id=%s status=%s", conversation_id, current.id, current.status)
                self._publish(conversation_id, StreamEvent.agent_finished())
            now = _utcnow()
            task = AgentTask(
                id=str(uuid4()),
                conversation_id=conversation_id,
                script_id=script_id,
                agent_mode=agent_mode,
                created_at=now,
                updated_at=now,
                buffer=initial_buffer or "",
            )
            self._tasks[conversation_id] = task
            self._subscribers[conversation_id] = []
            self._touch(conversation_id)
            logger.info(
                "TASK_CREATED conversation_id=%s task_id=%s agent_mode=%s initial_chars=%s",
                conversation_id,
                task.id,
                agent_mode,
                len(task.buffer),
            )
            return copy.copy(task)

    def get_task(self, conversation_id: str) -> Optional[AgentTask]:
        """Snapshot of the task; counts as an access for the idle reaper."""
        with self._lock:
            task = self._tasks.get(conversation_id)
            if task is None:
                return None
            self._touch(conversation_id)
            return copy.copy(task)

    def has_task(self, conversation_id: str) -> bool:
        with self._lock:
            return conversation_id in self._tasks

    def get_status(self, conversation_id: str) -> Optional[str]:
        with self._lock:
            task = self._tasks.get(conversation_id)
            return task.status if task else None

    def delete_task(self, conversation_id: str) -> bool:
        with self._lock:
            existed = self._drop(conversation_id)
        if existed:
            logger.info("TASK_DELETED conversation_id=%s", conversation_id)
        return existed

    def stats(self) -> TaskStats:
        with self._lock:
            out = TaskStats(total=len(self._tasks))
            for task in self._tasks.values():
                setattr(out, task.status, getattr(out, task.status) + 1)
            return out

    # ---------------------------------------------------------------- writer

    def write_chunk(self, conversation_id: str, text: str, task_id: Optional[str] = None) -> bool:
        if not text:
            return False
        with self._lock:
            task = self._writable(conversation_id, "write_chunk", task_id)
            if task is None:
                return False
            task.buffer += text
            task.updated_at = _utcnow()
            self._touch(conversation_id)
            if env_bool("LOG_STREAM_CHUNKS"):
                logger.info("CHUNK conversation_id=%s chars=%s offset=%s", conversation_id, len(text), len(task.buffer))
            self._publish(conversation_id, StreamEvent.chunk(text))
            return True

    def mark_message_finished(self, conversation_id: str, task_id: Optional[str] = None) -> bool:
        with self._lock:
            task = self._writable(conversation_id, "mark_message_finished", task_id)
            if task is None:
                return False
            task.last_message_boundary = len(task.buffer)
            task.updated_at = _utcnow()
            self._touch(conversation_id)
            self._publish(conversation_id, StreamEvent.message_finished())
        logger.info("MESSAGE_FINISHED conversation_id=%s boundary=%s", conversation_id, task.last_message_boundary)
        return True

    def mark_agent_finished(self, conversation_id: str, task_id: Optional[str] = None) -> bool:
        """Complete a running task. On a stopped task this only closes out subscribers."""
        return self._finish(conversation_id, StreamEvent.agent_finished(), task_id)

    def mark_agent_error(self, conversation_id: str, message: str, task_id: Optional[str] = None) -> bool:
        return self._finish(conversation_id, StreamEvent.agent_error(message), task_id)

    def stop_task(self, conversation_id: str) -> bool:
        """Flag a running task as stopped. Cooperative: publishes nothing."""
        with self._lock:
            task = self._tasks.get(conversation_id)
            if task is None:
                logger.warning("WRITE_MISS op=stop_task conversation_id=%s", conversation_id)
                return False
            if not task.is_running:
                logger.warning("WRITE_REJECTED op=stop_task conversation_id=%s status=%s", conversation_id, task.status)
                return False
            task.status = "stopped"
            task.updated_at = _utcnow()
            task.cancel_event.set()
            self._touch(conversation_id)
        logger.info("TASK_STOPPED conversation_id=%s", conversation_id)
        return True

    def cancel_task(self, conversation_id: str) -> AgentTask:
        """Checked variant of stop_task for user-facing callers."""
        with self._lock:
            task = self._tasks.get(conversation_id)
            if task is None:
                raise NotFoundError("No active task found", conversation_id=conversation_id)
            self._touch(conversation_id)
            if not task.is_running:
                raise InvalidStateError(f"Task is already {task.status}", conversation_id=conversation_id)
            self.stop_task(conversation_id)
            return copy.copy(task)

    # ---------------------------------------------------------------- reader

    def get_full_state(self, conversation_id: str) -> Optional[StreamState]:
        with self._lock:
            task = self._tasks.get(conversation_id)
            if task is None:
                return None
            self._touch(conversation_id)
            return self._state_of(task)

    def get_stream_data(self, conversation_id: str, from_index: int) -> Optional[StreamData]:
        with self._lock:
            task = self._tasks.get(conversation_id)
            if task is None:
                return None
            self._touch(conversation_id)
            return StreamData(
                data=task.buffer[max(from_index, 0):],
                last_message_index=task.last_message_boundary,
                last_stream_output_index=task.last_delivered_offset,
            )

    def update_stream_output_index(self, conversation_id: str, index: int) -> None:
        with self._lock:
            task = self._tasks.get(conversation_id)
            if task is None:
                return
            index = min(index, len(task.buffer) - 1)
            if index > task.last_delivered_offset:
                task.last_delivered_offset = index
                task.updated_at = _utcnow()

    def snapshot_and_subscribe(
        self, conversation_id: str, callback: Subscriber
    ) -> Optional[Tuple[StreamState, Optional[str], Optional[Subscription]]]:
        """Atomically capture a task's state and attach ``callback`` to it.

        Returns ``(state, error_message, subscription)``; ``subscription`` is
        None when the task is already terminal, since no further events will
        be published for it.
        """
        with self._lock:
            task = self._tasks.get(conversation_id)
            if task is None:
                return None
            self._touch(conversation_id)
            state = self._state_of(task)
            if task.is_terminal:
                return state, task.error_message, None
            return state, None, self.subscribe(conversation_id, callback)

    # ------------------------------------------------------------------- hub

    def subscribe(self, conversation_id: str, callback: Subscriber) -> Subscription:
        with self._lock:
            self._subscribers.setdefault(conversation_id, []).append(callback)
        return Subscription(self, conversation_id, callback)

    def publish(self, conversation_id: str, event: StreamEvent) -> None:
        with self._lock:
            self._publish(conversation_id, event)

    def subscriber_count(self, conversation_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(conversation_id, ()))

    # ---------------------------------------------------------------- reaper

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """Evict every task idle for longer than the TTL, whatever its status."""
        now = self._clock() if now is None else now
        with self._lock:
            expired = [cid for cid, ts in self._last_access.items() if now - ts > self.ttl_secs]
            for cid in expired:
                self._drop(cid)
        for cid in expired:
            logger.info("TASK_EVICTED conversation_id=%s ttl_secs=%s", cid, self.ttl_secs)
        return expired

    # --------------------------------------------------------------- private

    def _touch(self, conversation_id: str) -> None:
        self._last_access[conversation_id] = self._clock()

    def _drop(self, conversation_id: str) -> bool:
        existed = self._tasks.pop(conversation_id, None) is not None
        self._subscribers.pop(conversation_id, None)
        self._last_access.pop(conversation_id, None)
        return existed

    def _remove_subscriber(self, conversation_id: str, callback: Subscriber) -> None:
        with self._lock:
            subs = self._subscribers.get(conversation_id)
            if subs and callback in subs:
                subs.remove(callback)

    def _lookup(self, conversation_id: str, op: str, task_id: Optional[str]) -> Optional[AgentTask]:
        task = self._tasks.get(conversation_id)
        if task is None:
            logger.warning("WRITE_MISS op=%s conversation_id=%s", op, conversation_id)
            return None
        # a producer bound to a replaced task must not touch its successor
        if task_id is not None and task.id != task_id:
            logger.warning("WRITE_STALE op=%s conversation_id=%s task_id=%s", op, conversation_id, task_id)
            return None
        return task

    def _writable(self, conversation_id: str, op: str, task_id: Optional[str] = None) -> Optional[AgentTask]:
        task = self._lookup(conversation_id, op, task_id)
        if task is None:
            return None
        if not task.is_running:
            logger.warning("WRITE_REJECTED op=%s conversation_id=%s status=%s", op, conversation_id, task.status)
            return None
        return task

    def _finish(self, conversation_id: str, event: StreamEvent, task_id: Optional[str] = None) -> bool:
        with self._lock:
            task = self._lookup(conversation_id, event.type, task_id)
            if task is None:
                return False
            if task.status in ("completed", "error"):
                logger.warning("WRITE_REJECTED op=%s conversation_id=%s status=%s", event.type, conversation_id, task.status)
                return False
            if task.is_running:
                task.status = "completed" if event.type == "agent_finished" else "error"
                if event.error is not None:
                    task.error_message = event.error
            task.updated_at = _utcnow()
            self._touch(conversation_id)
            self._publish(conversation_id, event)
            # a terminal event ends every current subscription
            self._subscribers[conversation_id] = []
        logger.info("TASK_FINISHED conversation_id=%s status=%s event=%s", conversation_id, task.status, event.type)
        return True

    def _publish(self, conversation_id: str, event: StreamEvent) -> None:
        for callback in list(self._subscribers.get(conversation_id, ())):
            try:
                callback(event)
            except Exception:
                logger.exception("SUBSCRIBER_ERROR conversation_id=%s event=%s", conversation_id, event.type)

    @staticmethod
    def _state_of(task: AgentTask) -> StreamState:
        return StreamState(
            stream_messages=task.buffer,
            last_message_index=task.last_message_boundary,
            last_stream_output_index=task.last_delivered_offset,
            status=task.status,
        )
