# core/errors.py
from __future__ import annotations


class TaskBufferError(Exception):
    """Base class for task-buffer failures surfaced to the immediate caller."""

    status_code = 500

    def __init__(self, message: str, *, conversation_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.conversation_id = conversation_id


class ConflictError(TaskBufferError):
    status_code = 409


class NotFoundError(TaskBufferError):
    status_code = 404


class InvalidStateError(TaskBufferError):
    status_code = 400


class DriverError(TaskBufferError):
    """Failure inside the agent loop; turned into an agent_error event, never re-raised."""

    status_code = 500
