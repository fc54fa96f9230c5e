from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy.orm import Session

from relay.core.config import CHATBOT_QUEUE_PRIORITY
from relay.models.message_queue import MessageQueue
from relay.queue import store


class Outbox(Protocol):
    def emit(self, db: Session, *, correlation_id: str, payload: dict[str, Any]) -> Any:
        ...


class QueueOutbox:
    """Enfileira as respostas do bot em message_queue; o commit fica com quem chamou."""

    message_type = "chatbot_message"

    def __init__(self, *, priority: int = CHATBOT_QUEUE_PRIORITY) -> None:
        self.priority = priority

    def emit(self, db: Session, *, correlation_id: str, payload: dict[str, Any]) -> MessageQueue:
        return store.enqueue(
            db,
            correlation_id=correlation_id,
            message_type=self.message_type,
            payload=payload,
            priority=self.priority,
            metadata={"origem": "chatbot"},
            commit=False,
        )
