"""Fila de saída persistida em ``message_queue``.

Produtores (chatbot, agentes) chamam :func:`enqueue`; um consumidor por vez
reivindica entradas com :func:`dequeue_next`. A reivindicação é um UPDATE
condicional (``status = 'pending'``), portanto dois consumidores concorrentes
nunca processam a mesma entrada. Falhas voltam para ``pending`` com atraso
calculado pela :class:`~relay.queue.backoff.BackoffPolicy` até esgotar
``max_retries``; daí a entrada vai para ``failed_messages``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from relay.core.config import QUEUE_MAX_RETRIES, QUEUE_RETENTION_HOURS
from relay.core.timeutils import as_utc, utcnow
from relay.models.message_queue import FailedMessage, MessageQueue
from relay.queue.backoff import BackoffPolicy, default_backoff

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_DONE = "done"
STATUS_FAILED = "failed"

_CLAIM_CANDIDATES = 5


def enqueue(
    db: Session,
    *,
    correlation_id: str,
    message_type: str,
    payload: dict[str, Any],
    priority: int = 0,
    max_retries: int = QUEUE_MAX_RETRIES,
    scheduled_at: datetime | None = None,
    metadata: dict[str, Any] | None = None,
    commit: bool = True,
) -> MessageQueue:
    entry = MessageQueue(
        correlation_id=correlation_id,
        message_type=message_type,
        payload=payload,
        metadata_=metadata,
        priority=int(priority),
        max_retries=max(1, int(max_retries)),
        retry_count=0,
        status=STATUS_PENDING,
        scheduled_at=scheduled_at or utcnow(),
    )
    db.add(entry)
    if commit:
        db.commit()
    else:
        db.flush()
    logger.info(
        "Mensagem enfileirada tipo=%s prioridade=%s",
        message_type,
        priority,
        extra={"queue_entry_id": entry.id, "correlation_id": correlation_id},
    )
    return entry


def _candidate_ids(db: Session, now: datetime) -> list[str]:
    query = (
        db.query(MessageQueue.id)
        .filter(MessageQueue.status == STATUS_PENDING, MessageQueue.scheduled_at <= now)
        .order_by(MessageQueue.priority.desc(), MessageQueue.scheduled_at.asc(), MessageQueue.created_at.asc())
        .limit(_CLAIM_CANDIDATES)
    )
    if db.get_bind().dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)
    return [row_id for (row_id,) in query.all()]


def claim(db: Session, entry_id: str) -> bool:
    """UPDATE condicional: só reivindica se a entrada ainda estiver pending."""
    result = db.execute(
        update(MessageQueue)
        .where(MessageQueue.id == entry_id, MessageQueue.status == STATUS_PENDING)
        .values(status=STATUS_PROCESSING)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def dequeue_next(db: Session) -> MessageQueue | None:
    now = utcnow()
    for entry_id in _candidate_ids(db, now):
        if claim(db, entry_id):
            entry = db.get(MessageQueue, entry_id)
            if entry is not None:
                db.refresh(entry)
            return entry
        logger.debug("Entrada já reivindicada por outro consumidor", extra={"queue_entry_id": entry_id})
    db.commit()
    return None


def mark_done(db: Session, entry: MessageQueue) -> None:
    entry.status = STATUS_DONE
    entry.processed_at = utcnow()
    entry.error_message = None
    db.commit()


def mark_failed(
    db: Session,
    entry: MessageQueue,
    error: str,
    *,
    backoff: BackoffPolicy = default_backoff,
) -> str:
    """Registra a falha de envio. Retorna o novo status (pending ou failed)."""
    now = utcnow()
    entry.retry_count = int(entry.retry_count or 0) + 1
    entry.error_message = str(error)[:4000]
    if entry.first_failed_at is None:
        entry.first_failed_at = now

    if entry.retry_count < int(entry.max_retries or 0):
        entry.status = STATUS_PENDING
        entry.scheduled_at = now + backoff.delay(entry.retry_count)
        db.commit()
        logger.warning(
            "Envio falhou, nova tentativa agendada: %s",
            error,
            extra={"queue_entry_id": entry.id, "retry_count": entry.retry_count, "correlation_id": entry.correlation_id},
        )
        return STATUS_PENDING

    _dead_letter(db, entry, error, now)
    entry.status = STATUS_FAILED
    entry.processed_at = now
    db.commit()
    logger.error(
        "Envio esgotou as tentativas; movido para failed_messages: %s",
        error,
        extra={"queue_entry_id": entry.id, "retry_count": entry.retry_count, "correlation_id": entry.correlation_id},
    )
    return STATUS_FAILED


def _dead_letter(db: Session, entry: MessageQueue, error: str, now: datetime) -> FailedMessage:
    dead = (
        db.query(FailedMessage)
        .filter(FailedMessage.original_message_id == entry.id)
        .first()
    )
    if dead is None:
        dead = FailedMessage(
            original_message_id=entry.id,
            correlation_id=entry.correlation_id,
            message_type=entry.message_type,
            payload=entry.payload,
            metadata_=entry.metadata_,
            error_message=str(error)[:4000],
            failure_count=entry.retry_count,
            first_failed_at=as_utc(entry.first_failed_at) or now,
            last_failed_at=now,
        )
        db.add(dead)
        return dead

    dead.failure_count = entry.retry_count
    dead.error_message = str(error)[:4000]
    dead.last_failed_at = now
    return dead


def purge_finished(db: Session, *, older_than: timedelta | None = None) -> int:
    retention = older_than if older_than is not None else timedelta(hours=QUEUE_RETENTION_HOURS)
    cutoff = utcnow() - retention
    deleted = (
        db.query(MessageQueue)
        .filter(
            MessageQueue.status.in_((STATUS_DONE, STATUS_FAILED)),
            func.coalesce(MessageQueue.processed_at, MessageQueue.created_at) < cutoff,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        logger.info("Limpeza da fila removeu %s entradas", deleted)
    return int(deleted or 0)


@dataclass
class QueueStatus:
    total_pending: int
    total_processing: int
    total_done: int
    total_failed: int
    failed_with_retries: int
    dead_letters: int
    oldest_pending_age_seconds: float | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_pending": self.total_pending,
            "total_processing": self.total_processing,
            "total_done": self.total_done,
            "total_failed": self.total_failed,
            "failed_with_retries": self.failed_with_retries,
            "dead_letters": self.dead_letters,
            "oldest_pending_age_seconds": self.oldest_pending_age_seconds,
        }


def queue_status(db: Session) -> QueueStatus:
    counts = dict(
        db.query(MessageQueue.status, func.count(MessageQueue.id))
        .group_by(MessageQueue.status)
        .all()
    )
    # pendentes que já falharam ao menos uma vez
    failed_with_retries = (
        db.query(func.count(MessageQueue.id))
        .filter(MessageQueue.status == STATUS_PENDING, MessageQueue.retry_count > 0)
        .scalar()
    )
    oldest_pending = (
        db.query(func.min(MessageQueue.created_at))
        .filter(MessageQueue.status == STATUS_PENDING)
        .scalar()
    )
    oldest_age = None
    if oldest_pending is not None:
        oldest_age = round((utcnow() - as_utc(oldest_pending)).total_seconds(), 2)

    return QueueStatus(
        total_pending=int(counts.get(STATUS_PENDING, 0)),
        total_processing=int(counts.get(STATUS_PROCESSING, 0)),
        total_done=int(counts.get(STATUS_DONE, 0)),
        total_failed=int(counts.get(STATUS_FAILED, 0)),
        failed_with_retries=int(failed_with_retries or 0),
        dead_letters=int(db.query(func.count(FailedMessage.id)).scalar() or 0),
        oldest_pending_age_seconds=oldest_age,
    )
