from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from relay.core.config import QUEUE_BATCH_SIZE
from relay.core.request_context import set_request_context
from relay.errors import RelayError
from relay.models.message_queue import MessageQueue
from relay.queue import store
from relay.queue.backoff import BackoffPolicy, default_backoff
from relay.whatsapp.service import WhatsAppService

logger = logging.getLogger(__name__)


@dataclass
class ProcessOutcome:
    entry_id: str
    status: str
    error: str | None = None


@dataclass
class BatchReport:
    processed: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    outcomes: list[ProcessOutcome] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "sent": self.sent,
            "retried": self.retried,
            "failed": self.failed,
        }


class QueueProcessor:
    """Consumidor da fila: uma invocação curta por tick, sem laço infinito."""

    def __init__(
        self,
        *,
        sender: WhatsAppService | None = None,
        backoff: BackoffPolicy = default_backoff,
    ) -> None:
        self._sender = sender or WhatsAppService()
        self._backoff = backoff

    def process_entry(self, db: Session, entry: MessageQueue) -> ProcessOutcome:
        set_request_context(correlation_id=entry.correlation_id)
        try:
            self._sender.send(db, entry.payload or {})
        except RelayError as exc:
            status = store.mark_failed(db, entry, str(exc), backoff=self._backoff)
            return ProcessOutcome(entry_id=entry.id, status=status, error=str(exc))
        except Exception as exc:
            # a entrada não pode ficar presa em processing
            logger.exception("Erro inesperado ao enviar entrada da fila", extra={"queue_entry_id": entry.id})
            db.rollback()
            status = store.mark_failed(db, entry, f"Erro inesperado: {exc}", backoff=self._backoff)
            return ProcessOutcome(entry_id=entry.id, status=status, error=str(exc))

        store.mark_done(db, entry)
        logger.info("Mensagem da fila enviada", extra={"queue_entry_id": entry.id})
        return ProcessOutcome(entry_id=entry.id, status=store.STATUS_DONE)

    def run_once(self, db: Session) -> ProcessOutcome | None:
        entry = store.dequeue_next(db)
        if entry is None:
            return None
        return self.process_entry(db, entry)

    def run_batch(self, db: Session, limit: int = QUEUE_BATCH_SIZE) -> BatchReport:
        report = BatchReport()
        for _ in range(max(1, int(limit))):
            outcome = self.run_once(db)
            if outcome is None:
                break
            report.processed += 1
            report.outcomes.append(outcome)
            if outcome.status == store.STATUS_DONE:
                report.sent += 1
            elif outcome.status == store.STATUS_PENDING:
                report.retried += 1
            else:
                report.failed += 1
        return report
