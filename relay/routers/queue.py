from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from relay.core.config import QUEUE_BATCH_SIZE, QUEUE_MAX_RETRIES, QUEUE_RETENTION_HOURS
from relay.core.database import get_db
from relay.deps import require_internal_token
from relay.errors import OutboundValidationError
from relay.queue import store
from relay.queue.processor import QueueProcessor
from relay.whatsapp.service import parse_outbound

router = APIRouter(prefix="/api/queue", tags=["queue"], dependencies=[Depends(require_internal_token)])
logger = logging.getLogger(__name__)


class EnqueueRequest(BaseModel):
    payload: Dict[str, Any]
    message_type: str = "whatsapp_message"
    correlation_id: Optional[str] = None
    priority: int = 0
    max_retries: int = Field(default=QUEUE_MAX_RETRIES, ge=1, le=20)
    scheduled_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


def get_queue_processor() -> QueueProcessor:
    return QueueProcessor()


@router.post("/enqueue")
def enqueue_message(body: EnqueueRequest, db: Session = Depends(get_db)):
    try:
        parse_outbound(body.payload)
    except OutboundValidationError as exc:
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})

    entry = store.enqueue(
        db,
        correlation_id=body.correlation_id or str(uuid.uuid4()),
        message_type=body.message_type,
        payload=body.payload,
        priority=body.priority,
        max_retries=body.max_retries,
        scheduled_at=body.scheduled_at,
        metadata=body.metadata,
    )
    return {
        "success": True,
        "id": entry.id,
        "correlationId": entry.correlation_id,
        "status": entry.status,
    }


@router.post("/process")
def process_queue(
    limit: int = Query(default=QUEUE_BATCH_SIZE, ge=1, le=100),
    db: Session = Depends(get_db),
    processor: QueueProcessor = Depends(get_queue_processor),
):
    report = processor.run_batch(db, limit=limit)
    logger.info("Processamento da fila: %s", report.as_dict())
    return {"success": True, **report.as_dict()}


@router.post("/cleanup")
def cleanup_queue(
    retention_hours: int = Query(default=QUEUE_RETENTION_HOURS, ge=0),
    db: Session = Depends(get_db),
):
    deleted = store.purge_finished(db, older_than=timedelta(hours=retention_hours))
    return {"success": True, "deleted": deleted}


@router.get("/status")
def queue_status(db: Session = Depends(get_db)):
    return {"success": True, **store.queue_status(db).as_dict()}
