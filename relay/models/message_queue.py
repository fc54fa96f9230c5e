from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from relay.core.database import Base
from relay.core.timeutils import utcnow
from relay.models._ids import new_id


class MessageQueue(Base):
    __tablename__ = "message_queue"

    id = Column(String(36), primary_key=True, default=new_id)
    correlation_id = Column(String, nullable=False, index=True)
    message_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    metadata_ = Column("metadata", JSON, nullable=True)
    priority = Column(Integer, nullable=False, default=0)
    scheduled_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    # pending / processing / done / failed
    status = Column(String, nullable=False, default="pending")
    error_message = Column(Text, nullable=True)
    first_failed_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


Index(
    "ix_message_queue_claim",
    MessageQueue.status,
    MessageQueue.priority,
    MessageQueue.scheduled_at,
)


class FailedMessage(Base):
    __tablename__ = "failed_messages"

    id = Column(String(36), primary_key=True, default=new_id)
    original_message_id = Column(String(36), nullable=False, index=True)
    correlation_id = Column(String, nullable=False)
    message_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    metadata_ = Column("metadata", JSON, nullable=True)
    error_message = Column(Text, nullable=False)
    failure_count = Column(Integer, nullable=False)
    first_failed_at = Column(DateTime(timezone=True), nullable=False)
    last_failed_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
