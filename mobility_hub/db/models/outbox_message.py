"""
Outbox Message Model - Transactional Outbox Pattern

Outbound actions are written in the same transaction as the session change
that produced them and sent after commit.
"""
import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Index, Integer, JSON, String

from mobility_hub.db.database import Base


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class OutboxMessage(Base):
    """A serialized OutboundAction waiting for (or done with) delivery"""

    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, index=True)

    recipient_id = Column(String(32), nullable=False)
    message_type = Column(String(20), nullable=False)  # text / buttons / list / document
    message_content = Column(JSON, nullable=False)     # OutboundAction.model_dump()
    source = Column(String(50), nullable=False, default="conversation")  # or admin:<operation>

    status = Column(SQLEnum(MessageStatus), default=MessageStatus.PENDING, nullable=False, index=True)
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)

    last_error = Column(String(1000), nullable=True)

    __table_args__ = (
        Index("ix_outbox_messages_status_created", "status", "created_at"),
    )
