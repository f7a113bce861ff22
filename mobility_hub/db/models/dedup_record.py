"""
Dedup Record Model - idempotency ledger for inbound webhook messages.

The primary key on source_id is the claim: the first insert wins, any
redelivery of the same platform message id fails with IntegrityError.
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, String

from mobility_hub.db.database import Base


class DedupRecord(Base):
    """Platform message id that has already been dispatched"""

    __tablename__ = "dedup_records"

    source_id = Column(String(200), primary_key=True)
    processed_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
