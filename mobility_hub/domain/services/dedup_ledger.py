"""
Dedup Ledger - at-most-once processing of inbound message ids.

Optimistic: INSERT first and let the primary key arbitrate. No read before
the insert, so two concurrent deliveries of the same id cannot both win.
"""
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mobility_hub.core.logging import get_logger
from mobility_hub.db.models.dedup_record import DedupRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClaimResult:
    already_processed: bool


class DedupLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def claim(self, source_id: str) -> ClaimResult:
        """Record ``source_id``; already_processed=True if it was there"""
        try:
            async with self.db.begin_nested():
                self.db.add(DedupRecord(source_id=source_id, processed_at=datetime.utcnow()))
            # commit right away so a crash later in processing does not
            # reopen the id to a redelivery
            await self.db.commit()
        except IntegrityError:
            logger.info(
                "Skipping duplicate message",
                extra_data={"source_id": source_id},
            )
            return ClaimResult(already_processed=True)

        return ClaimResult(already_processed=False)

    async def purge_older_than(self, cutoff: datetime) -> int:
        result = await self.db.execute(
            delete(DedupRecord).where(DedupRecord.processed_at < cutoff)
        )
        await self.db.commit()
        return result.rowcount or 0
