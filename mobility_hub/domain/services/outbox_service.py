"""
Outbox Service - Transactional Outbox Pattern

Outbound actions are inserted in the same transaction as the session change
that produced them, then delivered after commit (right away by the request's
background task, or later by the Celery sweep). A failed send never touches
session state; it only schedules a retry.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mobility_hub.core.config import settings
from mobility_hub.core.exceptions import AppException
from mobility_hub.core.logging import get_logger
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.db.models.outbox_message import MessageStatus, OutboxMessage
from mobility_hub.state_machine.events import OutboundAction

logger = get_logger(__name__)


def _calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    Exponential backoff with a hard upper bound:
        backoff = base_seconds * (2 ** retry_count), capped at max_backoff_seconds

    Never computes huge powers when retry_count is unexpectedly large.
    """
    if retry_count < 0:
        retry_count = 0

    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0

    if base_seconds >= max_backoff_seconds:
        return max_backoff_seconds

    # smallest n with base * 2**n >= max
    required_multiplier = (max_backoff_seconds + base_seconds - 1) // base_seconds
    threshold = (required_multiplier - 1).bit_length()
    if retry_count >= threshold:
        return max_backoff_seconds

    return min(base_seconds * (1 << retry_count), max_backoff_seconds)


class OutboxService:
    """Queue, claim and settle outbox rows"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def queue_actions(
        self,
        actions: Iterable[OutboundAction],
        source: str = "conversation",
    ) -> list[int]:
        """Add actions to the current transaction; caller commits"""
        messages = [
            OutboxMessage(
                recipient_id=action.to,
                message_type=action.kind.value,
                message_content=action.model_dump(mode="json"),
                source=source,
                status=MessageStatus.PENDING,
                max_retries=settings.WHATSAPP_MAX_RETRIES,
            )
            for action in actions
        ]
        if not messages:
            return []
        self.db.add_all(messages)
        await self.db.flush()
        return [message.id for message in messages]

    async def get_pending(self, limit: int = 50, ids: Optional[list[int]] = None) -> list[OutboxMessage]:
        """Pending rows whose retry time has come, oldest first"""
        now = datetime.utcnow()
        query = (
            select(OutboxMessage)
            .where(
                OutboxMessage.status == MessageStatus.PENDING,
                (OutboxMessage.next_retry_at.is_(None)) | (OutboxMessage.next_retry_at <= now),
            )
            .order_by(OutboxMessage.created_at, OutboxMessage.id)
            .limit(limit)
        )
        if ids is not None:
            query = query.where(OutboxMessage.id.in_(ids))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def claim_for_processing(self, message_id: int) -> bool:
        """
        pending -> processing, atomically. False when another worker (the
        background task or the beat sweep) got there first.
        """
        result = await self.db.execute(
            update(OutboxMessage)
            .where(
                OutboxMessage.id == message_id,
                OutboxMessage.status == MessageStatus.PENDING,
            )
            .values(status=MessageStatus.PROCESSING)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def mark_as_sent(self, message_id: int) -> None:
        await self.db.execute(
            update(OutboxMessage)
            .where(OutboxMessage.id == message_id)
            .values(status=MessageStatus.SENT, processed_at=datetime.utcnow(), last_error=None)
        )
        await self.db.commit()

    async def mark_as_failed(self, message_id: int, error: str) -> None:
        """Schedule a retry with backoff, or give up after max_retries"""
        result = await self.db.execute(
            select(OutboxMessage).where(OutboxMessage.id == message_id)
        )
        message = result.scalar_one_or_none()
        if not message:
            return

        message.retry_count += 1
        message.last_error = error[:1000]

        if message.retry_count >= message.max_retries:
            message.status = MessageStatus.FAILED
            message.processed_at = datetime.utcnow()
        else:
            message.status = MessageStatus.PENDING
            backoff_seconds = _calculate_backoff_seconds(
                message.retry_count,
                base_seconds=settings.OUTBOX_RETRY_BASE_SECONDS,
                max_backoff_seconds=settings.OUTBOX_MAX_BACKOFF_SECONDS,
            )
            message.next_retry_at = datetime.utcnow() + timedelta(seconds=backoff_seconds)

        await self.db.commit()

    async def purge_older_than(self, cutoff: datetime) -> int:
        """Delete settled (sent / failed) rows processed before ``cutoff``"""
        result = await self.db.execute(
            delete(OutboxMessage).where(
                OutboxMessage.status.in_([MessageStatus.SENT, MessageStatus.FAILED]),
                OutboxMessage.processed_at < cutoff,
            )
        )
        await self.db.commit()
        return result.rowcount or 0


async def deliver_messages(
    session_factory: async_sessionmaker,
    ids: Optional[list[int]] = None,
    provider=None,
    limit: int = 50,
) -> dict[str, int]:
    """
    Send pending outbox rows (all due rows, or only ``ids``) in order.

    Returns counts of sent / failed / skipped rows.
    """
    if provider is None:
        from mobility_hub.domain.services.whatsapp import get_whatsapp_provider

        provider = get_whatsapp_provider()

    stats = {"sent": 0, "failed": 0, "skipped": 0}
    if ids is not None and not ids:
        return stats

    async with session_factory() as db:
        outbox = OutboxService(db)
        messages = await outbox.get_pending(limit=limit, ids=ids)
        # plain values, so nothing lazy-loads after the commits below
        pending = [(m.id, m.recipient_id, dict(m.message_content)) for m in messages]

        for message_id, recipient_id, content in pending:
            if not await outbox.claim_for_processing(message_id):
                stats["skipped"] += 1
                continue

            try:
                await provider.send(OutboundAction.model_validate(content))
            except AppException as e:
                logger.error(
                    "Outbox delivery failed",
                    extra_data={
                        "message_id": message_id,
                        "recipient": PhoneNumberValidator.mask(recipient_id),
                        "error_code": e.error_code.value,
                        "error": e.message,
                    },
                )
                await outbox.mark_as_failed(message_id, e.message)
                stats["failed"] += 1
                continue
            except Exception as e:
                # a row stuck in PROCESSING is never retried, so every error lands on the row
                logger.error(
                    "Outbox delivery raised unexpectedly",
                    extra_data={
                        "message_id": message_id,
                        "recipient": PhoneNumberValidator.mask(recipient_id),
                        "error": str(e),
                    },
                    exc_info=True,
                )
                await outbox.mark_as_failed(message_id, f"{type(e).__name__}: {e}")
                stats["failed"] += 1
                continue

            await outbox.mark_as_sent(message_id)
            stats["sent"] += 1

    return stats
