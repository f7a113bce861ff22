"""
Maintenance Service - periodic housekeeping run by Celery beat.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mobility_hub.core.circuit_breaker import CircuitBreaker
from mobility_hub.core.config import settings
from mobility_hub.core.logging import get_logger
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.db.models.chat_session import ChatSession
from mobility_hub.db.models.outbox_message import MessageStatus, OutboxMessage
from mobility_hub.domain.services.dedup_ledger import DedupLedger
from mobility_hub.domain.services.outbox_service import OutboxService
from mobility_hub.domain.services.session_store import SessionStore
from mobility_hub.state_machine.context import MainContext
from mobility_hub.state_machine.menu import main_menu_prompt
from mobility_hub.state_machine.states import COMMAND_WAIT_STATES, EXTERNAL_PENDING_STATES, ConversationState

logger = get_logger(__name__)

STALLED_COMMAND_NOTICE = "Sorry, that took too long and was not completed. Please try again."


class MaintenanceService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def reset_idle_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Send abandoned sessions back to MAIN_MENU.

        Sessions waiting on the backoffice (quotation, payment, certificate)
        get the longer PENDING_SESSION_IDLE_TIMEOUT_HOURS. Each reset is a
        CAS, so a session the user touched meanwhile is left alone. No
        message is sent.
        """
        now = now or datetime.utcnow()
        interactive_cutoff = now - timedelta(hours=settings.SESSION_IDLE_TIMEOUT_HOURS)
        pending_cutoff = now - timedelta(hours=settings.PENDING_SESSION_IDLE_TIMEOUT_HOURS)
        pending_values = [state.value for state in EXTERNAL_PENDING_STATES]

        result = await self.db.execute(
            select(ChatSession.user_id, ChatSession.version).where(
                ChatSession.state != ConversationState.MAIN_MENU.value,
                (
                    ChatSession.state.not_in(pending_values)
                    & (ChatSession.last_activity_at < interactive_cutoff)
                )
                | (
                    ChatSession.state.in_(pending_values)
                    & (ChatSession.last_activity_at < pending_cutoff)
                ),
            )
        )
        idle = list(result.all())

        store = SessionStore(self.db)
        reset = 0
        for user_id, version in idle:
            if await store.compare_and_swap(user_id, version, ConversationState.MAIN_MENU, MainContext()):
                reset += 1
        await self.db.commit()

        if idle:
            logger.info(
                "Idle sessions reset",
                extra_data={"candidates": len(idle), "reset": reset},
            )
        return reset

    async def release_stalled_commands(self, now: Optional[datetime] = None) -> int:
        """
        Send sessions whose follow-up command never came back to MAIN_MENU,
        with a "please try again" menu queued in the outbox for the sweep.

        Only COMMAND_WAIT_STATES are looked at; they have no user input of
        their own, so COMMAND_WAIT_TIMEOUT_MINUTES without activity means
        the background task was lost.
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(minutes=settings.COMMAND_WAIT_TIMEOUT_MINUTES)

        result = await self.db.execute(
            select(ChatSession.user_id, ChatSession.version, ChatSession.state).where(
                ChatSession.state.in_([state.value for state in COMMAND_WAIT_STATES]),
                ChatSession.last_activity_at < cutoff,
            )
        )
        stalled = list(result.all())

        store = SessionStore(self.db)
        outbox = OutboxService(self.db)
        released = 0
        for user_id, version, state in stalled:
            if not await store.compare_and_swap(user_id, version, ConversationState.MAIN_MENU, MainContext()):
                continue
            notice = main_menu_prompt(user_id).with_prefix(STALLED_COMMAND_NOTICE)
            await outbox.queue_actions([notice], source="maintenance:stalled_command")
            released += 1
            logger.warning(
                "Released session stuck waiting on a command",
                extra_data={"user": PhoneNumberValidator.mask(user_id), "state": state},
            )
        await self.db.commit()
        return released

    async def purge_dedup(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        cutoff = now - timedelta(hours=settings.DEDUP_RETENTION_HOURS)
        return await DedupLedger(self.db).purge_older_than(cutoff)

    async def cleanup_outbox(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=settings.OUTBOX_RETENTION_DAYS)
        return await OutboxService(self.db).purge_older_than(cutoff)

    async def collect_metrics(self) -> dict:
        """Sessions per state, outbox backlog by status, breaker states"""
        sessions = await self.db.execute(
            select(ChatSession.state, func.count(ChatSession.id)).group_by(ChatSession.state)
        )
        outbox = await self.db.execute(
            select(OutboxMessage.status, func.count(OutboxMessage.id)).group_by(OutboxMessage.status)
        )
        outbox_counts = {status.value: 0 for status in MessageStatus}
        for status, count in outbox.all():
            key = status.value if isinstance(status, MessageStatus) else str(status)
            outbox_counts[key] = count

        return {
            "sessions_by_state": {state: count for state, count in sessions.all()},
            "outbox": outbox_counts,
            "circuit_breakers": CircuitBreaker.snapshot(),
        }
