"""
Session Store - versioned chat sessions with an optimistic compare-and-swap.

Every writer (webhook dispatch, command follow-ups, admin milestones, the
idle sweeper) goes through compare_and_swap, so a lost race is detected
instead of silently overwriting a newer state.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mobility_hub.core.exceptions import SessionConflictError
from mobility_hub.core.logging import get_logger
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.db.models.chat_session import ChatSession
from mobility_hub.domain.services.outbox_service import OutboxService
from mobility_hub.state_machine.context import BaseContext, dump_context, load_context
from mobility_hub.state_machine.events import Transition
from mobility_hub.state_machine.states import ConversationState, parse_state

logger = get_logger(__name__)

MAX_ATTEMPTS = 2

# (state, context) -> Transition, or None for "nothing to do"
ComputeTransition = Callable[[ConversationState, BaseContext], Optional[Transition]]


@dataclass(frozen=True)
class AppliedTransition:
    transition: Optional[Transition]
    outbox_ids: tuple[int, ...] = ()


class SessionStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, user_id: str) -> Optional[ChatSession]:
        result = await self.db.execute(
            select(ChatSession).where(ChatSession.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: str) -> ChatSession:
        """Existing session, or a new MAIN_MENU one. Does not commit."""
        session = await self.get(user_id)
        if session:
            return session

        try:
            async with self.db.begin_nested():
                self.db.add(ChatSession(
                    user_id=user_id,
                    state=ConversationState.MAIN_MENU.value,
                    context={},
                    version=0,
                ))
        except IntegrityError:
            # created concurrently; the savepoint is already rolled back
            logger.info(
                "Session created concurrently, reloading",
                extra_data={"user": PhoneNumberValidator.mask(user_id)},
            )

        session = await self.get(user_id)
        if session is None:
            raise RuntimeError(f"Session for {PhoneNumberValidator.mask(user_id)} could not be created")
        return session

    async def compare_and_swap(
        self,
        user_id: str,
        expected_version: int,
        state: ConversationState,
        context: BaseContext,
    ) -> bool:
        """
        UPDATE ... WHERE user_id = :u AND version = :v, bumping the version.

        True when this write won; False when someone else wrote first.
        """
        now = datetime.utcnow()
        result = await self.db.execute(
            update(ChatSession)
            .where(
                ChatSession.user_id == user_id,
                ChatSession.version == expected_version,
            )
            .values(
                state=state.value,
                context=dump_context(context),
                version=expected_version + 1,
                updated_at=now,
                last_activity_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def write_transition(
        self,
        user_id: str,
        compute: ComputeTransition,
        source: str = "conversation",
    ) -> Optional[AppliedTransition]:
        """
        Read, compute, CAS and enqueue the outbox rows in the current
        transaction. The caller commits.

        Returns None when the CAS lost (nothing was written), and an
        AppliedTransition with transition=None when ``compute`` declined.
        """
        session = await self.get_or_create(user_id)
        state = parse_state(session.state)
        if state is None:
            logger.warning(
                "Unknown stored state, treating as main menu",
                extra_data={"state": session.state, "user": PhoneNumberValidator.mask(user_id)},
            )
            state = ConversationState.MAIN_MENU
        context = load_context(session.context)
        expected_version = session.version

        transition = compute(state, context)
        if transition is None:
            return AppliedTransition(transition=None)

        if not await self.compare_and_swap(user_id, expected_version, transition.state, transition.context):
            return None

        outbox_ids = await OutboxService(self.db).queue_actions(transition.actions, source=source)
        return AppliedTransition(transition=transition, outbox_ids=tuple(outbox_ids))


async def apply_transition(
    session_factory: async_sessionmaker,
    user_id: str,
    compute: ComputeTransition,
    source: str = "conversation",
) -> AppliedTransition:
    """
    One unit of work per attempt: read the session, run ``compute`` on the
    fresh state, CAS it and queue the actions, then commit.

    A lost CAS is retried once with a fresh read; a second loss raises
    SessionConflictError.
    """
    for attempt in range(1, MAX_ATTEMPTS + 1):
        async with session_factory() as db:
            applied = await SessionStore(db).write_transition(user_id, compute, source=source)
            if applied is None:
                await db.rollback()
                logger.warning(
                    "Session version conflict",
                    extra_data={
                        "user": PhoneNumberValidator.mask(user_id),
                        "attempt": attempt,
                    },
                )
                continue
            await db.commit()
            return applied

    raise SessionConflictError(PhoneNumberValidator.mask(user_id), MAX_ATTEMPTS)
