"""
Conversation Service - the shell around the pure dispatcher.

Per inbound event:
    1. claim the source id in the dedup ledger (own transaction)
    2. read session -> dispatch -> CAS + outbox rows -> commit
then, after the HTTP response (follow_up):
    3. deliver the queued actions
    4. run the command the transition asked for, feed the result back
       through the dispatcher, deliver again
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from mobility_hub.core.logging import get_logger
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.domain.services.command_runner import CommandRunner
from mobility_hub.domain.services.dedup_ledger import DedupLedger
from mobility_hub.domain.services.outbox_service import deliver_messages
from mobility_hub.domain.services.session_store import apply_transition
from mobility_hub.state_machine.dispatcher import StateDispatcher
from mobility_hub.state_machine.events import Command, InboundEvent

logger = get_logger(__name__)

# a result may itself ask for another command; bound the chain
MAX_CHAINED_COMMANDS = 3


@dataclass(frozen=True)
class EventOutcome:
    duplicate: bool = False
    state: Optional[str] = None
    outbox_ids: tuple[int, ...] = ()
    command: Optional[Command] = None

    @property
    def needs_follow_up(self) -> bool:
        return bool(self.outbox_ids) or self.command is not None


class ConversationService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        dispatcher: StateDispatcher,
        runner: Optional[CommandRunner] = None,
        provider=None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.runner = runner or CommandRunner(session_factory)
        self.provider = provider

    async def handle_event(self, event: InboundEvent) -> EventOutcome:
        """
        Dedup, dispatch and persist one event. Sends nothing; the caller
        schedules follow_up with the returned outcome.
        """
        async with self.session_factory() as db:
            claim = await DedupLedger(db).claim(event.source_id)
        if claim.already_processed:
            return EventOutcome(duplicate=True)

        applied = await apply_transition(
            self.session_factory,
            event.sender,
            lambda state, context: self.dispatcher.dispatch(state, context, event),
        )
        transition = applied.transition

        logger.info(
            "Event dispatched",
            extra_data={
                "source_id": event.source_id,
                "kind": event.kind.value,
                "user": PhoneNumberValidator.mask(event.sender),
                "new_state": transition.state.value,
                "command": transition.command.name.value if transition.command else None,
            },
        )
        return EventOutcome(
            state=transition.state.value,
            outbox_ids=applied.outbox_ids,
            command=transition.command,
        )

    async def follow_up(
        self,
        user_id: str,
        outbox_ids: tuple[int, ...] = (),
        command: Optional[Command] = None,
    ) -> None:
        """
        Background part of an event: deliver, then run commands until the
        session stops asking for one. Failures are logged; a lost delivery
        stays in the outbox for the beat sweep.
        """
        try:
            await self._deliver(outbox_ids)

            for _ in range(MAX_CHAINED_COMMANDS):
                if command is None:
                    return
                result = await self.runner.run(command)
                applied = await apply_transition(
                    self.session_factory,
                    user_id,
                    lambda state, context: self.dispatcher.resume(state, context, result, user_id),
                    source=f"command:{command.name.value}",
                )
                if applied.transition is None:
                    return
                await self._deliver(applied.outbox_ids)
                command = applied.transition.command

            if command is not None:
                logger.warning(
                    "Command chain limit reached",
                    extra_data={
                        "user": PhoneNumberValidator.mask(user_id),
                        "pending_command": command.name.value,
                    },
                )
        except Exception as e:
            # runs after the response; nothing above this frame would log it
            logger.error(
                "Conversation follow-up failed",
                extra_data={
                    "user": PhoneNumberValidator.mask(user_id),
                    "error": str(e),
                },
                exc_info=True,
            )

    async def _deliver(self, outbox_ids: tuple[int, ...]) -> None:
        if not outbox_ids:
            return
        await deliver_messages(self.session_factory, ids=list(outbox_ids), provider=self.provider)
