"""
Admin Bridge Service - backoffice milestones that advance a chat session.

Each operation is a single unit of work on one DB session:
    mutate record -> apply_milestone on the owner's session -> CAS ->
    outbox rows -> one commit
Any failure rolls all of it back. A lost CAS reruns the whole unit once
(re-reading the record too), then raises SessionConflictError.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mobility_hub.core.exceptions import SessionConflictError
from mobility_hub.core.logging import get_logger, log_async_operation
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.domain.services.insurance_service import InsuranceService
from mobility_hub.domain.services.ride_service import RideService
from mobility_hub.domain.services.session_store import MAX_ATTEMPTS, SessionStore
from mobility_hub.domain.services.vehicle_service import VehicleService
from mobility_hub.state_machine.dispatcher import StateDispatcher
from mobility_hub.state_machine.events import Milestone, MilestoneEvent

logger = get_logger(__name__)

# mutates the record and returns the milestone to apply
Mutation = Callable[[AsyncSession], Awaitable[MilestoneEvent]]


@dataclass(frozen=True)
class BridgeResult:
    outbox_ids: tuple[int, ...] = ()

    @property
    def messages_queued(self) -> int:
        return len(self.outbox_ids)


class AdminBridgeService:
    def __init__(self, session_factory: async_sessionmaker, dispatcher: StateDispatcher):
        self.session_factory = session_factory
        self.dispatcher = dispatcher

    async def _run(self, operation: str, mutate: Mutation) -> BridgeResult:
        user_id = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            async with self.session_factory() as db:
                milestone = await mutate(db)
                user_id = milestone.user_id

                applied = await SessionStore(db).write_transition(
                    user_id,
                    lambda state, context: self.dispatcher.apply_milestone(state, context, milestone),
                    source=f"admin:{operation}",
                )
                if applied is None:
                    await db.rollback()
                    logger.warning(
                        "Session version conflict in admin bridge",
                        extra_data={
                            "operation": operation,
                            "user": PhoneNumberValidator.mask(user_id),
                            "attempt": attempt,
                        },
                    )
                    continue

                await db.commit()
                logger.info(
                    "Milestone applied",
                    extra_data={
                        "operation": operation,
                        "milestone": milestone.milestone.value,
                        "user": PhoneNumberValidator.mask(user_id),
                        "new_state": applied.transition.state.value,
                    },
                )
                return BridgeResult(outbox_ids=applied.outbox_ids)

        raise SessionConflictError(PhoneNumberValidator.mask(user_id), MAX_ATTEMPTS)

    @log_async_operation("admin_attach_quote")
    async def attach_quote(self, quote_id: int, document_ref: str, amount: int) -> BridgeResult:
        async def mutate(db: AsyncSession) -> MilestoneEvent:
            quote = await InsuranceService(db).attach_quote(quote_id, document_ref, amount)
            return MilestoneEvent(
                milestone=Milestone.QUOTE_ATTACHED,
                user_id=quote.user_id,
                data={"quote_id": quote.id, "document_ref": document_ref, "amount": amount},
            )

        return await self._run("attach_quote", mutate)

    @log_async_operation("admin_issue_certificate")
    async def issue_certificate(self, quote_id: int, certificate_ref: str) -> BridgeResult:
        async def mutate(db: AsyncSession) -> MilestoneEvent:
            quote = await InsuranceService(db).issue_certificate(quote_id, certificate_ref)
            return MilestoneEvent(
                milestone=Milestone.CERTIFICATE_ISSUED,
                user_id=quote.user_id,
                data={"quote_id": quote.id, "certificate_ref": certificate_ref},
            )

        return await self._run("issue_certificate", mutate)

    @log_async_operation("admin_record_payment")
    async def record_payment(
        self,
        quote_id: int,
        amount: int,
        payer_identity: str,
        provider_reference: str,
    ) -> BridgeResult:
        async def mutate(db: AsyncSession) -> MilestoneEvent:
            service = InsuranceService(db)
            payment = await service.record_payment(quote_id, amount, payer_identity, provider_reference)
            quote = await service.get_quote(quote_id)
            return MilestoneEvent(
                milestone=Milestone.PAYMENT_RECORDED,
                user_id=quote.user_id,
                data={
                    "quote_id": quote.id,
                    "amount": payment.amount,
                    "provider_reference": provider_reference,
                },
            )

        return await self._run("record_payment", mutate)

    @log_async_operation("admin_verify_vehicle")
    async def verify_vehicle(self, vehicle_id: int) -> BridgeResult:
        async def mutate(db: AsyncSession) -> MilestoneEvent:
            vehicle = await VehicleService(db).verify(vehicle_id)
            return MilestoneEvent(
                milestone=Milestone.VEHICLE_VERIFIED,
                user_id=vehicle.owner_id,
                data={"vehicle_id": vehicle.id, "plate": vehicle.plate},
            )

        return await self._run("verify_vehicle", mutate)

    @log_async_operation("admin_activate_provider")
    async def activate_provider(self, provider_id: int) -> BridgeResult:
        async def mutate(db: AsyncSession) -> MilestoneEvent:
            driver = await RideService(db).activate_provider(provider_id)
            return MilestoneEvent(
                milestone=Milestone.PROVIDER_ACTIVATED,
                user_id=driver.phone,
                data={"provider_id": driver.id},
            )

        return await self._run("activate_provider", mutate)
