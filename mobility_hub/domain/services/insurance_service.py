"""
Insurance Service - motor insurance quotes from request to certificate

Lifecycle of an InsuranceQuote:
    requested -> priced -> plan_selected -> paid -> issued

The chat creates the request and picks the plan; the backoffice (through the
admin bridge) prices it, records payments and issues the certificate.
"""
import math
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mobility_hub.core.config import settings
from mobility_hub.core.exceptions import (
    AlreadyExistsException,
    ErrorCode,
    ExternalServiceException,
    InvalidQuoteStatusError,
    NotFoundException,
)
from mobility_hub.core.logging import get_logger
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.db.models.insurance import InsuranceQuote, Payment, QuoteStatus
from mobility_hub.db.models.vehicle import Vehicle
from mobility_hub.state_machine.flows.insurance import instalments_for
from mobility_hub.state_machine.flows.qr import build_ussd

logger = get_logger(__name__)


class InsuranceService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_quote(self, quote_id: int) -> InsuranceQuote:
        quote = await self.db.get(InsuranceQuote, quote_id)
        if quote is None:
            raise NotFoundException("Quote", quote_id, ErrorCode.QUOTE_NOT_FOUND)
        return quote

    @staticmethod
    def _require_status(quote: InsuranceQuote, operation: str, *allowed: QuoteStatus) -> None:
        if quote.status not in allowed:
            raise InvalidQuoteStatusError(quote.id, quote.status.value, operation)

    async def create_quote(
        self,
        user_id: str,
        start_date: str,
        period: str,
        vehicle_id: Optional[int] = None,
        document_ref: Optional[str] = None,
        addons: Optional[list[str]] = None,
        pa_category: Optional[str] = None,
    ) -> InsuranceQuote:
        """Quote request from the chat summary; caller commits"""
        if vehicle_id is not None:
            vehicle = await self.db.get(Vehicle, vehicle_id)
            if vehicle is None or vehicle.owner_id != user_id:
                raise NotFoundException("Vehicle", vehicle_id, ErrorCode.VEHICLE_NOT_FOUND)

        quote = InsuranceQuote(
            user_id=user_id,
            vehicle_id=vehicle_id,
            document_ref=document_ref,
            start_date=date.fromisoformat(start_date),
            period=period,
            addons=list(addons or []),
            pa_category=pa_category,
            status=QuoteStatus.REQUESTED,
        )
        self.db.add(quote)
        await self.db.flush()

        logger.info(
            "Insurance quote requested",
            extra_data={
                "quote_id": quote.id,
                "user": PhoneNumberValidator.mask(user_id),
                "period": period,
            },
        )
        return quote

    async def attach_quote(self, quote_id: int, document_ref: str, amount: int) -> InsuranceQuote:
        """Backoffice pricing. Re-attaching replaces an earlier quotation."""
        quote = await self.get_quote(quote_id)
        self._require_status(quote, "attach_quote", QuoteStatus.REQUESTED, QuoteStatus.PRICED)

        quote.quote_document_ref = document_ref
        quote.amount = amount
        quote.status = QuoteStatus.PRICED
        await self.db.flush()
        return quote

    async def set_payment_plan(self, quote_id: int, user_id: str, plan: str) -> dict:
        """
        Store the chosen plan and compute the first instalment with the MoMo
        dial string for it.
        """
        quote = await self.get_quote(quote_id)
        if quote.user_id != user_id:
            raise NotFoundException("Quote", quote_id, ErrorCode.QUOTE_NOT_FOUND)
        self._require_status(quote, "set_payment_plan", QuoteStatus.PRICED, QuoteStatus.PLAN_SELECTED)

        if not settings.MOMO_MERCHANT_CODE:
            raise ExternalServiceException(
                service_name="momo",
                message="MoMo merchant code is not configured",
            )

        instalments = instalments_for(plan)
        amount_due = math.ceil(quote.amount / instalments)

        quote.payment_plan = plan
        quote.status = QuoteStatus.PLAN_SELECTED
        await self.db.flush()

        return {
            "amount_due": amount_due,
            "instalments": instalments,
            "pay_ussd": build_ussd("code", settings.MOMO_MERCHANT_CODE, amount_due),
        }

    async def record_payment(
        self,
        quote_id: int,
        amount: int,
        payer_identity: str,
        provider_reference: str,
    ) -> Payment:
        """
        Record a settled payment. provider_reference is unique, so a replayed
        callback raises AlreadyExistsException instead of paying twice.
        """
        quote = await self.get_quote(quote_id)
        self._require_status(
            quote, "record_payment", QuoteStatus.PRICED, QuoteStatus.PLAN_SELECTED, QuoteStatus.PAID
        )

        existing = await self.db.execute(
            select(Payment.id).where(Payment.provider_reference == provider_reference)
        )
        if existing.scalar_one_or_none() is not None:
            raise AlreadyExistsException("Payment", provider_reference, ErrorCode.DUPLICATE_PAYMENT)

        payment = Payment(
            quote_id=quote.id,
            amount=amount,
            payer_identity=payer_identity,
            provider_reference=provider_reference,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(payment)
        except IntegrityError:
            raise AlreadyExistsException("Payment", provider_reference, ErrorCode.DUPLICATE_PAYMENT)

        quote.status = QuoteStatus.PAID
        quote.updated_at = datetime.utcnow()
        await self.db.flush()
        return payment

    async def issue_certificate(self, quote_id: int, certificate_ref: str) -> InsuranceQuote:
        quote = await self.get_quote(quote_id)
        self._require_status(quote, "issue_certificate", QuoteStatus.PAID, QuoteStatus.ISSUED)

        quote.certificate_ref = certificate_ref
        quote.status = QuoteStatus.ISSUED
        await self.db.flush()
        return quote
