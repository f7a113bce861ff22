"""
Vehicle Service
"""
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mobility_hub.core.exceptions import ErrorCode, NotFoundException
from mobility_hub.core.logging import get_logger
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.db.models.vehicle import Vehicle
from mobility_hub.domain.services.ocr_service import ExtractedVehicle

logger = get_logger(__name__)

MAX_LISTED_VEHICLES = 10


class VehicleService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def register(
        self,
        owner_id: str,
        usage_type: str,
        document_ref: str,
        fields: ExtractedVehicle,
    ) -> Vehicle:
        """Create an unverified vehicle from OCR fields; caller commits"""
        vehicle = Vehicle(
            owner_id=owner_id,
            usage_type=usage_type,
            document_ref=document_ref,
            plate=fields.plate,
            make=fields.make,
            model=fields.model,
            model_year=fields.model_year,
            vin=fields.vin,
            insurance_provider=fields.insurance_provider,
            insurance_policy=fields.insurance_policy,
            insurance_expiry=fields.insurance_expiry,
            verified=False,
        )
        self.db.add(vehicle)
        await self.db.flush()

        logger.info(
            "Vehicle registered",
            extra_data={
                "vehicle_id": vehicle.id,
                "owner": PhoneNumberValidator.mask(owner_id),
                "usage_type": usage_type,
            },
        )
        return vehicle

    async def list_for_owner(self, owner_id: str) -> list[Vehicle]:
        result = await self.db.execute(
            select(Vehicle)
            .where(Vehicle.owner_id == owner_id)
            .order_by(Vehicle.created_at.desc(), Vehicle.id.desc())
            .limit(MAX_LISTED_VEHICLES)
        )
        return list(result.scalars().all())

    async def verify(self, vehicle_id: int) -> Vehicle:
        """Backoffice verification; idempotent. Caller commits."""
        vehicle = await self.db.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFoundException("Vehicle", vehicle_id, ErrorCode.VEHICLE_NOT_FOUND)

        if not vehicle.verified:
            vehicle.verified = True
            vehicle.verified_at = datetime.utcnow()
            await self.db.flush()
        return vehicle
