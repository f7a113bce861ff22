"""
Command Runner - executes the collaborator calls flows ask for.

Every command runs in its own DB session under COLLABORATOR_TIMEOUT_SECONDS.
Whatever goes wrong comes back as CommandResult(ok=False); the flow's error
branch turns that into a "try again" step, so nothing here raises into the
conversation.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mobility_hub.core.config import settings
from mobility_hub.core.exceptions import AppException
from mobility_hub.core.logging import get_logger
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.domain.services.insurance_service import InsuranceService
from mobility_hub.domain.services.ocr_service import OCRService
from mobility_hub.domain.services.qr_image_service import QRImageService
from mobility_hub.domain.services.ride_service import RideService
from mobility_hub.domain.services.vehicle_service import VehicleService
from mobility_hub.state_machine.events import Command, CommandName, CommandResult

logger = get_logger(__name__)

Handler = Callable[[AsyncSession, Command], Awaitable[dict[str, Any]]]


def _vehicle_label(vehicle) -> str:
    parts = [vehicle.plate, vehicle.make, vehicle.model]
    return " ".join(p for p in parts if p)


class CommandRunner:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        qr_service: Optional[QRImageService] = None,
        ocr_service: Optional[OCRService] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.qr_service = qr_service or QRImageService()
        self.ocr_service = ocr_service or OCRService()
        self.timeout_seconds = timeout_seconds or settings.COLLABORATOR_TIMEOUT_SECONDS
        self._handlers: dict[CommandName, Handler] = {
            CommandName.GENERATE_QR: self._generate_qr,
            CommandName.FIND_NEARBY: self._find_nearby,
            CommandName.CREATE_BOOKING: self._create_booking,
            CommandName.SCHEDULE_TRIP: self._schedule_trip,
            CommandName.EXTRACT_DOCUMENT: self._extract_document,
            CommandName.CHECK_VEHICLES: self._check_vehicles,
            CommandName.CREATE_QUOTE: self._create_quote,
            CommandName.SELECT_PAYMENT_PLAN: self._select_payment_plan,
        }

    async def run(self, command: Command) -> CommandResult:
        """Execute ``command``; failures come back as ok=False, never raised"""
        handler = self._handlers[command.name]
        log_data = {
            "command": command.name.value,
            "user": PhoneNumberValidator.mask(command.user_id),
        }

        try:
            data = await asyncio.wait_for(self._in_session(handler, command), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Command timed out",
                extra_data={**log_data, "timeout_seconds": self.timeout_seconds},
            )
            return CommandResult(name=command.name, ok=False, error="timeout")
        except AppException as e:
            logger.warning(
                "Command failed",
                extra_data={**log_data, "error_code": e.error_code.value, "error": e.message},
            )
            return CommandResult(name=command.name, ok=False, error=e.message)
        except httpx.HTTPError as e:
            logger.warning("Command HTTP error", extra_data={**log_data, "error": str(e)})
            return CommandResult(name=command.name, ok=False, error="collaborator unavailable")
        except SQLAlchemyError as e:
            logger.error("Command database error", extra_data={**log_data, "error": str(e)}, exc_info=True)
            return CommandResult(name=command.name, ok=False, error="database error")
        except Exception as e:
            # a handler bug must not leave the session parked in a processing state
            logger.error("Command raised unexpectedly", extra_data={**log_data, "error": str(e)}, exc_info=True)
            return CommandResult(name=command.name, ok=False, error="unexpected error")

        logger.info("Command completed", extra_data=log_data)
        return CommandResult(name=command.name, ok=True, data=data)

    async def _in_session(self, handler: Handler, command: Command) -> dict[str, Any]:
        async with self.session_factory() as db:
            data = await handler(db, command)
            await db.commit()
            return data

    # ==================== Handlers ====================

    async def _generate_qr(self, db: AsyncSession, command: Command) -> dict[str, Any]:
        image_url = await self.qr_service.render(command.params["tel_link"])
        return {"image_url": image_url}

    async def _find_nearby(self, db: AsyncSession, command: Command) -> dict[str, Any]:
        params = command.params
        drivers = await RideService(db).find_nearby(
            vehicle_type=params["vehicle_type"],
            latitude=params.get("latitude"),
            longitude=params.get("longitude"),
        )
        return {"drivers": drivers}

    async def _create_booking(self, db: AsyncSession, command: Command) -> dict[str, Any]:
        params = command.params
        return await RideService(db).create_booking(
            passenger_id=command.user_id,
            driver_id=params["driver_id"],
            vehicle_type=params["vehicle_type"],
            pickup_text=params.get("pickup_text"),
            latitude=params.get("latitude"),
            longitude=params.get("longitude"),
        )

    async def _schedule_trip(self, db: AsyncSession, command: Command) -> dict[str, Any]:
        params = command.params
        return await RideService(db).schedule_trip(
            user_id=command.user_id,
            role=params["role"],
            pickup=params.get("pickup"),
            dropoff=params.get("dropoff"),
            travel_time=params.get("travel_time"),
            route=params.get("route"),
            time_window=params.get("time_window"),
        )

    async def _extract_document(self, db: AsyncSession, command: Command) -> dict[str, Any]:
        params = command.params
        fields = await self.ocr_service.extract_vehicle(params["media_id"], params.get("mime_type"))
        vehicle = await VehicleService(db).register(
            owner_id=command.user_id,
            usage_type=params["usage_type"],
            document_ref=params["media_id"],
            fields=fields,
        )
        return {
            "vehicle": {
                "id": vehicle.id,
                "plate": vehicle.plate,
                "make": vehicle.make,
                "model": vehicle.model,
                "model_year": vehicle.model_year,
            }
        }

    async def _check_vehicles(self, db: AsyncSession, command: Command) -> dict[str, Any]:
        vehicles = await VehicleService(db).list_for_owner(command.user_id)
        return {
            "vehicles": [
                {"id": v.id, "plate": v.plate, "label": _vehicle_label(v)}
                for v in vehicles
            ]
        }

    async def _create_quote(self, db: AsyncSession, command: Command) -> dict[str, Any]:
        params = command.params
        quote = await InsuranceService(db).create_quote(
            user_id=command.user_id,
            start_date=params["start_date"],
            period=params["period"],
            vehicle_id=params.get("vehicle_id"),
            document_ref=params.get("document_ref"),
            addons=params.get("addons"),
            pa_category=params.get("pa_category"),
        )
        return {"quote_id": quote.id}

    async def _select_payment_plan(self, db: AsyncSession, command: Command) -> dict[str, Any]:
        params = command.params
        return await InsuranceService(db).set_payment_plan(
            quote_id=params["quote_id"],
            user_id=command.user_id,
            plan=params["plan"],
        )
