"""
Ride Service - driver directory, on-demand bookings and scheduled trips
"""
import math
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mobility_hub.core.config import settings
from mobility_hub.core.exceptions import ErrorCode, NotFoundException, ValidationException
from mobility_hub.core.logging import get_logger
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.db.models.driver import Driver, DriverStatus
from mobility_hub.db.models.ride import Ride, RideStatus, ScheduledTrip, TripRole

logger = get_logger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points"""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


class RideService:
    """Service for driver lookup and ride records"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_nearby(
        self,
        vehicle_type: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_km: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """
        Active drivers of ``vehicle_type``.

        With coordinates: drivers within radius_km that have a known
        position, nearest first. Without (free-text pickup): the most
        recently seen drivers.
        """
        radius_km = radius_km if radius_km is not None else settings.NEARBY_RADIUS_KM
        limit = limit or settings.NEARBY_MAX_RESULTS

        query = select(Driver).where(
            Driver.status == DriverStatus.ACTIVE,
            Driver.vehicle_type == vehicle_type,
        )

        if latitude is None or longitude is None:
            result = await self.db.execute(
                query.order_by(Driver.last_seen_at.desc().nulls_last(), Driver.id).limit(limit)
            )
            return [self._driver_option(d, None) for d in result.scalars().all()]

        result = await self.db.execute(
            query.where(Driver.latitude.is_not(None), Driver.longitude.is_not(None))
        )
        candidates = []
        for driver in result.scalars().all():
            distance = haversine_km(latitude, longitude, driver.latitude, driver.longitude)
            if distance <= radius_km:
                candidates.append((distance, driver.id, driver))
        candidates.sort(key=lambda item: (item[0], item[1]))
        return [self._driver_option(driver, distance) for distance, _, driver in candidates[:limit]]

    @staticmethod
    def _driver_option(driver: Driver, distance: Optional[float]) -> dict:
        return {
            "id": driver.id,
            "name": driver.name or f"Driver {driver.id}",
            "distance_km": round(distance, 2) if distance is not None else None,
        }

    async def create_booking(
        self,
        passenger_id: str,
        driver_id: int,
        vehicle_type: str,
        pickup_text: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> dict:
        """Create a Ride for an active driver; caller commits"""
        driver = await self.db.get(Driver, driver_id)
        if driver is None or driver.status != DriverStatus.ACTIVE:
            raise NotFoundException("Driver", driver_id, ErrorCode.PROVIDER_NOT_FOUND)

        ride = Ride(
            passenger_id=passenger_id,
            driver_id=driver.id,
            vehicle_type=vehicle_type,
            pickup_text=pickup_text,
            pickup_latitude=latitude,
            pickup_longitude=longitude,
            status=RideStatus.REQUESTED,
        )
        self.db.add(ride)
        await self.db.flush()

        logger.info(
            "Ride booked",
            extra_data={
                "ride_id": ride.id,
                "driver_id": driver.id,
                "passenger": PhoneNumberValidator.mask(passenger_id),
            },
        )
        return {
            "ride_id": ride.id,
            "driver_name": driver.name or f"Driver {driver.id}",
            "driver_phone": driver.phone,
        }

    async def schedule_trip(
        self,
        user_id: str,
        role: str,
        pickup: Optional[str] = None,
        dropoff: Optional[str] = None,
        travel_time: Optional[str] = None,
        route: Optional[str] = None,
        time_window: Optional[str] = None,
    ) -> dict:
        """
        Persist a ScheduledTrip. A driver offering a route is also registered
        as a pending provider when not known yet. Caller commits.
        """
        try:
            trip_role = TripRole(role)
        except ValueError:
            raise ValidationException(f"Unknown trip role: {role}", field="role")

        trip = ScheduledTrip(
            user_id=user_id,
            role=trip_role,
            pickup=pickup,
            dropoff=dropoff,
            travel_time=travel_time,
            route=route,
            time_window=time_window,
        )
        self.db.add(trip)

        driver_registered = False
        if trip_role == TripRole.DRIVER:
            result = await self.db.execute(select(Driver).where(Driver.phone == user_id))
            if result.scalar_one_or_none() is None:
                self.db.add(Driver(phone=user_id, status=DriverStatus.PENDING))
                driver_registered = True

        await self.db.flush()
        return {"trip_id": trip.id, "driver_registered": driver_registered}

    async def activate_provider(self, provider_id: int) -> Driver:
        """Backoffice approval of a driver; caller commits"""
        driver = await self.db.get(Driver, provider_id)
        if driver is None:
            raise NotFoundException("Provider", provider_id, ErrorCode.PROVIDER_NOT_FOUND)

        driver.status = DriverStatus.ACTIVE
        driver.activated_at = datetime.utcnow()
        await self.db.flush()
        return driver
