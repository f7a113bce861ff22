"""
Ride Models - on-demand bookings and scheduled trips
"""
import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Float, ForeignKey, Integer, String

from mobility_hub.db.database import Base


class RideStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TripRole(str, enum.Enum):
    PASSENGER = "passenger"
    DRIVER = "driver"


class Ride(Base):
    """Booking of a nearby driver"""

    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, index=True)
    passenger_id = Column(String(32), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False, index=True)
    vehicle_type = Column(String(20), nullable=False)

    pickup_text = Column(String(500), nullable=True)
    pickup_latitude = Column(Float, nullable=True)
    pickup_longitude = Column(Float, nullable=True)

    status = Column(SQLEnum(RideStatus), default=RideStatus.REQUESTED, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class ScheduledTrip(Base):
    """A future trip request (passenger) or an offered route (driver)"""

    __tablename__ = "scheduled_trips"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(32), nullable=False, index=True)
    role = Column(SQLEnum(TripRole), nullable=False)

    # passenger
    pickup = Column(String(500), nullable=True)
    dropoff = Column(String(500), nullable=True)
    travel_time = Column(String(20), nullable=True)

    # driver
    route = Column(String(500), nullable=True)
    time_window = Column(String(20), nullable=True)

    status = Column(String(20), default="open", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
