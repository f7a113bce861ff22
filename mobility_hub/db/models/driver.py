"""
Driver Model - transport providers that can be found and booked
"""
import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Float, Integer, String

from mobility_hub.db.database import Base


class DriverStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Driver(Base):
    """Provider record; only ACTIVE drivers show up in nearby searches"""

    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True)
    phone = Column(String(32), nullable=False, unique=True)  # WhatsApp id
    name = Column(String(100), nullable=True)
    vehicle_type = Column(String(20), nullable=False, default="moto")
    status = Column(SQLEnum(DriverStatus), default=DriverStatus.PENDING, nullable=False, index=True)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    last_seen_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    activated_at = Column(DateTime, nullable=True)
