"""
Vehicle Model - registered from an OCR'd logbook or insurance certificate
"""
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String

from mobility_hub.db.database import Base


class Vehicle(Base):
    """Vehicle owned by a chat user; unverified until a backoffice review"""

    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String(32), nullable=False, index=True)
    usage_type = Column(String(30), nullable=False)

    plate = Column(String(20), nullable=False, index=True)
    make = Column(String(60), nullable=True)
    model = Column(String(60), nullable=True)
    model_year = Column(Integer, nullable=True)
    vin = Column(String(40), nullable=True)
    insurance_provider = Column(String(100), nullable=True)
    insurance_policy = Column(String(60), nullable=True)
    insurance_expiry = Column(String(20), nullable=True)  # as printed on the document

    document_ref = Column(String(200), nullable=False)  # WhatsApp media id
    extra = Column(JSON, default=dict)

    verified = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
