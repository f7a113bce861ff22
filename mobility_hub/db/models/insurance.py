"""
Insurance Models - quote requests and the payments recorded against them
"""
import enum
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Enum as SQLEnum, ForeignKey, Integer, JSON, String

from mobility_hub.db.database import Base


class QuoteStatus(str, enum.Enum):
    REQUESTED = "requested"        # created from the chat summary
    PRICED = "priced"              # backoffice attached the quote document
    PLAN_SELECTED = "plan_selected"
    PAID = "paid"
    ISSUED = "issued"              # certificate sent


class InsuranceQuote(Base):
    """Motor insurance quote request and its backoffice lifecycle"""

    __tablename__ = "insurance_quotes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(32), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)
    document_ref = Column(String(200), nullable=True)  # logbook photo when no vehicle on file

    start_date = Column(Date, nullable=False)
    period = Column(String(20), nullable=False)
    addons = Column(JSON, default=list)
    pa_category = Column(String(20), nullable=True)

    status = Column(SQLEnum(QuoteStatus), default=QuoteStatus.REQUESTED, nullable=False, index=True)
    amount = Column(Integer, nullable=True)  # RWF
    quote_document_ref = Column(String(500), nullable=True)
    payment_plan = Column(String(20), nullable=True)
    certificate_ref = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Payment(Base):
    """Settled premium payment; provider_reference makes recording idempotent"""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    quote_id = Column(Integer, ForeignKey("insurance_quotes.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    payer_identity = Column(String(100), nullable=False)
    provider_reference = Column(String(100), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)
