"""
Database Models
"""
from mobility_hub.db.models.chat_session import ChatSession
from mobility_hub.db.models.dedup_record import DedupRecord
from mobility_hub.db.models.driver import Driver, DriverStatus
from mobility_hub.db.models.insurance import InsuranceQuote, Payment, QuoteStatus
from mobility_hub.db.models.outbox_message import MessageStatus, OutboxMessage
from mobility_hub.db.models.ride import Ride, RideStatus, ScheduledTrip, TripRole
from mobility_hub.db.models.vehicle import Vehicle

__all__ = [
    "ChatSession",
    "DedupRecord",
    "Driver",
    "DriverStatus",
    "InsuranceQuote",
    "Payment",
    "QuoteStatus",
    "MessageStatus",
    "OutboxMessage",
    "Ride",
    "RideStatus",
    "ScheduledTrip",
    "TripRole",
    "Vehicle",
]
