"""
Conversation States

Every state belongs to exactly one flow. MAIN_MENU is owned by the dispatcher
itself; the rest are grouped per flow below.
"""
from enum import Enum


class ConversationState(str, Enum):
    """Closed set of states a chat session can be in"""

    MAIN_MENU = "MAIN_MENU"

    # MoMo payment QR
    QR_ENTRY = "QR.ENTRY"
    QR_MOMO_SETUP = "QR.MOMO_SETUP"
    QR_AMOUNT = "QR.AMOUNT"
    QR_AMOUNT_CUSTOM = "QR.AMOUNT_CUSTOM"
    QR_GENERATING = "QR.GENERATING"
    QR_DONE = "QR.DONE"

    # Nearby drivers
    ND_VEHICLE_TYPE = "NEARBY.VEHICLE_TYPE"
    ND_LOCATION = "NEARBY.LOCATION"
    ND_SEARCHING = "NEARBY.SEARCHING"
    ND_DRIVER_LIST = "NEARBY.DRIVER_LIST"
    ND_BOOKING = "NEARBY.BOOKING"

    # Scheduled trips
    ST_ROLE = "TRIP.ROLE"
    ST_PICKUP = "TRIP.PICKUP"
    ST_DROPOFF = "TRIP.DROPOFF"
    ST_TIME = "TRIP.TIME"
    ST_ROUTE = "TRIP.ROUTE"
    ST_WINDOW = "TRIP.WINDOW"
    ST_CONFIRM = "TRIP.CONFIRM"
    ST_SAVING = "TRIP.SAVING"

    # Vehicle registration
    AV_USAGE = "VEHICLE.USAGE"
    AV_DOCUMENT = "VEHICLE.DOCUMENT"
    AV_PROCESSING = "VEHICLE.PROCESSING"
    AV_SUCCESS = "VEHICLE.SUCCESS"

    # Motor insurance
    INS_VEHICLE_CHECK = "INSURANCE.VEHICLE_CHECK"
    INS_START_DATE = "INSURANCE.START_DATE"
    INS_PERIOD = "INSURANCE.PERIOD"
    INS_ADDONS = "INSURANCE.ADDONS"
    INS_PA_CATEGORY = "INSURANCE.PA_CATEGORY"
    INS_SUMMARY = "INSURANCE.SUMMARY"
    INS_QUOTATION_PENDING = "INSURANCE.QUOTATION_PENDING"
    INS_QUOTATION_RECEIVED = "INSURANCE.QUOTATION_RECEIVED"
    INS_PAYMENT_PLAN = "INSURANCE.PAYMENT_PLAN"
    INS_PAYMENT_PENDING = "INSURANCE.PAYMENT_PENDING"
    INS_CERTIFICATE_PENDING = "INSURANCE.CERTIFICATE_PENDING"
    INS_CERTIFICATE_ISSUED = "INSURANCE.CERTIFICATE_ISSUED"


# Waiting on the backoffice; only the global escape moves the user out.
EXTERNAL_PENDING_STATES = frozenset({
    ConversationState.INS_QUOTATION_PENDING,
    ConversationState.INS_PAYMENT_PENDING,
    ConversationState.INS_CERTIFICATE_PENDING,
})

# Only a command result moves these; if the follow-up never ran they are stuck.
COMMAND_WAIT_STATES = frozenset({
    ConversationState.QR_GENERATING,
    ConversationState.ND_SEARCHING,
    ConversationState.ND_BOOKING,
    ConversationState.ST_SAVING,
    ConversationState.AV_PROCESSING,
})


def parse_state(value: str | None) -> ConversationState | None:
    """Stored string -> ConversationState, None for values no longer defined"""
    try:
        return ConversationState(value)
    except ValueError:
        return None
