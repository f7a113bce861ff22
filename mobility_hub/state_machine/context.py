"""
Flow Contexts

Each flow keeps its working data in its own immutable model. The stored JSON
carries a ``flow`` tag so a session can never be read with another flow's
keys.
"""
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from mobility_hub.core.logging import get_logger

logger = get_logger(__name__)


class BaseContext(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    def evolve(self, **changes) -> "BaseContext":
        """Copy with changes applied, re-validated"""
        return type(self).model_validate({**self.model_dump(), **changes})


class MainContext(BaseContext):
    flow: Literal["main"] = "main"


class QRContext(BaseContext):
    flow: Literal["qr"] = "qr"
    id_type: Optional[Literal["phone", "code"]] = None
    identifier: Optional[str] = None
    amount: Optional[int] = None
    ussd: Optional[str] = None
    tel_link: Optional[str] = None


class DriverOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    distance_km: Optional[float] = None


class NearbyContext(BaseContext):
    flow: Literal["nearby"] = "nearby"
    vehicle_type: Optional[str] = None
    location_text: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    drivers: tuple[DriverOption, ...] = ()


class TripContext(BaseContext):
    flow: Literal["trips"] = "trips"
    role: Optional[Literal["passenger", "driver"]] = None
    pickup: Optional[str] = None
    dropoff: Optional[str] = None
    travel_time: Optional[str] = None
    route: Optional[str] = None
    time_window: Optional[str] = None


class RegistrationContext(BaseContext):
    flow: Literal["registration"] = "registration"
    usage_type: Optional[str] = None
    document_ref: Optional[str] = None
    vehicle_id: Optional[int] = None
    plate: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None


class VehicleOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    plate: str
    label: Optional[str] = None


class InsuranceContext(BaseContext):
    flow: Literal["insurance"] = "insurance"
    checked: bool = False  # vehicle lookup came back
    vehicles: tuple[VehicleOption, ...] = ()
    vehicle_id: Optional[int] = None
    document_ref: Optional[str] = None
    start_date: Optional[str] = None  # ISO date
    period: Optional[str] = None
    addons: tuple[str, ...] = ()
    pa_category: Optional[str] = None
    quote_id: Optional[int] = None
    amount: Optional[int] = None
    payment_plan: Optional[str] = None
    amount_due: Optional[int] = None
    pay_ussd: Optional[str] = None


FlowContext = Annotated[
    Union[MainContext, QRContext, NearbyContext, TripContext, RegistrationContext, InsuranceContext],
    Field(discriminator="flow"),
]

_adapter = TypeAdapter(FlowContext)


def load_context(raw: dict | None) -> FlowContext:
    """
    Stored JSON -> typed context.

    Empty or unreadable data yields MainContext; the dispatcher then sees a
    tag that does not match the state's flow and resets the session.
    """
    if not raw:
        return MainContext()
    try:
        return _adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning(
            "Unreadable session context, falling back to main",
            extra_data={"flow": raw.get("flow"), "errors": e.error_count()}
        )
        return MainContext()


def dump_context(context: FlowContext) -> dict:
    if isinstance(context, MainContext):
        return {}
    return context.model_dump(mode="json")
