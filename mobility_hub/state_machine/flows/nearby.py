"""
Nearby Drivers Flow

ND_VEHICLE_TYPE -> ND_LOCATION -> ND_SEARCHING -> ND_DRIVER_LIST -> ND_BOOKING -> MAIN_MENU
"""
from typing import Optional

from mobility_hub.core.validation import TextSanitizer
from mobility_hub.state_machine.context import DriverOption, MainContext, NearbyContext
from mobility_hub.state_machine.events import (
    Command,
    CommandName,
    CommandResult,
    EventKind,
    InboundEvent,
    OutboundAction,
    Transition,
)
from mobility_hub.state_machine.flows.base import BaseFlow
from mobility_hub.state_machine.states import ConversationState as S

VEHICLE_TYPES = {
    "ND_V_MOTO": ("moto", "Moto"),
    "ND_V_CAB": ("cab", "Cab"),
    "ND_V_LIFFAN": ("liffan", "Liffan"),
    "ND_V_TRUCK": ("truck", "Truck"),
    "ND_V_RENTAL": ("rental", "Rental car"),
}

MIN_LOCATION_CHARS = 3


def maps_link(latitude: float, longitude: float) -> str:
    return f"https://maps.google.com/?q={latitude},{longitude}"


class NearbyFlow(BaseFlow):
    name = "nearby"
    context_model = NearbyContext
    entry_state = S.ND_VEHICLE_TYPE

    def _get_handlers(self):
        return {
            S.ND_VEHICLE_TYPE: self._handle_vehicle_type,
            S.ND_LOCATION: self._handle_location,
            S.ND_DRIVER_LIST: self._handle_driver_list,
        }

    def _get_prompts(self):
        return {
            S.ND_VEHICLE_TYPE: lambda ctx, to: OutboundAction.with_list(
                to,
                "What kind of vehicle do you need?",
                [(row_id, label, None) for row_id, (_, label) in VEHICLE_TYPES.items()],
                list_button="Vehicle type",
            ),
            S.ND_LOCATION: lambda ctx, to: OutboundAction.text(
                to,
                "Share your location (attach > Location) or type your pickup area.",
            ),
            S.ND_SEARCHING: self._wait("Looking for drivers near you..."),
            S.ND_DRIVER_LIST: self._prompt_driver_list,
            S.ND_BOOKING: self._wait("Booking your driver..."),
        }

    def _get_result_handlers(self):
        return {
            (S.ND_SEARCHING, CommandName.FIND_NEARBY): self._on_found,
            (S.ND_BOOKING, CommandName.CREATE_BOOKING): self._on_booked,
        }

    def _prompt_driver_list(self, ctx: NearbyContext, to: str) -> OutboundAction:
        rows = []
        for driver in ctx.drivers:
            description = f"{driver.distance_km:.1f} km away" if driver.distance_km is not None else None
            rows.append((f"ND_DRIVER:{driver.id}", driver.name, description))
        return OutboundAction.with_list(
            to,
            f"{len(ctx.drivers)} driver(s) available. Pick one to book:",
            rows,
            list_button="Drivers",
        )

    # ==================== Handlers ====================

    def _handle_vehicle_type(self, ctx: NearbyContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice not in VEHICLE_TYPES:
            return None
        vehicle_type, _ = VEHICLE_TYPES[event.choice]
        return self._goto(S.ND_LOCATION, ctx.evolve(vehicle_type=vehicle_type), event.sender)

    def _handle_location(self, ctx: NearbyContext, event: InboundEvent) -> Optional[Transition]:
        if event.kind == EventKind.LOCATION:
            ctx = ctx.evolve(latitude=event.latitude, longitude=event.longitude, location_text=None)
        elif event.clean_text is not None:
            text = TextSanitizer.sanitize(event.clean_text, max_length=200)
            if len(text) < MIN_LOCATION_CHARS:
                return self._reprompt(
                    S.ND_LOCATION, ctx, event.sender, "Please type at least 3 characters."
                )
            ctx = ctx.evolve(location_text=text, latitude=None, longitude=None)
        else:
            return None

        return self._goto(
            S.ND_SEARCHING,
            ctx,
            event.sender,
            command=Command(
                name=CommandName.FIND_NEARBY,
                user_id=event.sender,
                params={
                    "vehicle_type": ctx.vehicle_type,
                    "latitude": ctx.latitude,
                    "longitude": ctx.longitude,
                    "location_text": ctx.location_text,
                },
            ),
        )

    def _handle_driver_list(self, ctx: NearbyContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice != "ND_DRIVER" or not event.secondary_id:
            return None
        driver = next((d for d in ctx.drivers if str(d.id) == event.secondary_id), None)
        if driver is None:
            return None

        return self._goto(
            S.ND_BOOKING,
            ctx,
            event.sender,
            command=Command(
                name=CommandName.CREATE_BOOKING,
                user_id=event.sender,
                params={
                    "driver_id": driver.id,
                    "vehicle_type": ctx.vehicle_type,
                    "pickup_text": ctx.location_text,
                    "latitude": ctx.latitude,
                    "longitude": ctx.longitude,
                },
            ),
        )

    # ==================== Command results ====================

    def _on_found(self, ctx: NearbyContext, result: CommandResult, user_id: str) -> Transition:
        if not result.ok:
            return self._goto(
                S.ND_LOCATION, ctx, user_id, prefix="We could not search right now. Please try again."
            )

        drivers = tuple(DriverOption.model_validate(d) for d in result.data.get("drivers", []))
        if not drivers:
            return self._goto(
                S.ND_LOCATION,
                ctx,
                user_id,
                prefix="No drivers are available near that location. Try another location.",
            )
        return self._goto(S.ND_DRIVER_LIST, ctx.evolve(drivers=drivers), user_id)

    def _on_booked(self, ctx: NearbyContext, result: CommandResult, user_id: str) -> Transition:
        if not result.ok:
            return self._goto(
                S.ND_DRIVER_LIST,
                ctx,
                user_id,
                prefix="That driver could not be booked. Please pick another one or try again.",
            )

        data = result.data
        if ctx.latitude is not None and ctx.longitude is not None:
            pickup = maps_link(ctx.latitude, ctx.longitude)
        else:
            pickup = ctx.location_text or "-"

        confirmation = OutboundAction.text(
            user_id,
            f"Your ride #{data['ride_id']} is booked with {data['driver_name']}.\n"
            f"The driver will contact you shortly.",
        )
        driver_notice = OutboundAction.text(
            data["driver_phone"],
            f"New ride request #{data['ride_id']}.\n"
            f"Passenger: +{user_id}\n"
            f"Pickup: {pickup}",
        )
        return Transition(
            state=S.MAIN_MENU,
            context=MainContext(),
            actions=(confirmation, driver_notice),
        )
