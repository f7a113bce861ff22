"""
Scheduled Trip Flow

Passenger: ST_ROLE -> ST_PICKUP -> ST_DROPOFF -> ST_TIME -> ST_CONFIRM -> ST_SAVING
Driver:    ST_ROLE -> ST_ROUTE -> ST_WINDOW -> ST_CONFIRM -> ST_SAVING
"""
import re
from datetime import datetime
from typing import Optional

from mobility_hub.core.validation import TextSanitizer
from mobility_hub.state_machine.context import MainContext, TripContext
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

_WINDOW_RE = re.compile(r"^(\d{1,2}:\d{2})\s*-\s*(\d{1,2}:\d{2})$")


def parse_travel_time(text: str) -> Optional[str]:
    """HH:MM or YYYY-MM-DD HH:MM, normalized; None when neither"""
    for fmt in ("%H:%M", "%Y-%m-%d %H:%M"):
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return parsed.strftime(fmt)
    return None


def parse_time_window(text: str) -> tuple[Optional[str], Optional[str]]:
    """'06:00-09:30' -> ('06:00-09:30', None), or (None, error)"""
    match = _WINDOW_RE.match(text.replace(" ", ""))
    if not match:
        return None, "Please use the format HH:MM-HH:MM, e.g. 06:00-09:00."
    try:
        start = datetime.strptime(match.group(1), "%H:%M")
        end = datetime.strptime(match.group(2), "%H:%M")
    except ValueError:
        return None, "Please use real times, e.g. 06:00-09:00."
    if start >= end:
        return None, "The start time must be before the end time."
    return f"{start:%H:%M}-{end:%H:%M}", None


def _place(event: InboundEvent) -> Optional[str]:
    """Text (3+ chars) or a shared location, as a single string"""
    if event.kind == EventKind.LOCATION:
        return f"{event.latitude:.5f},{event.longitude:.5f}"
    text = event.clean_text
    if text is None:
        return None
    return TextSanitizer.sanitize(text, max_length=200)


class TripsFlow(BaseFlow):
    name = "trips"
    context_model = TripContext
    entry_state = S.ST_ROLE

    def _get_handlers(self):
        return {
            S.ST_ROLE: self._handle_role,
            S.ST_PICKUP: self._handle_pickup,
            S.ST_DROPOFF: self._handle_dropoff,
            S.ST_TIME: self._handle_time,
            S.ST_ROUTE: self._handle_route,
            S.ST_WINDOW: self._handle_window,
            S.ST_CONFIRM: self._handle_confirm,
        }

    def _get_prompts(self):
        return {
            S.ST_ROLE: lambda ctx, to: OutboundAction.with_buttons(
                to,
                "Schedule a trip. Are you travelling or driving?",
                [("ST_PASSENGER", "I need a ride"), ("ST_DRIVER", "I am a driver")],
            ),
            S.ST_PICKUP: lambda ctx, to: OutboundAction.text(
                to, "Where should we pick you up? Type the place or share a location."
            ),
            S.ST_DROPOFF: lambda ctx, to: OutboundAction.text(
                to, "Where are you going? Type the place or share a location."
            ),
            S.ST_TIME: lambda ctx, to: OutboundAction.text(
                to, "When? Type HH:MM for today or YYYY-MM-DD HH:MM."
            ),
            S.ST_ROUTE: lambda ctx, to: OutboundAction.text(
                to, "Which route do you drive? e.g. Nyabugogo - Kimironko"
            ),
            S.ST_WINDOW: lambda ctx, to: OutboundAction.text(
                to, "When are you available? Type HH:MM-HH:MM, e.g. 06:00-09:00."
            ),
            S.ST_CONFIRM: self._prompt_confirm,
            S.ST_SAVING: self._wait("Saving your trip..."),
        }

    def _get_result_handlers(self):
        return {
            (S.ST_SAVING, CommandName.SCHEDULE_TRIP): self._on_saved,
        }

    def _prompt_confirm(self, ctx: TripContext, to: str) -> OutboundAction:
        if ctx.role == "driver":
            summary = f"Route: {ctx.route}\nAvailable: {ctx.time_window}"
        else:
            summary = f"From: {ctx.pickup}\nTo: {ctx.dropoff}\nTime: {ctx.travel_time}"
        return OutboundAction.with_buttons(
            to,
            f"Please confirm your trip:\n{summary}",
            [("ST_CONFIRM", "Confirm"), ("CANCEL", "Cancel")],
        )

    # ==================== Handlers ====================

    def _handle_role(self, ctx: TripContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice == "ST_PASSENGER":
            return self._goto(S.ST_PICKUP, ctx.evolve(role="passenger"), event.sender)
        if event.choice == "ST_DRIVER":
            return self._goto(S.ST_ROUTE, ctx.evolve(role="driver"), event.sender)
        return None

    def _handle_pickup(self, ctx: TripContext, event: InboundEvent) -> Optional[Transition]:
        place = _place(event)
        if place is None:
            return None
        if len(place) < 3:
            return self._reprompt(S.ST_PICKUP, ctx, event.sender, "Please type at least 3 characters.")
        return self._goto(S.ST_DROPOFF, ctx.evolve(pickup=place), event.sender)

    def _handle_dropoff(self, ctx: TripContext, event: InboundEvent) -> Optional[Transition]:
        place = _place(event)
        if place is None:
            return None
        if len(place) < 3:
            return self._reprompt(S.ST_DROPOFF, ctx, event.sender, "Please type at least 3 characters.")
        return self._goto(S.ST_TIME, ctx.evolve(dropoff=place), event.sender)

    def _handle_time(self, ctx: TripContext, event: InboundEvent) -> Optional[Transition]:
        if event.clean_text is None:
            return None
        travel_time = parse_travel_time(event.clean_text)
        if travel_time is None:
            return self._reprompt(S.ST_TIME, ctx, event.sender, "That time was not understood.")
        return self._goto(S.ST_CONFIRM, ctx.evolve(travel_time=travel_time), event.sender)

    def _handle_route(self, ctx: TripContext, event: InboundEvent) -> Optional[Transition]:
        if event.clean_text is None:
            return None
        route = TextSanitizer.sanitize(event.clean_text, max_length=200)
        if len(route) < 3:
            return self._reprompt(S.ST_ROUTE, ctx, event.sender, "Please describe the route.")
        return self._goto(S.ST_WINDOW, ctx.evolve(route=route), event.sender)

    def _handle_window(self, ctx: TripContext, event: InboundEvent) -> Optional[Transition]:
        if event.clean_text is None:
            return None
        window, error = parse_time_window(event.clean_text)
        if error:
            return self._reprompt(S.ST_WINDOW, ctx, event.sender, error)
        return self._goto(S.ST_CONFIRM, ctx.evolve(time_window=window), event.sender)

    def _handle_confirm(self, ctx: TripContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice != "ST_CONFIRM":
            return None
        return self._goto(
            S.ST_SAVING,
            ctx,
            event.sender,
            command=Command(
                name=CommandName.SCHEDULE_TRIP,
                user_id=event.sender,
                params=ctx.model_dump(exclude={"flow"}),
            ),
        )

    # ==================== Command results ====================

    def _on_saved(self, ctx: TripContext, result: CommandResult, user_id: str) -> Transition:
        if not result.ok:
            return self._goto(
                S.ST_CONFIRM, ctx, user_id, prefix="We could not save your trip. Please try again."
            )

        body = f"Your trip #{result.data['trip_id']} is scheduled."
        if result.data.get("driver_registered"):
            body += "\nYour driver profile was created and is waiting for approval."
        return Transition(
            state=S.MAIN_MENU,
            context=MainContext(),
            actions=(OutboundAction.text(user_id, body),),
        )
