"""
Vehicle Registration Flow

AV_USAGE -> AV_DOCUMENT -> AV_PROCESSING -> AV_SUCCESS
"""
from typing import Optional

from mobility_hub.state_machine.context import RegistrationContext
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

USAGE_TYPES = {
    "AV_U_PRIVATE": ("private", "Private"),
    "AV_U_COMMERCIAL": ("commercial", "Commercial"),
    "AV_U_MOTO_TAXI": ("moto_taxi", "Moto taxi"),
    "AV_U_TAXI": ("taxi", "Taxi / cab"),
    "AV_U_GOODS": ("goods", "Goods transport"),
}


class RegistrationFlow(BaseFlow):
    name = "registration"
    context_model = RegistrationContext
    entry_state = S.AV_USAGE

    def _get_handlers(self):
        return {
            S.AV_USAGE: self._handle_usage,
            S.AV_DOCUMENT: self._handle_document,
            S.AV_SUCCESS: self._handle_success,
        }

    def _get_prompts(self):
        return {
            S.AV_USAGE: lambda ctx, to: OutboundAction.with_list(
                to,
                "Register a vehicle. How is it used?",
                [(row_id, label, None) for row_id, (_, label) in USAGE_TYPES.items()],
                list_button="Usage",
            ),
            S.AV_DOCUMENT: lambda ctx, to: OutboundAction.text(
                to,
                "Send a clear photo of the vehicle logbook (carte jaune) "
                "or of its insurance certificate.",
            ),
            S.AV_PROCESSING: self._wait("Reading your document, this takes a few seconds..."),
            S.AV_SUCCESS: self._prompt_success,
        }

    def _get_result_handlers(self):
        return {
            (S.AV_PROCESSING, CommandName.EXTRACT_DOCUMENT): self._on_extracted,
        }

    def _prompt_success(self, ctx: RegistrationContext, to: str) -> OutboundAction:
        lines = [f"Vehicle registered: {ctx.plate}"]
        description = " ".join(str(part) for part in (ctx.make, ctx.model, ctx.year) if part)
        if description:
            lines.append(description)
        lines.append("It will be verified by our team.")
        return OutboundAction.with_buttons(
            to,
            "\n".join(lines),
            [("AV_AGAIN", "Add another"), ("HOME", "Home")],
        )

    # ==================== Handlers ====================

    def _handle_usage(self, ctx: RegistrationContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice not in USAGE_TYPES:
            return None
        usage_type, _ = USAGE_TYPES[event.choice]
        return self._goto(S.AV_DOCUMENT, ctx.evolve(usage_type=usage_type), event.sender)

    def _handle_document(self, ctx: RegistrationContext, event: InboundEvent) -> Optional[Transition]:
        if event.kind not in (EventKind.IMAGE, EventKind.DOCUMENT) or not event.media_id:
            return None
        return self._goto(
            S.AV_PROCESSING,
            ctx.evolve(document_ref=event.media_id),
            event.sender,
            command=Command(
                name=CommandName.EXTRACT_DOCUMENT,
                user_id=event.sender,
                params={
                    "media_id": event.media_id,
                    "mime_type": event.mime_type,
                    "usage_type": ctx.usage_type,
                },
            ),
        )

    def _handle_success(self, ctx: RegistrationContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice == "AV_AGAIN":
            return self.start(event)
        return None

    # ==================== Command results ====================

    def _on_extracted(self, ctx: RegistrationContext, result: CommandResult, user_id: str) -> Transition:
        if not result.ok:
            return self._goto(
                S.AV_DOCUMENT,
                ctx.evolve(document_ref=None),
                user_id,
                prefix="We could not read that document. Please send a clearer photo.",
            )

        vehicle = result.data["vehicle"]
        ctx = ctx.evolve(
            vehicle_id=vehicle["id"],
            plate=vehicle["plate"],
            make=vehicle.get("make"),
            model=vehicle.get("model"),
            year=vehicle.get("model_year"),
        )
        return self._goto(S.AV_SUCCESS, ctx, user_id)
