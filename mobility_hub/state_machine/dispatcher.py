"""
State Dispatcher

Pure transition function: (state, context, input) -> Transition. No I/O,
no clock; the only time it knows is the inbound event's timestamp.
"""
from typing import Optional

from mobility_hub.core.exceptions import ContextMismatchError
from mobility_hub.core.logging import get_logger
from mobility_hub.core.validation import PhoneNumberValidator
from mobility_hub.state_machine.context import BaseContext, MainContext
from mobility_hub.state_machine.events import (
    CommandResult,
    EventKind,
    InboundEvent,
    Milestone,
    MilestoneEvent,
    OutboundAction,
    Transition,
)
from mobility_hub.state_machine.flows import (
    BaseFlow,
    InsuranceFlow,
    NearbyFlow,
    QRFlow,
    RegistrationFlow,
    TripsFlow,
)
from mobility_hub.state_machine.menu import MENU_ENTRIES, main_menu_prompt
from mobility_hub.state_machine.states import ConversationState

logger = get_logger(__name__)

ESCAPE_ACTIONS = frozenset({"CANCEL", "MENU", "HOME"})
ESCAPE_WORDS = frozenset({"cancel", "menu", "home"})

UNHANDLED_HELP = "Sorry, I can only read text, buttons, photos, documents and locations."

_MENU_FLOWS = {
    "QR": QRFlow,
    "ND": NearbyFlow,
    "ST": TripsFlow,
    "AV": RegistrationFlow,
    "INSURANCE": InsuranceFlow,
}


def is_global_escape(event: InboundEvent) -> bool:
    if event.choice and event.choice.upper() in ESCAPE_ACTIONS:
        return True
    text = event.clean_text
    return text is not None and text.lower() in ESCAPE_WORDS


def milestone_notice(milestone: MilestoneEvent) -> OutboundAction:
    """User-facing notification that always accompanies a milestone"""
    data = milestone.data
    to = milestone.user_id

    if milestone.milestone == Milestone.QUOTE_ATTACHED:
        return OutboundAction.document(
            to,
            attachment_ref=data["document_ref"],
            filename=f"quotation-Q{data['quote_id']}.pdf",
            caption=f"Your insurance quotation Q{data['quote_id']}: {data['amount']:,} RWF",
        )
    if milestone.milestone == Milestone.CERTIFICATE_ISSUED:
        return OutboundAction.document(
            to,
            attachment_ref=data["certificate_ref"],
            filename=f"certificate-Q{data['quote_id']}.pdf",
            caption="Your insurance certificate",
        )
    if milestone.milestone == Milestone.PAYMENT_RECORDED:
        return OutboundAction.text(
            to, f"We received your payment of {data['amount']:,} RWF for quotation Q{data['quote_id']}."
        )
    if milestone.milestone == Milestone.VEHICLE_VERIFIED:
        return OutboundAction.text(to, f"Your vehicle {data['plate']} has been verified.")
    return OutboundAction.text(
        to, "Your driver profile is now active. Passengers can find and book you."
    )


class StateDispatcher:
    """Routes inputs to the flow that owns the current state"""

    def __init__(self, flows: Optional[list[BaseFlow]] = None):
        if flows is None:
            flows = [flow_cls() for flow_cls in _MENU_FLOWS.values()]
        self._owners: dict[ConversationState, BaseFlow] = {}
        for flow in flows:
            for state in flow.states:
                if state in self._owners:
                    raise ValueError(f"State {state.value} is owned by two flows")
                self._owners[state] = flow

        by_type = {type(flow): flow for flow in flows}
        self._menu: dict[str, BaseFlow] = {}
        for row_id, shortcut, _, _ in MENU_ENTRIES:
            flow = by_type.get(_MENU_FLOWS[row_id])
            if flow is not None:
                self._menu[row_id] = flow
                self._menu[shortcut] = flow

    def owner(self, state: ConversationState) -> Optional[BaseFlow]:
        return self._owners.get(state)

    def prompt(self, state: ConversationState, context: BaseContext, to: str) -> OutboundAction:
        flow = self.owner(state)
        if flow is None or context.flow != flow.name:
            return main_menu_prompt(to)
        return flow.prompt(state, context, to)

    def _check_context(self, state: ConversationState, context: BaseContext) -> BaseFlow:
        flow = self._owners[state]
        if context.flow != flow.name:
            raise ContextMismatchError(state.value, flow.name, context.flow)
        return flow

    def _reset(self, to: str) -> Transition:
        return Transition(
            state=ConversationState.MAIN_MENU,
            context=MainContext(),
            actions=(main_menu_prompt(to),),
        )

    # ==================== User input ====================

    def dispatch(
        self,
        state: ConversationState,
        context: BaseContext,
        event: InboundEvent,
    ) -> Transition:
        to = event.sender

        if is_global_escape(event):
            return self._reset(to)

        if state == ConversationState.MAIN_MENU or state not in self._owners:
            return self._handle_main_menu(event)

        try:
            flow = self._check_context(state, context)
        except ContextMismatchError as e:
            logger.warning(
                "Session context does not match state, resetting",
                extra_data={**e.details, "user": PhoneNumberValidator.mask(to)}
            )
            return self._reset(to)

        if event.kind == EventKind.UNHANDLED:
            return Transition(
                state=state,
                context=context,
                actions=(flow.prompt(state, context, to).with_prefix(UNHANDLED_HELP),),
            )

        transition = flow.handle(state, context, event)
        if transition is None:
            return Transition(state=state, context=context, actions=(flow.prompt(state, context, to),))
        return transition

    def _handle_main_menu(self, event: InboundEvent) -> Transition:
        choice = event.choice or event.clean_text
        flow = self._menu.get(choice.upper()) if choice else None
        if flow is not None:
            return flow.start(event)

        prompt = main_menu_prompt(event.sender)
        if event.kind == EventKind.UNHANDLED:
            prompt = prompt.with_prefix(UNHANDLED_HELP)
        return Transition(state=ConversationState.MAIN_MENU, context=MainContext(), actions=(prompt,))

    # ==================== Command results ====================

    def resume(
        self,
        state: ConversationState,
        context: BaseContext,
        result: CommandResult,
        user_id: str,
    ) -> Optional[Transition]:
        """
        Feed a command result back in. None when the session no longer waits
        for it (the user cancelled or moved on meanwhile).
        """
        flow = self._owners.get(state)
        transition = None
        if flow is not None and context.flow == flow.name:
            transition = flow.on_result(state, context, result, user_id)

        if transition is None:
            logger.info(
                "Discarding command result for a session that moved on",
                extra_data={
                    "command": result.name.value,
                    "ok": result.ok,
                    "state": state.value,
                    "user": PhoneNumberValidator.mask(user_id),
                }
            )
        return transition

    # ==================== Backoffice milestones ====================

    def apply_milestone(
        self,
        state: ConversationState,
        context: BaseContext,
        milestone: MilestoneEvent,
    ) -> Transition:
        notice = milestone_notice(milestone)

        flow = self._owners.get(state)
        transition = None
        if flow is not None and context.flow == flow.name:
            transition = flow.on_milestone(state, context, milestone)

        if transition is None:
            return Transition(state=state, context=context, actions=(notice,))
        return Transition(
            state=transition.state,
            context=transition.context,
            actions=(notice, *transition.actions),
            command=transition.command,
        )


dispatcher = StateDispatcher()
