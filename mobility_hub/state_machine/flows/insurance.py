"""
Motor Insurance Flow

INS_VEHICLE_CHECK -> INS_START_DATE -> INS_PERIOD -> INS_ADDONS (-> INS_PA_CATEGORY)
-> INS_SUMMARY -> INS_QUOTATION_PENDING -> INS_QUOTATION_RECEIVED -> INS_PAYMENT_PLAN
-> INS_PAYMENT_PENDING -> INS_CERTIFICATE_PENDING -> INS_CERTIFICATE_ISSUED

The three *_PENDING states wait on the backoffice; they only move when the
admin bridge delivers a milestone (or the user cancels).
"""
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from mobility_hub.state_machine.context import InsuranceContext, MainContext, VehicleOption
from mobility_hub.state_machine.events import (
    Command,
    CommandName,
    CommandResult,
    EventKind,
    InboundEvent,
    Milestone,
    MilestoneEvent,
    OutboundAction,
    Transition,
)
from mobility_hub.state_machine.flows.base import BaseFlow
from mobility_hub.state_machine.menu import main_menu_prompt
from mobility_hub.state_machine.states import ConversationState as S

KIGALI_TZ = ZoneInfo("Africa/Kigali")

# ==================== Catalogs ====================

PERIODS = {
    "PERIOD_1M": ("1m", "1 month"),
    "PERIOD_3M": ("3m", "3 months"),
    "PERIOD_6M": ("6m", "6 months"),
    "PERIOD_12M": ("12m", "12 months"),
}

ADDONS = {
    "ADDON_COMESA": ("comesa", "COMESA Yellow Card", "Cover across COMESA countries"),
    "ADDON_PA": ("pa", "Personal accident", "Driver and passengers"),
    "ADDON_GLASS": ("glass", "Windscreen cover", "Glass breakage"),
}
PA_ADDON = "pa"

PA_CATEGORIES = {
    "PA_CAT_I": ("I", "Category I", "1,000,000 RWF per seat"),
    "PA_CAT_II": ("II", "Category II", "2,000,000 RWF per seat"),
    "PA_CAT_III": ("III", "Category III", "5,000,000 RWF per seat"),
}

PAYMENT_PLANS = {
    "PLAN_FULL": ("full", "Pay in full", 1),
    "PLAN_2": ("2_instalments", "2 instalments", 2),
    "PLAN_3": ("3_instalments", "3 instalments", 3),
}


def instalments_for(plan: str) -> int:
    for code, _, instalments in PAYMENT_PLANS.values():
        if code == plan:
            return instalments
    raise ValueError(f"Unknown payment plan: {plan}")


def _label(catalog: dict, code: Optional[str]) -> str:
    for entry in catalog.values():
        if entry[0] == code:
            return entry[1]
    return code or "-"


def event_date(event: InboundEvent) -> date:
    """Calendar day of the event in Kigali"""
    return datetime.fromtimestamp(event.timestamp, tz=KIGALI_TZ).date()


class InsuranceFlow(BaseFlow):
    name = "insurance"
    context_model = InsuranceContext
    entry_state = S.INS_VEHICLE_CHECK

    def _get_handlers(self):
        return {
            S.INS_VEHICLE_CHECK: self._handle_vehicle_check,
            S.INS_START_DATE: self._handle_start_date,
            S.INS_PERIOD: self._handle_period,
            S.INS_ADDONS: self._handle_addons,
            S.INS_PA_CATEGORY: self._handle_pa_category,
            S.INS_SUMMARY: self._handle_summary,
            S.INS_QUOTATION_RECEIVED: self._handle_quotation_received,
            S.INS_PAYMENT_PLAN: self._handle_payment_plan,
            S.INS_CERTIFICATE_ISSUED: self._handle_certificate_issued,
        }

    def _get_prompts(self):
        return {
            S.INS_VEHICLE_CHECK: self._prompt_vehicle_check,
            S.INS_START_DATE: lambda ctx, to: OutboundAction.with_buttons(
                to,
                "When should the cover start?",
                [("START_TODAY", "Today"), ("START_PICK", "Pick a date")],
            ),
            S.INS_PERIOD: lambda ctx, to: OutboundAction.with_list(
                to,
                "For how long?",
                [(row_id, label, None) for row_id, (_, label) in PERIODS.items()],
                list_button="Period",
            ),
            S.INS_ADDONS: self._prompt_addons,
            S.INS_PA_CATEGORY: lambda ctx, to: OutboundAction.with_list(
                to,
                "Choose the personal accident category:",
                [(row_id, label, desc) for row_id, (_, label, desc) in PA_CATEGORIES.items()],
                list_button="Category",
            ),
            S.INS_SUMMARY: self._prompt_summary,
            S.INS_QUOTATION_PENDING: self._wait(
                "Our team is preparing your quotation. We will send it here as soon "
                "as it is ready. Reply MENU to leave."
            ),
            S.INS_QUOTATION_RECEIVED: self._prompt_quotation_received,
            S.INS_PAYMENT_PLAN: self._prompt_payment_plan,
            S.INS_PAYMENT_PENDING: self._prompt_payment_pending,
            S.INS_CERTIFICATE_PENDING: self._wait(
                "Payment received. Your certificate is being issued and will be sent here."
            ),
            S.INS_CERTIFICATE_ISSUED: lambda ctx, to: OutboundAction.with_buttons(
                to,
                "You are covered. Drive safe!",
                [("INS_AGAIN", "Insure another"), ("HOME", "Home")],
            ),
        }

    def _get_result_handlers(self):
        return {
            (S.INS_VEHICLE_CHECK, CommandName.CHECK_VEHICLES): self._on_vehicles,
            (S.INS_SUMMARY, CommandName.CREATE_QUOTE): self._on_quote_created,
            (S.INS_PAYMENT_PENDING, CommandName.SELECT_PAYMENT_PLAN): self._on_plan_selected,
        }

    def _get_milestone_handlers(self):
        return {
            Milestone.QUOTE_ATTACHED: self._on_quote_attached,
            Milestone.PAYMENT_RECORDED: self._on_payment_recorded,
            Milestone.CERTIFICATE_ISSUED: self._on_certificate_issued,
        }

    def start(self, event: InboundEvent) -> Transition:
        return self._goto(
            S.INS_VEHICLE_CHECK,
            InsuranceContext(),
            event.sender,
            command=Command(name=CommandName.CHECK_VEHICLES, user_id=event.sender),
        )

    # ==================== Prompts ====================

    def _prompt_vehicle_check(self, ctx: InsuranceContext, to: str) -> OutboundAction:
        if not ctx.checked:
            return OutboundAction.text(to, "Checking your registered vehicles...")
        if not ctx.vehicles:
            return OutboundAction.text(
                to,
                "Send a photo of the vehicle logbook (carte jaune) or of its current "
                "insurance certificate.",
            )
        return OutboundAction.with_list(
            to,
            "Which vehicle do you want to insure? To insure another one, send a photo "
            "of its logbook instead.",
            [(f"INS_VEHICLE:{v.id}", v.plate, v.label) for v in ctx.vehicles],
            list_button="Vehicles",
        )

    def _prompt_addons(self, ctx: InsuranceContext, to: str) -> OutboundAction:
        selected = ", ".join(_label(ADDONS, code) for code in ctx.addons) or "none"
        rows = [(row_id, label, desc) for row_id, (_, label, desc) in ADDONS.items()]
        rows.append(("ADDON_DONE", "Done", "Continue with the selection"))
        rows.append(("ADDON_NONE", "No add-ons", "Basic third party cover only"))
        return OutboundAction.with_list(
            to,
            f"Add extra cover? Tap an option to add or remove it.\nSelected: {selected}",
            rows,
            list_button="Add-ons",
        )

    def _summary_text(self, ctx: InsuranceContext) -> str:
        if ctx.vehicle_id is not None:
            plate = next((v.plate for v in ctx.vehicles if v.id == ctx.vehicle_id), f"#{ctx.vehicle_id}")
            vehicle = plate
        else:
            vehicle = "from your photo"
        addons = ", ".join(_label(ADDONS, code) for code in ctx.addons) or "none"
        lines = [
            "Insurance request",
            f"Vehicle: {vehicle}",
            f"Start: {ctx.start_date}",
            f"Period: {_label(PERIODS, ctx.period)}",
            f"Add-ons: {addons}",
        ]
        if ctx.pa_category:
            lines.append(f"Personal accident: {_label(PA_CATEGORIES, ctx.pa_category)}")
        return "\n".join(lines)

    def _prompt_summary(self, ctx: InsuranceContext, to: str) -> OutboundAction:
        if ctx.quote_id is None:
            return OutboundAction.text(to, "Preparing your request...")
        return OutboundAction.with_buttons(
            to,
            f"{self._summary_text(ctx)}\nReference: Q{ctx.quote_id}",
            [("SUM_CONTINUE", "Continue"), ("CANCEL", "Cancel")],
        )

    def _prompt_quotation_received(self, ctx: InsuranceContext, to: str) -> OutboundAction:
        body = "Your quotation is ready."
        if ctx.amount:
            body = f"Your quotation is ready: {ctx.amount:,} RWF."
        return OutboundAction.with_buttons(
            to,
            body,
            [("PROCEED", "Proceed"), ("ASK_CHANGES", "Ask for changes"), ("CANCEL", "Cancel")],
        )

    def _prompt_payment_plan(self, ctx: InsuranceContext, to: str) -> OutboundAction:
        body = "How would you like to pay?"
        if ctx.amount:
            body = f"How would you like to pay the {ctx.amount:,} RWF premium?"
        return OutboundAction.with_buttons(
            to,
            body,
            [(row_id, label) for row_id, (_, label, _) in PAYMENT_PLANS.items()],
        )

    def _prompt_payment_pending(self, ctx: InsuranceContext, to: str) -> OutboundAction:
        if not ctx.pay_ussd:
            return OutboundAction.text(to, "Preparing your payment instructions...")
        return OutboundAction.text(
            to,
            f"Pay {ctx.amount_due:,} RWF with MoMo by dialing {ctx.pay_ussd}\n"
            f"Reference: Q{ctx.quote_id}\n"
            "Your certificate will be issued once the payment is confirmed.",
        )

    # ==================== Handlers ====================

    def _handle_vehicle_check(self, ctx: InsuranceContext, event: InboundEvent) -> Optional[Transition]:
        if not ctx.checked:
            return None

        if event.choice == "INS_VEHICLE" and event.secondary_id:
            if not any(str(v.id) == event.secondary_id for v in ctx.vehicles):
                return None
            ctx = ctx.evolve(vehicle_id=int(event.secondary_id), document_ref=None)
            return self._goto(S.INS_START_DATE, ctx, event.sender)

        if event.kind in (EventKind.IMAGE, EventKind.DOCUMENT) and event.media_id:
            ctx = ctx.evolve(vehicle_id=None, document_ref=event.media_id)
            return self._goto(S.INS_START_DATE, ctx, event.sender)

        return None

    def _handle_start_date(self, ctx: InsuranceContext, event: InboundEvent) -> Optional[Transition]:
        today = event_date(event)

        if event.choice == "START_TODAY":
            return self._goto(S.INS_PERIOD, ctx.evolve(start_date=today.isoformat()), event.sender)
        if event.choice == "START_PICK":
            return Transition(
                state=S.INS_START_DATE,
                context=ctx,
                actions=(OutboundAction.text(event.sender, "Type the start date as YYYY-MM-DD."),),
            )

        text = event.clean_text
        if text is None:
            return None
        try:
            start = datetime.strptime(text, "%Y-%m-%d").date()
        except ValueError:
            return self._reprompt(
                S.INS_START_DATE, ctx, event.sender, "Please type the date as YYYY-MM-DD."
            )
        if start < today:
            return self._reprompt(
                S.INS_START_DATE, ctx, event.sender, "The start date cannot be in the past."
            )
        return self._goto(S.INS_PERIOD, ctx.evolve(start_date=start.isoformat()), event.sender)

    def _handle_period(self, ctx: InsuranceContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice not in PERIODS:
            return None
        period, _ = PERIODS[event.choice]
        return self._goto(S.INS_ADDONS, ctx.evolve(period=period), event.sender)

    def _handle_addons(self, ctx: InsuranceContext, event: InboundEvent) -> Optional[Transition]:
        choice = event.choice
        if choice in ADDONS:
            code = ADDONS[choice][0]
            if code in ctx.addons:
                addons = tuple(a for a in ctx.addons if a != code)
            else:
                addons = (*ctx.addons, code)
            return self._goto(S.INS_ADDONS, ctx.evolve(addons=addons), event.sender)
        if choice == "ADDON_NONE":
            return self._to_summary(ctx.evolve(addons=(), pa_category=None), event.sender)
        if choice == "ADDON_DONE":
            if PA_ADDON in ctx.addons:
                return self._goto(S.INS_PA_CATEGORY, ctx, event.sender)
            return self._to_summary(ctx.evolve(pa_category=None), event.sender)
        return None

    def _handle_pa_category(self, ctx: InsuranceContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice not in PA_CATEGORIES:
            return None
        category = PA_CATEGORIES[event.choice][0]
        return self._to_summary(ctx.evolve(pa_category=category), event.sender)

    def _handle_summary(self, ctx: InsuranceContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice == "SUM_CONTINUE" and ctx.quote_id is not None:
            return self._goto(S.INS_QUOTATION_PENDING, ctx, event.sender)
        return None

    def _handle_quotation_received(self, ctx: InsuranceContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice == "PROCEED":
            return self._goto(S.INS_PAYMENT_PLAN, ctx, event.sender)
        if event.choice == "ASK_CHANGES":
            return self._goto(
                S.INS_QUOTATION_PENDING,
                ctx,
                event.sender,
                prefix="Noted. Our team will review the quotation and send an updated one.",
            )
        return None

    def _handle_payment_plan(self, ctx: InsuranceContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice not in PAYMENT_PLANS:
            return None
        plan = PAYMENT_PLANS[event.choice][0]
        ctx = ctx.evolve(payment_plan=plan, amount_due=None, pay_ussd=None)
        return self._goto(
            S.INS_PAYMENT_PENDING,
            ctx,
            event.sender,
            command=Command(
                name=CommandName.SELECT_PAYMENT_PLAN,
                user_id=event.sender,
                params={"quote_id": ctx.quote_id, "plan": plan},
            ),
        )

    def _handle_certificate_issued(self, ctx: InsuranceContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice == "INS_AGAIN":
            return self.start(event)
        return None

    def _to_summary(self, ctx: InsuranceContext, to: str) -> Transition:
        ctx = ctx.evolve(quote_id=None)
        return self._goto(
            S.INS_SUMMARY,
            ctx,
            to,
            command=Command(
                name=CommandName.CREATE_QUOTE,
                user_id=to,
                params={
                    "vehicle_id": ctx.vehicle_id,
                    "document_ref": ctx.document_ref,
                    "start_date": ctx.start_date,
                    "period": ctx.period,
                    "addons": list(ctx.addons),
                    "pa_category": ctx.pa_category,
                },
            ),
        )

    # ==================== Command results ====================

    def _on_vehicles(self, ctx: InsuranceContext, result: CommandResult, user_id: str) -> Optional[Transition]:
        if ctx.checked:
            return None
        if not result.ok:
            return Transition(
                state=S.MAIN_MENU,
                context=MainContext(),
                actions=(main_menu_prompt(user_id).with_prefix(
                    "We could not look up your vehicles. Please try again."
                ),),
            )
        vehicles = tuple(VehicleOption.model_validate(v) for v in result.data.get("vehicles", []))
        return self._goto(S.INS_VEHICLE_CHECK, ctx.evolve(checked=True, vehicles=vehicles), user_id)

    def _on_quote_created(self, ctx: InsuranceContext, result: CommandResult, user_id: str) -> Optional[Transition]:
        if ctx.quote_id is not None:
            return None
        if not result.ok:
            previous = S.INS_PA_CATEGORY if PA_ADDON in ctx.addons else S.INS_ADDONS
            return self._goto(
                previous, ctx, user_id, prefix="We could not create your request. Please try again."
            )
        return self._goto(S.INS_SUMMARY, ctx.evolve(quote_id=result.data["quote_id"]), user_id)

    def _on_plan_selected(self, ctx: InsuranceContext, result: CommandResult, user_id: str) -> Optional[Transition]:
        if ctx.pay_ussd is not None:
            return None
        if not result.ok:
            return self._goto(
                S.INS_PAYMENT_PLAN,
                ctx.evolve(payment_plan=None),
                user_id,
                prefix="We could not prepare the payment. Please choose again.",
            )
        ctx = ctx.evolve(amount_due=result.data["amount_due"], pay_ussd=result.data["pay_ussd"])
        return self._goto(S.INS_PAYMENT_PENDING, ctx, user_id)

    # ==================== Milestones ====================

    @staticmethod
    def _is_active_quote(ctx: InsuranceContext, milestone: MilestoneEvent) -> bool:
        return ctx.quote_id is not None and milestone.data.get("quote_id") == ctx.quote_id

    def _on_quote_attached(
        self, state: S, ctx: InsuranceContext, milestone: MilestoneEvent
    ) -> Optional[Transition]:
        if state not in (S.INS_SUMMARY, S.INS_QUOTATION_PENDING, S.INS_QUOTATION_RECEIVED):
            return None
        if not self._is_active_quote(ctx, milestone):
            return None
        ctx = ctx.evolve(amount=milestone.data.get("amount"))
        return self._goto(S.INS_QUOTATION_RECEIVED, ctx, milestone.user_id)

    def _on_payment_recorded(
        self, state: S, ctx: InsuranceContext, milestone: MilestoneEvent
    ) -> Optional[Transition]:
        if state != S.INS_PAYMENT_PENDING or not self._is_active_quote(ctx, milestone):
            return None
        return self._goto(S.INS_CERTIFICATE_PENDING, ctx, milestone.user_id)

    def _on_certificate_issued(
        self, state: S, ctx: InsuranceContext, milestone: MilestoneEvent
    ) -> Optional[Transition]:
        if state not in (S.INS_PAYMENT_PENDING, S.INS_CERTIFICATE_PENDING):
            return None
        if not self._is_active_quote(ctx, milestone):
            return None
        return self._goto(S.INS_CERTIFICATE_ISSUED, ctx, milestone.user_id)
