"""
Tests for the motor insurance flow

Covers:
- Vehicle lookup result, vehicle pick or logbook photo
- Start date (today, typed, past dates refused in Kigali time)
- Period, add-on toggling and the personal accident category
- Quote creation, backoffice milestones and payment plan
"""
import pytest

from mobility_hub.state_machine.context import InsuranceContext, MainContext, VehicleOption
from mobility_hub.state_machine.dispatcher import StateDispatcher
from mobility_hub.state_machine.events import (
    ActionKind,
    CommandName,
    CommandResult,
    EventKind,
    Milestone,
    MilestoneEvent,
)
from mobility_hub.state_machine.flows.insurance import instalments_for
from mobility_hub.state_machine.states import ConversationState as S
from tests.conftest import TEST_USER, button_event, list_event, make_event, text_event


@pytest.fixture
def dispatcher() -> StateDispatcher:
    return StateDispatcher()


@pytest.fixture
def quoted_ctx() -> InsuranceContext:
    return InsuranceContext(
        checked=True,
        vehicles=(VehicleOption(id=4, plate="RAB123A", label="RAB123A Toyota"),),
        vehicle_id=4,
        start_date="2026-03-15",
        period="12m",
        quote_id=21,
    )


def _milestone(milestone: Milestone, **data) -> MilestoneEvent:
    return MilestoneEvent(milestone=milestone, user_id=TEST_USER, data=data)


class TestVehicleCheck:

    @pytest.mark.unit
    def test_start_checks_vehicles(self, dispatcher: StateDispatcher) -> None:
        t = dispatcher.dispatch(S.MAIN_MENU, MainContext(), text_event("5"))

        assert t.state == S.INS_VEHICLE_CHECK
        assert t.context.checked is False
        assert t.command.name == CommandName.CHECK_VEHICLES
        assert t.actions[0].body == "Checking your registered vehicles..."

    @pytest.mark.unit
    def test_input_before_lookup_returns_reprompts(self, dispatcher: StateDispatcher) -> None:
        t = dispatcher.dispatch(S.INS_VEHICLE_CHECK, InsuranceContext(), list_event("INS_VEHICLE", "4"))
        assert t.state == S.INS_VEHICLE_CHECK
        assert t.command is None

    @pytest.mark.unit
    def test_vehicles_listed(self, dispatcher: StateDispatcher) -> None:
        result = CommandResult(
            name=CommandName.CHECK_VEHICLES,
            ok=True,
            data={"vehicles": [{"id": 4, "plate": "RAB123A", "label": "RAB123A Toyota"}]},
        )
        t = dispatcher.resume(S.INS_VEHICLE_CHECK, InsuranceContext(), result, TEST_USER)

        assert t.state == S.INS_VEHICLE_CHECK
        assert t.context.checked is True
        assert t.actions[0].kind == ActionKind.LIST
        assert t.actions[0].rows[0].id == "INS_VEHICLE:4"

    @pytest.mark.unit
    def test_no_vehicles_asks_for_photo(self, dispatcher: StateDispatcher) -> None:
        result = CommandResult(name=CommandName.CHECK_VEHICLES, ok=True, data={"vehicles": []})
        t = dispatcher.resume(S.INS_VEHICLE_CHECK, InsuranceContext(), result, TEST_USER)

        assert t.actions[0].kind == ActionKind.TEXT
        assert "photo" in t.actions[0].body

        photo = make_event(EventKind.IMAGE, media_id="logbook-1")
        t = dispatcher.dispatch(t.state, t.context, photo)
        assert t.state == S.INS_START_DATE
        assert t.context.document_ref == "logbook-1"
        assert t.context.vehicle_id is None

    @pytest.mark.unit
    def test_lookup_failure_goes_home(self, dispatcher: StateDispatcher) -> None:
        result = CommandResult(name=CommandName.CHECK_VEHICLES, ok=False, error="timeout")
        t = dispatcher.resume(S.INS_VEHICLE_CHECK, InsuranceContext(), result, TEST_USER)

        assert t.state == S.MAIN_MENU
        assert t.actions[0].body.startswith("We could not look up your vehicles.")

    @pytest.mark.unit
    def test_pick_vehicle(self, dispatcher: StateDispatcher) -> None:
        ctx = InsuranceContext(checked=True, vehicles=(VehicleOption(id=4, plate="RAB123A"),))
        t = dispatcher.dispatch(S.INS_VEHICLE_CHECK, ctx, list_event("INS_VEHICLE", "4"))

        assert t.state == S.INS_START_DATE
        assert t.context.vehicle_id == 4


class TestStartDateAndCover:

    @pytest.fixture
    def ctx(self) -> InsuranceContext:
        return InsuranceContext(checked=True, vehicle_id=4)

    @pytest.mark.unit
    def test_today_uses_event_date_in_kigali(self, dispatcher: StateDispatcher, ctx: InsuranceContext) -> None:
        t = dispatcher.dispatch(S.INS_START_DATE, ctx, button_event("START_TODAY"))

        assert t.state == S.INS_PERIOD
        assert t.context.start_date == "2026-03-15"

    @pytest.mark.unit
    def test_pick_asks_for_typed_date(self, dispatcher: StateDispatcher, ctx: InsuranceContext) -> None:
        t = dispatcher.dispatch(S.INS_START_DATE, ctx, button_event("START_PICK"))

        assert t.state == S.INS_START_DATE
        assert "YYYY-MM-DD" in t.actions[0].body

    @pytest.mark.unit
    def test_typed_future_date(self, dispatcher: StateDispatcher, ctx: InsuranceContext) -> None:
        t = dispatcher.dispatch(S.INS_START_DATE, ctx, text_event("2026-04-01"))
        assert t.state == S.INS_PERIOD
        assert t.context.start_date == "2026-04-01"

    @pytest.mark.unit
    def test_past_date_refused(self, dispatcher: StateDispatcher, ctx: InsuranceContext) -> None:
        t = dispatcher.dispatch(S.INS_START_DATE, ctx, text_event("2026-03-14"))

        assert t.state == S.INS_START_DATE
        assert t.actions[0].body.startswith("The start date cannot be in the past.")

    @pytest.mark.unit
    def test_unparseable_date_refused(self, dispatcher: StateDispatcher, ctx: InsuranceContext) -> None:
        t = dispatcher.dispatch(S.INS_START_DATE, ctx, text_event("next week"))
        assert t.actions[0].body.startswith("Please type the date as YYYY-MM-DD.")

    @pytest.mark.unit
    def test_period_then_addon_toggle(self, dispatcher: StateDispatcher, ctx: InsuranceContext) -> None:
        ctx = ctx.evolve(start_date="2026-03-15")
        t = dispatcher.dispatch(S.INS_PERIOD, ctx, list_event("PERIOD_6M"))
        assert t.state == S.INS_ADDONS
        assert t.context.period == "6m"

        t = dispatcher.dispatch(t.state, t.context, list_event("ADDON_COMESA"))
        t = dispatcher.dispatch(t.state, t.context, list_event("ADDON_GLASS"))
        assert t.context.addons == ("comesa", "glass")

        t = dispatcher.dispatch(t.state, t.context, list_event("ADDON_COMESA"))
        assert t.state == S.INS_ADDONS
        assert t.context.addons == ("glass",)
        assert "Selected: Windscreen cover" in t.actions[0].body

    @pytest.mark.unit
    def test_personal_accident_needs_category(self, dispatcher: StateDispatcher, ctx: InsuranceContext) -> None:
        ctx = ctx.evolve(start_date="2026-03-15", period="12m", addons=("pa",))
        t = dispatcher.dispatch(S.INS_ADDONS, ctx, list_event("ADDON_DONE"))
        assert t.state == S.INS_PA_CATEGORY

        t = dispatcher.dispatch(t.state, t.context, list_event("PA_CAT_II"))
        assert t.state == S.INS_SUMMARY
        assert t.context.pa_category == "II"
        assert t.command.name == CommandName.CREATE_QUOTE
        assert t.command.params["addons"] == ["pa"]
        assert t.command.params["pa_category"] == "II"

    @pytest.mark.unit
    def test_no_addons_goes_to_summary(self, dispatcher: StateDispatcher, ctx: InsuranceContext) -> None:
        ctx = ctx.evolve(start_date="2026-03-15", period="12m", addons=("glass",))
        t = dispatcher.dispatch(S.INS_ADDONS, ctx, list_event("ADDON_NONE"))

        assert t.state == S.INS_SUMMARY
        assert t.context.addons == ()
        assert t.command.params["addons"] == []


class TestQuoteLifecycle:

    @pytest.mark.unit
    def test_quote_created_shows_summary(self, dispatcher: StateDispatcher, quoted_ctx: InsuranceContext) -> None:
        ctx = quoted_ctx.evolve(quote_id=None)
        result = CommandResult(name=CommandName.CREATE_QUOTE, ok=True, data={"quote_id": 21})
        t = dispatcher.resume(S.INS_SUMMARY, ctx, result, TEST_USER)

        assert t.state == S.INS_SUMMARY
        assert t.context.quote_id == 21
        body = t.actions[0].body
        assert "Vehicle: RAB123A" in body
        assert "Reference: Q21" in body
        assert [b.id for b in t.actions[0].buttons] == ["SUM_CONTINUE", "CANCEL"]

    @pytest.mark.unit
    def test_continue_waits_for_quotation(self, dispatcher: StateDispatcher, quoted_ctx: InsuranceContext) -> None:
        t = dispatcher.dispatch(S.INS_SUMMARY, quoted_ctx, button_event("SUM_CONTINUE"))
        assert t.state == S.INS_QUOTATION_PENDING

    @pytest.mark.unit
    def test_pending_ignores_chat_input(self, dispatcher: StateDispatcher, quoted_ctx: InsuranceContext) -> None:
        t = dispatcher.dispatch(S.INS_QUOTATION_PENDING, quoted_ctx, text_event("hello?"))

        assert t.state == S.INS_QUOTATION_PENDING
        assert t.context == quoted_ctx
        assert "preparing your quotation" in t.actions[0].body

    @pytest.mark.unit
    def test_quote_attached_milestone(self, dispatcher: StateDispatcher, quoted_ctx: InsuranceContext) -> None:
        milestone = _milestone(Milestone.QUOTE_ATTACHED, quote_id=21, document_ref="https://docs/q21.pdf", amount=85000)
        t = dispatcher.apply_milestone(S.INS_QUOTATION_PENDING, quoted_ctx, milestone)

        assert t.state == S.INS_QUOTATION_RECEIVED
        assert t.context.amount == 85000
        notice, prompt = t.actions
        assert notice.kind == ActionKind.DOCUMENT
        assert notice.attachment_ref == "https://docs/q21.pdf"
        assert "85,000 RWF" in notice.body
        assert [b.id for b in prompt.buttons] == ["PROCEED", "ASK_CHANGES", "CANCEL"]

    @pytest.mark.unit
    def test_milestone_for_other_quote_only_notifies(
        self, dispatcher: StateDispatcher, quoted_ctx: InsuranceContext
    ) -> None:
        milestone = _milestone(Milestone.QUOTE_ATTACHED, quote_id=99, document_ref="doc", amount=1000)
        t = dispatcher.apply_milestone(S.INS_QUOTATION_PENDING, quoted_ctx, milestone)

        assert t.state == S.INS_QUOTATION_PENDING
        assert t.context == quoted_ctx
        assert len(t.actions) == 1

    @pytest.mark.unit
    def test_ask_changes_goes_back_to_waiting(self, dispatcher: StateDispatcher, quoted_ctx: InsuranceContext) -> None:
        ctx = quoted_ctx.evolve(amount=85000)
        t = dispatcher.dispatch(S.INS_QUOTATION_RECEIVED, ctx, button_event("ASK_CHANGES"))
        assert t.state == S.INS_QUOTATION_PENDING

    @pytest.mark.unit
    def test_plan_selection(self, dispatcher: StateDispatcher, quoted_ctx: InsuranceContext) -> None:
        ctx = quoted_ctx.evolve(amount=85000)
        t = dispatcher.dispatch(S.INS_QUOTATION_RECEIVED, ctx, button_event("PROCEED"))
        assert t.state == S.INS_PAYMENT_PLAN
        assert [b.id for b in t.actions[0].buttons] == ["PLAN_FULL", "PLAN_2", "PLAN_3"]

        t = dispatcher.dispatch(t.state, t.context, button_event("PLAN_3"))
        assert t.state == S.INS_PAYMENT_PENDING
        assert t.command.name == CommandName.SELECT_PAYMENT_PLAN
        assert t.command.params == {"quote_id": 21, "plan": "3_instalments"}

    @pytest.mark.unit
    def test_plan_result_shows_dial_string(self, dispatcher: StateDispatcher, quoted_ctx: InsuranceContext) -> None:
        ctx = quoted_ctx.evolve(amount=85000, payment_plan="3_instalments")
        result = CommandResult(
            name=CommandName.SELECT_PAYMENT_PLAN,
            ok=True,
            data={"amount_due": 28334, "instalments": 3, "pay_ussd": "*182*8*1*123456*28334#"},
        )
        t = dispatcher.resume(S.INS_PAYMENT_PENDING, ctx, result, TEST_USER)

        assert t.state == S.INS_PAYMENT_PENDING
        assert "28,334 RWF" in t.actions[0].body
        assert "*182*8*1*123456*28334#" in t.actions[0].body

    @pytest.mark.unit
    def test_plan_failure_asks_again(self, dispatcher: StateDispatcher, quoted_ctx: InsuranceContext) -> None:
        ctx = quoted_ctx.evolve(amount=85000, payment_plan="full")
        result = CommandResult(name=CommandName.SELECT_PAYMENT_PLAN, ok=False, error="not configured")
        t = dispatcher.resume(S.INS_PAYMENT_PENDING, ctx, result, TEST_USER)

        assert t.state == S.INS_PAYMENT_PLAN
        assert t.context.payment_plan is None

    @pytest.mark.unit
    def test_payment_then_certificate(self, dispatcher: StateDispatcher, quoted_ctx: InsuranceContext) -> None:
        ctx = quoted_ctx.evolve(amount=85000, payment_plan="full", amount_due=85000, pay_ussd="*182*8*1*123456*85000#")

        t = dispatcher.apply_milestone(
            S.INS_PAYMENT_PENDING,
            ctx,
            _milestone(Milestone.PAYMENT_RECORDED, quote_id=21, amount=85000, provider_reference="MP1"),
        )
        assert t.state == S.INS_CERTIFICATE_PENDING
        assert "85,000 RWF" in t.actions[0].body

        t = dispatcher.apply_milestone(
            t.state,
            t.context,
            _milestone(Milestone.CERTIFICATE_ISSUED, quote_id=21, certificate_ref="https://docs/cert.pdf"),
        )
        assert t.state == S.INS_CERTIFICATE_ISSUED
        notice, prompt = t.actions
        assert notice.filename == "certificate-Q21.pdf"
        assert [b.id for b in prompt.buttons] == ["INS_AGAIN", "HOME"]

    @pytest.mark.unit
    def test_insure_again(self, dispatcher: StateDispatcher, quoted_ctx: InsuranceContext) -> None:
        t = dispatcher.dispatch(S.INS_CERTIFICATE_ISSUED, quoted_ctx, button_event("INS_AGAIN"))

        assert t.state == S.INS_VEHICLE_CHECK
        assert t.context == InsuranceContext()
        assert t.command.name == CommandName.CHECK_VEHICLES


@pytest.mark.unit
def test_instalments_for() -> None:
    assert instalments_for("full") == 1
    assert instalments_for("2_instalments") == 2
    assert instalments_for("3_instalments") == 3
    with pytest.raises(ValueError):
        instalments_for("weekly")
