"""
Tests for the MoMo payment QR flow

Covers:
- USSD / tel: link construction for phone numbers and pay codes
- Entry by button or by typing the identifier directly
- Amount selection (quick amounts, typed, custom, none)
- GENERATE_QR result handling (success and failure)
"""
import pytest

from mobility_hub.state_machine.context import MainContext, QRContext
from mobility_hub.state_machine.dispatcher import StateDispatcher
from mobility_hub.state_machine.events import ActionKind, CommandName, CommandResult
from mobility_hub.state_machine.flows.qr import build_tel_link, build_ussd
from mobility_hub.state_machine.states import ConversationState as S
from tests.conftest import TEST_USER, button_event, list_event, text_event


@pytest.fixture
def dispatcher() -> StateDispatcher:
    return StateDispatcher()


# ============================================================================
# USSD strings
# ============================================================================


class TestBuildUssd:
    """MoMo dial strings"""

    @pytest.mark.unit
    def test_phone_with_amount(self) -> None:
        assert build_ussd("phone", "0788123456", 1000) == "*182*1*1*0788123456*1000#"

    @pytest.mark.unit
    def test_phone_in_international_format_is_localized(self) -> None:
        assert build_ussd("phone", "+250788123456", 1000) == "*182*1*1*0788123456*1000#"
        assert build_ussd("phone", "250788123456", 500) == "*182*1*1*0788123456*500#"

    @pytest.mark.unit
    def test_code_without_amount(self) -> None:
        assert build_ussd("code", "12345") == "*182*8*1*12345#"

    @pytest.mark.unit
    def test_code_with_amount(self) -> None:
        assert build_ussd("code", "123 456", 2500) == "*182*8*1*123456*2500#"

    @pytest.mark.unit
    def test_tel_link_escapes_hash(self) -> None:
        assert build_tel_link("*182*1*1*0788123456*1000#") == "tel:*182*1*1*0788123456*1000%23"


# ============================================================================
# Conversation
# ============================================================================


class TestQREntry:
    """Entering the flow and choosing the identifier"""

    @pytest.mark.unit
    def test_menu_shortcut_starts_flow(self, dispatcher: StateDispatcher) -> None:
        transition = dispatcher.dispatch(S.MAIN_MENU, MainContext(), text_event("1"))

        assert transition.state == S.QR_ENTRY
        assert isinstance(transition.context, QRContext)
        assert transition.actions[0].kind == ActionKind.BUTTONS
        assert [b.id for b in transition.actions[0].buttons] == ["QR_PHONE", "QR_CODE"]

    @pytest.mark.unit
    def test_menu_row_starts_flow(self, dispatcher: StateDispatcher) -> None:
        transition = dispatcher.dispatch(S.MAIN_MENU, MainContext(), list_event("QR"))
        assert transition.state == S.QR_ENTRY

    @pytest.mark.unit
    def test_phone_button_asks_for_number(self, dispatcher: StateDispatcher) -> None:
        transition = dispatcher.dispatch(S.QR_ENTRY, QRContext(), button_event("QR_PHONE"))

        assert transition.state == S.QR_MOMO_SETUP
        assert transition.context.id_type == "phone"
        assert "phone number" in transition.actions[0].body

    @pytest.mark.unit
    def test_typed_number_skips_setup(self, dispatcher: StateDispatcher) -> None:
        transition = dispatcher.dispatch(S.QR_ENTRY, QRContext(), text_event("0788123456"))

        assert transition.state == S.QR_AMOUNT
        assert transition.context.id_type == "phone"
        assert transition.context.identifier == "0788123456"

    @pytest.mark.unit
    def test_typed_code_skips_setup(self, dispatcher: StateDispatcher) -> None:
        transition = dispatcher.dispatch(S.QR_ENTRY, QRContext(), text_event("12345"))

        assert transition.state == S.QR_AMOUNT
        assert transition.context.id_type == "code"
        assert transition.context.identifier == "12345"

    @pytest.mark.unit
    def test_nine_digit_code_starting_with_seven_is_a_code(self, dispatcher: StateDispatcher) -> None:
        transition = dispatcher.dispatch(S.QR_ENTRY, QRContext(), text_event("788123456"))

        assert transition.state == S.QR_AMOUNT
        assert transition.context.id_type == "code"
        assert transition.context.identifier == "788123456"

    @pytest.mark.unit
    @pytest.mark.parametrize("typed", ["+250788123456", "250788123456", "078 812 3456"])
    def test_prefixed_number_is_a_phone(self, dispatcher: StateDispatcher, typed: str) -> None:
        transition = dispatcher.dispatch(S.QR_ENTRY, QRContext(), text_event(typed))

        assert transition.context.id_type == "phone"
        assert transition.context.identifier == "0788123456"

    @pytest.mark.unit
    def test_unrecognized_text_reprompts(self, dispatcher: StateDispatcher) -> None:
        transition = dispatcher.dispatch(S.QR_ENTRY, QRContext(), text_event("hello"))

        assert transition.state == S.QR_ENTRY
        assert transition.context == QRContext()
        assert len(transition.actions) == 1
        assert transition.command is None

    @pytest.mark.unit
    def test_invalid_code_reprompts_with_error(self, dispatcher: StateDispatcher) -> None:
        ctx = QRContext(id_type="code")
        transition = dispatcher.dispatch(S.QR_MOMO_SETUP, ctx, text_event("12"))

        assert transition.state == S.QR_MOMO_SETUP
        assert transition.context == ctx
        assert transition.actions[0].body.startswith("That is not a valid MoMo pay code.")

    @pytest.mark.unit
    def test_invalid_phone_reprompts_with_error(self, dispatcher: StateDispatcher) -> None:
        ctx = QRContext(id_type="phone")
        transition = dispatcher.dispatch(S.QR_MOMO_SETUP, ctx, text_event("12345"))

        assert transition.state == S.QR_MOMO_SETUP
        assert transition.actions[0].body.startswith("That is not a valid MoMo phone number.")


class TestQRAmount:
    """Amount choice and the GENERATE_QR command"""

    @pytest.fixture
    def ctx(self) -> QRContext:
        return QRContext(id_type="phone", identifier="0788123456")

    @pytest.mark.unit
    def test_quick_amount_issues_command(self, dispatcher: StateDispatcher, ctx: QRContext) -> None:
        transition = dispatcher.dispatch(S.QR_AMOUNT, ctx, list_event("QR_A_1000"))

        assert transition.state == S.QR_GENERATING
        assert transition.context.amount == 1000
        assert transition.context.ussd == "*182*1*1*0788123456*1000#"
        assert transition.context.tel_link == "tel:*182*1*1*0788123456*1000%23"
        assert transition.command is not None
        assert transition.command.name == CommandName.GENERATE_QR
        assert transition.command.params["tel_link"] == "tel:*182*1*1*0788123456*1000%23"

    @pytest.mark.unit
    def test_typed_amount_with_separator(self, dispatcher: StateDispatcher, ctx: QRContext) -> None:
        transition = dispatcher.dispatch(S.QR_AMOUNT, ctx, text_event("1,500"))

        assert transition.state == S.QR_GENERATING
        assert transition.context.amount == 1500

    @pytest.mark.unit
    def test_no_amount(self, dispatcher: StateDispatcher) -> None:
        ctx = QRContext(id_type="code", identifier="12345")
        transition = dispatcher.dispatch(S.QR_AMOUNT, ctx, list_event("QR_AMT_NONE"))

        assert transition.context.amount is None
        assert transition.context.ussd == "*182*8*1*12345#"

    @pytest.mark.unit
    def test_other_amount_asks_for_custom(self, dispatcher: StateDispatcher, ctx: QRContext) -> None:
        transition = dispatcher.dispatch(S.QR_AMOUNT, ctx, list_event("QR_A_OTHER"))
        assert transition.state == S.QR_AMOUNT_CUSTOM
        assert transition.command is None

    @pytest.mark.unit
    @pytest.mark.parametrize("typed,error", [
        ("abc", "The amount must be a whole number, e.g. 1500"),
        ("0", "The amount must be greater than zero"),
        ("20000000", "The amount cannot exceed 10,000,000 RWF"),
    ])
    def test_invalid_custom_amount_reprompts(
        self, dispatcher: StateDispatcher, ctx: QRContext, typed: str, error: str
    ) -> None:
        transition = dispatcher.dispatch(S.QR_AMOUNT_CUSTOM, ctx, text_event(typed))

        assert transition.state == S.QR_AMOUNT_CUSTOM
        assert transition.context == ctx
        assert transition.actions[0].body.startswith(error)


class TestQRGenerated:
    """GENERATE_QR results fed back through resume"""

    @pytest.fixture
    def ctx(self) -> QRContext:
        return QRContext(
            id_type="phone",
            identifier="0788123456",
            amount=1000,
            ussd="*182*1*1*0788123456*1000#",
            tel_link="tel:*182*1*1*0788123456*1000%23",
        )

    @pytest.mark.unit
    def test_success_sends_image_then_done_buttons(self, dispatcher: StateDispatcher, ctx: QRContext) -> None:
        result = CommandResult(
            name=CommandName.GENERATE_QR, ok=True, data={"image_url": "https://qr.example/img.png"}
        )
        transition = dispatcher.resume(S.QR_GENERATING, ctx, result, TEST_USER)

        assert transition.state == S.QR_DONE
        document, buttons = transition.actions
        assert document.kind == ActionKind.DOCUMENT
        assert document.attachment_ref == "https://qr.example/img.png"
        assert document.filename == "momo-qr.png"
        assert "*182*1*1*0788123456*1000#" in document.body
        assert "1,000 RWF" in document.body
        assert [b.id for b in buttons.buttons] == ["QR_AGAIN", "HOME"]

    @pytest.mark.unit
    def test_failure_returns_to_amount(self, dispatcher: StateDispatcher, ctx: QRContext) -> None:
        result = CommandResult(name=CommandName.GENERATE_QR, ok=False, error="timeout")
        transition = dispatcher.resume(S.QR_GENERATING, ctx, result, TEST_USER)

        assert transition.state == S.QR_AMOUNT
        assert transition.context.amount is None
        assert transition.context.ussd is None
        assert transition.context.identifier == "0788123456"
        assert transition.actions[0].body.startswith("We could not create the QR code. Please try again.")

    @pytest.mark.unit
    def test_result_after_cancel_is_discarded(self, dispatcher: StateDispatcher) -> None:
        result = CommandResult(name=CommandName.GENERATE_QR, ok=True, data={"image_url": "x"})
        assert dispatcher.resume(S.MAIN_MENU, MainContext(), result, TEST_USER) is None

    @pytest.mark.unit
    def test_again_restarts_flow(self, dispatcher: StateDispatcher, ctx: QRContext) -> None:
        transition = dispatcher.dispatch(S.QR_DONE, ctx, button_event("QR_AGAIN"))

        assert transition.state == S.QR_ENTRY
        assert transition.context == QRContext()

    @pytest.mark.unit
    def test_home_returns_to_menu(self, dispatcher: StateDispatcher, ctx: QRContext) -> None:
        transition = dispatcher.dispatch(S.QR_DONE, ctx, button_event("HOME"))

        assert transition.state == S.MAIN_MENU
        assert transition.context == MainContext()
