"""
MoMo Payment QR Flow

QR_ENTRY -> QR_MOMO_SETUP -> QR_AMOUNT (-> QR_AMOUNT_CUSTOM) -> QR_GENERATING -> QR_DONE

The QR encodes a tel: link that dials the MTN MoMo USSD payment string.
"""
from typing import Optional

from mobility_hub.core.validation import AmountValidator, MomoCodeValidator, PhoneNumberValidator
from mobility_hub.state_machine.context import QRContext
from mobility_hub.state_machine.events import (
    Command,
    CommandName,
    CommandResult,
    InboundEvent,
    OutboundAction,
    Transition,
)
from mobility_hub.state_machine.flows.base import BaseFlow
from mobility_hub.state_machine.states import ConversationState as S

QUICK_AMOUNTS = {
    "QR_A_1000": 1000,
    "QR_A_2000": 2000,
    "QR_A_5000": 5000,
}


def build_ussd(id_type: str, identifier: str, amount: Optional[int] = None) -> str:
    """
    MoMo USSD payment string.

    phone: *182*1*1*0788123456*1000#
    code:  *182*8*1*12345*1000#
    """
    if id_type == "phone":
        ussd = f"*182*1*1*{PhoneNumberValidator.to_local(identifier)}"
    else:
        ussd = f"*182*8*1*{MomoCodeValidator.clean(identifier)}"
    if amount:
        ussd += f"*{amount}"
    return ussd + "#"


def build_tel_link(ussd: str) -> str:
    # dialers drop everything after a raw '#'
    return "tel:" + ussd.replace("#", "%23")


class QRFlow(BaseFlow):
    name = "qr"
    context_model = QRContext
    entry_state = S.QR_ENTRY

    def _get_handlers(self):
        return {
            S.QR_ENTRY: self._handle_entry,
            S.QR_MOMO_SETUP: self._handle_momo_setup,
            S.QR_AMOUNT: self._handle_amount,
            S.QR_AMOUNT_CUSTOM: self._handle_amount_custom,
            S.QR_DONE: self._handle_done,
        }

    def _get_prompts(self):
        return {
            S.QR_ENTRY: self._prompt_entry,
            S.QR_MOMO_SETUP: self._prompt_momo_setup,
            S.QR_AMOUNT: self._prompt_amount,
            S.QR_AMOUNT_CUSTOM: lambda ctx, to: OutboundAction.text(
                to, "Type the amount in RWF, e.g. 1500"
            ),
            S.QR_GENERATING: self._wait("Generating your payment QR code..."),
            S.QR_DONE: lambda ctx, to: OutboundAction.with_buttons(
                to,
                "Anything else?",
                [("QR_AGAIN", "Another QR"), ("HOME", "Home")],
            ),
        }

    def _get_result_handlers(self):
        return {
            (S.QR_GENERATING, CommandName.GENERATE_QR): self._on_generated,
        }

    # ==================== Prompts ====================

    def _prompt_entry(self, ctx: QRContext, to: str) -> OutboundAction:
        return OutboundAction.with_buttons(
            to,
            "Create a MoMo payment QR code.\n"
            "Will you receive money on a phone number or a MoMo pay code?\n"
            "You can also type the number or code directly.",
            [("QR_PHONE", "Phone number"), ("QR_CODE", "MoMo pay code")],
        )

    def _prompt_momo_setup(self, ctx: QRContext, to: str) -> OutboundAction:
        if ctx.id_type == "code":
            return OutboundAction.text(to, "Type your MoMo pay code (4 to 9 digits).")
        return OutboundAction.text(to, "Type the MoMo phone number, e.g. 0788123456.")

    def _prompt_amount(self, ctx: QRContext, to: str) -> OutboundAction:
        return OutboundAction.with_list(
            to,
            f"Receiving on {ctx.identifier}.\nChoose an amount or type one:",
            [
                ("QR_A_1000", "1,000 RWF", None),
                ("QR_A_2000", "2,000 RWF", None),
                ("QR_A_5000", "5,000 RWF", None),
                ("QR_A_OTHER", "Other amount", "Type your own amount"),
                ("QR_AMT_NONE", "No amount", "Payer enters the amount"),
            ],
            list_button="Amount",
        )

    # ==================== Handlers ====================

    def _handle_entry(self, ctx: QRContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice == "QR_PHONE":
            return self._goto(S.QR_MOMO_SETUP, ctx.evolve(id_type="phone"), event.sender)
        if event.choice == "QR_CODE":
            return self._goto(S.QR_MOMO_SETUP, ctx.evolve(id_type="code"), event.sender)

        text = event.clean_text
        if not text:
            return None
        if PhoneNumberValidator.has_phone_shape(text) and PhoneNumberValidator.is_valid_local(text):
            return self._goto(
                S.QR_AMOUNT,
                ctx.evolve(id_type="phone", identifier=PhoneNumberValidator.to_local(text)),
                event.sender,
            )
        if MomoCodeValidator.validate(text):
            return self._goto(
                S.QR_AMOUNT,
                ctx.evolve(id_type="code", identifier=MomoCodeValidator.clean(text)),
                event.sender,
            )
        return None

    def _handle_momo_setup(self, ctx: QRContext, event: InboundEvent) -> Optional[Transition]:
        text = event.clean_text
        if text is None:
            return None

        if ctx.id_type == "code":
            if not MomoCodeValidator.validate(text):
                return self._reprompt(
                    S.QR_MOMO_SETUP, ctx, event.sender, "That is not a valid MoMo pay code."
                )
            identifier = MomoCodeValidator.clean(text)
        else:
            if not PhoneNumberValidator.is_valid_local(text):
                return self._reprompt(
                    S.QR_MOMO_SETUP, ctx, event.sender, "That is not a valid MoMo phone number."
                )
            identifier = PhoneNumberValidator.to_local(text)

        return self._goto(S.QR_AMOUNT, ctx.evolve(identifier=identifier), event.sender)

    def _handle_amount(self, ctx: QRContext, event: InboundEvent) -> Optional[Transition]:
        choice = event.choice
        if choice in QUICK_AMOUNTS:
            return self._generate(ctx, QUICK_AMOUNTS[choice], event.sender)
        if choice == "QR_A_OTHER":
            return self._goto(S.QR_AMOUNT_CUSTOM, ctx, event.sender)
        if choice == "QR_AMT_NONE":
            return self._generate(ctx, None, event.sender)

        if event.clean_text is None:
            return None
        return self._typed_amount(S.QR_AMOUNT, ctx, event)

    def _handle_amount_custom(self, ctx: QRContext, event: InboundEvent) -> Optional[Transition]:
        if event.clean_text is None:
            return None
        return self._typed_amount(S.QR_AMOUNT_CUSTOM, ctx, event)

    def _handle_done(self, ctx: QRContext, event: InboundEvent) -> Optional[Transition]:
        if event.choice == "QR_AGAIN":
            return self.start(event)
        return None

    def _typed_amount(self, state: S, ctx: QRContext, event: InboundEvent) -> Transition:
        amount, error = AmountValidator.parse(event.clean_text)
        if error:
            return self._reprompt(state, ctx, event.sender, error)
        return self._generate(ctx, amount, event.sender)

    def _generate(self, ctx: QRContext, amount: Optional[int], to: str) -> Transition:
        ussd = build_ussd(ctx.id_type, ctx.identifier, amount)
        tel_link = build_tel_link(ussd)
        ctx = ctx.evolve(amount=amount, ussd=ussd, tel_link=tel_link)
        return self._goto(
            S.QR_GENERATING,
            ctx,
            to,
            command=Command(
                name=CommandName.GENERATE_QR,
                user_id=to,
                params={"tel_link": tel_link, "ussd": ussd},
            ),
        )

    # ==================== Command results ====================

    def _on_generated(self, ctx: QRContext, result: CommandResult, user_id: str) -> Transition:
        if not result.ok:
            return self._goto(
                S.QR_AMOUNT,
                ctx.evolve(amount=None, ussd=None, tel_link=None),
                user_id,
                prefix="We could not create the QR code. Please try again.",
            )

        amount_line = f"Amount: {ctx.amount:,} RWF\n" if ctx.amount else ""
        qr_document = OutboundAction.document(
            user_id,
            attachment_ref=result.data["image_url"],
            filename="momo-qr.png",
            caption=f"{amount_line}Scan to pay, or dial {ctx.ussd}\n{ctx.tel_link}",
        )
        return self._goto(S.QR_DONE, ctx, user_id, before=(qr_document,))
