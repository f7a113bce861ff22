"""
Typed values exchanged with the dispatcher

InboundEvent goes in, Transition comes out. A Transition may carry a Command
for the shell to execute; its CommandResult is fed back through
StateDispatcher.resume. MilestoneEvent is what the admin bridge injects.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from mobility_hub.state_machine.states import ConversationState

if TYPE_CHECKING:
    from mobility_hub.state_machine.context import FlowContext

# Cloud API interactive limits
MAX_BUTTONS = 3
MAX_LIST_ROWS = 10


class EventKind(str, Enum):
    TEXT = "text"
    BUTTON = "button"
    LIST = "list"
    IMAGE = "image"
    DOCUMENT = "document"
    LOCATION = "location"
    UNHANDLED = "unhandled"


class InboundEvent(BaseModel):
    """A single normalized inbound message"""

    model_config = ConfigDict(frozen=True)

    source_id: str
    sender: str
    kind: EventKind
    timestamp: int = 0  # platform unix time; the only clock the dispatcher sees

    text: Optional[str] = None
    action: Optional[str] = None
    secondary_id: Optional[str] = None
    media_id: Optional[str] = None
    mime_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def choice(self) -> Optional[str]:
        """Button / list id, if the user tapped one"""
        if self.kind in (EventKind.BUTTON, EventKind.LIST):
            return self.action
        return None

    @property
    def clean_text(self) -> Optional[str]:
        if self.kind == EventKind.TEXT and self.text is not None:
            return self.text.strip()
        return None


class ActionKind(str, Enum):
    TEXT = "text"
    BUTTONS = "buttons"
    LIST = "list"
    DOCUMENT = "document"


class Button(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str


class ListRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: Optional[str] = None


class OutboundAction(BaseModel):
    """
    One message to send. Built by flows, persisted in the outbox, rendered by
    the WhatsApp provider.
    """

    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    to: str
    body: str = ""
    buttons: tuple[Button, ...] = Field(default=(), max_length=MAX_BUTTONS)
    rows: tuple[ListRow, ...] = Field(default=(), max_length=MAX_LIST_ROWS)
    list_button: Optional[str] = None
    attachment_ref: Optional[str] = None
    filename: Optional[str] = None

    @classmethod
    def text(cls, to: str, body: str) -> "OutboundAction":
        return cls(kind=ActionKind.TEXT, to=to, body=body)

    @classmethod
    def with_buttons(cls, to: str, body: str, buttons: list[tuple[str, str]]) -> "OutboundAction":
        return cls(
            kind=ActionKind.BUTTONS,
            to=to,
            body=body,
            buttons=tuple(Button(id=b_id, title=title) for b_id, title in buttons),
        )

    @classmethod
    def with_list(
        cls,
        to: str,
        body: str,
        rows: list[tuple[str, str, Optional[str]]],
        list_button: str = "Choose",
    ) -> "OutboundAction":
        return cls(
            kind=ActionKind.LIST,
            to=to,
            body=body,
            rows=tuple(ListRow(id=r_id, title=title, description=desc) for r_id, title, desc in rows),
            list_button=list_button,
        )

    @classmethod
    def document(cls, to: str, attachment_ref: str, filename: str, caption: str = "") -> "OutboundAction":
        return cls(
            kind=ActionKind.DOCUMENT,
            to=to,
            body=caption,
            attachment_ref=attachment_ref,
            filename=filename,
        )

    def with_prefix(self, prefix: str) -> "OutboundAction":
        """Same action with an error/help sentence in front of the body"""
        return self.model_copy(update={"body": f"{prefix}\n\n{self.body}" if self.body else prefix})


class CommandName(str, Enum):
    GENERATE_QR = "generate_qr"
    FIND_NEARBY = "find_nearby"
    CREATE_BOOKING = "create_booking"
    SCHEDULE_TRIP = "schedule_trip"
    EXTRACT_DOCUMENT = "extract_document"
    CHECK_VEHICLES = "check_vehicles"
    CREATE_QUOTE = "create_quote"
    SELECT_PAYMENT_PLAN = "select_payment_plan"


class Command(BaseModel):
    """Collaborator call requested by a flow, executed outside the dispatcher"""

    model_config = ConfigDict(frozen=True)

    name: CommandName
    user_id: str
    params: dict[str, Any] = Field(default_factory=dict)


class CommandResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: CommandName
    ok: bool
    data: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class Milestone(str, Enum):
    QUOTE_ATTACHED = "quote_attached"
    PAYMENT_RECORDED = "payment_recorded"
    CERTIFICATE_ISSUED = "certificate_issued"
    VEHICLE_VERIFIED = "vehicle_verified"
    PROVIDER_ACTIVATED = "provider_activated"


class MilestoneEvent(BaseModel):
    """Backoffice-triggered change delivered to a user's session"""

    model_config = ConfigDict(frozen=True)

    milestone: Milestone
    user_id: str
    data: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class Transition:
    """Next state, next context, messages to send and an optional command"""

    state: ConversationState
    context: "FlowContext"
    actions: tuple[OutboundAction, ...] = field(default_factory=tuple)
    command: Optional[Command] = None
