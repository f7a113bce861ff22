"""
Tests for the vehicle registration flow
"""
import pytest

from mobility_hub.state_machine.context import MainContext, RegistrationContext
from mobility_hub.state_machine.dispatcher import StateDispatcher
from mobility_hub.state_machine.events import CommandName, CommandResult, EventKind
from mobility_hub.state_machine.states import ConversationState as S
from tests.conftest import TEST_USER, button_event, list_event, make_event, text_event


@pytest.fixture
def dispatcher() -> StateDispatcher:
    return StateDispatcher()


@pytest.mark.unit
def test_usage_then_document(dispatcher: StateDispatcher) -> None:
    t = dispatcher.dispatch(S.MAIN_MENU, MainContext(), list_event("AV"))
    assert t.state == S.AV_USAGE

    t = dispatcher.dispatch(t.state, t.context, list_event("AV_U_MOTO_TAXI"))
    assert t.state == S.AV_DOCUMENT
    assert t.context.usage_type == "moto_taxi"

    photo = make_event(EventKind.IMAGE, media_id="media-1", mime_type="image/jpeg")
    t = dispatcher.dispatch(t.state, t.context, photo)
    assert t.state == S.AV_PROCESSING
    assert t.context.document_ref == "media-1"
    assert t.command.name == CommandName.EXTRACT_DOCUMENT
    assert t.command.params == {"media_id": "media-1", "mime_type": "image/jpeg", "usage_type": "moto_taxi"}


@pytest.mark.unit
def test_text_instead_of_photo_reprompts(dispatcher: StateDispatcher) -> None:
    ctx = RegistrationContext(usage_type="private")
    t = dispatcher.dispatch(S.AV_DOCUMENT, ctx, text_event("RAB123A"))

    assert t.state == S.AV_DOCUMENT
    assert t.context == ctx
    assert t.command is None


@pytest.mark.unit
def test_extracted_vehicle_shown(dispatcher: StateDispatcher) -> None:
    ctx = RegistrationContext(usage_type="private", document_ref="media-1")
    result = CommandResult(
        name=CommandName.EXTRACT_DOCUMENT,
        ok=True,
        data={"vehicle": {"id": 4, "plate": "RAB123A", "make": "Toyota", "model": "RAV4", "model_year": 2015}},
    )
    t = dispatcher.resume(S.AV_PROCESSING, ctx, result, TEST_USER)

    assert t.state == S.AV_SUCCESS
    assert t.context.vehicle_id == 4
    assert t.context.year == 2015
    body = t.actions[0].body
    assert "RAB123A" in body
    assert "Toyota RAV4 2015" in body
    assert [b.id for b in t.actions[0].buttons] == ["AV_AGAIN", "HOME"]


@pytest.mark.unit
def test_unreadable_document_asks_again(dispatcher: StateDispatcher) -> None:
    ctx = RegistrationContext(usage_type="private", document_ref="media-1")
    result = CommandResult(name=CommandName.EXTRACT_DOCUMENT, ok=False, error="No plate number found in document")
    t = dispatcher.resume(S.AV_PROCESSING, ctx, result, TEST_USER)

    assert t.state == S.AV_DOCUMENT
    assert t.context.document_ref is None
    assert t.context.usage_type == "private"
    assert t.actions[0].body.startswith("We could not read that document. Please send a clearer photo.")


@pytest.mark.unit
def test_add_another_restarts(dispatcher: StateDispatcher) -> None:
    ctx = RegistrationContext(usage_type="private", vehicle_id=4, plate="RAB123A")
    t = dispatcher.dispatch(S.AV_SUCCESS, ctx, button_event("AV_AGAIN"))

    assert t.state == S.AV_USAGE
    assert t.context == RegistrationContext()
