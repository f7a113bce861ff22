"""
Property-based tests (hypothesis) for the dispatcher.

Invariants checked over random states and inputs:
1. dispatch is deterministic for the same (state, context, event)
2. the escape words always land on MAIN_MENU with an empty context
3. every transition carries at least one action and a context that belongs
   to the flow owning the new state
4. unrecognized text never moves a flow forward
5. stored contexts survive a dump/load through the session JSON
"""
import itertools

import pytest
from hypothesis import given, settings as h_settings, HealthCheck
from hypothesis.strategies import (
    composite,
    floats,
    integers,
    just,
    none,
    one_of,
    sampled_from,
    text,
)

from mobility_hub.state_machine.context import (
    InsuranceContext,
    MainContext,
    NearbyContext,
    QRContext,
    RegistrationContext,
    TripContext,
    dump_context,
    load_context,
)
from mobility_hub.state_machine.dispatcher import StateDispatcher
from mobility_hub.state_machine.events import EventKind, InboundEvent
from mobility_hub.state_machine.states import EXTERNAL_PENDING_STATES, ConversationState as S

_prop_counter = itertools.count(500000)

_dispatcher = StateDispatcher()

_CONTEXTS = {
    "main": MainContext(),
    "qr": QRContext(id_type="phone", identifier="0788123456"),
    "nearby": NearbyContext(vehicle_type="moto"),
    "trips": TripContext(role="passenger", pickup="Remera", dropoff="Kicukiro"),
    "registration": RegistrationContext(usage_type="private"),
    "insurance": InsuranceContext(checked=True, vehicle_id=1, start_date="2026-03-15", period="1m", quote_id=5),
}


def _context_for(state: S):
    flow = _dispatcher.owner(state)
    return _CONTEXTS[flow.name if flow else "main"]


# ============================================================================
# Strategies
# ============================================================================

STATES = sampled_from(list(S))

BUTTON_IDS = sampled_from([
    "QR_PHONE", "QR_CODE", "QR_A_1000", "QR_AMT_NONE", "QR_AGAIN", "ND_V_MOTO",
    "ST_PASSENGER", "ST_DRIVER", "ST_CONFIRM", "AV_U_PRIVATE", "START_TODAY",
    "PERIOD_1M", "ADDON_PA", "ADDON_DONE", "SUM_CONTINUE", "PROCEED", "PLAN_FULL",
    "INS_AGAIN", "UNKNOWN_BUTTON",
])

ESCAPES = sampled_from(["cancel", "CANCEL", "Menu", "home", "  menu  "])

# avoid accidental menu picks, escape words and valid phone / code / amount input
GIBBERISH = text(alphabet="xyzqwj !?.", min_size=0, max_size=40)


def _next_id() -> str:
    return f"wamid.prop-{next(_prop_counter)}"


@composite
def inbound_events(draw):
    kind = draw(sampled_from(list(EventKind)))
    fields = {"source_id": _next_id(), "sender": "250788123456", "kind": kind, "timestamp": 1773561600}
    if kind == EventKind.TEXT:
        fields["text"] = draw(text(max_size=30))
    elif kind in (EventKind.BUTTON, EventKind.LIST):
        fields["action"] = draw(BUTTON_IDS)
        fields["secondary_id"] = draw(one_of(none(), integers(1, 20).map(str)))
    elif kind in (EventKind.IMAGE, EventKind.DOCUMENT):
        fields["media_id"] = draw(one_of(just("media-1"), just("media-2")))
    elif kind == EventKind.LOCATION:
        fields["latitude"] = draw(floats(-2.9, -1.0))
        fields["longitude"] = draw(floats(28.8, 30.9))
    return InboundEvent(**fields)


# ============================================================================
# Properties
# ============================================================================


class TestDispatcherProperties:

    @pytest.mark.unit
    @h_settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
    @given(state=STATES, event=inbound_events())
    def test_dispatch_is_deterministic(self, state: S, event: InboundEvent) -> None:
        ctx = _context_for(state)
        first = _dispatcher.dispatch(state, ctx, event)
        second = _dispatcher.dispatch(state, ctx, event)
        assert first == second

    @pytest.mark.unit
    @h_settings(max_examples=200)
    @given(state=STATES, word=ESCAPES)
    def test_escape_always_resets(self, state: S, word: str) -> None:
        event = InboundEvent(source_id=_next_id(), sender="250788123456", kind=EventKind.TEXT, text=word)
        t = _dispatcher.dispatch(state, _context_for(state), event)

        assert t.state == S.MAIN_MENU
        assert t.context == MainContext()
        assert t.command is None

    @pytest.mark.unit
    @h_settings(max_examples=300, suppress_health_check=[HealthCheck.too_slow])
    @given(state=STATES, event=inbound_events())
    def test_transition_is_well_formed(self, state: S, event: InboundEvent) -> None:
        t = _dispatcher.dispatch(state, _context_for(state), event)

        assert len(t.actions) >= 1
        owner = _dispatcher.owner(t.state)
        expected_flow = owner.name if owner else "main"
        assert t.context.flow == expected_flow

    @pytest.mark.unit
    @h_settings(max_examples=200)
    @given(state=STATES, typed=GIBBERISH)
    def test_gibberish_never_advances(self, state: S, typed: str) -> None:
        ctx = _context_for(state)
        event = InboundEvent(source_id=_next_id(), sender="250788123456", kind=EventKind.TEXT, text=typed)
        t = _dispatcher.dispatch(state, ctx, event)

        if state == S.MAIN_MENU:
            assert t.state == S.MAIN_MENU
        elif state in (S.ND_LOCATION, S.ST_PICKUP, S.ST_DROPOFF, S.ST_ROUTE):
            # free-text places are accepted as typed
            return
        else:
            assert t.state == state
            assert t.context == ctx
            assert t.command is None

    @pytest.mark.unit
    @h_settings(max_examples=100)
    @given(state=sampled_from(sorted(EXTERNAL_PENDING_STATES)), event=inbound_events())
    def test_pending_states_only_leave_by_escape(self, state: S, event: InboundEvent) -> None:
        t = _dispatcher.dispatch(state, _CONTEXTS["insurance"], event)
        assert t.state in (state, S.MAIN_MENU)
        assert t.command is None

    @pytest.mark.unit
    @given(
        amount=one_of(none(), integers(1, 10_000_000)),
        addons=sampled_from([(), ("pa",), ("comesa", "glass")]),
    )
    def test_context_survives_storage(self, amount, addons) -> None:
        for ctx in (
            QRContext(id_type="code", identifier="12345", amount=amount),
            InsuranceContext(checked=True, addons=addons, amount=amount),
        ):
            assert load_context(dump_context(ctx)) == ctx
