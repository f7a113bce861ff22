"""
Base Flow

A flow is a table of pure functions keyed by state:

- handlers: (context, event) -> Transition, or None when the input is not
  recognized (the dispatcher then re-sends the state's prompt)
- prompts: (context, to) -> the single action that asks for the state's input
- result handlers: (context, result, user_id) -> Transition, keyed by
  (waiting state, command name)
- milestone handlers: (state, context, milestone) -> Transition or None
"""
from typing import Callable, Optional

from mobility_hub.state_machine.context import BaseContext
from mobility_hub.state_machine.events import (
    Command,
    CommandName,
    CommandResult,
    InboundEvent,
    Milestone,
    MilestoneEvent,
    OutboundAction,
    Transition,
)
from mobility_hub.state_machine.states import ConversationState

Handler = Callable[[BaseContext, InboundEvent], Optional[Transition]]
Prompt = Callable[[BaseContext, str], OutboundAction]
ResultHandler = Callable[[BaseContext, CommandResult, str], Transition]
MilestoneHandler = Callable[[ConversationState, BaseContext, MilestoneEvent], Optional[Transition]]

TRY_AGAIN = "Something went wrong on our side. Please try again."


class BaseFlow:
    """Common plumbing for the five flows"""

    name: str = ""
    context_model: type[BaseContext] = BaseContext
    entry_state: ConversationState = ConversationState.MAIN_MENU

    def __init__(self) -> None:
        self._handlers: dict[ConversationState, Handler] = self._get_handlers()
        self._prompts: dict[ConversationState, Prompt] = self._get_prompts()
        self._result_handlers: dict[tuple[ConversationState, CommandName], ResultHandler] = (
            self._get_result_handlers()
        )
        self._milestone_handlers: dict[Milestone, MilestoneHandler] = self._get_milestone_handlers()

    # ==================== Tables ====================

    def _get_handlers(self) -> dict[ConversationState, Handler]:
        raise NotImplementedError

    def _get_prompts(self) -> dict[ConversationState, Prompt]:
        raise NotImplementedError

    def _get_result_handlers(self) -> dict[tuple[ConversationState, CommandName], ResultHandler]:
        return {}

    def _get_milestone_handlers(self) -> dict[Milestone, MilestoneHandler]:
        return {}

    # ==================== Public ====================

    @property
    def states(self) -> frozenset[ConversationState]:
        return frozenset(self._prompts)

    def start(self, event: InboundEvent) -> Transition:
        """Enter the flow with a fresh context"""
        return self._goto(self.entry_state, self.context_model(), event.sender)

    def handle(self, state: ConversationState, context: BaseContext, event: InboundEvent) -> Optional[Transition]:
        handler = self._handlers.get(state)
        if handler is None:
            return None
        return handler(context, event)

    def prompt(self, state: ConversationState, context: BaseContext, to: str) -> OutboundAction:
        return self._prompts[state](context, to)

    def on_result(
        self,
        state: ConversationState,
        context: BaseContext,
        result: CommandResult,
        user_id: str,
    ) -> Optional[Transition]:
        handler = self._result_handlers.get((state, result.name))
        if handler is None:
            return None
        return handler(context, result, user_id)

    def on_milestone(
        self,
        state: ConversationState,
        context: BaseContext,
        milestone: MilestoneEvent,
    ) -> Optional[Transition]:
        handler = self._milestone_handlers.get(milestone.milestone)
        if handler is None:
            return None
        return handler(state, context, milestone)

    # ==================== Helpers ====================

    def _goto(
        self,
        state: ConversationState,
        context: BaseContext,
        to: str,
        *,
        prefix: Optional[str] = None,
        before: tuple[OutboundAction, ...] = (),
        command: Optional[Command] = None,
    ) -> Transition:
        """Move to ``state`` and send its prompt"""
        action = self.prompt(state, context, to)
        if prefix:
            action = action.with_prefix(prefix)
        return Transition(state=state, context=context, actions=(*before, action), command=command)

    def _reprompt(self, state: ConversationState, context: BaseContext, to: str, error: str) -> Transition:
        """Stay put and ask again, explaining what was wrong"""
        return self._goto(state, context, to, prefix=error)

    @staticmethod
    def _wait(body: str) -> Prompt:
        """Prompt for states that wait on a command or the backoffice"""
        return lambda context, to: OutboundAction.text(to, body)
